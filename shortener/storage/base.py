"""Abstract persistence contract consumed by the allocation controller.

Any backend that stores ``(short_key, original_url)`` pairs implements
``MappingStore``. The controller only ever talks to this interface, so the
in-memory store can drive deterministic tests while production runs on SQL.

Contract
========
::
    save(key, url)         -> None   DuplicateKey | StorageUnavailable
    get_url_by_key(key)    -> url    NotFound     | StorageUnavailable
    get_key_by_url(url)    -> key    NotFound     | StorageUnavailable
    exists(key)            -> bool                  StorageUnavailable
    ping()                 -> None                  StorageUnavailable
    close()                -> None

``save`` must be atomic with respect to ``key``: two concurrent saves of the
same key leave exactly one row and the loser gets ``DuplicateKey``. Nothing in
the contract makes ``original_url`` unique; callers serialise per URL.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

__all__ = ["MappingStore", "UrlMappingRecord"]


@dataclass(frozen=True)
class UrlMappingRecord:
    id: int
    short_key: str
    original_url: str


class MappingStore(ABC):
    """Durable store of short key → original URL mappings."""

    @abstractmethod
    async def save(self, key: str, url: str) -> None:
        """Persist a new mapping.

        Raises:
            DuplicateKey: If ``key`` is already mapped.
            StorageUnavailable: On any other storage fault.
        """
        raise NotImplementedError

    @abstractmethod
    async def get_url_by_key(self, key: str) -> str:
        """Return the original URL for ``key``.

        Raises:
            NotFound: If ``key`` is not mapped.
        """
        raise NotImplementedError

    @abstractmethod
    async def get_key_by_url(self, url: str) -> str:
        """Return the short key already bound to ``url``.

        Raises:
            NotFound: If ``url`` has never been shortened.
        """
        raise NotImplementedError

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Report whether ``key`` is taken. Absence is ``False``, never an error."""
        raise NotImplementedError

    async def ping(self) -> None:
        """Raise ``StorageUnavailable`` if the backend cannot serve requests."""

    async def close(self) -> None:
        """Release backend resources."""
