"""Random short key generation.

Keys are drawn with nanoid, which reads from ``os.urandom`` for every call.
There is no shared seed or generator state in the process, so any number of
tasks or threads can draw concurrently without biasing or repeating output.

Keys are public identifiers, not secrets: the only requirement on the source
is an even spread over the key space. With 62 symbols and length 7 there are
62^7 ≈ 3.5e12 keys, and collisions stay rare until roughly 1.9e6 keys
(the birthday bound) are allocated.

How to Use
===========
::
    generator = KeyGenerator()
    key = generator.generate()          # e.g. 'aZ3kQ9x'
    generator.is_well_formed(key)       # True
"""

__all__ = ["ALPHABET", "KEY_LENGTH", "RESERVED_KEYS", "KeyGenerator"]

from nanoid import generate

ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
KEY_LENGTH = 7

# Path segments served by other routes; GET /<key> would never reach the redirect.
RESERVED_KEYS = frozenset({"health", "metrics", "shorten", "docs", "redoc", "openapi.json"})


class KeyGenerator:
    """Produces fixed-length candidate keys over a bounded alphabet."""

    def __init__(self, alphabet: str = ALPHABET, length: int = KEY_LENGTH) -> None:
        if len(set(alphabet)) < 2:
            raise ValueError(f"alphabet must hold at least two distinct symbols, got {alphabet!r}")
        if length < 1:
            raise ValueError(f"length must be a positive integer, got {length!r}")
        self.alphabet = alphabet
        self.length = length
        self._symbols = frozenset(alphabet)

    @property
    def key_space(self) -> int:
        return len(self._symbols) ** self.length

    def generate(self) -> str:
        return generate(self.alphabet, self.length)

    def is_well_formed(self, key: str) -> bool:
        """True if ``key`` could have been produced by this generator."""
        return len(key) == self.length and all(c in self._symbols for c in key)
