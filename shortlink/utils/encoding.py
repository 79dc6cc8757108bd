# Base32 alphabet (uppercase, no ambiguous 0/1/8/9)
ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
BASE = len(ALPHABET)
MIN_LENGTH = 4
MAX_LENGTH = 6

_INDEX = {ch: i for i, ch in enumerate(ALPHABET)}

FNV_OFFSET_BASIS = 0xCBF29CE484222325
FNV_PRIME = 0x100000001B3
_MASK_64 = (1 << 64) - 1


class InvalidCharacterError(ValueError):
    def __init__(self, char: str):
        super().__init__(f"invalid character: {char}")
        self.char = char


def hash_string(s: str) -> int:
    """64-bit FNV-1a hash of the UTF-8 bytes of ``s``."""
    h = FNV_OFFSET_BASIS
    for byte in s.encode("utf-8"):
        h ^= byte
        h = (h * FNV_PRIME) & _MASK_64
    return h


def encode(n: int, length: int = MIN_LENGTH) -> str:
    """Encode ``n`` as exactly ``length`` Base32 digits, most significant first.

    Lengths outside [MIN_LENGTH, MAX_LENGTH] fall back to MIN_LENGTH. Bits
    beyond ``BASE ** length`` are dropped.
    """
    if length < MIN_LENGTH or length > MAX_LENGTH:
        length = MIN_LENGTH
    out = [""] * length
    for i in range(length - 1, -1, -1):
        n, rem = divmod(n, BASE)
        out[i] = ALPHABET[rem]
    return "".join(out)


def encode_string(s: str, length: int = MIN_LENGTH) -> str:
    return encode(hash_string(s), length)


def decode(s: str) -> int:
    n = 0
    for ch in s.upper():
        index = _INDEX.get(ch)
        if index is None:
            raise InvalidCharacterError(ch)
        n = n * BASE + index
    return n


def is_valid(s: str) -> bool:
    if not s or len(s) < MIN_LENGTH or len(s) > MAX_LENGTH:
        return False
    return all(ch in _INDEX for ch in s.upper())


def max_capacity(length: int) -> int:
    return BASE ** length


def normalize_short_code(code: str) -> str:
    """Normalize short code to uppercase for case-insensitive lookups."""
    return code.strip().upper()
