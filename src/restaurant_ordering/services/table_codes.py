"""Table QR code encoding and verification.

A table code is a fixed-width base-36 hash segment followed by the base-36
encoding of the table number. The hash is seeded with a shared secret so that
codes cannot be forged by simply changing the number, but it is not meant to
hide the table number.
"""

import logging
import string

logger = logging.getLogger(__name__)

DEFAULT_TABLE_CODE_SECRET = "mesa-qr-secret"
HASH_LENGTH = 6
MIN_TABLE_NUMBER = 1
MAX_TABLE_NUMBER = 100

_BASE36_DIGITS = string.digits + string.ascii_lowercase


def to_base36(value: int) -> str:
    """Render a non-negative integer in lowercase base 36."""
    if value < 0:
        raise ValueError("value must be non-negative")
    if value == 0:
        return "0"

    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def string_hash(value: str) -> int:
    """Shift-and-subtract string hash over 32-bit signed arithmetic.

    Returns:
        Absolute value of the signed 32-bit hash
    """
    h = 0
    for char in value:
        h = ((h << 5) - h + ord(char)) & 0xFFFFFFFF

    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


class TableCodeResolver:
    """Encodes table numbers into QR codes and resolves scanned codes back."""

    def __init__(self, secret: str = DEFAULT_TABLE_CODE_SECRET) -> None:
        """Initialize the resolver.

        Args:
            secret: Shared secret seeding the hash segment
        """
        if not secret:
            raise ValueError("A table code secret must be provided")
        self.secret = secret

    def hash_segment(self, table_number: int) -> str:
        """Compute the fixed-width hash segment for a table number."""
        token = to_base36(string_hash(f"{self.secret}:{table_number}"))
        return token.rjust(HASH_LENGTH, "0")[-HASH_LENGTH:]

    def encode(self, table_number: int) -> str:
        """Build the QR code for a table.

        Args:
            table_number: Table number within the supported range

        Returns:
            Opaque table code

        Raises:
            ValueError: If the table number is out of range
        """
        if not MIN_TABLE_NUMBER <= table_number <= MAX_TABLE_NUMBER:
            raise ValueError(
                f"table_number must be between {MIN_TABLE_NUMBER} and {MAX_TABLE_NUMBER}"
            )
        return self.hash_segment(table_number) + to_base36(table_number)

    def decode(self, raw_code: str) -> int | None:
        """Resolve a scanned code into a table number.

        Plain numbers up to the maximum table number are accepted as-is for
        QR codes printed before hashed codes existed.

        Args:
            raw_code: String read from the QR code

        Returns:
            Table number, or None if the code is invalid or tampered with
        """
        code = raw_code.strip().lower()

        # Legacy QR codes carried the bare table number
        if code.isascii() and code.isdigit() and len(code) < HASH_LENGTH:
            table_number = int(code)
            if MIN_TABLE_NUMBER <= table_number <= MAX_TABLE_NUMBER:
                return table_number
            return None

        if len(code) <= HASH_LENGTH:
            return None

        given_hash = code[:HASH_LENGTH]
        number_part = code[HASH_LENGTH:]

        if any(char not in _BASE36_DIGITS for char in number_part):
            return None

        table_number = int(number_part, 36)
        if to_base36(table_number) != number_part:
            return None
        if not MIN_TABLE_NUMBER <= table_number <= MAX_TABLE_NUMBER:
            return None

        if self.hash_segment(table_number) != given_hash:
            logger.warning(f"Rejected table code with mismatching hash for table {table_number}")
            return None

        return table_number


_default_resolver = TableCodeResolver()


def encode_table_code(table_number: int) -> str:
    """Encode a table number with the default secret."""
    return _default_resolver.encode(table_number)


def decode_table_code(raw_code: str) -> int | None:
    """Decode a table code with the default secret."""
    return _default_resolver.decode(raw_code)
