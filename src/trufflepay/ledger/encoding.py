"""
Wire encodings for the settlement ledger.

Invoice ids travel as fixed-width 32-byte values and amounts as integer base
units of an 18-decimal token. Both conversions reject input that would be
silently truncated.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from trufflepay.errors import ValidationError

INVOICE_ID_WIDTH = 32
# bytes32 strings keep a trailing NUL, so 31 bytes of content is the maximum
MAX_INVOICE_ID_BYTES = INVOICE_ID_WIDTH - 1
DEFAULT_DECIMALS = 18


def validate_invoice_id(invoice_id: object) -> str:
    """Return ``invoice_id`` if it can be encoded as bytes32, else raise."""
    if not isinstance(invoice_id, str) or not invoice_id.strip():
        raise ValidationError("Invoice id must be a non-empty string")
    if "\x00" in invoice_id:
        raise ValidationError("Invoice id cannot contain NUL characters")

    size = len(invoice_id.encode("utf-8"))
    if size > MAX_INVOICE_ID_BYTES:
        raise ValidationError(
            f"Invoice id is {size} bytes; at most {MAX_INVOICE_ID_BYTES} fit in bytes32",
            details={"invoice_id": invoice_id, "max_bytes": MAX_INVOICE_ID_BYTES},
        )
    return invoice_id


def encode_invoice_id(invoice_id: str) -> bytes:
    raw = validate_invoice_id(invoice_id).encode("utf-8")
    return raw.ljust(INVOICE_ID_WIDTH, b"\x00")


def decode_invoice_id(raw: bytes) -> str:
    if len(raw) != INVOICE_ID_WIDTH:
        raise ValidationError(f"Expected {INVOICE_ID_WIDTH} bytes, got {len(raw)}")
    return raw.rstrip(b"\x00").decode("utf-8")


def parse_amount(value: object) -> Decimal:
    """Parse a positive money amount from request input."""
    if isinstance(value, bool) or value is None:
        raise ValidationError("Amount is required")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"Invalid amount: {value!r}") from e

    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"Amount must be a positive number, got {value!r}")
    return amount


def to_base_units(amount: Decimal, decimals: int = DEFAULT_DECIMALS) -> int:
    """
    Convert a decimal amount into integer token units.

    Example:
        >>> to_base_units(Decimal("3"), 18)
        3000000000000000000
    """
    scaled = amount.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValidationError(
            f"Amount {amount} has more than {decimals} fractional digits"
        )
    if scaled < 0:
        raise ValidationError("Amount cannot be negative")
    return int(scaled)


def from_base_units(value: int, decimals: int = DEFAULT_DECIMALS) -> Decimal:
    return Decimal(value).scaleb(-decimals)


def format_amount(amount: Decimal) -> str:
    """Plain decimal string without exponent or trailing zeros ("3", "2.5")."""
    normalized = amount.normalize()
    if normalized == 0:
        return "0"
    return f"{normalized:f}"


def quantize_price(amount: Decimal, places: int) -> Decimal:
    return amount.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
