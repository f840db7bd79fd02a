"""Unit tests for invoice id and amount encodings."""

from decimal import Decimal

import pytest

from trufflepay.errors import ValidationError
from trufflepay.ledger import (
    MAX_INVOICE_ID_BYTES,
    decode_invoice_id,
    encode_invoice_id,
    format_amount,
    from_base_units,
    parse_amount,
    to_base_units,
    validate_invoice_id,
)
from trufflepay.ledger.encoding import quantize_price


class TestInvoiceIdEncoding:
    def test_max_length_id_is_accepted(self):
        invoice_id = "x" * MAX_INVOICE_ID_BYTES
        encoded = encode_invoice_id(invoice_id)

        assert len(encoded) == 32
        assert decode_invoice_id(encoded) == invoice_id

    def test_forty_character_id_is_rejected(self):
        with pytest.raises(ValidationError) as exc:
            validate_invoice_id("a" * 40)
        assert exc.value.details["max_bytes"] == 31

    def test_length_is_measured_in_utf8_bytes(self):
        # 16 two-byte characters = 32 bytes
        with pytest.raises(ValidationError):
            encode_invoice_id("é" * 16)

    @pytest.mark.parametrize("bad", ["", "   ", None, 42, "a\x00b"])
    def test_malformed_ids_are_rejected(self, bad):
        with pytest.raises(ValidationError):
            validate_invoice_id(bad)

    def test_decode_requires_full_width(self):
        with pytest.raises(ValidationError):
            decode_invoice_id(b"short")


class TestAmounts:
    def test_whole_tokens_scale_to_base_units(self):
        assert to_base_units(Decimal("3")) == 3 * 10**18
        assert from_base_units(3 * 10**18) == Decimal(3)

    def test_fractional_digits_beyond_precision_are_rejected(self):
        with pytest.raises(ValidationError, match="fractional digits"):
            to_base_units(Decimal("0.123"), decimals=2)

    @pytest.mark.parametrize("bad", ["-1", "0", "abc", None, True, "NaN", "Infinity"])
    def test_parse_amount_rejects_non_positive_or_garbage(self, bad):
        with pytest.raises(ValidationError):
            parse_amount(bad)

    def test_format_amount_drops_trailing_zeros(self):
        assert format_amount(Decimal("3.000")) == "3"
        assert format_amount(Decimal("2.50")) == "2.5"
        assert format_amount(Decimal("1E+1")) == "10"

    def test_quantize_price_rounds_half_up(self):
        assert quantize_price(Decimal("6.005"), 2) == Decimal("6.01")
