"""
Tests del codificador QR EMVCo
"""
from decimal import Decimal

import pytest

from settlement.modules.qr.emvco import (
    EMVCoValidationError, build_emvco_payload, crc16_ccitt, extract_reference,
    format_tlv, normalize_cbu, parse_tlv, verify_crc
)
from settlement.modules.qr.images import render_qr_data_uri

CBU = "0000003100010000000001"


def _payload(**overrides):
    params = dict(
        cbu=CBU,
        reference="SALE-1A2B3C4D",
        merchant_name="Almacen Don Pepe",
        merchant_city="Rosario",
        amount=Decimal("1500.00"),
    )
    params.update(overrides)
    return build_emvco_payload(**params)


class TestCrc:

    def test_crc16_check_value(self):
        """Valor de verificación estándar de CRC-16/CCITT-FALSE"""
        assert crc16_ccitt("123456789") == "29B1"

    def test_crc_is_four_uppercase_hex(self):
        crc = crc16_ccitt("000201")
        assert len(crc) == 4
        assert crc == crc.upper()

    def test_payload_crc_round_trip(self):
        assert verify_crc(_payload())

    def test_single_char_flip_breaks_crc(self):
        payload = _payload()
        position = payload.index("Rosario")
        tampered = payload[:position] + "P" + payload[position + 1:]
        assert not verify_crc(tampered)


class TestPayload:

    def test_field_order(self):
        tags = [tag for tag, _ in parse_tlv(_payload())]
        assert tags == ["00", "01", "26", "52", "53", "54", "58", "59", "60", "62", "63"]

    def test_fixed_amount_in_cents(self):
        fields = dict(parse_tlv(_payload(amount=Decimal("1234.56"))))
        assert fields["54"] == "123456"
        assert fields["53"] == "032"
        assert fields["52"] == "5492"

    def test_open_amount_omits_tag_54(self):
        tags = [tag for tag, _ in parse_tlv(_payload(amount=None))]
        assert "54" not in tags

    def test_merchant_account_nested(self):
        fields = dict(parse_tlv(_payload()))
        nested = dict(parse_tlv(fields["26"]))
        assert nested == {"00": "AR", "01": CBU, "02": "SALE-1A2B3C4D"}

    def test_extract_reference(self):
        assert extract_reference(_payload()) == "SALE-1A2B3C4D"

    def test_cbu_with_separators_is_normalized(self):
        assert normalize_cbu("0000003-1000100000000-01") == CBU


class TestValidation:

    @pytest.mark.parametrize("overrides,code", [
        ({"cbu": "123"}, "INVALID_CBU"),
        ({"merchant_category_code": "54"}, "INVALID_MCC"),
        ({"amount": Decimal("0")}, "INVALID_AMOUNT"),
    ])
    def test_invalid_inputs(self, overrides, code):
        with pytest.raises(EMVCoValidationError) as exc:
            _payload(**overrides)
        assert exc.value.code == code

    def test_merchant_name_too_long(self):
        with pytest.raises(EMVCoValidationError):
            _payload(merchant_name="X" * 26)

    def test_merchant_city_too_long(self):
        with pytest.raises(EMVCoValidationError):
            _payload(merchant_city="Y" * 16)

    def test_empty_reference(self):
        with pytest.raises(EMVCoValidationError):
            _payload(reference="")

    def test_tlv_value_over_99(self):
        with pytest.raises(EMVCoValidationError):
            format_tlv("59", "Z" * 100)

    def test_validation_error_is_http_400(self):
        with pytest.raises(EMVCoValidationError) as exc:
            normalize_cbu("")
        assert exc.value.status_code == 400


def test_render_qr_data_uri():
    uri = render_qr_data_uri(_payload())
    assert uri.startswith("data:image/png;base64,")
