"""
Codificador de payloads QR interoperables estilo EMVCo (Transferencias 3.0).

Formato TLV: tag de 2 dígitos, largo de 2 dígitos decimales y valor. El orden
de los campos es fijo:

    00 formato de payload ("01")
    01 método de iniciación ("12", estático)
    26 cuenta del comercio (anidado: 00 GUI "AR", 01 CBU/CVU, 02 referencia)
    52 MCC
    53 moneda ("032", ARS)
    54 monto en centavos (solo en modo monto fijo)
    58 país ("AR")
    59 nombre del comercio
    60 ciudad
    62 datos adicionales (anidado: 05 referencia)
    63 CRC16/CCITT de 4 dígitos hex

El CRC se calcula sobre todo el payload incluyendo "6304" y excluyendo su
propio valor. Cualquier valor inválido hace fallar la codificación; nunca se
trunca en silencio.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple
import re

from settlement.core.exceptions import ValidationError


PAYLOAD_FORMAT_INDICATOR = "01"
STATIC_INITIATION_METHOD = "12"
COUNTRY_GUI = "AR"
CURRENCY_ARS = "032"
COUNTRY_CODE = "AR"
DEFAULT_MERCHANT_CATEGORY_CODE = "5492"

CBU_LENGTH = 22
MAX_REFERENCE_LENGTH = 25
MAX_MERCHANT_NAME_LENGTH = 25
MAX_MERCHANT_CITY_LENGTH = 15
MAX_TLV_VALUE_LENGTH = 99

CRC_TAG_PREFIX = "6304"


class EMVCoValidationError(ValidationError):
    code_default = "INVALID_QR_DATA"


def crc16_ccitt(data: str) -> str:
    """CRC16/CCITT-FALSE (polinomio 0x1021, semilla 0xFFFF) en 4 dígitos hex."""
    crc = 0xFFFF
    for byte in data.encode("utf-8"):
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ 0x1021) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return f"{crc:04X}"


def format_tlv(tag: str, value: str) -> str:
    if len(tag) != 2 or not tag.isdigit():
        raise EMVCoValidationError(f"Tag EMVCo inválido: {tag}")
    if not value:
        raise EMVCoValidationError(f"El campo {tag} no puede estar vacío")
    if len(value) > MAX_TLV_VALUE_LENGTH:
        raise EMVCoValidationError(
            f"El campo {tag} excede {MAX_TLV_VALUE_LENGTH} caracteres",
            details={"tag": tag, "length": len(value)},
        )
    return f"{tag}{len(value):02d}{value}"


def normalize_cbu(cbu: str) -> str:
    """Deja solo dígitos y exige exactamente 22"""
    digits = re.sub(r"\D", "", cbu or "")
    if len(digits) != CBU_LENGTH:
        raise EMVCoValidationError(
            "El CBU/CVU debe tener exactamente 22 dígitos",
            code="INVALID_CBU",
            details={"length": len(digits)},
        )
    return digits


def amount_to_cents(amount) -> str:
    value = Decimal(str(amount))
    if value <= 0:
        raise EMVCoValidationError("El monto del QR debe ser mayor a 0", code="INVALID_AMOUNT")
    cents = (value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return str(int(cents))


def _check_length(field: str, value: str, limit: int) -> str:
    value = (value or "").strip()
    if not value:
        raise EMVCoValidationError(f"El campo {field} es requerido")
    if len(value) > limit:
        raise EMVCoValidationError(
            f"El campo {field} no puede exceder {limit} caracteres",
            details={"field": field, "length": len(value)},
        )
    return value


def build_merchant_account(cbu: str, reference: str) -> str:
    nested = (
        format_tlv("00", COUNTRY_GUI)
        + format_tlv("01", normalize_cbu(cbu))
        + format_tlv("02", _check_length("reference", reference, MAX_REFERENCE_LENGTH))
    )
    if len(nested) > MAX_TLV_VALUE_LENGTH:
        raise EMVCoValidationError("El campo 26 excede 99 caracteres", code="FIELD_26_TOO_LONG")
    return nested


def build_emvco_payload(
    cbu: str,
    reference: str,
    merchant_name: str,
    merchant_city: str,
    amount=None,
    merchant_category_code: str = DEFAULT_MERCHANT_CATEGORY_CODE,
) -> str:
    """
    Construye el payload completo con CRC.

    Con amount=None se genera un QR de monto abierto (sin tag 54).
    """
    if not re.fullmatch(r"\d{4}", merchant_category_code or ""):
        raise EMVCoValidationError(
            "El MCC debe tener exactamente 4 dígitos",
            code="INVALID_MCC",
        )

    reference = _check_length("reference", reference, MAX_REFERENCE_LENGTH)

    payload = format_tlv("00", PAYLOAD_FORMAT_INDICATOR)
    payload += format_tlv("01", STATIC_INITIATION_METHOD)
    payload += format_tlv("26", build_merchant_account(cbu, reference))
    payload += format_tlv("52", merchant_category_code)
    payload += format_tlv("53", CURRENCY_ARS)
    if amount is not None:
        payload += format_tlv("54", amount_to_cents(amount))
    payload += format_tlv("58", COUNTRY_CODE)
    payload += format_tlv("59", _check_length("merchant_name", merchant_name, MAX_MERCHANT_NAME_LENGTH))
    payload += format_tlv("60", _check_length("merchant_city", merchant_city, MAX_MERCHANT_CITY_LENGTH))
    payload += format_tlv("62", format_tlv("05", reference))

    payload += CRC_TAG_PREFIX
    return payload + crc16_ccitt(payload)


def verify_crc(payload: str) -> bool:
    """Recalcula el CRC sobre el payload sin su valor y lo compara"""
    if len(payload) < 8 or payload[-8:-4] != CRC_TAG_PREFIX:
        return False
    return crc16_ccitt(payload[:-4]) == payload[-4:].upper()


def parse_tlv(payload: str) -> List[Tuple[str, str]]:
    """Decodifica un nivel de TLV en pares (tag, valor)"""
    fields = []
    position = 0
    while position < len(payload):
        header = payload[position:position + 4]
        if len(header) < 4 or not header.isdigit():
            raise EMVCoValidationError("Payload EMVCo malformado", details={"position": position})
        tag, length = header[:2], int(header[2:])
        value = payload[position + 4:position + 4 + length]
        if len(value) != length:
            raise EMVCoValidationError("Payload EMVCo truncado", details={"tag": tag})
        fields.append((tag, value))
        position += 4 + length
    return fields


def extract_reference(payload: str) -> Optional[str]:
    for tag, value in parse_tlv(payload):
        if tag == "62":
            for nested_tag, nested_value in parse_tlv(value):
                if nested_tag == "05":
                    return nested_value
    return None
