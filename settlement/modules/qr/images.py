"""
Renderizado del payload QR a imagen PNG en base64.
"""
import base64
from io import BytesIO

import qrcode


def render_qr_data_uri(payload: str, box_size: int = 10, border: int = 4) -> str:
    """
    Genera la imagen del QR y la devuelve como data URI PNG.

    Usa corrección de errores nivel M, suficiente para pantallas de caja.
    """
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(payload)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buffer = BytesIO()
    img.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"
