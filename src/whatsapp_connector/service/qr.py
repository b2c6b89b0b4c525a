"""
Pairing code rendering.

Pairing codes are stored and served as SVG data URLs so the pairing page
can drop them straight into an <img> tag.
"""

import base64
import io

import qrcode
from qrcode.image.svg import SvgImage


def render_pairing_code(code: str) -> str:
    """
    Render a pairing code to a QR image data URL.

    Args:
        code: Raw pairing code text reported by the client

    Returns:
        "data:image/svg+xml;base64,..." string
    """
    if not code:
        raise ValueError("Pairing code is empty")

    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_Q,
        box_size=8,
        border=2,
    )
    qr.add_data(code)
    qr.make(fit=True)
    img = qr.make_image(image_factory=SvgImage)
    buf = io.BytesIO()
    img.save(buf)
    return "data:image/svg+xml;base64," + base64.b64encode(buf.getvalue()).decode("ascii")
