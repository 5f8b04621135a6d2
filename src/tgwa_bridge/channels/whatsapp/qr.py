"""
QR Rendering

Pairing challenge rendering for the terminal log and the control surface.
"""

from io import BytesIO, StringIO

import qrcode
import qrcode.image.svg


def render_qr_ascii(data: str) -> str:
    """Render a QR code as terminal text."""
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=1,
        border=2,
    )
    qr.add_data(data)
    qr.make(fit=True)

    out = StringIO()
    qr.print_ascii(out=out, invert=True)
    return out.getvalue()


def render_qr_svg(data: str) -> str:
    """Render a QR code as a standalone SVG document."""
    img = qrcode.make(data, image_factory=qrcode.image.svg.SvgPathImage, box_size=10)
    buf = BytesIO()
    img.save(buf)
    return buf.getvalue().decode("utf-8")
