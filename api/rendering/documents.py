"""Page-document output - wrapping rendered bitmaps into PDFs."""

import base64

from rendering.errors import RenderFailureError
from rendering.scene import CANVAS_HEIGHT, CANVAS_WIDTH


def png_to_pdf(
    png: bytes, width: int = CANVAS_WIDTH, height: int = CANVAS_HEIGHT
) -> bytes:
    """Wrap a PNG bitmap into a single-page PDF using CairoSVG.

    The page is sized to the canvas in pixel units (landscape for the default
    800x600 canvas) and the bitmap fills it from the top-left corner.

    Args:
        png: Rendered bitmap
        width: Page width in pixels
        height: Page height in pixels

    Returns:
        PDF content as bytes

    Raises:
        RenderFailureError: If the Cairo library is missing or conversion fails
    """
    try:
        import cairosvg
    except OSError as e:
        raise RenderFailureError(
            "PDF generation requires the Cairo library. "
            "On macOS: brew install cairo. "
            "On Ubuntu/Debian: apt-get install libcairo2-dev. "
            "On Alpine: apk add cairo-dev."
        ) from e

    encoded = base64.b64encode(png).decode("ascii")
    svg = (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<svg xmlns="http://www.w3.org/2000/svg" '
        'xmlns:xlink="http://www.w3.org/1999/xlink" '
        f'width="{width}px" height="{height}px" viewBox="0 0 {width} {height}">'
        f'<image x="0" y="0" width="{width}" height="{height}" '
        f'xlink:href="data:image/png;base64,{encoded}"/>'
        "</svg>"
    )

    try:
        return cairosvg.svg2pdf(bytestring=svg.encode("utf-8"))
    except Exception as e:
        raise RenderFailureError(f"Building PDF failed: {e}") from e
