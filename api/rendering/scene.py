"""Scene-graph rendering - design JSON to PNG bitmaps.

A design is a canvas scene graph: an ordered ``objects`` list where each node
has a ``type`` plus position, size, transform and paint attributes. Rendering
happens in three steps:

1. ``load_scene`` parses the document, rewrites image formats the rasterizer
   cannot decode and downloads embedded images into data URIs. An image that
   cannot be fetched or decoded drops that node; loading always completes.
2. ``scene_to_svg`` draws the node list into a fresh SVG document.
3. CairoSVG rasterizes the SVG to PNG in a worker thread.

Every call builds its own SVG document, so renders never share drawing state.
"""

from __future__ import annotations

import asyncio
import base64
import copy
import html
import io
import logging
from typing import Any
from urllib.parse import urlsplit

import httpx
from circuitbreaker import CircuitBreaker, CircuitBreakerError
from PIL import Image, features
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from core.http_client import get_image_client
from rendering.errors import (
    MalformedDesignError,
    RenderFailureError,
    UnreadableImageError,
)
from rendering.placeholders import parse_scene

logger = logging.getLogger(__name__)

CANVAS_WIDTH = 800
CANVAS_HEIGHT = 600

DEFAULT_THUMBNAIL_WIDTH = 300
DEFAULT_THUMBNAIL_HEIGHT = 225

# Colours kept in a thumbnail's adaptive palette
THUMBNAIL_COLORS = 256

RETRIABLE_EXCEPTIONS = (httpx.TransportError,)

_TEXT_TYPES = {"text", "i-text", "itext", "textbox"}
_ORIGIN_FACTORS = {"left": 0.0, "top": 0.0, "center": 0.5, "right": 1.0, "bottom": 1.0}
_TEXT_ANCHORS = {"left": "start", "center": "middle", "right": "end"}

# One breaker per image host; a dead host never blocks images from other hosts
_host_breakers: dict[str, CircuitBreaker] = {}


# --- Image preprocessing ---


def _webp_decodable() -> bool:
    """Whether the installed Pillow (CairoSVG's raster decoder) reads WebP."""
    return features.check("webp")


def _fallback_image_src(src: str) -> str:
    """Swap a WebP reference for a format the rasterizer can decode."""
    if "format=webp" in src:
        return src.replace("format=webp", "format=png")
    if ".webp" in src:
        return src.replace(".webp", ".jpg")
    return src


def preprocess_image_sources(
    scene: dict[str, Any], *, rewrite_webp: bool | None = None
) -> dict[str, Any]:
    """Rewrite WebP image sources to a best-effort fallback format.

    The rewrite only happens when WebP cannot be decoded locally;
    ``rewrite_webp`` overrides that check. Returns a new scene; the input is
    not modified. Applying it twice gives the same result as applying it once.
    """
    if rewrite_webp is None:
        rewrite_webp = not _webp_decodable()

    processed = copy.deepcopy(scene)
    if not rewrite_webp:
        return processed

    for node in processed.get("objects") or []:
        if not isinstance(node, dict):
            continue
        src = node.get("src")
        if str(node.get("type", "")).lower() != "image" or not isinstance(src, str):
            continue
        fallback = _fallback_image_src(src)
        if fallback != src:
            logger.info(
                "scene.image.fallback",
                extra={"original_src": src, "fallback_src": fallback},
            )
            node["src"] = fallback
    return processed


def _breaker_for(url: str) -> CircuitBreaker:
    host = urlsplit(url).netloc.lower()
    breaker = _host_breakers.get(host)
    if breaker is None:
        breaker = CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60,
            expected_exception=RETRIABLE_EXCEPTIONS,
            name=f"image_fetch_circuit:{host}",
        )
        _host_breakers[host] = breaker
    return breaker


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential_jitter(initial=0.5, max=5),
    retry=retry_if_exception_type(RETRIABLE_EXCEPTIONS),
    reraise=True,
)
async def _download_image(url: str) -> bytes:
    client = await get_image_client()
    response = await client.get(url)
    response.raise_for_status()
    return response.content


def _image_mime_type(data: bytes) -> str:
    """Check that ``data`` decodes as an image and return its MIME type.

    Raises:
        UnreadableImageError: If Pillow cannot identify or verify the bytes
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.verify()
            image_format = image.format
    except (OSError, SyntaxError) as e:
        raise UnreadableImageError(f"Not a decodable image: {e}") from e
    return Image.MIME.get(image_format or "", "image/png")


async def _fetch_image(url: str) -> str:
    """Download an image and return it as a data URI.

    Transport failures count against the breaker of the URL's host only.

    Raises:
        httpx.HTTPError: If the download fails after retries
        CircuitBreakerError: If the host's breaker is open
        UnreadableImageError: If the response body is not an image
    """
    data = await _breaker_for(url)(_download_image)(url)
    content_type = _image_mime_type(data)
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{content_type};base64,{encoded}"


_LOAD_ERRORS = (httpx.HTTPError, CircuitBreakerError, UnreadableImageError)


async def _resolve_image(src: str) -> str | None:
    """Fetch ``src``, then its WebP fallback once; None when both fail."""
    fallback = _fallback_image_src(src)
    candidates = [src] if fallback == src else [src, fallback]

    for attempt, url in enumerate(candidates):
        if attempt:
            logger.info(
                "scene.image.fallback",
                extra={"original_src": src, "fallback_src": fallback},
            )
        try:
            return await _fetch_image(url)
        except _LOAD_ERRORS as e:
            logger.warning(
                "scene.image.load_failed",
                extra={"src": url, "error": str(e), "exc_type": type(e).__name__},
            )
    return None


async def load_scene(scene_json: str) -> dict[str, Any]:
    """Parse a design and resolve its embedded images.

    A WebP source that fails to load is tried once more in its fallback
    format. Image nodes that still cannot be fetched or decoded are dropped
    from the returned scene so the rest of the design still renders.

    Raises:
        MalformedDesignError: If the document cannot be parsed
    """
    scene = preprocess_image_sources(parse_scene(scene_json))

    loaded: list[Any] = []
    for node in scene.get("objects") or []:
        if not isinstance(node, dict) or str(node.get("type", "")).lower() != "image":
            loaded.append(node)
            continue

        src = node.get("src")
        if isinstance(src, str) and src.startswith("data:"):
            loaded.append(node)
            continue

        if not isinstance(src, str) or not src.startswith(("http://", "https://")):
            logger.warning("scene.image.unsupported_src", extra={"src": src})
            continue

        data_uri = await _resolve_image(src)
        if data_uri is None:
            continue
        node["src"] = data_uri
        loaded.append(node)

    scene["objects"] = loaded
    return scene


# --- SVG drawing ---


def _num(node: dict[str, Any], key: str, default: float) -> float:
    value = node.get(key, default)
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise MalformedDesignError(
            f"Attribute {key!r} of {node.get('type')!r} node is not a number"
        ) from e


def _paint(value: Any, default: str) -> str:
    # Gradient and pattern fills are objects; draw them with the default paint
    if isinstance(value, str) and value:
        return html.escape(value, quote=True)
    return default


def _node_transform(node: dict[str, Any], width: float, height: float) -> str:
    left = _num(node, "left", 0.0)
    top = _num(node, "top", 0.0)
    angle = _num(node, "angle", 0.0)
    scale_x = _num(node, "scaleX", 1.0)
    scale_y = _num(node, "scaleY", 1.0)
    if node.get("flipX"):
        scale_x = -scale_x
    if node.get("flipY"):
        scale_y = -scale_y

    origin_x = _ORIGIN_FACTORS.get(str(node.get("originX", "left")), 0.0)
    origin_y = _ORIGIN_FACTORS.get(str(node.get("originY", "top")), 0.0)

    return (
        f"translate({left:g} {top:g}) rotate({angle:g}) "
        f"scale({scale_x:g} {scale_y:g}) "
        f"translate({-origin_x * width:g} {-origin_y * height:g})"
    )


def _stroke_attrs(node: dict[str, Any]) -> str:
    stroke = _paint(node.get("stroke"), "none")
    if stroke == "none":
        return 'stroke="none"'
    return f'stroke="{stroke}" stroke-width="{_num(node, "strokeWidth", 1.0):g}"'


def _draw_text(node: dict[str, Any], width: float) -> str:
    text = node.get("text")
    if not isinstance(text, str):
        text = "" if text is None else str(text)

    font_size = _num(node, "fontSize", 40.0)
    line_height = _num(node, "lineHeight", 1.16) * font_size
    align = str(node.get("textAlign", "left"))
    anchor = _TEXT_ANCHORS.get(align, "start")
    x = {"start": 0.0, "middle": width / 2, "end": width}[anchor]

    font_family = html.escape(str(node.get("fontFamily", "Times New Roman")), quote=True)
    decoration = []
    if node.get("underline"):
        decoration.append("underline")
    if node.get("linethrough"):
        decoration.append("line-through")

    spans = []
    for index, line in enumerate(text.split("\n")):
        dy = font_size if index == 0 else line_height
        spans.append(f'<tspan x="{x:g}" dy="{dy:g}">{html.escape(line)}</tspan>')

    return (
        f'<text x="{x:g}" y="0" font-family="{font_family}" '
        f'font-size="{font_size:g}" '
        f'font-weight="{html.escape(str(node.get("fontWeight", "normal")), quote=True)}" '
        f'font-style="{html.escape(str(node.get("fontStyle", "normal")), quote=True)}" '
        f'text-anchor="{anchor}" '
        f'text-decoration="{" ".join(decoration) or "none"}" '
        f'fill="{_paint(node.get("fill"), "rgb(0,0,0)")}" {_stroke_attrs(node)}>'
        f'{"".join(spans)}</text>'
    )


def _draw_node(node: dict[str, Any]) -> str | None:
    """Return the SVG markup for one node, or None for unsupported types."""
    node_type = str(node.get("type", "")).lower()

    if node_type == "circle":
        radius = _num(node, "radius", 0.0)
        width = height = radius * 2
        shape = (
            f'<circle cx="{radius:g}" cy="{radius:g}" r="{radius:g}" '
            f'fill="{_paint(node.get("fill"), "rgb(0,0,0)")}" {_stroke_attrs(node)}/>'
        )
    elif node_type == "ellipse":
        rx = _num(node, "rx", 0.0)
        ry = _num(node, "ry", 0.0)
        width, height = rx * 2, ry * 2
        shape = (
            f'<ellipse cx="{rx:g}" cy="{ry:g}" rx="{rx:g}" ry="{ry:g}" '
            f'fill="{_paint(node.get("fill"), "rgb(0,0,0)")}" {_stroke_attrs(node)}/>'
        )
    else:
        width = _num(node, "width", 0.0)
        height = _num(node, "height", 0.0)

        if node_type == "rect":
            shape = (
                f'<rect x="0" y="0" width="{width:g}" height="{height:g}" '
                f'rx="{_num(node, "rx", 0.0):g}" ry="{_num(node, "ry", 0.0):g}" '
                f'fill="{_paint(node.get("fill"), "rgb(0,0,0)")}" {_stroke_attrs(node)}/>'
            )
        elif node_type == "line":
            x1, x2 = _num(node, "x1", 0.0), _num(node, "x2", width)
            y1, y2 = _num(node, "y1", 0.0), _num(node, "y2", height)
            start_x, end_x = (0.0, width) if x1 <= x2 else (width, 0.0)
            start_y, end_y = (0.0, height) if y1 <= y2 else (height, 0.0)
            shape = (
                f'<line x1="{start_x:g}" y1="{start_y:g}" '
                f'x2="{end_x:g}" y2="{end_y:g}" {_stroke_attrs(node)}/>'
            )
        elif node_type in _TEXT_TYPES:
            shape = _draw_text(node, width)
        elif node_type == "image":
            src = html.escape(str(node.get("src", "")), quote=True)
            shape = (
                f'<image xlink:href="{src}" x="0" y="0" width="{width:g}" '
                f'height="{height:g}" preserveAspectRatio="none"/>'
            )
        else:
            return None

    opacity = _num(node, "opacity", 1.0)
    return (
        f'<g transform="{_node_transform(node, width, height)}" '
        f'opacity="{opacity:g}">{shape}</g>'
    )


def scene_to_svg(
    scene: dict[str, Any],
    width: int = CANVAS_WIDTH,
    height: int = CANVAS_HEIGHT,
) -> str:
    """Draw a loaded scene into a standalone SVG document.

    The scene is always laid out on the fixed 800x600 canvas; ``width`` and
    ``height`` set the output size the canvas is scaled into.

    Raises:
        MalformedDesignError: If a node carries non-numeric geometry
    """
    parts = []

    background = scene.get("background")
    if isinstance(background, str) and background:
        parts.append(
            f'<rect width="{CANVAS_WIDTH}" height="{CANVAS_HEIGHT}" '
            f'fill="{html.escape(background, quote=True)}"/>'
        )

    skipped: list[str] = []
    for node in scene.get("objects") or []:
        if not isinstance(node, dict):
            raise MalformedDesignError("Design objects must be JSON objects")
        if node.get("visible") is False:
            continue
        markup = _draw_node(node)
        if markup is None:
            skipped.append(str(node.get("type")))
            continue
        parts.append(markup)

    if skipped:
        logger.debug("scene.nodes.unsupported", extra={"types": skipped})

    body = "\n  ".join(parts)
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<svg xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink" viewBox="0 0 {CANVAS_WIDTH} {CANVAS_HEIGHT}" width="{width}" height="{height}">
  {body}
</svg>"""


# --- Rasterization ---


def thumbnail_scale(width: int, height: int) -> float:
    """Scale factor that fits the canvas inside width x height."""
    return min(width / CANVAS_WIDTH, height / CANVAS_HEIGHT)


def thumbnail_size(width: int, height: int) -> tuple[int, int]:
    """Output pixel size of a thumbnail, preserving the canvas aspect ratio.

    >>> thumbnail_size(150, 100)
    (150, 112)
    """
    factor = thumbnail_scale(width, height)
    return (
        max(1, int(CANVAS_WIDTH * factor)),
        max(1, int(CANVAS_HEIGHT * factor)),
    )


def svg_to_png(svg_content: str, *, width: int, height: int) -> bytes:
    """Rasterize an SVG document to PNG bytes at the given pixel size.

    Raises:
        RenderFailureError: If the Cairo library is missing or drawing fails
    """
    try:
        import cairosvg
    except OSError as e:
        raise RenderFailureError(
            "PNG rendering requires the Cairo library. "
            "On macOS: brew install cairo. "
            "On Ubuntu/Debian: apt-get install libcairo2-dev. "
            "On Alpine: apk add cairo-dev."
        ) from e

    try:
        return cairosvg.svg2png(
            bytestring=svg_content.encode("utf-8"),
            output_width=width,
            output_height=height,
        )
    except Exception as e:
        raise RenderFailureError(f"Rasterizing design failed: {e}") from e


def _reduce_quality(png: bytes) -> bytes:
    """Re-encode a PNG with an adaptive palette for lightweight previews."""
    with Image.open(io.BytesIO(png)) as image:
        preview = image.convert("RGBA").quantize(colors=THUMBNAIL_COLORS)
        output = io.BytesIO()
        preview.save(output, format="PNG", optimize=True)
    return output.getvalue()


async def render_png(scene_json: str) -> bytes:
    """Render a design at full canvas size and maximum quality.

    Raises:
        MalformedDesignError: If the document cannot be parsed
        RenderFailureError: If rasterizing fails
    """
    scene = await load_scene(scene_json)
    svg_content = scene_to_svg(scene)
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        None,
        lambda: svg_to_png(svg_content, width=CANVAS_WIDTH, height=CANVAS_HEIGHT),
    )


async def render_thumbnail(
    scene_json: str,
    width: int = DEFAULT_THUMBNAIL_WIDTH,
    height: int = DEFAULT_THUMBNAIL_HEIGHT,
) -> bytes:
    """Render a scaled-down preview of a design.

    The canvas is scaled by ``min(width/800, height/600)`` so the aspect ratio
    is preserved, and the result is palette-reduced.
    """
    if width <= 0 or height <= 0:
        raise ValueError("Thumbnail width and height must be positive")

    out_width, out_height = thumbnail_size(width, height)
    scene = await load_scene(scene_json)
    svg_content = scene_to_svg(scene, out_width, out_height)

    def _render() -> bytes:
        png = svg_to_png(svg_content, width=out_width, height=out_height)
        try:
            return _reduce_quality(png)
        except OSError as e:
            raise RenderFailureError(f"Encoding thumbnail failed: {e}") from e

    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, _render)
