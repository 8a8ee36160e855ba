from __future__ import annotations

import asyncio
import logging


def _svg_to_png(svg: bytes, width: int) -> bytes:
    import cairosvg

    return cairosvg.svg2png(bytestring=svg, output_width=width, background_color="white")


async def render_preview(svg: bytes, width: int = 512) -> tuple[str, bytes]:
    """Render the traced SVG to a PNG preview, or hand back the SVG if that fails.

    Returns ``(filename, data)`` ready to be sent as a document.
    """
    try:
        png = await asyncio.to_thread(_svg_to_png, svg, width)
    except Exception:
        logging.exception("Failed to render SVG preview, sending the SVG itself")
        return "icon.svg", svg
    return "icon.png", png
