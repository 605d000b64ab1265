"""Prepare food photos for transport to the vision model.

No format validation happens here: bytes Pillow cannot decode are passed
through untouched and the model provider decides what it accepts.
"""

import base64
import logging
import time
from io import BytesIO
from typing import Dict, Tuple

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)


def resize_image_bytes(image_bytes: bytes, max_side: int) -> bytes:
    """Resize so that the longer side <= max_side, keep aspect ratio, force JPEG."""
    with Image.open(BytesIO(image_bytes)) as img:
        img.thumbnail((max_side, max_side))
        img = img.convert("RGB")  # PNG/RGBA -> JPEG
        out = BytesIO()
        img.save(out, format="JPEG", quality=90)
    return out.getvalue()


def prepare_image(image_bytes: bytes, max_side: int | None) -> Tuple[bytes, Dict]:
    """
    Optionally downscale the image.

    Returns (bytes_to_send, timings) where timings holds resize_ms,
    input/output sizes and whether the resize was applied.
    """
    timings: Dict = {
        "input_bytes": len(image_bytes),
        "resize_applied": False,
        "resize_ms": 0.0,
    }
    if not max_side:
        timings["output_bytes"] = len(image_bytes)
        return image_bytes, timings

    t0 = time.perf_counter()
    try:
        prepared = resize_image_bytes(image_bytes, max_side)
        timings["resize_applied"] = True
    except (UnidentifiedImageError, OSError) as e:
        logger.warning("Image resize skipped, sending original bytes: %s", e)
        prepared = image_bytes
    timings["resize_ms"] = round((time.perf_counter() - t0) * 1000, 2)
    timings["output_bytes"] = len(prepared)
    return prepared, timings


def to_data_url(image_bytes: bytes, content_type: str = "image/jpeg") -> str:
    b64_img = base64.b64encode(image_bytes).decode("utf-8")
    return f"data:{content_type};base64,{b64_img}"
