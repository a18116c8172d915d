from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
from PIL import Image, UnidentifiedImageError
from PIL.PngImagePlugin import PngInfo

from .artifacts import atomic_write

logger = logging.getLogger(__name__)

# tEXt key holding the number of samples per pixel averaged into the image.
SPP_KEY = "ptroute:spp"


def write_png(path: Path | str, pixels: np.ndarray, spp: int | None = None) -> Path:
    """Encode an (H, W, 3) uint8 array as PNG and atomically place it at `path`.

    When `spp` is given it is stored in a text chunk so a later run can tell
    a finished render from a progressive preview.
    """

    if pixels.ndim != 3 or pixels.shape[2] != 3:
        raise ValueError(f"expected an (H, W, 3) image, got shape {pixels.shape}")
    image = Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8))
    info = PngInfo()
    if spp is not None:
        info.add_text(SPP_KEY, str(spp))
    path = Path(path)
    with atomic_write(path) as handle:
        image.save(handle, format="PNG", pnginfo=info)
    logger.debug("wrote %s (%dx%d)", path, pixels.shape[1], pixels.shape[0])
    return path


def read_png(path: Path | str) -> np.ndarray:
    with Image.open(path) as image:
        return np.asarray(image.convert("RGB"))


def is_valid_png(
    path: Path | str,
    width: int | None = None,
    height: int | None = None,
    spp: int | None = None,
) -> bool:
    """True when `path` decodes as a PNG, optionally of exactly width x height
    and rendered with exactly `spp` samples per pixel."""

    path = Path(path)
    if not path.is_file():
        return False
    try:
        with Image.open(path) as image:
            if image.format != "PNG":
                return False
            size = image.size
            image.load()
            recorded = image.info.get(SPP_KEY)
    except (OSError, SyntaxError, EOFError, UnidentifiedImageError, ValueError):
        return False
    if width is not None and size[0] != width:
        return False
    if height is not None and size[1] != height:
        return False
    if spp is not None and recorded != str(spp):
        return False
    return True
