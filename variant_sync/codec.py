"""
Image codec adapter for Variant Watcher.

The convergence engine only talks to the ``Codec`` / ``Pipeline``
protocols below.  ``PillowCodec`` implements them with Pillow.

Pipelines are values: ``resize`` returns a new pipeline built on a copy
of the pixels and never touches the receiver, so every crop branch can
start from the same decoded base image.
"""

from __future__ import annotations

import contextlib
import io
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

from PIL import Image, ImageOps, UnidentifiedImageError

from variant_sync.errors import CodecError, UnsupportedFormatError
from variant_sync.variants import FIT_COVER, FIT_FILL, FIT_INSIDE, EncodingProfile

logger = logging.getLogger(__name__)

# Formats that cannot store an alpha channel; transparent pixels are
# composited onto this background before encoding.
_NO_ALPHA_FORMATS = frozenset({"JPEG", "JPG"})
_FLATTEN_BACKGROUND = (255, 255, 255)

_KEEP_MODES = frozenset({"RGB", "RGBA", "L", "LA"})

# Largest accepted source, in pixels (16383 x 16383).
MAX_SOURCE_PIXELS = 0x3FFF * 0x3FFF


def _default_file_mode() -> int:
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


# mkstemp creates 0600 files; variants get the mode a plain open() would give.
_FILE_MODE = _default_file_mode()


class Pipeline(Protocol):
    """A decoded image that can be resized and encoded."""

    @property
    def width(self) -> int:
        ...

    @property
    def height(self) -> int:
        ...

    def resize(
        self,
        width: int | None = None,
        height: int | None = None,
        fit: str = FIT_INSIDE,
        never_enlarge: bool = True,
    ) -> "Pipeline":
        """Return a new, resized pipeline."""
        ...

    def encode(self, encoding: EncodingProfile) -> bytes:
        """Serialize the image with *encoding*'s codec and parameters."""
        ...


class Codec(Protocol):
    """Decodes source files into pipelines."""

    def decode(self, path: Path) -> Pipeline:
        """Decode *path*, raising ``CodecError`` on failure."""
        ...


def _target_size(
    size: tuple[int, int],
    width: int | None,
    height: int | None,
    fit: str,
    never_enlarge: bool,
) -> tuple[int, int]:
    """Return the scaled (w, h) before any cover crop."""
    w, h = size
    if fit == FIT_FILL and width and height:
        if never_enlarge:
            return min(width, w), min(height, h)
        return width, height

    sx = width / w if width else None
    sy = height / h if height else None
    if sx is None:
        scale = sy
    elif sy is None:
        scale = sx
    elif fit == FIT_COVER:
        scale = max(sx, sy)
    else:
        scale = min(sx, sy)
    assert scale is not None
    if never_enlarge:
        scale = min(scale, 1.0)
    return max(1, round(w * scale)), max(1, round(h * scale))


class PillowPipeline:
    """Immutable wrapper around a fully loaded ``PIL.Image.Image``."""

    __slots__ = ("_image",)

    def __init__(self, image: Image.Image):
        self._image = image

    @property
    def width(self) -> int:
        return self._image.width

    @property
    def height(self) -> int:
        return self._image.height

    @property
    def mode(self) -> str:
        return self._image.mode

    def resize(
        self,
        width: int | None = None,
        height: int | None = None,
        fit: str = FIT_INSIDE,
        never_enlarge: bool = True,
    ) -> "PillowPipeline":
        """
        Return a resized copy.

        ``inside`` scales to fit within the box, ``cover`` scales to
        cover the box and centre-crops to it, ``fill`` stretches.
        With *never_enlarge* the image is never scaled up; a cover crop
        is then clamped to the pixels that exist.
        """
        src = self._image
        if width is None and height is None:
            return PillowPipeline(src.copy())

        new_size = _target_size(src.size, width, height, fit, never_enlarge)
        try:
            if new_size == src.size:
                img = src.copy()
            else:
                img = src.resize(new_size, Image.Resampling.LANCZOS)

            if fit == FIT_COVER and width and height:
                crop_w = min(width, img.width)
                crop_h = min(height, img.height)
                left = (img.width - crop_w) // 2
                top = (img.height - crop_h) // 2
                img = img.crop((left, top, left + crop_w, top + crop_h))
        except (OSError, ValueError) as exc:
            raise CodecError(f"Resize to {width}x{height} ({fit}) failed: {exc}") from exc
        return PillowPipeline(img)

    def encode(self, encoding: EncodingProfile) -> bytes:
        img = self._image
        fmt = encoding.format.upper()
        if fmt in _NO_ALPHA_FORMATS and img.mode in ("RGBA", "LA"):
            background = Image.new("RGB", img.size, _FLATTEN_BACKGROUND)
            background.paste(img, mask=img.getchannel("A"))
            img = background

        buf = io.BytesIO()
        try:
            img.save(buf, format=fmt, **encoding.options)
        except KeyError as exc:
            raise CodecError(f"No {fmt} encoder available in Pillow") from exc
        except (OSError, ValueError, TypeError) as exc:
            raise CodecError(f"{fmt} encode failed: {exc}") from exc
        return buf.getvalue()


class PillowCodec:
    """
    ``Codec`` implementation backed by Pillow.

    Sources above *max_pixels* are refused.  Pillow's own
    decompression-bomb limit is lifted in favour of this one, so large
    panoramas still reach the global downscale step.
    """

    def __init__(self, max_pixels: int | None = MAX_SOURCE_PIXELS):
        self.max_pixels = max_pixels
        Image.MAX_IMAGE_PIXELS = None

    def decode(self, path: Path) -> PillowPipeline:
        """
        Fully load *path*, apply its EXIF orientation and normalise the mode.

        Palette, CMYK and high-bit-depth images are converted to RGB(A)
        so every encoder downstream accepts them.
        """
        try:
            with Image.open(path) as src:
                pixels = src.width * src.height
                if self.max_pixels and pixels > self.max_pixels:
                    raise CodecError(
                        f"Refusing oversized image {path.name}: {src.width}x{src.height} "
                        f"exceeds {self.max_pixels} pixels"
                    )
                src.load()
                img = ImageOps.exif_transpose(src)
                if img is None or img is src:
                    img = src.copy()
        except UnidentifiedImageError as exc:
            raise UnsupportedFormatError(f"Unsupported image format: {path.name}") from exc
        except Image.DecompressionBombError as exc:
            raise CodecError(f"Refusing oversized image {path.name}: {exc}") from exc
        except (OSError, ValueError, SyntaxError) as exc:
            raise CodecError(f"Cannot decode {path.name}: {exc}") from exc

        if img.mode not in _KEEP_MODES:
            has_alpha = img.mode in ("P", "PA", "RGBa", "La") or "transparency" in img.info
            img = img.convert("RGBA" if has_alpha else "RGB")
        logger.debug("Decoded %s (%dx%d, %s)", path.name, img.width, img.height, img.mode)
        return PillowPipeline(img)


def write_atomic(path: Path, data: bytes) -> None:
    """
    Write *data* to *path* via a hidden temp file in the same folder.

    The final name only ever refers to a complete file.
    """
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".part")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp, _FILE_MODE)
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp)
        raise
