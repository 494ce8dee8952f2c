"""
Variant matrix for Variant Watcher.

Defines the crop and encoding profiles and the pure naming function
that maps (identifier, crop, encoding) to an output path.  Every source
image is expected to have exactly one output file per combination:

    {identifier}_{crop}.{extension}
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

FIT_COVER = "cover"
FIT_INSIDE = "inside"
FIT_FILL = "fill"
FIT_MODES = (FIT_COVER, FIT_INSIDE, FIT_FILL)

# Characters that would make the naming function ambiguous or escape
# the output folder.
_FORBIDDEN_NAME_CHARS = frozenset("./\\")


@dataclass(frozen=True)
class CropProfile:
    """A named geometry transform; no width and no height means pass-through."""
    name: str
    width: int | None = None
    height: int | None = None
    fit: str = FIT_COVER

    def __post_init__(self) -> None:
        if self.fit not in FIT_MODES:
            raise ValueError(f"Unknown fit mode {self.fit!r} for crop {self.name!r}")
        for dim in (self.width, self.height):
            if dim is not None and dim <= 0:
                raise ValueError(f"Crop {self.name!r} has a non-positive dimension")

    @property
    def is_passthrough(self) -> bool:
        return self.width is None and self.height is None


@dataclass(frozen=True)
class EncodingProfile:
    """A target codec, its file extension and encoder parameters."""
    name: str
    format: str
    extension: str
    options: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)


@dataclass(frozen=True)
class Variant:
    """One (identifier, crop, encoding) combination and its output path."""
    identifier: str
    crop: CropProfile
    encoding: EncodingProfile
    path: Path

    @property
    def filename(self) -> str:
        return self.path.name


DEFAULT_CROPS: tuple[CropProfile, ...] = (
    CropProfile("original"),
    CropProfile("square", 1080, 1080, FIT_COVER),
    CropProfile("landscape", 1280, 720, FIT_COVER),
)

DEFAULT_ENCODINGS: tuple[EncodingProfile, ...] = (
    EncodingProfile("jpeg", "JPEG", "jpg", {"quality": 85, "progressive": True}),
    EncodingProfile("webp", "WEBP", "webp", {"quality": 85}),
    # speed: 0 (slowest, smallest) .. 10 (fastest)
    EncodingProfile("avif", "AVIF", "avif", {"quality": 65, "speed": 5}),
)


def _check_token(kind: str, value: str) -> None:
    if not value or any(c in _FORBIDDEN_NAME_CHARS or c.isspace() for c in value):
        raise ValueError(f"Invalid {kind} {value!r} for output file names")


class VariantMatrix:
    """
    The fixed cross product of crop profiles and encoding profiles.

    Parameters
    ----------
    output_dir : path-like
        Folder that holds every variant.
    crops : sequence of CropProfile
        Crop profiles, in the order variants are produced.
    encodings : sequence of EncodingProfile
        Encoding profiles, in the order variants are produced.

    Raises ``ValueError`` for any profile set under which two distinct
    variants could share an output path.
    """

    def __init__(
        self,
        output_dir: str | os.PathLike[str],
        crops: tuple[CropProfile, ...] | list[CropProfile] = DEFAULT_CROPS,
        encodings: tuple[EncodingProfile, ...] | list[EncodingProfile] = DEFAULT_ENCODINGS,
    ):
        self.output_dir = Path(output_dir)
        self.crops = tuple(crops)
        self.encodings = tuple(encodings)

        if not self.crops or not self.encodings:
            raise ValueError("At least one crop and one encoding profile are required")
        for crop in self.crops:
            _check_token("crop name", crop.name)
        for enc in self.encodings:
            _check_token("extension", enc.extension)
        if len({c.name for c in self.crops}) != len(self.crops):
            raise ValueError("Crop profile names must be unique")
        if len({e.extension.lower() for e in self.encodings}) != len(self.encodings):
            raise ValueError("Encoding profile extensions must be unique")

    @property
    def size(self) -> int:
        return len(self.crops) * len(self.encodings)

    def variant_path(
        self, identifier: str, crop: CropProfile, encoding: EncodingProfile
    ) -> Path:
        """Return the output path for a single variant."""
        return self.output_dir / f"{identifier}_{crop.name}.{encoding.extension}"

    def variants(self, identifier: str) -> list[Variant]:
        """Return every expected variant for *identifier*, crops outermost."""
        return [
            Variant(identifier, crop, enc, self.variant_path(identifier, crop, enc))
            for crop in self.crops
            for enc in self.encodings
        ]

    def expected_paths(self, identifier: str) -> list[Path]:
        return [v.path for v in self.variants(identifier)]
