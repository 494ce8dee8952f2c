from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import pytest
from PIL import Image

from variant_sync.codec import _target_size
from variant_sync.engine import ConvergenceEngine
from variant_sync.errors import CodecError, UnsupportedFormatError
from variant_sync.stats import SyncStats
from variant_sync.variants import (
    FIT_COVER,
    CropProfile,
    EncodingProfile,
    VariantMatrix,
)


# ---------------------------------------------------------------------------
# Fake codec: records every call, never touches real pixels
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FakePipeline:
    codec: "FakeCodec"
    width: int
    height: int
    steps: tuple = ()

    def resize(self, width=None, height=None, fit="inside", never_enlarge=True):
        self.codec.resize_calls.append((self.width, self.height, width, height, fit))
        w, h = _target_size((self.width, self.height), width, height, fit, never_enlarge)
        if fit == FIT_COVER and width and height:
            w, h = min(width, w), min(height, h)
        return FakePipeline(self.codec, w, h, self.steps + ((width, height, fit),))

    def encode(self, encoding):
        self.codec.encode_calls.append((self.width, self.height, encoding.format))
        if self.codec.fail is not None and self.codec.fail(self, encoding):
            raise CodecError(f"injected {encoding.format} failure")
        return f"{encoding.format}:{self.width}x{self.height}".encode()


@dataclass
class FakeCodec:
    size: tuple[int, int] = (800, 600)
    fail: object = None
    unsupported: bool = False
    decode_calls: list = field(default_factory=list)
    resize_calls: list = field(default_factory=list)
    encode_calls: list = field(default_factory=list)

    def decode(self, path):
        self.decode_calls.append(Path(path))
        if self.unsupported:
            raise UnsupportedFormatError(f"Unsupported image format: {Path(path).name}")
        return FakePipeline(self, *self.size)

    @property
    def invocations(self) -> int:
        return len(self.decode_calls) + len(self.resize_calls) + len(self.encode_calls)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

TEST_CROPS = (
    CropProfile("original"),
    CropProfile("square", 1080, 1080, FIT_COVER),
    CropProfile("landscape", 1280, 720, FIT_COVER),
)

TEST_ENCODINGS = (
    EncodingProfile("jpeg", "JPEG", "jpg", {"quality": 85, "progressive": True}),
    EncodingProfile("webp", "WEBP", "webp", {"quality": 85}),
    EncodingProfile("png", "PNG", "png", {}),
)


@pytest.fixture
def input_dir(tmp_path: Path) -> Path:
    d = tmp_path / "images"
    d.mkdir()
    return d


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    d = tmp_path / "output"
    d.mkdir()
    return d


@pytest.fixture
def matrix(output_dir: Path) -> VariantMatrix:
    """3 crops x 3 encodings, all encodable by any Pillow build."""
    return VariantMatrix(output_dir, TEST_CROPS, TEST_ENCODINGS)


@pytest.fixture
def stats() -> SyncStats:
    return SyncStats()


@pytest.fixture
def fake_codec() -> FakeCodec:
    return FakeCodec()


@pytest.fixture
def engine(matrix, fake_codec, stats) -> ConvergenceEngine:
    return ConvergenceEngine(matrix, fake_codec, stats)


@pytest.fixture
def make_image():
    """Write a real image file and return its path."""

    def _make(path: Path, size=(640, 480), mode="RGB", color=(200, 30, 30), fmt=None) -> Path:
        Image.new(mode, size, color).save(path, format=fmt)
        return path

    return _make


@pytest.fixture
def source(input_dir: Path) -> Path:
    """A placeholder source file; its bytes are never read by the fake codec."""
    p = input_dir / "photo.png"
    p.write_bytes(b"not really a png")
    return p


@pytest.fixture(autouse=True)
def _restore_root_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in root.handlers[:]:
        if h not in handlers:
            root.removeHandler(h)
            h.close()
    root.setLevel(level)
