"""Tests for the Pillow codec adapter.

These use real images created in tmp_path.
"""
import io
import os
import stat

import pytest
from PIL import Image, features

from variant_sync.codec import PillowCodec, PillowPipeline, write_atomic
from variant_sync.errors import CodecError, UnsupportedFormatError
from variant_sync.variants import EncodingProfile

JPEG = EncodingProfile("jpeg", "JPEG", "jpg", {"quality": 85, "progressive": True})
WEBP = EncodingProfile("webp", "WEBP", "webp", {"quality": 85})
AVIF = EncodingProfile("avif", "AVIF", "avif", {"quality": 65, "speed": 5})


def _pipeline(size=(400, 300), mode="RGB", color=(10, 120, 200)):
    return PillowPipeline(Image.new(mode, size, color))


def _decode_bytes(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


# ---------------------------------------------------------------------------
# decode
# ---------------------------------------------------------------------------

class TestDecode:
    def test_reads_dimensions(self, tmp_path, make_image):
        path = make_image(tmp_path / "a.png", size=(321, 123))
        p = PillowCodec().decode(path)
        assert (p.width, p.height) == (321, 123)

    def test_palette_image_normalised(self, tmp_path, make_image):
        path = make_image(tmp_path / "p.gif", size=(20, 20), mode="P", color=3)
        assert PillowCodec().decode(path).mode == "RGBA"

    def test_cmyk_normalised(self, tmp_path, make_image):
        path = make_image(tmp_path / "c.jpg", size=(20, 20), mode="CMYK", color=(0, 0, 0, 0))
        assert PillowCodec().decode(path).mode == "RGB"

    def test_exif_orientation_applied(self, tmp_path):
        img = Image.new("RGB", (60, 20))
        exif = Image.Exif()
        exif[0x0112] = 6  # rotate 90 CW on display
        path = tmp_path / "rot.jpg"
        img.save(path, exif=exif)
        p = PillowCodec().decode(path)
        assert (p.width, p.height) == (20, 60)

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "fake.png"
        path.write_bytes(b"definitely not an image")
        with pytest.raises(UnsupportedFormatError):
            PillowCodec().decode(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(CodecError):
            PillowCodec().decode(tmp_path / "nope.png")

    def test_oversized_source_rejected_before_load(self, tmp_path, make_image):
        path = make_image(tmp_path / "big.png", size=(20, 20))
        with pytest.raises(CodecError, match="oversized"):
            PillowCodec(max_pixels=100).decode(path)

    def test_pillow_bomb_limit_is_lifted(self, tmp_path, make_image, monkeypatch):
        path = make_image(tmp_path / "big.png", size=(20, 20))
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)
        p = PillowCodec().decode(path)
        assert (p.width, p.height) == (20, 20)


# ---------------------------------------------------------------------------
# resize
# ---------------------------------------------------------------------------

class TestResize:
    def test_inside_fits_box_keeping_aspect(self):
        p = _pipeline((5000, 3000)).resize(3840, 2160, fit="inside")
        assert (p.width, p.height) == (3600, 2160)

    def test_inside_never_enlarges(self):
        p = _pipeline((400, 300)).resize(3840, 2160, fit="inside")
        assert (p.width, p.height) == (400, 300)

    def test_cover_crops_to_box(self):
        p = _pipeline((3000, 2000)).resize(1080, 1080, fit="cover")
        assert (p.width, p.height) == (1080, 1080)

    def test_cover_small_source_is_clamped_not_enlarged(self):
        p = _pipeline((400, 300)).resize(1080, 1080, fit="cover")
        assert (p.width, p.height) == (400, 300)

    def test_cover_partially_small_source(self):
        # height already below target: no scaling, crop width only
        p = _pipeline((2000, 500)).resize(1280, 720, fit="cover")
        assert (p.width, p.height) == (1280, 500)

    def test_fill_stretches(self):
        p = _pipeline((400, 300)).resize(100, 100, fit="fill")
        assert (p.width, p.height) == (100, 100)

    def test_single_dimension_keeps_aspect(self):
        p = _pipeline((400, 200)).resize(width=100)
        assert (p.width, p.height) == (100, 50)

    def test_enlarge_allowed_when_requested(self):
        p = _pipeline((100, 50)).resize(200, 200, fit="inside", never_enlarge=False)
        assert (p.width, p.height) == (200, 100)

    def test_base_is_not_mutated(self):
        base = _pipeline((2000, 1000))
        base.resize(1080, 1080, fit="cover")
        base.resize(1280, 720, fit="cover")
        assert (base.width, base.height) == (2000, 1000)


# ---------------------------------------------------------------------------
# encode
# ---------------------------------------------------------------------------

class TestEncode:
    def test_jpeg(self):
        img = _decode_bytes(_pipeline().encode(JPEG))
        assert img.format == "JPEG"
        assert img.size == (400, 300)

    def test_webp_keeps_alpha(self):
        data = _pipeline(mode="RGBA", color=(1, 2, 3, 0)).encode(WEBP)
        img = _decode_bytes(data)
        assert img.format == "WEBP"
        assert "A" in img.getbands()

    def test_jpeg_flattens_alpha(self):
        data = _pipeline(mode="RGBA", color=(1, 2, 3, 0)).encode(JPEG)
        img = _decode_bytes(data)
        assert img.mode == "RGB"
        assert img.getpixel((0, 0))[0] > 240  # transparent -> white

    @pytest.mark.skipif(not features.check("avif"), reason="Pillow built without AVIF")
    def test_avif(self):
        img = _decode_bytes(_pipeline().encode(AVIF))
        assert img.format == "AVIF"

    def test_unknown_format_raises_codec_error(self):
        with pytest.raises(CodecError):
            _pipeline().encode(EncodingProfile("nope", "NOSUCHFORMAT", "nope"))

    def test_failure_leaves_pipeline_usable(self):
        p = _pipeline()
        with pytest.raises(CodecError):
            p.encode(EncodingProfile("nope", "NOSUCHFORMAT", "nope"))
        assert _decode_bytes(p.encode(JPEG)).size == (400, 300)


# ---------------------------------------------------------------------------
# write_atomic
# ---------------------------------------------------------------------------

class TestWriteAtomic:
    def test_writes_and_leaves_no_temp_files(self, tmp_path):
        target = tmp_path / "x.jpg"
        write_atomic(target, b"payload")
        assert target.read_bytes() == b"payload"
        assert os.listdir(tmp_path) == ["x.jpg"]

    def test_replaces_existing(self, tmp_path):
        target = tmp_path / "x.jpg"
        target.write_bytes(b"old")
        write_atomic(target, b"new")
        assert target.read_bytes() == b"new"

    def test_missing_folder_raises_oserror(self, tmp_path):
        with pytest.raises(OSError):
            write_atomic(tmp_path / "missing" / "x.jpg", b"data")

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
    def test_file_mode_matches_plain_write(self, tmp_path):
        plain = tmp_path / "plain.jpg"
        plain.write_bytes(b"data")
        target = tmp_path / "x.jpg"
        write_atomic(target, b"data")
        assert stat.S_IMODE(target.stat().st_mode) == stat.S_IMODE(plain.stat().st_mode)
