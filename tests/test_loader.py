"""Tests for heif_loader: end-to-end decoding through fake codec collaborators."""

import asyncio
import io

import numpy as np
import pytest
from conftest import FakeCodec, FakeEngine, FakeHandle, make_apple_maker_note, make_exif_block

from color_math import to_linear
from heif_codec import CodecError, NclxProfile
from heif_errors import ColorProfileError, DecodeError, FormatError
from heif_loader import HeifImageLoader

GAIN_MAP_TYPE = "urn:com:apple:photo:2020:aux:hdrgainmap"
GAIN_MAP_PREFIX = "urn.com.apple.photo.2020.aux.hdrgainmap."

GREY_2X2 = np.full((2, 2, 3), 128, dtype=np.uint16)


def make_loader(handle, pool, engine=None, **kwargs):
    return HeifImageLoader(codec=FakeCodec(handle), engine=engine or FakeEngine(), pool=pool, **kwargs)


def load(loader, stream, selector=""):
    return asyncio.run(loader.load(stream, selector))


class TestCanLoadFile:
    def test_heic(self, pool, heic_stream):
        assert make_loader(None, pool).can_load_file(heic_stream)
        assert heic_stream.tell() == 0

    def test_png(self, pool):
        stream = io.BytesIO(b"\x89PNG\r\n\x1a\n" + b"\x00" * 32)
        assert not make_loader(None, pool).can_load_file(stream)

    def test_format_error(self, pool):
        stream = io.BytesIO(b"\x89PNG\r\n\x1a\n" + b"\x00" * 32)
        with pytest.raises(FormatError):
            load(make_loader(None, pool), stream)


class TestPrimaryDecode:
    def test_rgb_without_profiles(self, pool, heic_stream, rec709_nclx):
        handle = FakeHandle(GREY_2X2, nclx=rec709_nclx)
        [image] = load(make_loader(handle, pool), heic_stream)

        assert image.channel_names() == ["R", "G", "B"]
        assert image.size == (2, 2)
        assert np.array_equal(image.to_rec709, np.eye(4, dtype=np.float32))
        assert not image.has_primaries_conversion()
        grey = float(to_linear(np.array(128 / 255)))
        assert np.allclose(image.channels[0].data, grey)

    def test_premultiplied_flag_kept_without_icc(self, pool, heic_stream):
        pixels = np.full((2, 2, 4), 128, dtype=np.uint16)
        handle = FakeHandle(pixels, premultiplied=True)
        [image] = load(make_loader(handle, pool), heic_stream)

        assert image.channel_names() == ["R", "G", "B", "A"]
        assert image.has_premultiplied_alpha

    def test_icc_path_clears_premultiplied(self, pool, heic_stream):
        pixels = np.full((2, 2, 4), 128, dtype=np.uint16)
        handle = FakeHandle(pixels, premultiplied=True, icc=b"icc", nclx=NclxProfile(color_primaries=12))
        engine = FakeEngine()
        [image] = load(make_loader(handle, pool, engine), heic_stream)

        assert engine.calls == [(b"icc", 4, True)]
        assert not image.has_premultiplied_alpha
        # ICC output is already Rec.709, the NCLX box is not consulted
        assert not image.has_primaries_conversion()
        assert np.allclose(image.channels[0].data, 128 / 255)

    def test_unusable_icc_falls_back(self, pool, heic_stream):
        handle = FakeHandle(GREY_2X2, icc=b"icc")
        engine = FakeEngine(error=ColorProfileError("broken"))
        [image] = load(make_loader(handle, pool, engine), heic_stream)

        grey = float(to_linear(np.array(128 / 255)))
        assert np.allclose(image.channels[0].data, grey)

    def test_nclx_primaries_matrix(self, pool, heic_stream):
        handle = FakeHandle(GREY_2X2, nclx=NclxProfile(color_primaries=9))
        [image] = load(make_loader(handle, pool), heic_stream)

        assert image.has_primaries_conversion()
        assert image.to_rec709[0, 0] > 1.0

    def test_decode_failure(self, pool, heic_stream):
        handle = FakeHandle(GREY_2X2, decode_error=CodecError("corrupt"))
        with pytest.raises(DecodeError):
            load(make_loader(handle, pool), heic_stream)
        assert handle.closed

    def test_zero_area(self, pool, heic_stream):
        handle = FakeHandle(np.zeros((0, 0, 3), dtype=np.uint16))
        with pytest.raises(DecodeError, match="zero pixels"):
            load(make_loader(handle, pool), heic_stream)

    def test_row_transform_failure_is_decode_error(self, pool, heic_stream):
        handle = FakeHandle(GREY_2X2, icc=b"icc")
        engine = FakeEngine(transform_error=RuntimeError("lcms failed"))
        with pytest.raises(DecodeError, match="lcms failed"):
            load(make_loader(handle, pool, engine), heic_stream)
        assert handle.closed

    def test_sample_depth_passed_to_engine(self, pool, heic_stream):
        pixels = np.full((2, 2, 3), 512, dtype=np.uint16)
        engine = FakeEngine()
        load(make_loader(FakeHandle(pixels, bits=10, icc=b"icc"), pool, engine), heic_stream)
        assert engine.bits == [10]

    def test_load_sync(self, pool, heic_stream):
        loader = make_loader(FakeHandle(GREY_2X2), pool)
        [image] = loader.load_sync(heic_stream)
        assert image.num_channels == 3


class TestAuxiliaryLayers:
    def test_gain_map_with_unparseable_maker_note(self, pool, heic_stream):
        gain_map = FakeHandle(np.full((1, 1, 3), 255, dtype=np.uint16), aux_type=GAIN_MAP_TYPE)
        handle = FakeHandle(
            GREY_2X2,
            aux=[gain_map],
            exif_blocks=[make_exif_block(b"Apple iOS\x00\x00\x01II\x00\x00")],
        )
        [image] = load(make_loader(handle, pool), heic_stream)

        assert image.channel_names() == [
            "R", "G", "B",
            f"{GAIN_MAP_PREFIX}R", f"{GAIN_MAP_PREFIX}G", f"{GAIN_MAP_PREFIX}B",
        ]
        grey = float(to_linear(np.array(128 / 255)))
        assert np.allclose(image.channels[0].data, grey)
        assert np.allclose(image.channel(f"{GAIN_MAP_PREFIX}R").data, 1.0)

    def test_gain_map_applied(self, pool, heic_stream):
        gain_map = FakeHandle(np.full((2, 2, 3), 255, dtype=np.uint16), aux_type=GAIN_MAP_TYPE)
        note = make_apple_maker_note({33: 1.0, 48: 0.0})
        handle = FakeHandle(GREY_2X2, aux=[gain_map], exif_blocks=[make_exif_block(note)])
        [image] = load(make_loader(handle, pool), heic_stream)

        grey = float(to_linear(np.array(128 / 255)))
        for channel in image.channels[:3]:
            assert np.allclose(channel.data, grey * 8.0)
        assert np.allclose(image.channel(f"{GAIN_MAP_PREFIX}G").data, 1.0)

    def test_selector_excludes_layers(self, pool, heic_stream):
        depth = FakeHandle(GREY_2X2, aux_type="urn:mpeg:hevc:2015:auxid:2")
        handle = FakeHandle(np.full((2, 2, 4), 64, dtype=np.uint16), aux=[depth])
        [image] = load(make_loader(handle, pool), heic_stream, selector="hdrgainmap")

        assert image.channel_names() == ["R", "G", "B", "A"]

    def test_failed_aux_keeps_primary(self, pool, heic_stream):
        broken = FakeHandle(GREY_2X2, aux_type="broken", decode_error=CodecError("bad tile"))
        handle = FakeHandle(GREY_2X2, aux=[broken])
        [image] = load(make_loader(handle, pool), heic_stream)

        assert image.channel_names() == ["R", "G", "B"]
        assert broken.closed

    def test_failed_aux_transform_keeps_primary(self, pool, heic_stream):
        broken = FakeHandle(GREY_2X2, aux_type="urn:mpeg:hevc:2015:auxid:2", icc=b"icc")
        handle = FakeHandle(GREY_2X2, aux=[broken])
        engine = FakeEngine(transform_error=RuntimeError("lcms failed"))
        [image] = load(make_loader(handle, pool, engine), heic_stream)

        assert image.channel_names() == ["R", "G", "B"]
        assert broken.closed
