"""Tests for heif_brand: ftyp parsing and brand classification."""

import struct

from heif_brand import HeifFiletype, check_filetype, parse_ftyp


def ftyp(major, *compatible):
    size = 16 + 4 * len(compatible)
    return struct.pack(">I", size) + b"ftyp" + major + b"\x00\x00\x00\x00" + b"".join(compatible)


class TestParseFtyp:
    def test_full_box(self):
        box = parse_ftyp(ftyp(b"heic", b"mif1", b"heic"))
        assert box is not None
        assert box.major_brand == "heic"
        assert box.compatible_brands == ("mif1", "heic")

    def test_header_only(self):
        box = parse_ftyp(ftyp(b"avif")[:12])
        assert box is not None
        assert box.major_brand == "avif"
        assert box.compatible_brands == ()

    def test_not_ftyp(self):
        assert parse_ftyp(b"\x00\x00\x00\x18moovheic\x00\x00\x00\x00") is None

    def test_too_short(self):
        assert parse_ftyp(b"\x00\x00\x00\x18ftyp") is None


class TestCheckFiletype:
    def test_heic_supported(self):
        assert check_filetype(ftyp(b"heic")[:12]) == HeifFiletype.YES_SUPPORTED

    def test_avif_supported(self):
        assert check_filetype(ftyp(b"avif")[:12]) == HeifFiletype.YES_SUPPORTED

    def test_jpeg_in_heif_unsupported(self):
        assert check_filetype(ftyp(b"jpeg")[:12]) == HeifFiletype.YES_UNSUPPORTED

    def test_generic_brand_resolved_by_compatible(self):
        assert check_filetype(ftyp(b"mif1", b"heic")) == HeifFiletype.YES_SUPPORTED

    def test_generic_brand_alone_is_maybe(self):
        assert check_filetype(ftyp(b"mif1")[:12]) == HeifFiletype.MAYBE

    def test_unknown_brand(self):
        assert check_filetype(ftyp(b"isom")[:12]) == HeifFiletype.NO

    def test_png_signature(self):
        assert check_filetype(b"\x89PNG\r\n\x1a\n\x00\x00\x00\x0d") == HeifFiletype.NO

    def test_short_input(self):
        assert check_filetype(b"\x00\x00") == HeifFiletype.NO
