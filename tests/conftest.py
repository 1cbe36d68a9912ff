"""Shared fixtures: an in-memory codec that serves numpy pixels as HEIF handles."""

import io
import struct

import numpy as np
import piexif
import pytest

from apple_maker_note import APPLE_MAKER_NOTE_SIGNATURE
from heif_brand import HeifFiletype, check_filetype
from heif_codec import CodecError, HeifErrorCode, NclxProfile, RawSamples, native_uint16
from thread_pool import ThreadPool

# 24-byte ftyp box: major brand heic, compatible mif1 + heic
HEIC_HEADER = struct.pack(">I", 24) + b"ftypheic" + b"\x00\x00\x00\x00" + b"mif1heic"


class FakeHandle:
    """Image handle over an (height, width, channels) integer array."""

    def __init__(
        self,
        pixels,
        *,
        bits=8,
        premultiplied=False,
        icc=None,
        nclx=None,
        exif_blocks=(),
        aux=(),
        aux_type=None,
        decode_error=None,
    ):
        self.pixels = np.asarray(pixels)
        self.bits = bits
        self.premultiplied = premultiplied
        self.icc = icc
        self.nclx = nclx
        self.exif_blocks = list(exif_blocks)
        self.aux = list(aux)
        self.aux_type = aux_type
        self.decode_error = decode_error
        self.closed = False

    @property
    def width(self):
        return self.pixels.shape[1]

    @property
    def height(self):
        return self.pixels.shape[0]

    @property
    def has_alpha_channel(self):
        return self.pixels.ndim == 3 and self.pixels.shape[2] == 4

    @property
    def is_premultiplied_alpha(self):
        return self.premultiplied

    def decode(self, num_channels):
        if self.decode_error is not None:
            raise self.decode_error
        height, width = self.pixels.shape[:2]
        buffer = self.pixels.astype(native_uint16()).tobytes()
        return RawSamples(
            buffer=buffer,
            stride=width * num_channels * 2,
            width=width,
            height=height,
            num_channels=num_channels,
            bits_per_sample=self.bits,
            premultiplied_alpha=self.premultiplied,
        )

    def raw_color_profile(self):
        if self.icc is None:
            raise CodecError("no profile", code=HeifErrorCode.COLOR_PROFILE_DOES_NOT_EXIST)
        return self.icc

    def nclx_color_profile(self):
        return self.nclx

    def metadata_block_ids(self, type_filter):
        return list(range(len(self.exif_blocks))) if type_filter == "Exif" else []

    def metadata(self, block_id):
        return self.exif_blocks[block_id]

    def auxiliary_image_ids(self):
        return list(range(len(self.aux)))

    def auxiliary_image_handle(self, aux_id):
        return self.aux[aux_id]

    def auxiliary_type(self):
        return self.aux_type

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.closed = True


class FakeContext:
    def __init__(self, handle):
        self.handle = handle
        self.closed = False

    def primary_image_handle(self):
        return self.handle

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.closed = True


class FakeCodec:
    """Codec that accepts real ftyp headers and always opens ``handle``."""

    def __init__(self, handle=None, *, open_error=None):
        self.handle = handle
        self.open_error = open_error
        self.contexts = []

    def check_filetype(self, header):
        return check_filetype(header) == HeifFiletype.YES_SUPPORTED

    def open(self, source):
        if self.open_error is not None:
            raise self.open_error
        context = FakeContext(self.handle)
        self.contexts.append(context)
        return context


class FakeEngine:
    """ICC engine whose transform maps normalized samples straight through."""

    def __init__(self, error=None, transform_error=None):
        self.error = error
        self.transform_error = transform_error
        self.calls = []
        self.bits = []

    def build_transform(self, profile, num_channels, premultiplied_alpha, bits_per_sample=8):
        self.calls.append((profile, num_channels, premultiplied_alpha))
        self.bits.append(bits_per_sample)
        if self.error is not None:
            raise self.error

        def transform(src, dst, width):
            if self.transform_error is not None:
                raise self.transform_error
            pixels = src.reshape(width, num_channels)
            out = dst.reshape(width, 4)
            out[:, :3] = pixels[:, :3]
            out[:, 3] = pixels[:, 3] if num_channels == 4 else 1.0

        return transform


def make_apple_maker_note(values):
    """Apple maker note with one SRATIONAL entry per ``{tag: value}``."""
    header = APPLE_MAKER_NOTE_SIGNATURE + b"\x00\x01MM"
    count = len(values)
    data_offset = len(header) + 2 + 12 * count + 4
    entries = b""
    data = b""
    for tag, value in sorted(values.items()):
        entries += struct.pack(">HHII", tag, 10, 1, data_offset + len(data))
        data += struct.pack(">ii", round(value * 1_000_000), 1_000_000)
    return header + struct.pack(">H", count) + entries + b"\x00\x00\x00\x00" + data


def make_exif_block(maker_note):
    """HEIF Exif item: 4-byte TIFF offset followed by an Exif payload."""
    payload = piexif.dump({"Exif": {piexif.ExifIFD.MakerNote: maker_note}})
    return b"\x00\x00\x00\x00" + payload


@pytest.fixture
def pool():
    with ThreadPool(2) as p:
        yield p


@pytest.fixture
def heic_stream():
    return io.BytesIO(HEIC_HEADER + b"\x00" * 64)


@pytest.fixture
def rec709_nclx():
    return NclxProfile(color_primaries=1)
