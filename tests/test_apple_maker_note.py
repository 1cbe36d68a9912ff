"""Tests for apple_maker_note: the big-endian IFD parser."""

import struct

import pytest
from conftest import make_apple_maker_note

from apple_maker_note import APPLE_MAKER_NOTE_SIGNATURE, AppleMakerNote, is_apple_maker_note
from heif_errors import MetadataError


def note_with_entries(*entries, extra=b""):
    """Raw maker note from (tag, type, count, value_field) tuples."""
    body = struct.pack(">H", len(entries))
    for tag, type_id, count, value in entries:
        body += struct.pack(">HHI", tag, type_id, count) + value
    return APPLE_MAKER_NOTE_SIGNATURE + b"\x00\x01MM" + body + extra


class TestSignature:
    def test_apple(self):
        assert is_apple_maker_note(make_apple_maker_note({33: 1.0}))

    def test_other_vendor(self):
        assert not is_apple_maker_note(b"Nikon\x00\x02\x10\x00\x00MM\x00\x00")

    def test_too_short(self):
        assert not is_apple_maker_note(APPLE_MAKER_NOTE_SIGNATURE)

    def test_none(self):
        assert not is_apple_maker_note(None)


class TestParse:
    def test_rationals(self):
        note = AppleMakerNote.from_bytes(make_apple_maker_note({33: 1.0, 48: 0.25}))
        assert note.has_key(33)
        assert note.get_float(33) == pytest.approx(1.0)
        assert note.get_float(48) == pytest.approx(0.25)

    def test_negative_srational(self):
        note = AppleMakerNote.from_bytes(make_apple_maker_note({48: -0.5}))
        assert note.get_float(48) == pytest.approx(-0.5)

    def test_inline_short(self):
        data = note_with_entries((8, 3, 1, struct.pack(">HH", 7, 0)))
        assert AppleMakerNote.from_bytes(data).get_float(8) == 7.0

    def test_inline_float(self):
        data = note_with_entries((11, 11, 1, struct.pack(">f", 2.5)))
        assert AppleMakerNote.from_bytes(data).get_float(11) == pytest.approx(2.5)

    def test_ascii_is_not_numeric(self):
        data = note_with_entries((1, 2, 3, b"ab\x00\x00"))
        note = AppleMakerNote.from_bytes(data)
        assert note.has_key(1)
        assert note.get_float(1, default=-1.0) == -1.0

    def test_missing_tag_default(self):
        note = AppleMakerNote.from_bytes(make_apple_maker_note({33: 1.0}))
        assert not note.has_key(48)
        assert note.get_float(48, default=3.0) == 3.0

    def test_unknown_type_skipped(self):
        data = note_with_entries((5, 99, 1, b"\x00" * 4), (6, 4, 1, struct.pack(">I", 42)))
        note = AppleMakerNote.from_bytes(data)
        assert not note.has_key(5)
        assert note.get_float(6) == 42.0

    def test_out_of_range_offset_skipped(self):
        data = note_with_entries((33, 10, 1, struct.pack(">I", 4096)))
        assert not AppleMakerNote.from_bytes(data).has_key(33)

    def test_truncated_entry_list(self):
        data = note_with_entries((6, 4, 1, struct.pack(">I", 1)))
        # Claim three entries but only carry one
        data = data[:14] + struct.pack(">H", 3) + data[16:]
        note = AppleMakerNote.from_bytes(data)
        assert note.get_float(6) == 1.0

    def test_bad_signature(self):
        with pytest.raises(MetadataError):
            AppleMakerNote.from_bytes(b"Canon\x00" + b"\x00" * 16)

    def test_little_endian_rejected(self):
        data = APPLE_MAKER_NOTE_SIGNATURE + b"\x00\x01II\x00\x00"
        with pytest.raises(MetadataError):
            AppleMakerNote.from_bytes(data)

    def test_missing_entry_count(self):
        with pytest.raises(MetadataError):
            AppleMakerNote.from_bytes(APPLE_MAKER_NOTE_SIGNATURE + b"\x00\x01MM")
