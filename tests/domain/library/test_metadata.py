"""
Tests for metadata extraction from audio files.
"""

import struct
from pathlib import Path

import pytest
from mutagen.flac import FLAC, Picture

from tunelib.domain.library.metadata import (
    extract_metadata,
    format_duration,
    format_size,
    normalize_genres,
    parse_flag,
    parse_number,
    parse_year,
)


def write_minimal_flac(path: Path) -> Path:
    """Write a FLAC file holding only a STREAMINFO block (44.1 kHz, no audio)."""
    # 20 bits sample rate, 3 bits channels-1, 5 bits bits-per-sample-1, 36 bits total samples
    packed = (44100 << 44) | (1 << 41) | (15 << 36)
    streaminfo = struct.pack(">HH", 4096, 4096) + b"\x00" * 6 + packed.to_bytes(8, "big") + b"\x00" * 16
    # Last-metadata-block flag set, block type 0, length 34
    path.write_bytes(b"fLaC" + bytes([0x80, 0x00, 0x00, 0x22]) + streaminfo)
    return path


@pytest.fixture
def tagged_flac(tmp_path):
    path = write_minimal_flac(tmp_path / "track.flac")
    audio = FLAC(str(path))
    audio["title"] = "Teardrop"
    audio["artist"] = "Massive Attack"
    audio["album"] = "Mezzanine"
    audio["genre"] = ["Trip Hop", "Electronic", "Trip Hop"]
    audio["tracknumber"] = "3/11"
    audio["discnumber"] = "1"
    audio["date"] = "1998-04-20"
    audio["compilation"] = "1"

    picture = Picture()
    picture.type = 3
    picture.mime = "image/png"
    picture.data = b"\x89PNG-cover"
    audio.add_picture(picture)
    audio.save()
    return path


class TestExtractMetadata:
    def test_reads_flac_tags(self, tagged_flac):
        metadata = extract_metadata(str(tagged_flac))

        assert metadata.title == "Teardrop"
        assert metadata.artist == "Massive Attack"
        assert metadata.album == "Mezzanine"
        # No album artist tag: falls back to the artist
        assert metadata.album_artist == "Massive Attack"
        assert metadata.genres == ("Trip Hop", "Electronic")
        assert metadata.track_number == 3
        assert metadata.disc_number == 1
        assert metadata.year == 1998
        assert metadata.is_compilation is True
        assert metadata.codec == "flac"
        assert metadata.sample_rate == 44100
        assert metadata.duration == 0
        assert metadata.file_size_bytes == tagged_flac.stat().st_size

    def test_reads_embedded_artwork(self, tagged_flac):
        artwork = extract_metadata(str(tagged_flac)).artwork

        assert artwork.data == b"\x89PNG-cover"
        assert artwork.mime_format == "image/png"

    def test_untagged_flac_uses_fallbacks(self, tmp_path):
        path = write_minimal_flac(tmp_path / "Untitled Jam.flac")

        metadata = extract_metadata(str(path))

        assert metadata.title == "Untitled Jam"
        assert metadata.artist == "Unknown Artist"
        assert metadata.album == "Unknown Album"
        assert metadata.genres == ()
        assert metadata.artwork is None

    def test_unparseable_file_still_yields_metadata(self, tmp_path):
        path = tmp_path / "Garbage Song.mp3"
        path.write_bytes(b"this is not audio at all" * 10)

        metadata = extract_metadata(str(path))

        assert metadata is not None
        assert metadata.title == "Garbage Song"
        assert metadata.artist == "Unknown Artist"
        assert metadata.album == "Unknown Album"
        assert metadata.duration == 0
        assert metadata.file_size_bytes == 240

    def test_missing_file_returns_none(self, tmp_path):
        assert extract_metadata(str(tmp_path / "missing.mp3")) is None


class TestNormalizeGenres:
    def test_single_string(self):
        assert normalize_genres("House") == ["House"]

    def test_list(self):
        assert normalize_genres(["House", "Techno"]) == ["House", "Techno"]

    def test_drops_blanks_and_duplicates(self):
        assert normalize_genres([" House ", "", None, "House", "  "]) == ["House"]

    def test_none_and_empty(self):
        assert normalize_genres(None) == []
        assert normalize_genres("") == []
        assert normalize_genres(()) == []


class TestParsing:
    @pytest.mark.parametrize(
        "value,expected",
        [(3, 3), ("3/12", 3), ((4, 10), 4), ("07", 7), ("", None), ("x", None), (0, None), (None, None), (True, None)],
    )
    def test_parse_number(self, value, expected):
        assert parse_number(value) == expected

    @pytest.mark.parametrize(
        "value,expected", [("2001", 2001), ("2001-05-03", 2001), (1999, 1999), ("'99", None), (None, None)]
    )
    def test_parse_year(self, value, expected):
        assert parse_year(value) == expected

    @pytest.mark.parametrize(
        "value,expected", [("1", True), ("0", False), (True, True), (1, True), (0, False), (None, False), ("yes", True)]
    )
    def test_parse_flag(self, value, expected):
        assert parse_flag(value) is expected


def test_format_duration():
    assert format_duration(0) == "0:00"
    assert format_duration(65) == "1:05"
    assert format_duration(3725) == "1:02:05"


def test_format_size():
    assert format_size(0) == "0.00 B"
    assert format_size(2048) == "2.00 KB"
    assert format_size(3 * 1024**4) == "3.00 TB"
