"""
Tests for the import pipeline.

The extractor is stubbed so tests control tags without real audio files.
"""

import os
import queue
import threading
from pathlib import Path

import pytest

from tunelib.core.database import LibraryDatabase
from tunelib.core.errors import SecurityError
from tunelib.domain.library.import_tracks import (
    import_files,
    import_folder,
    validate_import_prerequisites,
)
from tunelib.domain.library.library_manager import LibraryManager
from tunelib.domain.library.models import Artwork, ExtractedMetadata, ImportStatus


@pytest.fixture
def store():
    db = LibraryDatabase()
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def manager(tmp_path):
    lib = LibraryManager(tmp_path / "Library", allowed_root=tmp_path)
    lib.initialize()
    return lib


@pytest.fixture
def incoming(tmp_path):
    folder = tmp_path / "incoming"
    folder.mkdir()
    return folder


def write_audio(path: Path, content: bytes = b"fake audio") -> str:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return str(path)


def stub_extractor(tags_by_name=None):
    """Extractor returning fixed tags per file name; None for missing files."""
    tags_by_name = tags_by_name or {}
    calls = []

    def extractor(local_path):
        calls.append(local_path)
        if not os.path.exists(local_path):
            return None
        tags = {"title": Path(local_path).stem}
        tags.update(tags_by_name.get(os.path.basename(local_path), {}))
        return ExtractedMetadata(**tags)

    extractor.calls = calls
    return extractor


def drain(events: queue.Queue) -> list:
    return list(events.queue)


SONG_TAGS = {
    "song.mp3": {
        "title": "Song",
        "artist": "Band",
        "album": "Record",
        "track_number": 1,
        "codec": "mp3",
        "genres": ("Rock", "Indie"),
    }
}


class TestEndToEnd:
    def test_import_single_tagged_file(self, store, manager, incoming):
        write_audio(incoming / "song.mp3")

        result = import_folder(incoming, store, manager, extractor=stub_extractor(SONG_TAGS))

        assert (result.total, result.imported, result.errors, result.duplicates) == (1, 1, 0, 0)
        tracks = store.get_tracks()
        assert len(tracks) == 1
        track = tracks[0]
        assert (track["title"], track["artist"], track["album"]) == ("Song", "Band", "Record")
        assert store.get_track_genres(track["track_id"]) == ["Indie", "Rock"]

        destination = Path(track["file_path"])
        assert destination == manager.get_music_path() / "Band" / "Record" / "01 Song.mp3"
        assert destination.read_bytes() == b"fake audio"
        assert result.imported_tracks[0].track_id == track["track_id"]
        assert result.imported_tracks[0].title == "Song"

    def test_second_import_is_duplicate(self, store, manager, incoming):
        write_audio(incoming / "song.mp3")
        extractor = stub_extractor(SONG_TAGS)
        import_folder(incoming, store, manager, extractor=extractor)

        result = import_folder(incoming, store, manager, extractor=extractor)

        assert result.imported == 0
        assert result.duplicates == 1
        assert len(store.get_tracks()) == 1

    def test_missing_file_in_batch_is_skipped(self, store, manager, incoming):
        paths = [
            write_audio(incoming / "first.mp3"),
            str(incoming / "missing.mp3"),
            write_audio(incoming / "third.mp3"),
        ]
        extractor = stub_extractor()

        result = import_files(paths, store, manager, extractor=extractor)

        assert (result.imported, result.skipped, result.errors) == (2, 1, 0)
        assert extractor.calls == paths
        assert sorted(t["title"] for t in store.get_tracks()) == ["first", "third"]

    def test_identical_artwork_stored_once(self, store, manager, incoming):
        cover = Artwork(b"\xff\xd8same-cover", "image/jpeg")
        tags = {
            "one.mp3": {"album": "A", "artwork": Artwork(bytes(bytearray(cover.data)))},
            "two.mp3": {"album": "B", "artwork": Artwork(bytes(bytearray(cover.data)))},
        }
        write_audio(incoming / "one.mp3")
        write_audio(incoming / "two.mp3")

        result = import_folder(incoming, store, manager, extractor=stub_extractor(tags))

        assert result.imported == 2
        artwork_paths = {t["artwork_path"] for t in store.get_tracks()}
        assert len(artwork_paths) == 1
        assert len(list(manager.get_albums_artwork_path().iterdir())) == 1


class TestFallbacksAndNormalization:
    def test_empty_tags_use_fallbacks(self, store, manager, incoming):
        path = write_audio(incoming / "Mystery Track.mp3")
        extractor = lambda p: ExtractedMetadata(title="")

        import_files([path], store, manager, extractor=extractor)

        track = store.get_tracks()[0]
        assert track["title"] == "Mystery Track"
        assert track["artist"] == "Unknown Artist"
        assert track["album"] == "Unknown Album"
        assert track["album_artist"] == "Unknown Artist"
        assert Path(track["file_path"]).name == "00 Mystery Track.mp3"

    def test_single_string_genre(self, store, manager, incoming):
        path = write_audio(incoming / "a.mp3")
        extractor = lambda p: ExtractedMetadata(title="A", genres="House")

        import_files([path], store, manager, extractor=extractor)

        track_id = store.get_tracks()[0]["track_id"]
        assert store.get_track_genres(track_id) == ["House"]

    def test_long_multibyte_title_imports(self, store, manager, incoming):
        path = write_audio(incoming / "a.mp3")
        extractor = lambda p: ExtractedMetadata(title="日本語" * 70)

        result = import_files([path], store, manager, extractor=extractor)

        assert (result.imported, result.errors) == (1, 0)
        track = store.get_tracks()[0]
        assert track["title"] == "日本語" * 70
        assert Path(track["file_path"]).read_bytes() == b"fake audio"

    def test_hostile_source_suffix_is_cleaned(self, store, manager, incoming):
        path = write_audio(incoming / "take.mp:3")

        import_files([path], store, manager, extractor=stub_extractor())

        assert Path(store.get_tracks()[0]["file_path"]).name == "00 take.mp3"

    def test_source_mtime_recorded(self, store, manager, incoming):
        path = write_audio(incoming / "a.mp3")
        os.utime(path, (1_600_000_000, 1_600_000_000))

        import_files([path], store, manager, extractor=stub_extractor())

        track = store.get_tracks()[0]
        assert track["date_modified"] == 1_600_000_000
        assert track["date_added"] > 1_600_000_000


class TestFailures:
    def test_extractor_exception_counts_as_error(self, store, manager, incoming):
        paths = [write_audio(incoming / "bad.mp3"), write_audio(incoming / "good.mp3")]

        def extractor(local_path):
            if local_path.endswith("bad.mp3"):
                raise RuntimeError("corrupt")
            return ExtractedMetadata(title="good")

        events = queue.Queue()
        result = import_files(paths, store, manager, events=events, extractor=extractor)

        assert (result.imported, result.errors) == (1, 1)
        errors = [e for e in drain(events) if e.status == ImportStatus.ERROR]
        assert errors[0].file_path == paths[0]
        assert errors[0].error == "corrupt"

    def test_store_failure_removes_copied_file(self, store, manager, incoming):
        path = write_audio(incoming / "a.mp3")
        # Rejected by the store after the copy has happened
        extractor = lambda p: ExtractedMetadata(title="A", track_number=0)

        result = import_files([path], store, manager, extractor=extractor)

        assert result.errors == 1
        assert store.get_tracks() == []
        music_files = [p for p in manager.get_music_path().rglob("*") if p.is_file()]
        assert music_files == []

    def test_genre_failure_rolls_back_track(self, store, manager, incoming, monkeypatch):
        path = write_audio(incoming / "a.mp3")

        def broken_genres(track_id, names):
            raise RuntimeError("genre table locked")

        monkeypatch.setattr(store, "add_track_genres", broken_genres)
        result = import_files([path], store, manager, extractor=stub_extractor())

        assert result.errors == 1
        assert store.get_tracks() == []

    def test_artwork_failure_still_imports(self, store, manager, incoming, monkeypatch):
        path = write_audio(incoming / "a.mp3")

        def broken_cache(artwork):
            raise OSError("disk full")

        monkeypatch.setattr(manager, "cache_artwork", broken_cache)
        extractor = lambda p: ExtractedMetadata(title="A", artwork=Artwork(b"img"))

        result = import_files([path], store, manager, extractor=extractor)

        assert result.imported == 1
        assert store.get_tracks()[0]["artwork_path"] is None

    def test_path_outside_allowed_root_is_error(self, store, manager, incoming):
        good = write_audio(incoming / "a.mp3")

        result = import_files(["/etc/passwd", good], store, manager, extractor=stub_extractor())

        assert (result.errors, result.imported) == (1, 1)

    def test_folder_outside_allowed_root_is_fatal(self, store, manager):
        events = queue.Queue()

        with pytest.raises(SecurityError):
            import_folder("/etc", store, manager, events=events, extractor=stub_extractor())

        received = drain(events)
        assert received[-1].status == ImportStatus.FAILED
        assert store.get_tracks() == []

    def test_folder_must_be_directory(self, store, manager, incoming):
        path = write_audio(incoming / "a.mp3")
        with pytest.raises(NotADirectoryError):
            import_folder(path, store, manager, extractor=stub_extractor())


class TestCancellation:
    def test_cancel_before_start(self, store, manager, incoming):
        paths = [write_audio(incoming / f"{i}.mp3") for i in range(3)]
        cancel = threading.Event()
        cancel.set()
        events = queue.Queue()

        result = import_files(paths, store, manager, events=events, cancel_event=cancel)

        assert result.cancelled
        assert result.processed == 0
        assert store.get_tracks() == []
        received = drain(events)
        assert [e.status for e in received] == [ImportStatus.CANCELLED]
        assert received[0].message == "Import cancelled"

    def test_cancel_mid_batch_keeps_prior_imports(self, store, manager, incoming):
        paths = [write_audio(incoming / f"{i}.mp3") for i in range(3)]
        cancel = threading.Event()
        inner = stub_extractor()

        def extractor(local_path):
            # Request cancellation while the first file is in flight
            cancel.set()
            return inner(local_path)

        result = import_files(paths, store, manager, cancel_event=cancel, extractor=extractor)

        assert result.cancelled
        assert result.processed == 1
        assert result.imported == 1
        assert len(store.get_tracks()) == 1


class TestProgressEvents:
    def test_per_file_events_in_order(self, store, manager, incoming):
        paths = [
            write_audio(incoming / "a.mp3"),
            str(incoming / "gone.mp3"),
            write_audio(incoming / "c.mp3"),
        ]
        events = queue.Queue()

        import_files(paths, store, manager, events=events, extractor=stub_extractor())

        received = drain(events)
        assert [e.status for e in received] == [
            ImportStatus.PROCESSING,
            ImportStatus.IMPORTED,
            ImportStatus.PROCESSING,
            ImportStatus.SKIPPED,
            ImportStatus.PROCESSING,
            ImportStatus.IMPORTED,
            ImportStatus.COMPLETE,
        ]
        assert [e.processed for e in received] == [0, 1, 1, 2, 2, 3, 3]
        assert all(e.total == 3 for e in received)
        assert received[0].message == "Processing: a.mp3"

    def test_folder_reports_scanning_then_importing(self, store, manager, incoming):
        write_audio(incoming / "a.mp3")
        write_audio(incoming / "sub" / "b.flac")
        events = queue.Queue()

        import_folder(incoming, store, manager, events=events, extractor=stub_extractor())

        received = drain(events)
        assert received[0].status == ImportStatus.SCANNING
        assert received[0].message == "Scanning folder..."
        scanning = [e for e in received if e.status == ImportStatus.SCANNING]
        assert [e.total for e in scanning[1:]] == [1, 2]
        importing = [e for e in received if e.status == ImportStatus.IMPORTING]
        assert importing[0].message == "Found 2 files. Starting import..."
        assert received.index(importing[0]) > received.index(scanning[-1])
        assert received[-1].status == ImportStatus.COMPLETE

    def test_empty_folder_short_circuits(self, store, manager, incoming):
        (incoming / "readme.txt").write_text("not music")
        extractor = stub_extractor()
        events = queue.Queue()

        result = import_folder(incoming, store, manager, events=events, extractor=extractor)

        assert (result.total, result.imported, result.errors) == (0, 0, 0)
        assert extractor.calls == []
        assert not any(e.status == ImportStatus.IMPORTING for e in drain(events))


class TestAlbumsRefresh:
    def test_refresh_albums_after_batch(self, store, manager, incoming):
        tags = {
            "1.mp3": {"album": "X", "artist": "A"},
            "2.mp3": {"album": "X", "artist": "A"},
            "3.mp3": {"album": "Y", "artist": "A"},
        }
        paths = [write_audio(incoming / name) for name in tags]

        import_files(paths, store, manager, extractor=stub_extractor(tags), refresh_albums=True)

        counts = {a["album_title"]: a["track_count"] for a in store.get_all_albums()}
        assert counts == {"X": 2, "Y": 1}

    def test_no_refresh_by_default(self, store, manager, incoming):
        path = write_audio(incoming / "1.mp3")
        import_files([path], store, manager, extractor=stub_extractor())
        assert store.get_all_albums() == []


class TestPrerequisites:
    def test_valid_setup(self, store, manager):
        check = validate_import_prerequisites(store, manager)
        assert check.valid
        assert check.errors == []

    def test_missing_collaborators(self):
        check = validate_import_prerequisites(None, None)
        assert not check.valid
        assert check.errors == ["Library manager not initialized", "Database not initialized"]

    def test_uninitialized_store(self, manager):
        with LibraryDatabase() as bare:
            check = validate_import_prerequisites(bare, manager)
        assert check.errors == ["Database not initialized"]

    def test_closed_store(self, manager):
        db = LibraryDatabase()
        db.initialize()
        db.close()
        assert not validate_import_prerequisites(db, manager).valid
