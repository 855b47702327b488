"""Tests for TOML configuration loading."""

import os
from pathlib import Path

import pytest

from tunelib.core.config import (
    DEFAULT_BLOCKED_DIRS,
    DEFAULT_SUPPORTED_FORMATS,
    Config,
    create_default_config,
    get_config_dir,
    get_default_library_root,
    load_config,
)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep the real user config and environment out of these tests."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg-data"))
    monkeypatch.delenv("TUNELIB_LIBRARY_ROOT", raising=False)
    monkeypatch.delenv("TUNELIB_LOG_LEVEL", raising=False)
    monkeypatch.chdir(tmp_path)


def test_missing_file_gives_defaults(tmp_path):
    config = load_config(tmp_path / "missing.toml")

    assert config.library.root == str(get_default_library_root())
    assert config.library.supported_formats == DEFAULT_SUPPORTED_FORMATS
    assert config.security.allowed_root == str(Path.home())
    assert config.security.blocked_dirs == DEFAULT_BLOCKED_DIRS
    assert config.imports.refresh_albums_after_import is True
    assert config.logging.level == "INFO"


def test_default_config_round_trips(tmp_path):
    config_path = tmp_path / "config.toml"
    config_path.write_text(create_default_config())

    config = load_config(config_path)

    assert config.library.root == str(Path("~/Music/Tunelib").expanduser())
    assert config.security.allowed_root == str(Path.home())
    assert config.security.blocked_dirs == DEFAULT_BLOCKED_DIRS
    assert config.logging.backup_count == 5


def test_sections_override_defaults(tmp_path):
    config_path = tmp_path / "config.toml"
    config_path.write_text(
        """
[library]
root = "/srv/music"
supported_formats = [".MP3", ".flac"]

[import]
refresh_albums_after_import = false

[logging]
level = "debug"
"""
    )

    config = load_config(config_path)

    assert config.library.root == "/srv/music"
    assert config.library.supported_formats == [".mp3", ".flac"]
    assert config.imports.refresh_albums_after_import is False
    assert config.logging.level == "DEBUG"
    # Untouched sections keep defaults
    assert config.security.blocked_dirs == DEFAULT_BLOCKED_DIRS


def test_invalid_toml_falls_back_to_defaults(tmp_path):
    config_path = tmp_path / "config.toml"
    config_path.write_text("[library\nroot = ")

    config = load_config(config_path)

    assert config == Config()


def test_invalid_import_section_uses_import_defaults(tmp_path):
    config_path = tmp_path / "config.toml"
    config_path.write_text("[import]\nevent_queue_size = -5\n")

    config = load_config(config_path)

    assert config.imports.event_queue_size == 0


def test_environment_overrides(tmp_path, monkeypatch):
    config_path = tmp_path / "config.toml"
    config_path.write_text('[library]\nroot = "/srv/music"\n')
    monkeypatch.setenv("TUNELIB_LIBRARY_ROOT", str(tmp_path / "lib"))
    monkeypatch.setenv("TUNELIB_LOG_LEVEL", "warning")

    config = load_config(config_path)

    assert config.library.root == str(tmp_path / "lib")
    assert config.logging.level == "WARNING"


def test_dotenv_in_config_dir_is_loaded(tmp_path):
    env_dir = get_config_dir()
    env_dir.mkdir(parents=True)
    (env_dir / ".env").write_text(f"TUNELIB_LIBRARY_ROOT={tmp_path / 'from-env'}\n")

    try:
        config = load_config(tmp_path / "missing.toml")
    finally:
        loaded = os.environ.pop("TUNELIB_LIBRARY_ROOT", None)

    assert loaded == str(tmp_path / "from-env")
    assert config.library.root == str(tmp_path / "from-env")


def test_local_config_file_is_found(tmp_path):
    (tmp_path / "config.toml").write_text('[library]\nroot = "/from/cwd"\n')

    config = load_config()

    assert config.library.root == "/from/cwd"
