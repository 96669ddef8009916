"""Tests for configuration loading."""

import json
from pathlib import Path

from tilesync.config import EXAMPLE_CONFIG, Config, load_config


def test_defaults():
    config = Config()
    assert config.port == 5045
    assert config.storage_dir == Path('./archives/maps')
    assert config.read_buffer_size == 64 * 1024
    assert config.chunked_write_threshold == 10 * 1024 * 1024


def test_env_overrides(monkeypatch):
    monkeypatch.setenv('TILESYNC_STORAGE_DIR', '/srv/maps')
    monkeypatch.setenv('TILESYNC_PORT', '8080')
    monkeypatch.setenv('TILESYNC_EXTRACT_TILE_CHECKSUMS', 'false')

    config = Config.from_env()

    assert config.storage_dir == Path('/srv/maps')
    assert config.port == 8080
    assert config.extract_tile_checksums is False


def test_legacy_storage_variable(monkeypatch):
    monkeypatch.delenv('TILESYNC_STORAGE_DIR', raising=False)
    monkeypatch.setenv('STORAGE_BASE_PATH', '/legacy/maps')
    assert Config.from_env().storage_dir == Path('/legacy/maps')


def test_file_then_env(tmp_path, monkeypatch):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({'port': 9000, 'progress_bucket': 10}))
    monkeypatch.setenv('TILESYNC_PROGRESS_BUCKET', '20')
    monkeypatch.delenv('TILESYNC_PORT', raising=False)
    monkeypatch.delenv('PORT', raising=False)

    config = load_config(path)

    assert config.port == 9000
    assert config.progress_bucket == 20


def test_save_round_trip(tmp_path):
    path = tmp_path / 'config.json'
    Config(port=7000, storage_dir=tmp_path / 'maps').save(path)
    loaded = Config.from_file(path)
    assert loaded.port == 7000
    assert loaded.storage_dir == tmp_path / 'maps'


def test_env_equal_to_default_still_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({'port': 9000, 'log_level': 'DEBUG'}))
    monkeypatch.setenv('TILESYNC_PORT', '5045')
    monkeypatch.setenv('TILESYNC_LOG_LEVEL', 'INFO')

    config = load_config(path)

    assert config.port == 5045
    assert config.log_level == 'INFO'


def test_unset_env_keeps_file_values(tmp_path, monkeypatch):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({'extract_tile_checksums': False, 'host': '127.0.0.1'}))
    monkeypatch.delenv('TILESYNC_EXTRACT_TILE_CHECKSUMS', raising=False)
    monkeypatch.delenv('TILESYNC_HOST', raising=False)

    config = load_config(path)

    assert config.extract_tile_checksums is False
    assert config.host == '127.0.0.1'


def test_example_config_matches_defaults(tmp_path):
    path = tmp_path / 'config.json'
    path.write_text(EXAMPLE_CONFIG)
    assert Config.from_file(path) == Config()
