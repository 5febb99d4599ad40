"""Tests for config loading, saving, migration, and error recovery."""

import json

import pytest

import main
from main import CONFIG_VERSION, migrate_config


@pytest.fixture
def config_file(tmp_path, monkeypatch):
  """Redirect config I/O to a temp directory."""
  path = tmp_path / "config.json"
  monkeypatch.setattr(main, "CONFIG_PATH", str(path))
  return path


class TestLoadConfig:
  def test_creates_default_when_missing(self, config_file):
    assert not config_file.exists()
    cfg = main.load_config()
    assert config_file.exists()
    assert cfg["save_to_disk"] is True
    assert cfg["hotkey_capture"] == "<ctrl>+<alt>+<shift>+s"
    assert cfg["max_undo_levels"] == 50

  def test_reads_existing_config(self, config_file):
    config_file.write_text(json.dumps({"filename_prefix": "bug", "save_folder": "/tmp"}))
    cfg = main.load_config()
    assert cfg["filename_prefix"] == "bug"
    assert cfg["save_folder"] == "/tmp"

  def test_recovers_from_corrupted_json(self, config_file):
    config_file.write_text("{bad json !!!")
    cfg = main.load_config()
    assert cfg == main.DEFAULT_CONFIG
    restored = json.loads(config_file.read_text())
    assert restored["settle_delay_ms"] == 250

  def test_returns_defaults_on_read_error(self, config_file, monkeypatch):
    # A directory exists but cannot be read as a file
    monkeypatch.setattr(main, "CONFIG_PATH", str(config_file.parent))
    cfg = main.load_config()
    assert cfg == main.DEFAULT_CONFIG

  def test_defaults_are_not_shared(self, config_file):
    cfg = main.load_config()
    cfg["stroke_width"] = 99
    assert main.DEFAULT_CONFIG["stroke_width"] != 99


class TestSaveConfig:
  def test_writes_valid_json(self, config_file):
    main.save_config({"filename_prefix": "x", "save_folder": "/home"})
    data = json.loads(config_file.read_text())
    assert data["filename_prefix"] == "x"

  def test_handles_write_error_gracefully(self, config_file, monkeypatch):
    monkeypatch.setattr(main, "CONFIG_PATH", str(config_file.parent / "no" / "such" / "dir" / "config.json"))
    main.save_config({"filename_prefix": "x"})


class TestDefaultConfig:
  def test_has_all_required_keys(self):
    required = [
      "save_folder", "save_to_disk", "copy_to_clipboard", "filename_prefix",
      "filename_suffix", "hotkey_capture", "capture_monitor", "settle_delay_ms",
      "overlay_object_names", "default_tool", "default_color", "stroke_width",
      "max_undo_levels", "min_zoom", "max_zoom", "zoom_step",
      "resize_debounce_ms", "fit_margin",
    ]
    for key in required:
      assert key in main.DEFAULT_CONFIG, f"Missing key: {key}"

  def test_pipeline_defaults(self):
    assert main.DEFAULT_CONFIG["fit_margin"] == 20
    assert main.DEFAULT_CONFIG["resize_debounce_ms"] == 300
    assert main.DEFAULT_CONFIG["default_tool"] == "freehand"


class TestConfigMigration:
  def test_adds_missing_keys(self):
    old_config = {"save_folder": "~/Pictures", "filename_prefix": "shot"}
    changed = migrate_config(old_config)
    assert changed is True
    assert "hotkey_capture" in old_config
    assert "max_undo_levels" in old_config
    assert "config_version" in old_config
    assert old_config["save_folder"] == "~/Pictures"
    assert old_config["filename_prefix"] == "shot"

  def test_bumps_version(self, monkeypatch):
    monkeypatch.setattr(main, "CONFIG_VERSION", CONFIG_VERSION + 1)
    cfg = dict(main.DEFAULT_CONFIG)
    changed = migrate_config(cfg)
    assert changed is True
    assert cfg["config_version"] == CONFIG_VERSION + 1

  def test_no_change_when_current(self):
    current_config = dict(main.DEFAULT_CONFIG)
    assert migrate_config(current_config) is False

  def test_load_triggers_migration(self, config_file):
    old = {"save_folder": "~/Desktop", "filename_prefix": "shot"}
    config_file.write_text(json.dumps(old))

    config = main.load_config()
    assert config["config_version"] == CONFIG_VERSION
    assert config["hotkey_capture"] == "<ctrl>+<alt>+<shift>+s"
    assert config["save_folder"] == "~/Desktop"

    on_disk = json.loads(config_file.read_text())
    assert on_disk["zoom_step"] == main.DEFAULT_CONFIG["zoom_step"]


class TestFormatHotkeyDisplay:
  def test_modifiers_and_key(self):
    assert main.format_hotkey_display("<ctrl>+<alt>+<shift>+s") == "Ctrl + Alt + Shift + S"

  def test_empty(self):
    assert main.format_hotkey_display("") == ""
