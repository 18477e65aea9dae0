import json

import quill_settings
from quill_settings import kDEFAULT_SETTINGS, load_settings, setting, settings_path


class TestSettingsPath:
    def test_explicit_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("QUILL_SETTINGS", str(tmp_path / "custom.json"))

        assert settings_path() == tmp_path / "custom.json"

    def test_xdg_config_home(self, tmp_path, monkeypatch):
        monkeypatch.delenv("QUILL_SETTINGS", raising=False)
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))

        assert settings_path() == tmp_path / "quill" / "Quill.json"


class TestLoadSettings:
    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_settings(tmp_path / "none.json") == kDEFAULT_SETTINGS

    def test_user_settings_override_defaults(self, tmp_path):
        path = tmp_path / "Quill.json"
        path.write_text(json.dumps({"editor.scroll_jump": 5, "server": {"start": ["pyright-langserver", "--stdio"]}}))

        s = load_settings(path)

        assert s["editor.scroll_jump"] == 5
        assert s["server"] == {"start": ["pyright-langserver", "--stdio"]}
        assert s["editor.popup_size"] == kDEFAULT_SETTINGS["editor.popup_size"]

    def test_invalid_json_is_ignored(self, tmp_path):
        path = tmp_path / "Quill.json"
        path.write_text("{not json")

        assert load_settings(path) == kDEFAULT_SETTINGS

    def test_non_object_is_ignored(self, tmp_path):
        path = tmp_path / "Quill.json"
        path.write_text("[1, 2]")

        assert load_settings(path) == kDEFAULT_SETTINGS


class TestSetting:
    def test_value(self):
        assert setting({"a": 1}, "a", 2) == 1

    def test_missing_or_null(self):
        assert setting({}, "a", 2) == 2
        assert setting({"a": None}, "a", 2) == 2

    def test_false_is_a_value(self):
        assert setting({"a": False}, "a", True) is False


class TestLogging:
    def test_log_to_file(self, tmp_path):
        log_file = tmp_path / "quill.log"

        quill_settings.setup_logging(
            {
                "logger.file": str(log_file),
                "logger.plugin.level": "DEBUG",
                "logger.client.level": "WARNING",
            }
        )

        try:
            quill_settings.plugin_logger.debug("editor")
            quill_settings.client_logger.info("hidden")
            quill_settings.client_logger.warning("client")
        finally:
            quill_settings.teardown_logging()

        assert log_file.read_text(encoding="utf-8").splitlines() == [
            "[quill] DEBUG editor",
            "[quill.Client] WARNING client",
        ]

    def test_setup_replaces_handler(self, tmp_path):
        quill_settings.setup_logging({"logger.file": str(tmp_path / "a.log")})
        quill_settings.setup_logging({"logger.file": str(tmp_path / "b.log")})

        try:
            assert len(quill_settings.plugin_logger.handlers) == 1
            assert len(quill_settings.client_logger.handlers) == 1
        finally:
            quill_settings.teardown_logging()

        assert quill_settings.plugin_logger.handlers == []
