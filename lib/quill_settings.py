import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

# -- Logging

logging_formatter = logging.Formatter(fmt="[{name}] {levelname} {message}", style="{")

# Logger used to log 'everything-editor' - except LSP stuff. (See logger below)
plugin_logger = logging.getLogger("quill")
plugin_logger.propagate = False

# Logger used by the LSP client and the checker.
client_logger = logging.getLogger("quill.Client")
client_logger.propagate = False

_logging_handler: Optional[logging.Handler] = None


# -- CONSTANTS

kSETTINGS_FILE_NAME = "Quill.json"

kDEFAULT_SETTINGS: Dict[str, Any] = {
    "server": {
        "name": "rust-analyzer",
        "start": ["rust-analyzer"],
        "languageId": "rust",
    },
    "checker": {
        "start": ["cargo", "clippy", "--message-format=json", "--color=never"],
        "manifest": "Cargo.toml",
        "reason": "compiler-message",
    },
    # Seconds to wait for the 'initialize' reply before the editor starts.
    "lsp.initialize_timeout": 10.0,
    # Seconds between two ticks of the editor loop.
    "editor.tick_interval": 0.03,
    "editor.scroll_jump": 10,
    "editor.popup_size": 10,
    "logger.plugin.level": "INFO",
    "logger.client.level": "INFO",
    # The terminal belongs to the renderer; log to a file when set.
    "logger.file": None,
}


def settings_path() -> Path:
    if path := os.environ.get("QUILL_SETTINGS"):
        return Path(path)

    config_home = os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config"

    return Path(config_home) / "quill" / kSETTINGS_FILE_NAME


def load_settings(path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Built-in defaults, overridden key by key with the user's settings file.

    A missing file is not an error; a broken file is logged and ignored.
    """
    path = path or settings_path()

    merged = dict(kDEFAULT_SETTINGS)

    if not path.is_file():
        return merged

    try:
        user_settings = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        plugin_logger.error(f"Can't load settings {path}: {e}")
        return merged

    if not isinstance(user_settings, dict):
        plugin_logger.error(f"Ignore settings {path}; expected a JSON object")
        return merged

    merged.update(user_settings)

    return merged


_SETTINGS: Optional[Dict[str, Any]] = None


def settings() -> Dict[str, Any]:
    global _SETTINGS

    if _SETTINGS is None:
        _SETTINGS = load_settings()

    return _SETTINGS


def setting(settings_: Optional[Dict[str, Any]], k: str, not_found: Any):
    """
    Setting `k` from `settings_` (or the global settings), else `not_found`.
    """
    if settings_ is None:
        settings_ = settings()

    v = settings_.get(k)

    return not_found if v is None else v


def setup_logging(settings_: Optional[Dict[str, Any]] = None):
    """
    Attach the handler to the editor and client loggers.

    Safe to call more than once; the previous handler is replaced.
    """
    global _logging_handler

    teardown_logging()

    if log_file := setting(settings_, "logger.file", None):
        handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler()

    handler.setFormatter(logging_formatter)

    plugin_logger.addHandler(handler)
    plugin_logger.setLevel(setting(settings_, "logger.plugin.level", "INFO"))

    client_logger.addHandler(handler)
    client_logger.setLevel(setting(settings_, "logger.client.level", "INFO"))

    _logging_handler = handler


def teardown_logging():
    global _logging_handler

    if _logging_handler is None:
        return

    plugin_logger.removeHandler(_logging_handler)
    client_logger.removeHandler(_logging_handler)

    _logging_handler.close()
    _logging_handler = None
