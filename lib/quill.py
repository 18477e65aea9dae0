from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import quill_settings
from quill_buffer import TextBuffer
from quill_client import LanguageServerSession, path_to_uri
from quill_completion import CompletionSession, is_word_char, word_prefix
from quill_diagnostics import DiagnosticState, find_project_dir, severity_counts, spawn_check
from quill_settings import plugin_logger, setting
from quill_typing import QuillEvent, QuillKeyEvent, QuillMouseEvent

kMOUSE_SCROLL = 3

kARROWS = ("up", "down", "left", "right")


class EditorMode(Enum):
    NAV = "NAV"
    INSERT = "INSERT"
    COMMAND = "COMMAND"


def key_event(key: str, ctrl: bool = False) -> QuillKeyEvent:
    return {"type": "key", "key": key, "ctrl": ctrl}


def mouse_event(kind) -> QuillMouseEvent:
    return {"type": "mouse", "kind": kind}


class Editor:
    """
    Owner of the UI state of one file-backed buffer.

    Everything here runs on one thread. The language server and the checker
    are only polled: `tick` takes in whatever arrived and returns at once.
    The one blocking wait is the 'initialize' handshake in `start`.
    """

    def __init__(self, path, settings: Optional[Dict[str, Any]] = None):
        self.settings = settings if settings is not None else quill_settings.settings()
        self.file_path = Path(path).absolute()
        self.buffer = TextBuffer.from_file(self.file_path)
        self.diagnostics = DiagnosticState()
        self.completion = CompletionSession()
        self.session: Optional[LanguageServerSession] = None
        # Modes entered on top of each other; COMMAND returns to the one below it.
        self.mode_stack: List[EditorMode] = [EditorMode.NAV]
        self.command_str = ""
        self.status_message: Optional[str] = None
        self.should_quit = False

    @property
    def mode(self) -> EditorMode:
        return self.mode_stack[-1]

    def project_dir(self) -> Path:
        checker_config = setting(self.settings, "checker", {})

        manifest = checker_config.get("manifest") or "Cargo.toml"

        return find_project_dir(self.file_path, manifest) or self.file_path.parent

    # -- LIFECYCLE

    def start(self):
        self.session = LanguageServerSession.start(
            self.file_path,
            self.project_dir(),
            self.settings,
        )

        if self.session:
            self.session.initialize(setting(self.settings, "lsp.initialize_timeout", 10.0))
            self.session.did_open(path_to_uri(self.file_path), self.buffer.text())
        else:
            plugin_logger.info("Running without a language server")

        spawn_check(self.diagnostics, self.file_path, self.settings)

    def close(self):
        if self.session:
            self.session.close()

    def tick(self) -> bool:
        """
        Fold replies that arrived since the last tick into the UI state.
        """
        if not self.session:
            return False

        self.session.drain_server_requests()

        return self.completion.poll(self.session)

    def run(
        self,
        next_event: Callable[[float], Optional[QuillEvent]],
        render: Callable[["Editor"], None],
    ):
        """
        The editor loop.

        `next_event(timeout)` returns the next input event, or None after
        `timeout` seconds without input. `render(editor)` draws the UI.
        """
        tick_interval = setting(self.settings, "editor.tick_interval", 0.03)

        try:
            while not self.should_quit:
                if (event := next_event(tick_interval)) is not None:
                    self.handle_event(event)

                self.tick()

                render(self)
        finally:
            self.close()

    # -- EVENTS

    def handle_event(self, event: QuillEvent):
        if event["type"] == "key":
            self.handle_key(event)
        elif event["type"] == "mouse":
            self.handle_mouse(event)

    def handle_mouse(self, event: QuillMouseEvent):
        if self.mode not in (EditorMode.NAV, EditorMode.INSERT):
            return

        self.completion.cancel(self.session)

        if event["kind"] == "scroll_up":
            self.buffer.move_up(kMOUSE_SCROLL)
        elif event["kind"] == "scroll_down":
            self.buffer.move_down(kMOUSE_SCROLL)

    def handle_key(self, event: QuillKeyEvent):
        if event["ctrl"] and event["key"] == "q":
            self.should_quit = True
            return

        if self.mode == EditorMode.NAV:
            self._handle_nav(event)
        elif self.mode == EditorMode.INSERT:
            self._handle_insert(event)
        elif self.mode == EditorMode.COMMAND:
            self._handle_command(event)

    def _handle_arrows(self, event: QuillKeyEvent):
        jump = setting(self.settings, "editor.scroll_jump", 10) if event["ctrl"] else 1

        key = event["key"]

        if key == "up":
            self.buffer.move_up(jump)
        elif key == "down":
            self.buffer.move_down(jump)
        elif key == "left":
            self.buffer.move_left()
        elif key == "right":
            self.buffer.move_right()

    def _handle_nav(self, event: QuillKeyEvent):
        key = event["key"]

        if key in kARROWS:
            self._handle_arrows(event)
        elif key == "i":
            self.mode_stack = [EditorMode.INSERT]
        elif key == ":":
            self._enter_command()

    def _handle_insert(self, event: QuillKeyEvent):
        if self.completion.is_active() or self.completion.is_pending():
            if self._handle_completion_key(event):
                return

            self.completion.cancel(self.session)

        key = event["key"]

        if event["ctrl"]:
            if key == "space":
                self.trigger_completion()
            elif key in kARROWS:
                self._handle_arrows(event)
            return

        if key in kARROWS:
            self._handle_arrows(event)
        elif key == "esc":
            self.mode_stack = [EditorMode.NAV]
        elif key == "enter":
            self.buffer.insert("\n")
            self._text_changed()
        elif key == "backspace":
            self.buffer.delete_before(1)
            self._text_changed()
        elif key == "space":
            self.buffer.insert(" ")
            self._text_changed()
        elif len(key) == 1:
            self.buffer.insert(key)
            self._text_changed()

    def _handle_completion_key(self, event: QuillKeyEvent) -> bool:
        """
        Keys the completion popup consumes. Returns False to let the key through.
        """
        key = event["key"]

        if event["ctrl"]:
            return False

        if len(key) == 1 and is_word_char(key):
            self.buffer.insert(key)
            self._text_changed()

            prefix = word_prefix(self.buffer.text_before_cursor())

            if self.completion.is_active():
                self.completion.filter(prefix, self.session)
            else:
                self.completion.prefix = prefix

            return True

        if key == "esc":
            self.completion.cancel(self.session)
            return True

        if not self.completion.is_active():
            return False

        if key == "down":
            self.completion.move_down(self.session)
        elif key == "up":
            self.completion.move_up(self.session)
        elif key in ("enter", "tab"):
            self.completion.apply(self.buffer, self.session)
        else:
            return False

        return True

    def _enter_command(self):
        self.command_str = ""
        self.mode_stack.append(EditorMode.COMMAND)

    def _leave_command(self):
        self.command_str = ""

        if len(self.mode_stack) > 1:
            self.mode_stack.pop()
        else:
            self.mode_stack = [EditorMode.NAV]

    def _handle_command(self, event: QuillKeyEvent):
        key = event["key"]

        if key == "esc":
            self._leave_command()
        elif key == "enter":
            command = self.command_str
            self._leave_command()
            self.execute_command(command)
        elif key == "backspace":
            if not self.command_str:
                self._leave_command()
            else:
                self.command_str = self.command_str[:-1]
        elif key == ":":
            self.command_str = ""
        elif key == "space":
            self.command_str += " "
        elif len(key) == 1:
            self.command_str += key

    def execute_command(self, command: str):
        command = command.strip()

        if command == "q":
            self.should_quit = True
        elif command == "w":
            self.save_and_check()
        elif command == "wq":
            if self.save_and_check():
                self.should_quit = True
        elif command.isdigit():
            # Line numbers are 1-based on the command line.
            self.buffer.jump_to_line(int(command) - 1)
        elif command:
            self.status_message = f"Unknown command: {command}"

    # -- ACTIONS

    def _text_changed(self):
        self.status_message = None

        if self.session:
            self.session.did_change(self.buffer.text())

    def trigger_completion(self):
        if not self.session or not self.session.supports_completion():
            return

        line, column = self.buffer.cursor

        self.completion.trigger(
            self.session,
            self.buffer.text_before_cursor(),
            line,
            column,
        )

    def save_and_check(self) -> bool:
        try:
            self.buffer.save()
        except OSError as e:
            plugin_logger.error(f"Can't save {self.file_path}: {e}")
            self.status_message = f"Can't save: {e}"
            return False

        self.status_message = f"Saved {self.buffer.name}"

        spawn_check(self.diagnostics, self.file_path, self.settings)

        return True

    # -- VIEW STATE

    def status_line(self) -> str:
        diagnostics, is_running = self.diagnostics.snapshot()

        if is_running:
            diagnostics_status = "[checking...]"
        else:
            e, w = severity_counts(diagnostics)

            diagnostics_status = f"[E:{e} W:{w}]" if e or w else "[ok]"

        line, column = self.buffer.cursor

        components = [
            self.mode.value,
            self.buffer.display_name(),
            f"{line + 1}:{column + 1}",
            diagnostics_status,
        ]

        if self.mode == EditorMode.COMMAND:
            components.append(f":{self.command_str}")
        elif self.status_message:
            components.append(self.status_message)

        return "  ".join(components)

    def diagnostics_panel(self) -> List[str]:
        diagnostics, is_running = self.diagnostics.snapshot()

        if is_running:
            return ["Running checker..."]

        if not diagnostics:
            return ["No errors or warnings"]

        e, w = severity_counts(diagnostics)

        summary = []

        if e:
            summary.append(f"{e} error{'s' if e > 1 else ''}")

        if w:
            summary.append(f"{w} warning{'s' if w > 1 else ''}")

        lines = [", ".join(summary)]

        for d in diagnostics:
            icon = "✗" if d["severity"] == "error" else "▲"

            if d["line"] is not None and d["column"] is not None:
                location = f" L{d['line'] + 1}:{d['column'] + 1}"
            elif d["line"] is not None:
                location = f" L{d['line'] + 1}"
            else:
                location = ""

            lines.append(f"{icon}{location} {d['message']}")

        return lines

    def completion_rows(self):
        return self.completion.popup_rows(setting(self.settings, "editor.popup_size", 10))

    def completion_documentation(self) -> Optional[str]:
        if self.completion.is_active():
            return self.completion.documentation

        return None
