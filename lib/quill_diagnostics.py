import json
import shlex
import subprocess
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, cast

from quill_settings import client_logger, setting
from quill_typing import QuillCheckerConfig, QuillDiagnostic

logger = client_logger

kDEFAULT_MANIFEST = "Cargo.toml"
kDEFAULT_REASON = "compiler-message"


class DiagnosticState:
    """
    Diagnostics of one buffer, shared by the checker thread and the editor thread.

    Readers copy out what they need; the lock is never held across I/O.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._diagnostics: List[QuillDiagnostic] = []
        self._is_running = False

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._is_running

    @property
    def diagnostics(self) -> List[QuillDiagnostic]:
        with self._lock:
            return list(self._diagnostics)

    def snapshot(self) -> Tuple[List[QuillDiagnostic], bool]:
        with self._lock:
            return list(self._diagnostics), self._is_running

    def try_begin(self) -> bool:
        """
        Mark a run as started. Returns False if one is already running.
        """
        with self._lock:
            if self._is_running:
                return False

            self._is_running = True

            return True

    def finish(self, diagnostics: List[QuillDiagnostic]):
        with self._lock:
            self._diagnostics = list(diagnostics)
            self._is_running = False


def severity_counts(diagnostics: List[QuillDiagnostic]) -> Tuple[int, int]:
    """
    (errors, warnings) in `diagnostics`.
    """
    errors = sum(1 for d in diagnostics if d["severity"] == "error")
    warnings = sum(1 for d in diagnostics if d["severity"] == "warning")

    return errors, warnings


def find_project_dir(file_path: Path, manifest: str = kDEFAULT_MANIFEST) -> Optional[Path]:
    """
    Nearest ancestor directory of `file_path` holding `manifest`.
    """
    for directory in Path(file_path).parents:
        if (directory / manifest).exists():
            return directory

    return None


def _canonical(path: Path) -> Optional[Path]:
    try:
        return path.resolve(strict=True)
    except (OSError, RuntimeError):
        return None


def _ends_with(path: Path, tail: str) -> bool:
    tail_parts = Path(tail).parts

    return len(tail_parts) <= len(path.parts) and path.parts[-len(tail_parts) :] == tail_parts


def _span_matches(file_name: str, target_file: Path, project_dir: Optional[Path]) -> bool:
    span_path = project_dir / file_name if project_dir else Path(file_name)

    if resolved := _canonical(span_path):
        return resolved == (_canonical(target_file) or target_file)

    return _ends_with(target_file, file_name)


def _location(span: Optional[Dict[str, Any]]) -> Tuple[Optional[int], Optional[int]]:
    if not span:
        return None, None

    line = span.get("line_start")
    column = span.get("column_start")

    # Checker positions are 1-based; buffer lines and columns are 0-based.
    return (
        max(line - 1, 0) if isinstance(line, int) else None,
        max(column - 1, 0) if isinstance(column, int) else None,
    )


def parse_diagnostics(
    output: str,
    target_file: Path,
    project_dir: Optional[Path],
    reason: str = kDEFAULT_REASON,
) -> List[QuillDiagnostic]:
    """
    Diagnostics for `target_file` from the checker's JSON lines.

    A message without a span is kept only if it's an error; a warning without
    a span most likely belongs to another file of the build.
    """
    diagnostics: List[QuillDiagnostic] = []

    for line in output.splitlines():
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            continue

        if not isinstance(record, dict) or record.get("reason") != reason:
            continue

        message = record.get("message")

        if not isinstance(message, dict):
            continue

        severity = message.get("level")

        if severity not in ("error", "warning"):
            continue

        spans = message.get("spans")

        span = spans[0] if isinstance(spans, list) and spans else None

        file_name = span.get("file_name") if isinstance(span, dict) else None

        if isinstance(file_name, str):
            if not _span_matches(file_name, target_file, project_dir):
                continue
        elif severity != "error":
            continue

        line_, column = _location(span if isinstance(span, dict) else None)

        diagnostics.append({
            "severity": severity,
            "message": message.get("message") or "",
            "line": line_,
            "column": column,
        })

    return diagnostics


def _run_check(
    state: DiagnosticState,
    file_path: Path,
    checker_config: QuillCheckerConfig,
):
    checker_args: List[str] = checker_config.get("start") or []
    manifest = checker_config.get("manifest") or kDEFAULT_MANIFEST
    reason = checker_config.get("reason") or kDEFAULT_REASON

    diagnostics: List[QuillDiagnostic] = []

    try:
        project_dir = find_project_dir(file_path, manifest)

        cwd = project_dir or file_path.parent

        logger.debug(f"Check {file_path} `{shlex.join(checker_args)}` in {cwd}")

        try:
            completed = subprocess.run(
                checker_args,
                cwd=cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            logger.error(f"Failed to start checker: {e}")

            diagnostics = [
                {
                    "severity": "error",
                    "message": f"{checker_args[0] if checker_args else 'checker'} failed: {e}",
                    "line": None,
                    "column": None,
                }
            ]
        else:
            diagnostics = parse_diagnostics(
                completed.stdout or "",
                _canonical(file_path) or file_path,
                project_dir,
                reason,
            )

            logger.debug(
                f"Checker exited with {completed.returncode}; {len(diagnostics)} diagnostic(s) for {file_path.name}"
            )

    except Exception as e:
        logger.exception("Checker thread error")

        diagnostics = [
            {
                "severity": "error",
                "message": f"check failed: {e}",
                "line": None,
                "column": None,
            }
        ]

    finally:
        state.finish(diagnostics)


def spawn_check(
    state: DiagnosticState,
    file_path: Path,
    settings: Optional[Dict[str, Any]] = None,
) -> Optional[threading.Thread]:
    """
    Run the checker for `file_path` on a background thread.

    No-op (returns None) while a run is in flight for `state`.
    """
    if not state.try_begin():
        logger.debug("Checker already running; skip")
        return None

    checker_config = cast(QuillCheckerConfig, setting(settings, "checker", {}))

    thread = threading.Thread(
        name="Checker",
        target=_run_check,
        args=(state, Path(file_path).absolute(), checker_config),
        daemon=True,
    )
    thread.start()

    return thread
