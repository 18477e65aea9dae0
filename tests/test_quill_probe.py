import json

import pytest
from typer.testing import CliRunner

import quill_probe


class ProbeSession:
    def __init__(self, completion=None, resolved=None):
        self.completion = completion
        self.resolved = resolved
        self.opened = None
        self.closed = False

    def initialize(self, timeout):
        return None

    def did_open(self, uri, text):
        self.opened = (uri, text)

    def drain_server_requests(self):
        return 0

    def request_completion(self, line, character):
        self.position = (line, character)
        return 1

    def resolve_completion(self, item):
        return 2

    def wait_response(self, request_id, timeout):
        return self.completion if request_id == 1 else self.resolved

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def close(self):
        self.closed = True


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "main.rs"
    path.write_text("fn main() {\n    pri\n}\n", encoding="utf-8")
    return path


@pytest.fixture
def config(tmp_path):
    path = tmp_path / "Quill.json"
    path.write_text(json.dumps({"logger.file": str(tmp_path / "quill.log")}))
    return path


def invoke(*args):
    return CliRunner().invoke(quill_probe.app, [str(a) for a in args])


class TestProbe:
    def test_server_not_started(self, source, tmp_path):
        path = tmp_path / "Quill.json"
        path.write_text(
            json.dumps(
                {
                    "server": {"start": [str(tmp_path / "no-such-server")]},
                    "logger.file": str(tmp_path / "quill.log"),
                }
            )
        )

        result = invoke(source, "--config", path)

        assert result.exit_code == 1

    def test_completion_timeout(self, source, config, monkeypatch):
        session = ProbeSession(completion=None)

        monkeypatch.setattr(quill_probe.LanguageServerSession, "start", lambda *args, **kwargs: session)

        result = invoke(source, "--config", config, "--settle", 0)

        assert result.exit_code == 2
        assert session.closed

    def test_prints_items_and_documentation(self, source, config, monkeypatch):
        session = ProbeSession(
            completion={
                "jsonrpc": "2.0",
                "id": 1,
                "result": [
                    {"label": "println!", "kind": 3, "detail": "macro"},
                    {"label": "print!", "kind": 3},
                ],
            },
            resolved={"jsonrpc": "2.0", "id": 2, "result": {"documentation": "Prints to stdout."}},
        )

        monkeypatch.setattr(quill_probe.LanguageServerSession, "start", lambda *args, **kwargs: session)

        result = invoke(source, "--config", config, "--settle", 0, "--line", 1, "--character", 7)

        assert result.exit_code == 0
        assert session.position == (1, 7)
        assert session.opened[1] == source.read_text(encoding="utf-8")
        assert "=== 2 completion(s) ===" in result.stdout
        assert "println!" in result.stdout
        assert "Prints to stdout." in result.stdout
        assert session.closed
