import io
import subprocess
import sys
from pathlib import Path

import pytest

# Add lib directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "lib"))

import quill_transport
from quill_settings import kDEFAULT_SETTINGS


class FakeStdin(io.BytesIO):
    """
    Server stdin that keeps what was written after the client closes it.
    """

    def __init__(self):
        super().__init__()
        self.closed_by_client = False

    def close(self):
        self.closed_by_client = True

    def messages(self):
        stream = io.BytesIO(self.getvalue())

        messages = []

        while True:
            try:
                message = quill_transport.receive_one(stream)
            except quill_transport.TransportClosed:
                return messages

            messages.append(message)


class FakeProcess:
    def __init__(self, stdout: bytes = b"", hang_on_terminate: bool = False):
        self.stdin = FakeStdin()
        self.stdout = io.BytesIO(stdout)
        self.hang_on_terminate = hang_on_terminate
        self.terminated = 0
        self.killed = 0

    def terminate(self):
        self.terminated += 1

    def kill(self):
        self.killed += 1

    def wait(self, timeout=None):
        if self.hang_on_terminate and not self.killed:
            raise subprocess.TimeoutExpired("fake", timeout)

        return 0


class FakeSession:
    """
    Stand-in for LanguageServerSession: records requests, replies on demand.
    """

    def __init__(self):
        self.next_id = 1
        self.requests = []
        self.responses = {}
        self.abandoned = []
        self.changes = []
        self.closed = False
        self.completion_provider = True

    def _request(self, method, params):
        request_id = self.next_id
        self.next_id += 1
        self.requests.append((request_id, method, params))
        return request_id

    def request_completion(self, line, character):
        return self._request("textDocument/completion", {"line": line, "character": character})

    def resolve_completion(self, item):
        return self._request("completionItem/resolve", item)

    def reply(self, request_id, result):
        self.responses[request_id] = {"jsonrpc": "2.0", "id": request_id, "result": result}

    def reply_error(self, request_id, code, message):
        self.responses[request_id] = {
            "jsonrpc": "2.0",
            "id": request_id,
            "error": {"code": code, "message": message},
        }

    def get_response(self, request_id):
        return self.responses.pop(request_id, None)

    def abandon(self, request_id):
        self.abandoned.append(request_id)

    def drain_server_requests(self):
        return 0

    def did_change(self, text):
        self.changes.append(text)

    def supports_completion(self):
        return self.completion_provider

    def close(self):
        self.closed = True

    def last_request(self):
        return self.requests[-1]


@pytest.fixture
def fake_process():
    return FakeProcess()


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def editor_settings():
    return {
        **kDEFAULT_SETTINGS,
        "server": {"name": "none", "start": [], "languageId": "rust"},
        "checker": {"start": ["true"], "manifest": "Cargo.toml", "reason": "compiler-message"},
    }
