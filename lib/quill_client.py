import logging
import os
import shlex
import subprocess
import threading
import time
from enum import Enum, auto
from pathlib import Path
from queue import Empty, Queue
from typing import Any, Dict, List, Optional, Set, cast

import quill_transport
from quill_settings import client_logger, setting
from quill_typing import (
    LSPInitializeResult,
    LSPNotificationMessage,
    LSPRequestMessage,
    LSPResponseMessage,
    QuillServerConfig,
)


def request(
    id: int,
    method: str,
    params: Optional[Any] = None,
) -> LSPRequestMessage:
    return {
        "jsonrpc": "2.0",
        "id": id,
        "method": method,
        "params": params,
    }


def notification(
    method: str,
    params: Optional[Any] = None,
) -> LSPNotificationMessage:
    return {
        "jsonrpc": "2.0",
        "method": method,
        "params": params,
    }


def response(id: Any, result: Optional[Any] = None) -> LSPResponseMessage:
    return {
        "jsonrpc": "2.0",
        "id": id,
        "result": result,
    }


def is_response(message: Dict[str, Any]) -> bool:
    return "id" in message and ("result" in message or "error" in message)


def is_server_request(message: Dict[str, Any]) -> bool:
    return "id" in message and "method" in message


def path_to_uri(path) -> str:
    return Path(path).as_uri()


class ResponseRegistry:
    """
    Responses by request ID, filled by the reader thread and consumed by the poller.

    Each response is handed out once; `pop` removes it.

    The lock is only held for a single insert/remove - never across I/O.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._responses: Dict[int, LSPResponseMessage] = {}
        self._abandoned: Set[int] = set()

    def insert(self, id: int, message: LSPResponseMessage):
        with self._lock:
            if id in self._abandoned:
                self._abandoned.discard(id)
                return

            self._responses[id] = message

    def pop(self, id: int) -> Optional[LSPResponseMessage]:
        with self._lock:
            return self._responses.pop(id, None)

    def abandon(self, id: int):
        """
        Nobody will ask for `id` anymore; drop its response now or when it arrives.
        """
        with self._lock:
            if self._responses.pop(id, None) is None:
                self._abandoned.add(id)

    def __len__(self):
        with self._lock:
            return len(self._responses)


class LanguageServerStatus(Enum):
    """Represents the lifecycle state of the language server.

    State transitions:
    INITIALIZING -> INITIALIZED -> SHUTDOWN
                 -> FAILED

    FAILED is reached when the server rejects 'initialize', the reader hits EOF
    (server exited) or a write fails. A session stays INITIALIZING if the
    'initialize' reply doesn't come in time.
    """

    INITIALIZING = auto()  # Process running; 'initialize' not answered yet
    INITIALIZED = auto()  # Successfully initialized and ready for requests
    FAILED = auto()  # Server crashed, I/O error, or initialization failed
    SHUTDOWN = auto()  # Process terminated by `close`


class LanguageServerSession:
    """Session with a language server subprocess.

    Thread Safety:
        - One reader thread parses messages and fills the response registry
          and the server request queue.
        - Everything else is called from the editor thread. Writes are serialized
          by `_write_lock`; requests never block waiting for a reply.

    Replies are correlated by integer ID. The caller gets the ID back from a
    request method and polls `get_response` on its own schedule.
    """

    def __init__(
        self,
        logger: logging.Logger,
        name: str,
        process,
        language_id: str = "rust",
        root_path: Optional[Path] = None,
    ):
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._logger = logger
        self._name = name
        self._process = process
        self._language_id = language_id
        self._root_path = root_path
        self._server_status = LanguageServerStatus.INITIALIZING
        self._server_capabilities: Optional[Dict[str, Any]] = None
        self._next_id = 1
        self._responses = ResponseRegistry()
        self._server_requests: "Queue[LSPRequestMessage]" = Queue()
        self._uri: Optional[str] = None
        self._version = 0
        self._reader: Optional[threading.Thread] = None

    @classmethod
    def start(
        cls,
        entry_file: Path,
        working_dir: Path,
        settings: Optional[Dict[str, Any]] = None,
        logger: logging.Logger = client_logger,
    ) -> Optional["LanguageServerSession"]:
        """
        Spawn the configured server in `working_dir` and start reading from it.

        Returns None if the server can't be started; the caller runs without it.
        """

        server_config = cast(QuillServerConfig, setting(settings, "server", {}))

        server_args: List[str] = server_config.get("start") or []
        name = server_config.get("name") or (server_args[0] if server_args else "?")

        if not server_args:
            logger.info("No language server configured")
            return None

        logger.debug(f"Start {name} `{shlex.join(server_args)}` in {working_dir}")

        try:
            process = subprocess.Popen(
                server_args,
                cwd=working_dir,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
            )
        except OSError as e:
            # Common failures: command not found, permission denied.
            logger.error(f"[{name}] Failed to start server process: {e}")
            return None

        session = cls(
            logger=logger,
            name=name,
            process=process,
            language_id=server_config.get("languageId") or "rust",
            root_path=Path(working_dir),
        )

        session._uri = path_to_uri(Path(entry_file).absolute())

        session.start_reader()

        return session

    # -- STATUS

    def server_status(self) -> LanguageServerStatus:
        with self._lock:
            return self._server_status

    def is_server_initialized(self) -> bool:
        """
        Returns True if server is up and running and successfully processed an 'initialize' request.
        """
        with self._lock:
            return self._server_status == LanguageServerStatus.INITIALIZED

    def is_server_failed(self) -> bool:
        """
        Returns True if server failed to initialize, crashed, or encountered an I/O error.
        """
        with self._lock:
            return self._server_status == LanguageServerStatus.FAILED

    def is_alive(self) -> bool:
        return self._reader is not None and self._reader.is_alive()

    def _fail(self, reason: str):
        with self._lock:
            if self._server_status in (
                LanguageServerStatus.SHUTDOWN,
                LanguageServerStatus.FAILED,
            ):
                return

            self._server_status = LanguageServerStatus.FAILED

        self._logger.error(f"[{self._name}] {reason}")

    @property
    def version(self) -> int:
        return self._version

    @property
    def server_capabilities(self) -> Optional[Dict[str, Any]]:
        return self._server_capabilities

    def supports_completion(self) -> bool:
        """
        Returns False only if the server answered 'initialize' without a completion provider.
        """
        if self._server_capabilities is None:
            return True

        # CompletionOptions; an empty object still means supported.
        return self._server_capabilities.get("completionProvider") is not None

    # -- READER

    def start_reader(self):
        # Exactly one reader per session.
        if self._reader is not None:
            return

        self._reader = threading.Thread(
            name="Reader",
            target=self._start_reader,
            daemon=True,
        )
        self._reader.start()

    def _start_reader(self):
        self._logger.debug(f"[{self._name}] Reader started 🟢")

        out = self._process.stdout

        try:
            while True:
                message = quill_transport.receive_one(out)

                # Malformed message; it's been consumed, keep going.
                if message is None:
                    continue

                self._dispatch(message)

        except quill_transport.TransportClosed as e:
            if self.server_status() != LanguageServerStatus.SHUTDOWN:
                self._fail(f"Reader detected EOF (server exited?): {e}")

        finally:
            self._logger.debug(f"[{self._name}] Reader stopped 🔴")

    def _dispatch(self, message: Dict[str, Any]):
        if is_response(message):
            request_id = message["id"]

            if isinstance(request_id, int):
                self._responses.insert(request_id, cast(LSPResponseMessage, message))
            else:
                self._logger.warning(
                    f"[{self._name}] Drop response with foreign ID {request_id!r}"
                )

        elif is_server_request(message):
            self._server_requests.put(cast(LSPRequestMessage, message))

        else:
            self._logger.debug(
                f"[{self._name}] Discard notification {message.get('method')}"
            )

    # -- WRITER

    def _send(self, message: Dict[str, Any]):
        if self.server_status() in (
            LanguageServerStatus.FAILED,
            LanguageServerStatus.SHUTDOWN,
        ):
            self._logger.debug(
                f"[{self._name}] Server is {self.server_status().name}; Will drop {message.get('method', 'response')}"
            )
            return

        try:
            with self._write_lock:
                quill_transport.send(self._process.stdin, message)
        except (BrokenPipeError, OSError, ValueError) as e:
            # The server's stdin is closed; the server crashed or exited.
            self._fail(f"Can't write to server's stdin: {e}")

    def _request(self, method: str, params: Optional[Any] = None) -> int:
        with self._lock:
            request_id = self._next_id
            self._next_id += 1

        self._send(request(request_id, method, params))

        return request_id

    def _notify(self, method: str, params: Optional[Any] = None):
        self._send(notification(method, params))

    # -- RESPONSES

    def get_response(self, request_id: int) -> Optional[LSPResponseMessage]:
        """
        Non-blocking. Returns the response for `request_id` once, then None.
        """
        return self._responses.pop(request_id)

    def wait_response(
        self,
        request_id: int,
        timeout: float,
        interval: float = 0.005,
    ) -> Optional[LSPResponseMessage]:
        """
        Poll `get_response` until the response arrives or `timeout` seconds pass.

        Blocks the caller; only meant for the startup handshake.
        """
        deadline = time.monotonic() + timeout

        while True:
            if (message := self.get_response(request_id)) is not None:
                return message

            if time.monotonic() >= deadline:
                return None

            time.sleep(interval)

    def abandon(self, request_id: int):
        self._responses.abandon(request_id)

    def drain_server_requests(self) -> int:
        """
        Acknowledge every pending server request with a null result.

        Servers like rust-analyzer ask for configuration and progress tokens,
        and hold back later answers until those requests are answered.
        """
        n = 0

        while True:
            try:
                server_request = self._server_requests.get_nowait()
            except Empty:
                break

            self._logger.debug(
                f"[{self._name}] Acknowledge server request {server_request.get('method')}"
            )

            self._send(response(server_request["id"]))

            n += 1

        return n

    # -- METHODS

    def initialize(self, timeout: float = 10.0) -> Optional[LSPResponseMessage]:
        """
        The initialize request is sent as the first request from the client to the server.
        Until the server has responded to the initialize request with an InitializeResult,
        the client must not send any additional requests or notifications to the server.

        Blocks up to `timeout` seconds for the reply; this is the only blocking wait.

        https://microsoft.github.io/language-server-protocol/specifications/lsp/3.17/specification/#initialize
        """

        params = {
            "processId": os.getpid(),
            "clientInfo": {
                "name": "Quill",
                "version": "0.1.0",
            },
            "rootUri": path_to_uri(self._root_path) if self._root_path else None,
            "capabilities": {
                "textDocument": {
                    "synchronization": {
                        "dynamicRegistration": False,
                    },
                    "completion": {
                        "completionItem": {
                            "snippetSupport": False,
                            "resolveSupport": {
                                "properties": ["detail", "documentation"],
                            },
                        },
                    },
                },
            },
        }

        self._logger.debug(f"Initializing {self._name} ⏳")

        request_id = self._request("initialize", params)

        message = self.wait_response(request_id, timeout)

        if message is None:
            # A slow server may still come up; requests are polled, so nothing hangs.
            self.abandon(request_id)

            self._logger.warning(
                f"[{self._name}] Initialization timed out after {timeout}s"
            )

            self._notify("initialized", {})

            return None

        if error := message.get("error"):
            self._fail(
                f"Initialization failed: code={error.get('code')}, message={error.get('message')}"
            )
            return message

        if result := cast(Optional[LSPInitializeResult], message.get("result")):
            self._server_capabilities = result.get("capabilities")

            if server_info := result.get("serverInfo"):
                self._logger.debug(
                    f"[{self._name}] Server {server_info.get('name')} {server_info.get('version') or ''}"
                )

        with self._lock:
            if self._server_status == LanguageServerStatus.INITIALIZING:
                self._server_status = LanguageServerStatus.INITIALIZED

        self._logger.info(f"{self._name} initialized 🚀")

        # The initialized notification is sent from the client to the server
        # after the client received the result of the initialize request
        # but before the client is sending any other request or notification to the server.
        #
        # https://microsoft.github.io/language-server-protocol/specifications/lsp/3.17/specification/#initialized
        self._notify("initialized", {})

        return message

    def did_open(self, uri: str, text: str):
        """
        The document open notification is sent from the client to the server
        to signal newly opened text documents.

        https://microsoft.github.io/language-server-protocol/specifications/lsp/3.17/specification/#textDocument_didOpen
        """
        self._uri = uri
        self._version = 1

        self._notify(
            "textDocument/didOpen",
            {
                "textDocument": {
                    "uri": uri,
                    "languageId": self._language_id,
                    "version": self._version,
                    "text": text,
                }
            },
        )

    def did_change(self, text: str):
        """
        Documents are synced by always sending the full content of the document.

        The version number points to the version after the change;
        it increases with every change.

        https://microsoft.github.io/language-server-protocol/specifications/lsp/3.17/specification/#textDocument_didChange
        """
        self._version += 1

        self._notify(
            "textDocument/didChange",
            {
                "textDocument": {
                    "uri": self._uri,
                    "version": self._version,
                },
                "contentChanges": [{"text": text}],
            },
        )

    def request_completion(self, line: int, character: int) -> int:
        """
        Response result: CompletionItem[] | CompletionList | null

        https://microsoft.github.io/language-server-protocol/specifications/lsp/3.17/specification/#textDocument_completion
        """
        return self._request(
            "textDocument/completion",
            {
                "textDocument": {"uri": self._uri},
                "position": {"line": line, "character": character},
            },
        )

    def resolve_completion(self, item: Dict[str, Any]) -> int:
        """
        The request is sent from the client to the server to resolve additional information
        for a given completion item.

        https://microsoft.github.io/language-server-protocol/specifications/lsp/3.17/specification/#completionItem_resolve
        """
        return self._request("completionItem/resolve", item)

    # -- LIFECYCLE

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def close(self, timeout: float = 2.0):
        """
        Terminate the server process. Safe to call more than once.
        """
        with self._lock:
            if self._server_status == LanguageServerStatus.SHUTDOWN:
                return

            self._server_status = LanguageServerStatus.SHUTDOWN

        self._logger.info(f"Terminate {self._name}")

        try:
            self._process.stdin.close()
        except OSError as e:
            self._logger.debug(f"[{self._name}] Can't close server's stdin: {e}")

        try:
            self._process.terminate()
            returncode = self._process.wait(timeout)
        except subprocess.TimeoutExpired:
            self._logger.info(
                f"Terminate timeout expired; Will explicitly kill server {self._name}"
            )

            self._process.kill()

            returncode = self._process.wait()

        self._logger.info(f"{self._name} server terminated with returncode {returncode}")
