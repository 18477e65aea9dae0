from typing import Any, Dict, List, Literal, Optional, TypedDict, Union


class QuillServerConfig(TypedDict):
    name: str
    start: List[str]
    languageId: str


class QuillCheckerConfig(TypedDict):
    start: List[str]
    # File marking a project root, e.g. 'Cargo.toml'.
    manifest: str
    # Value of `reason` for records that carry a compiler message.
    reason: str


class LSPMessage(TypedDict):
    jsonrpc: str


class LSPNotificationMessage(LSPMessage):
    """
    A notification message.

    A processed notification message must not send a response back. They work like events.

    https://microsoft.github.io/language-server-protocol/specifications/lsp/3.17/specification/#notificationMessage
    """

    method: str
    params: Optional[Any]


class LSPRequestMessage(LSPMessage):
    """
    A request message to describe a request between the client and the server.

    Every processed request must send a response back to the sender of the request.

    https://microsoft.github.io/language-server-protocol/specifications/lsp/3.17/specification/#requestMessage
    """

    id: int
    method: str
    params: Optional[Any]


class LSPResponseError(TypedDict):
    code: int
    message: str
    data: Optional[Any]


class LSPResponseMessage(TypedDict, total=False):
    """
    A Response Message sent as a result of a request.

    If a request doesn’t provide a result value the receiver of a request
    still needs to return a response message to conform to the JSON-RPC specification.

    The result property of the ResponseMessage should be set to null
    in this case to signal a successful request.

    https://microsoft.github.io/language-server-protocol/specifications/lsp/3.17/specification/#responseMessage
    """

    jsonrpc: str
    id: Optional[Union[int, str]]
    result: Optional[Any]
    error: LSPResponseError


class LSPServerInfo(TypedDict):
    # The name of the server as defined by the server.
    name: str

    # The server's version as defined by the server.
    version: Optional[str]


class LSPInitializeResult(TypedDict, total=False):
    # The capabilities the language server provides.
    capabilities: Dict[str, Any]

    # Information about the server.
    serverInfo: LSPServerInfo


class LSPMarkupContent(TypedDict):
    kind: Literal["plaintext", "markdown"]
    value: str


class LSPCompletionItem(TypedDict, total=False):
    """
    https://microsoft.github.io/language-server-protocol/specifications/lsp/3.17/specification/#completionItem
    """

    # The label of this completion item.
    # The label property is also by default the text that is inserted when selecting this completion.
    label: str

    # The kind of this completion item.
    kind: int

    # A human-readable string with additional information about this item, like type or symbol information.
    detail: str

    # A human-readable string that represents a doc-comment.
    documentation: Union[str, LSPMarkupContent]

    # A string that should be inserted into a document when selecting this completion.
    # When omitted the label is used as the insert text for this item.
    insertText: str

    # An edit which is applied to a document when selecting this completion.
    textEdit: Dict[str, Any]


class QuillCompletionItem(TypedDict):
    label: str
    detail: Optional[str]
    # Short tag derived from the protocol's numeric kind, e.g. 'fn' or 'struct'.
    kind: str
    # Text to insert; snippet placeholders already stripped.
    insert_text: str
    # The item as the server sent it; `completionItem/resolve` wants it back verbatim.
    raw: Dict[str, Any]


QuillDiagnosticSeverity = Literal["error", "warning"]


class QuillDiagnostic(TypedDict):
    severity: QuillDiagnosticSeverity
    message: str
    # Zero-based; None when the checker reported no location.
    line: Optional[int]
    column: Optional[int]


class QuillKeyEvent(TypedDict):
    type: Literal["key"]
    # A single character, or one of:
    # 'up', 'down', 'left', 'right', 'enter', 'esc', 'backspace', 'tab', 'space'.
    key: str
    ctrl: bool


class QuillMouseEvent(TypedDict):
    type: Literal["mouse"]
    kind: Literal["scroll_up", "scroll_down"]


QuillEvent = Union[QuillKeyEvent, QuillMouseEvent]
