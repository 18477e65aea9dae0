import logging
import re
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Tuple, cast

from quill_typing import LSPCompletionItem, LSPResponseMessage, QuillCompletionItem

logger = logging.getLogger("quill")

# The kind of a completion entry
# https://microsoft.github.io/language-server-protocol/specifications/lsp/3.17/specification/#completionItemKind
COMPLETION_ITEM_KIND = {
    1: "txt",  # Text
    2: "meth",  # Method
    3: "fn",  # Function
    4: "ctor",  # Constructor
    5: "field",  # Field
    6: "var",  # Variable
    7: "class",  # Class
    8: "iface",  # Interface
    9: "mod",  # Module
    10: "prop",  # Property
    11: "unit",  # Unit
    12: "val",  # Value
    13: "enum",  # Enum
    14: "kw",  # Keyword
    15: "snip",  # Snippet
    16: "color",  # Color
    17: "file",  # File
    18: "ref",  # Reference
    19: "dir",  # Folder
    20: "member",  # EnumMember
    21: "const",  # Constant
    22: "struct",  # Struct
    23: "event",  # Event
    24: "op",  # Operator
    25: "type",  # TypeParameter
}

COMPLETION_ITEM_KIND_UNKNOWN = "?"


def completion_kind(code: Any) -> str:
    if isinstance(code, int):
        return COMPLETION_ITEM_KIND.get(code, COMPLETION_ITEM_KIND_UNKNOWN)

    return COMPLETION_ITEM_KIND_UNKNOWN


def strip_placeholders(text: str) -> str:
    """
    Remove snippet tab stops and placeholders, keeping placeholder defaults.

    'println!($0)' -> 'println!()'; 'foo(${1:x})' -> 'foo(x)'
    """
    # ${1:default}
    text = re.sub(r"\$\{\d+:([^}]*)\}", r"\1", text)

    # ${1}
    text = re.sub(r"\$\{\d+\}", "", text)

    # $1
    return re.sub(r"\$\d+", "", text)


def word_prefix(text_before_cursor: str) -> str:
    """
    The identifier characters (alphanumeric or underscore) immediately before the cursor.
    """
    i = len(text_before_cursor)

    while i > 0 and is_word_char(text_before_cursor[i - 1]):
        i -= 1

    return text_before_cursor[i:]


def is_word_char(c: str) -> bool:
    return c.isalnum() or c == "_"


def parse_completion_item(item: Dict[str, Any]) -> Optional[QuillCompletionItem]:
    item = cast(LSPCompletionItem, item)

    label = item.get("label")

    if not isinstance(label, str):
        return None

    detail = item.get("detail")

    # A string that should be inserted into a document when selecting this completion.
    # When omitted the label is used as the insert text for this item.
    insert_text = item.get("insertText")

    if not isinstance(insert_text, str):
        text_edit = item.get("textEdit")

        insert_text = text_edit.get("newText") if isinstance(text_edit, dict) else None

    if not isinstance(insert_text, str):
        insert_text = label

    return {
        "label": label,
        "detail": detail if isinstance(detail, str) else None,
        "kind": completion_kind(item.get("kind")),
        "insert_text": strip_placeholders(insert_text),
        "raw": cast(Dict[str, Any], item),
    }


def parse_completions(message: LSPResponseMessage) -> List[QuillCompletionItem]:
    # result: CompletionItem[] | CompletionList | null
    # If a CompletionItem[] is provided it is interpreted to be complete. So it is the same as { isIncomplete: false, items }
    result = message.get("result")

    if isinstance(result, dict):
        result = result.get("items")

    if not isinstance(result, list):
        return []

    items = []

    for raw in result:
        if isinstance(raw, dict) and (item := parse_completion_item(raw)):
            items.append(item)

    return items


def matching_items(items: List[QuillCompletionItem], prefix: str) -> List[QuillCompletionItem]:
    """
    Items whose label or insert text contains `prefix`, ignoring case.
    """
    lower = prefix.lower()

    return [
        item
        for item in items
        if lower in item["label"].lower() or lower in item["insert_text"].lower()
    ]


def parse_resolve_documentation(message: LSPResponseMessage) -> Optional[str]:
    result = message.get("result")

    if not isinstance(result, dict):
        return None

    documentation = result.get("documentation")

    # MarkupContent
    if isinstance(documentation, dict):
        documentation = documentation.get("value")

    return documentation if isinstance(documentation, str) else None


class CompletionStatus(Enum):
    """
    IDLE -> REQUESTED -> LISTING <-> RESOLVING -> IDLE
    """

    IDLE = auto()  # No popup, nothing in flight
    REQUESTED = auto()  # Completion request in flight
    LISTING = auto()  # Items shown; no resolve in flight
    RESOLVING = auto()  # Items shown; resolve for the selection in flight


class CompletionSession:
    """
    Completion popup state, owned by the editor thread.

    Replies are polled, never waited for. A resolve reply carries the
    selection index it was requested for; it's applied only if that item
    is still selected.
    """

    def __init__(self):
        self.items: List[QuillCompletionItem] = []
        self.selected = 0
        self.prefix = ""
        self.request_id: Optional[int] = None
        # (resolve request ID, selection index at request time)
        self.resolve: Optional[Tuple[int, int]] = None
        self.documentation: Optional[str] = None

    def status(self) -> CompletionStatus:
        if self.items:
            return CompletionStatus.RESOLVING if self.resolve else CompletionStatus.LISTING

        if self.request_id is not None:
            return CompletionStatus.REQUESTED

        return CompletionStatus.IDLE

    def is_active(self) -> bool:
        return bool(self.items)

    def is_pending(self) -> bool:
        return self.request_id is not None

    def selected_item(self) -> Optional[QuillCompletionItem]:
        if 0 <= self.selected < len(self.items):
            return self.items[self.selected]

        return None

    def clear(self):
        self.items = []
        self.selected = 0
        self.prefix = ""
        self.request_id = None
        self.resolve = None
        self.documentation = None

    def cancel(self, session=None):
        if session:
            if self.request_id is not None:
                session.abandon(self.request_id)

            if self.resolve is not None:
                session.abandon(self.resolve[0])

        self.clear()

    def trigger(self, session, text_before_cursor: str, line: int, character: int):
        self.cancel(session)

        self.prefix = word_prefix(text_before_cursor)

        # Configuration requests must be answered before the server completes.
        session.drain_server_requests()

        self.request_id = session.request_completion(line, character)

        logger.debug(f"Request completion {self.request_id} prefix={self.prefix!r}")

    def _resolve_selected(self, session):
        if self.resolve is not None:
            session.abandon(self.resolve[0])
            self.resolve = None

        if item := self.selected_item():
            self.resolve = (session.resolve_completion(item["raw"]), self.selected)

    def poll(self, session) -> bool:
        """
        Take in replies that arrived since the last poll. Returns True if anything changed.
        """
        changed = False

        if self.request_id is not None:
            if (message := session.get_response(self.request_id)) is not None:
                self.request_id = None

                changed = True

                if error := message.get("error"):
                    logger.error(
                        f"Completion failed: code={error.get('code')}, message={error.get('message')}"
                    )

                    self.clear()

                    return changed

                # Characters typed while the request was in flight narrow the list.
                self.items = matching_items(parse_completions(message), self.prefix)
                self.selected = 0
                self.documentation = None

                if not self.items:
                    self.clear()
                    return changed

                self._resolve_selected(session)

        if self.resolve is not None:
            resolve_id, index = self.resolve

            if (message := session.get_response(resolve_id)) is not None:
                self.resolve = None

                if index == self.selected:
                    self.documentation = parse_resolve_documentation(message)

                    changed = True
                else:
                    logger.debug(
                        f"Discard stale resolve {resolve_id}; index {index} != {self.selected}"
                    )

        return changed

    def _select(self, index: int, session=None):
        self.selected = index
        self.documentation = None

        if session:
            self._resolve_selected(session)

    def move_down(self, session=None):
        if self.items:
            self._select((self.selected + 1) % len(self.items), session)

    def move_up(self, session=None):
        if self.items:
            self._select((self.selected - 1) % len(self.items), session)

    def filter(self, prefix: str, session=None):
        """
        Narrow the items down to the ones matching `prefix` (case-insensitive substring).
        """
        previous = self.selected_item()

        self.prefix = prefix

        self.items = matching_items(self.items, prefix)

        if not self.items:
            self.cancel(session)
            return

        self.selected = min(self.selected, len(self.items) - 1)

        if self.selected_item() is not previous:
            self._select(self.selected, session)
        elif self.resolve is not None and self.resolve[1] != self.selected:
            # Same item at a new index; its pending resolve still applies.
            self.resolve = (self.resolve[0], self.selected)

    def apply(self, buffer, session=None) -> Optional[str]:
        """
        Replace the typed prefix with the selected item's insert text.

        Deletes exactly len(prefix) characters before the cursor, then inserts;
        the cursor ends up after the inserted text.
        """
        item = self.selected_item()

        if item is None:
            return None

        insert_text = item["insert_text"]

        buffer.delete_before(len(self.prefix))
        buffer.insert(insert_text)

        self.cancel(session)

        if session:
            session.did_change(buffer.text())

        return insert_text

    def popup_rows(self, max_visible: int) -> List[Tuple[str, str, str, bool]]:
        """
        Visible (kind, label, detail, is_selected) rows, scrolled to keep the selection in view.
        """
        start = max(0, self.selected - max_visible + 1)

        rows = []

        for i, item in enumerate(self.items[start : start + max_visible], start):
            rows.append((item["kind"], item["label"], item["detail"] or "", i == self.selected))

        return rows
