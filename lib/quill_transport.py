import json
import logging
from typing import Any, BinaryIO, Dict, Optional

logger = logging.getLogger("quill.Client")


class TransportError(Exception):
    pass


class TransportClosed(TransportError):
    """
    The stream reached EOF or failed; the process on the other end is gone.
    """


def encode(message: Dict[str, Any]) -> bytes:
    """
    The base protocol consists of a header and a content part (comparable to HTTP).
    The header and content part are separated by a '\\r\\n'.

    Content-Length is the length of the content part in bytes, not characters.

    https://microsoft.github.io/language-server-protocol/specifications/lsp/3.17/specification/#baseProtocol
    """
    content = json.dumps(message).encode("utf-8")

    header = f"Content-Length: {len(content)}\r\n\r\n".encode("ascii")

    return header + content


def send(stream: BinaryIO, message: Dict[str, Any]):
    stream.write(encode(message))
    stream.flush()


def _read(stream: BinaryIO, n: int) -> bytes:
    remaining = n

    chunks = []

    while remaining > 0:
        chunk = stream.read(remaining)

        # End of file or stream
        if not chunk:
            break

        chunks.append(chunk)

        remaining -= len(chunk)

    return b"".join(chunks)


def _readline(stream: BinaryIO) -> bytes:
    try:
        line = stream.readline()
    except (OSError, ValueError) as e:
        raise TransportClosed(f"Can't read header: {e}") from e

    if not line:
        raise TransportClosed("EOF while reading header")

    return line


def receive_one(stream: BinaryIO) -> Optional[Dict[str, Any]]:
    """
    Read one framed message from `stream`.

    Returns None if the message is malformed - bad header, bad length, not JSON.
    The frame is consumed, so the caller can keep reading.

    Raises TransportClosed on EOF or I/O error.
    """

    # -- HEADER

    headers = {}

    while True:
        line = _readline(stream).decode("ascii", errors="replace").strip()

        if line == "":
            break

        k, sep, v = line.partition(": ")

        if not sep:
            logger.debug(f"Ignore malformed header line: {line!r}")
            continue

        headers[k] = v

    content_length = headers.get("Content-Length")

    if content_length is None:
        logger.warning(f"Skip message without Content-Length; headers={headers}")
        return None

    try:
        n = int(content_length)
    except ValueError:
        logger.warning(f"Skip message with invalid Content-Length: {content_length!r}")
        return None

    if n < 0:
        logger.warning(f"Skip message with negative Content-Length: {n}")
        return None

    # -- CONTENT

    try:
        content = _read(stream, n)
    except (OSError, ValueError) as e:
        raise TransportClosed(f"Can't read content: {e}") from e

    if len(content) < n:
        raise TransportClosed(f"EOF after {len(content)} of {n} content bytes")

    try:
        message = json.loads(content.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.error(f"Failed to decode message: {content[:200]!r}")
        return None

    if not isinstance(message, dict):
        logger.warning(f"Skip non-object message: {message!r}")
        return None

    return message
