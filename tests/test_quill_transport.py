import io
import json

import pytest

import quill_transport
from quill_transport import TransportClosed, encode, receive_one, send


def frame(body: bytes, header: bytes = None) -> bytes:
    if header is None:
        header = f"Content-Length: {len(body)}\r\n".encode("ascii")

    return header + b"\r\n" + body


class TestEncode:
    def test_content_length_counts_bytes(self):
        message = {"jsonrpc": "2.0", "method": "x", "params": {"text": "héllo ✓"}}

        data = encode(message)

        header, body = data.split(b"\r\n\r\n", 1)

        assert header == f"Content-Length: {len(body)}".encode("ascii")
        assert json.loads(body.decode("utf-8")) == message

    def test_round_trip_unicode_and_nesting(self):
        message = {
            "jsonrpc": "2.0",
            "id": 7,
            "result": {"items": [{"label": "é", "data": {"nested": [1, [2, {"k": None}]]}}]},
        }

        assert receive_one(io.BytesIO(encode(message))) == message

    def test_send_writes_whole_frame(self):
        stream = io.BytesIO()

        send(stream, {"jsonrpc": "2.0", "method": "initialized", "params": {}})

        assert stream.getvalue() == encode({"jsonrpc": "2.0", "method": "initialized", "params": {}})


class TestReceive:
    def test_reads_consecutive_messages(self):
        a = {"jsonrpc": "2.0", "id": 1, "result": None}
        b = {"jsonrpc": "2.0", "method": "window/logMessage", "params": {"message": "hi"}}

        stream = io.BytesIO(encode(a) + encode(b))

        assert receive_one(stream) == a
        assert receive_one(stream) == b

    def test_other_headers_are_accepted(self):
        body = b'{"jsonrpc": "2.0", "id": 1, "result": 1}'

        header = (
            f"Content-Length: {len(body)}\r\n"
            "Content-Type: application/vscode-jsonrpc; charset=utf-8\r\n"
        ).encode("ascii")

        assert receive_one(io.BytesIO(frame(body, header))) == {"jsonrpc": "2.0", "id": 1, "result": 1}

    def test_malformed_header_line_is_ignored(self):
        body = b'{"jsonrpc": "2.0", "id": 2, "result": 2}'

        header = b"garbage\r\n" + f"Content-Length: {len(body)}\r\n".encode("ascii")

        assert receive_one(io.BytesIO(frame(body, header)))["id"] == 2

    def test_missing_content_length_skips_one_message(self):
        good = {"jsonrpc": "2.0", "id": 3, "result": "ok"}

        stream = io.BytesIO(b"Content-Type: x\r\n\r\n" + encode(good))

        assert receive_one(stream) is None
        assert receive_one(stream) == good

    def test_invalid_content_length_skips_one_message(self):
        good = {"jsonrpc": "2.0", "id": 4, "result": "ok"}

        stream = io.BytesIO(b"Content-Length: abc\r\n\r\n" + encode(good))

        assert receive_one(stream) is None
        assert receive_one(stream) == good

    def test_invalid_json_is_consumed(self):
        good = {"jsonrpc": "2.0", "id": 5, "result": "ok"}

        stream = io.BytesIO(frame(b"{x}") + encode(good))

        assert receive_one(stream) is None
        assert receive_one(stream) == good

    def test_non_object_is_skipped(self):
        stream = io.BytesIO(frame(b"[1, 2]"))

        assert receive_one(stream) is None

    def test_eof_raises(self):
        with pytest.raises(TransportClosed):
            receive_one(io.BytesIO(b""))

    def test_truncated_body_raises(self):
        with pytest.raises(TransportClosed):
            receive_one(io.BytesIO(b"Content-Length: 50\r\n\r\n{}"))

    def test_closed_stream_raises(self):
        stream = io.BytesIO(encode({"jsonrpc": "2.0", "id": 1, "result": None}))
        stream.close()

        with pytest.raises(TransportClosed):
            receive_one(stream)

    def test_transport_closed_is_a_transport_error(self):
        assert issubclass(quill_transport.TransportClosed, quill_transport.TransportError)
