"""Server-side WebSocket message handling: fragments, control frames, timeouts."""

from __future__ import annotations

import struct
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any

from wskit.compression import CompressOptions, InflationStream

ERR_TOO_BIG_MESSAGE = "Received too big message"
ERR_WEBSOCKET_TIMEOUT = "WebSocket timed out from inactivity"
ERR_INVALID_TEXT = "Received invalid UTF-8"
ERR_TOO_BIG_MESSAGE_INFLATION = "Received too big message, or other inflation error"
ERR_INVALID_CLOSE_PAYLOAD = "Received invalid close payload"

NO_STATUS_CODE = 1005
ABNORMAL_CLOSURE = 1006
_MAX_CLOSE_REASON = 123
_AUTOMATIC_PING = b"\x89\x00"


class OpCode(IntEnum):
    """WebSocket frame opcodes."""

    CONTINUATION = 0
    TEXT = 1
    BINARY = 2
    CLOSE = 8
    PING = 9
    PONG = 10


class CompressionStatus(Enum):
    """Per-connection compression state."""

    DISABLED = 0
    ENABLED = 1
    COMPRESSED_FRAME = 2


@dataclass(frozen=True)
class CloseFrame:
    """A parsed close payload."""

    code: int
    message: bytes = b""


def _is_valid_utf8(data: bytes) -> bool:
    try:
        data.decode("utf-8")
    except UnicodeDecodeError:
        return False
    return True


def _is_valid_close_code(code: int) -> bool:
    if code < 1000 or code > 4999:
        return False
    if 1011 < code < 4000:
        return False
    return not 1004 <= code <= 1006


def parse_close_payload(data: bytes) -> CloseFrame:
    """Parse a close frame payload.

    A payload shorter than two bytes carries no status (1005). A bad status
    code or a reason that is not UTF-8 yields an abnormal closure (1006).
    """
    raw = bytes(data)
    if len(raw) < 2:
        return CloseFrame(NO_STATUS_CODE, b"")
    (code,) = struct.unpack("!H", raw[:2])
    message = raw[2:]
    if not _is_valid_close_code(code) or not _is_valid_utf8(message):
        return CloseFrame(ABNORMAL_CLOSURE, ERR_INVALID_CLOSE_PAYLOAD.encode())
    return CloseFrame(code, message)


def _frame(op_code: int, payload: bytes) -> bytes:
    length = len(payload)
    first = bytes([0x80 | int(op_code)])
    if length < 126:
        header = first + bytes([length])
    elif length < 1 << 16:
        header = first + bytes([126]) + struct.pack("!H", length)
    else:
        header = first + bytes([127]) + struct.pack("!Q", length)
    return header + payload


MessageHandler = Callable[["WebSocketConnection", bytes, OpCode], None]
ControlHandler = Callable[["WebSocketConnection", bytes], None]
CloseHandler = Callable[["WebSocketConnection", int, bytes], None]
DrainHandler = Callable[["WebSocketConnection"], None]


@dataclass
class WebSocketBehavior:
    """Settings and event handlers shared by every connection of a context."""

    compression: int = CompressOptions.DISABLED
    max_payload_length: int = 16 * 1024
    idle_timeout: int = 120
    send_pings_automatically: bool = True
    message: MessageHandler | None = None
    ping: ControlHandler | None = None
    pong: ControlHandler | None = None
    drain: DrainHandler | None = None
    close: CloseHandler | None = None


class WebSocketConnection:
    """One WebSocket connection and its transport-level state.

    ``transport`` is called with outgoing bytes and returns how many of them
    it accepted; the rest is kept as backpressure. Without a transport all
    data is accepted and collected in ``written``.
    """

    def __init__(
        self,
        context: WebSocketContext,
        transport: Callable[[bytes], int] | None = None,
        compression: bool = False,
    ) -> None:
        self.context = context
        self._transport = transport
        self.written = bytearray()
        self.backpressure = bytearray()
        self.compression_status = (
            CompressionStatus.ENABLED if compression else CompressionStatus.DISABLED
        )
        self.inflation_stream = context._dedicated_inflation() if compression else None
        self.fragment_buffer = bytearray()
        self.control_tip_length = 0
        self.is_shutting_down = False
        self.has_timed_out = False
        self.closed = False
        self.shut_down = False
        self.idle_timeout = context.idle_timeout_components[0]
        self.topics: set[str] = set()
        self.user_data: Any = None

    @property
    def buffered_amount(self) -> int:
        """Bytes waiting to be written."""
        return len(self.backpressure)

    def write(self, data: bytes = b"") -> int:
        """Write data after any backpressure; return the bytes accepted."""
        if self.closed or self.shut_down:
            return 0
        pending = bytes(self.backpressure) + bytes(data)
        if not pending:
            return 0
        if self._transport is None:
            self.written.extend(pending)
            accepted = len(pending)
        else:
            accepted = max(0, min(len(pending), self._transport(pending)))
        self.backpressure = bytearray(pending[accepted:])
        return accepted

    def send(self, message: bytes | str, op_code: OpCode = OpCode.BINARY) -> None:
        """Send one unfragmented frame."""
        payload = message.encode("utf-8") if isinstance(message, str) else bytes(message)
        self.write(_frame(op_code, payload))

    def timeout(self, seconds: int) -> None:
        """Arm the idle timer."""
        self.idle_timeout = seconds

    def shutdown(self) -> None:
        """Half-close the transport for writing."""
        if not self.closed:
            self.shut_down = True

    def close(self, reason: bytes = b"") -> None:
        """Close the transport at once, emitting close if not yet emitted."""
        if self.closed:
            return
        self.closed = True
        self.context.on_close(self, 0, bytes(reason))

    def end(self, code: int = 0, message: bytes | str = b"") -> None:
        """Start a graceful WebSocket close and emit the close event once."""
        if self.is_shutting_down or self.closed:
            return
        reason = message.encode("utf-8") if isinstance(message, str) else bytes(message)
        self.is_shutting_down = True
        self.topics.clear()
        if code in (0, NO_STATUS_CODE):
            payload = b""
        else:
            payload = struct.pack("!H", code) + reason[:_MAX_CLOSE_REASON]
        self.write(_frame(OpCode.CLOSE, payload))
        handler = self.context.behavior.close
        if handler is not None:
            handler(self, code, reason)
        if self.buffered_amount == 0:
            self.shutdown()
        self.timeout(self.context.idle_timeout_components[1])


class WebSocketContext:
    """Applies a behavior to the events of its connections."""

    def __init__(self, behavior: WebSocketBehavior | None = None) -> None:
        self.behavior = behavior if behavior is not None else WebSocketBehavior()
        if self.behavior.max_payload_length < 0:
            raise ValueError("max payload length must not be negative")
        if self.behavior.idle_timeout < 0:
            raise ValueError("idle timeout must not be negative")
        self.idle_timeout_components = self._idle_timeout_components()
        self._shared_inflation_stream: InflationStream | None = None

    def _idle_timeout_components(self) -> tuple[int, int]:
        idle = self.behavior.idle_timeout
        margin = 4
        while idle - margin * 2 >= margin * 2 and margin < 16:
            margin <<= 1
        first = idle - (margin if self.behavior.send_pings_automatically else 0)
        return max(0, first), margin

    def _dedicated_inflation(self) -> InflationStream | None:
        bits = int(self.behavior.compression) & 0x0F00
        if bits in (0, CompressOptions.SHARED_DECOMPRESSOR):
            return None
        return InflationStream(bits)

    def _shared_inflation(self) -> InflationStream:
        if self._shared_inflation_stream is None:
            self._shared_inflation_stream = InflationStream(
                CompressOptions.DEDICATED_DECOMPRESSOR
            )
        return self._shared_inflation_stream

    def _inflate(self, connection: WebSocketConnection, data: bytes) -> bytes | None:
        limit = self.behavior.max_payload_length
        if connection.inflation_stream is not None:
            return connection.inflation_stream.inflate(data, limit, False)
        return self._shared_inflation().inflate(data, limit, True)

    @staticmethod
    def _force_close(connection: WebSocketConnection, reason: str) -> None:
        connection.close(reason.encode())

    @staticmethod
    def _gone(connection: WebSocketConnection) -> bool:
        return connection.closed or connection.is_shutting_down

    def set_compressed(self, connection: WebSocketConnection) -> bool:
        """Mark the incoming frame compressed if compression was negotiated."""
        if connection.compression_status is CompressionStatus.ENABLED:
            connection.compression_status = CompressionStatus.COMPRESSED_FRAME
            return True
        return False

    def refuse_payload_length(self, length: int) -> bool:
        """Return True if a payload of this length is too big."""
        return self.behavior.max_payload_length < length

    def handle_fragment(
        self,
        connection: WebSocketConnection,
        data: bytes,
        remaining_bytes: int,
        op_code: int,
        fin: bool,
    ) -> bool:
        """Process one piece of a frame; return True if parsing must stop."""
        data = bytes(data)
        if op_code < 3:
            return self._handle_data(connection, data, remaining_bytes, op_code, fin)
        return self._handle_control_fragment(connection, data, remaining_bytes, op_code, fin)

    def _decompress_if_needed(
        self, connection: WebSocketConnection, data: bytes
    ) -> bytes | None:
        if connection.compression_status is not CompressionStatus.COMPRESSED_FRAME:
            return data
        connection.compression_status = CompressionStatus.ENABLED
        return self._inflate(connection, data)

    def _handle_data(
        self,
        connection: WebSocketConnection,
        data: bytes,
        remaining_bytes: int,
        op_code: int,
        fin: bool,
    ) -> bool:
        complete = not remaining_bytes and fin
        if complete and not connection.fragment_buffer:
            message = self._decompress_if_needed(connection, data)
            if message is None:
                self._force_close(connection, ERR_TOO_BIG_MESSAGE_INFLATION)
                return True
            return self._emit_message(connection, message, op_code)

        if self.refuse_payload_length(len(data) + len(connection.fragment_buffer)):
            self._force_close(connection, ERR_TOO_BIG_MESSAGE)
            return True
        connection.fragment_buffer.extend(data)

        if complete:
            message = self._decompress_if_needed(connection, bytes(connection.fragment_buffer))
            if message is None:
                self._force_close(connection, ERR_TOO_BIG_MESSAGE_INFLATION)
                return True
            if self._emit_message(connection, message, op_code):
                return True
            connection.fragment_buffer.clear()
        return False

    def _emit_message(
        self, connection: WebSocketConnection, message: bytes, op_code: int
    ) -> bool:
        if op_code == OpCode.TEXT and not _is_valid_utf8(message):
            self._force_close(connection, ERR_INVALID_TEXT)
            return True
        handler = self.behavior.message
        if handler is not None:
            handler(connection, message, OpCode(op_code))
            if self._gone(connection):
                return True
        return False

    def _handle_control_fragment(
        self,
        connection: WebSocketConnection,
        data: bytes,
        remaining_bytes: int,
        op_code: int,
        fin: bool,
    ) -> bool:
        complete = not remaining_bytes and fin
        if complete and not connection.control_tip_length:
            return self._handle_control(connection, data, op_code)

        connection.fragment_buffer.extend(data)
        connection.control_tip_length += len(data)
        if complete:
            start = len(connection.fragment_buffer) - connection.control_tip_length
            payload = bytes(connection.fragment_buffer[start:])
            if self._handle_control(connection, payload, op_code):
                return True
            del connection.fragment_buffer[start:]
            connection.control_tip_length = 0
        return False

    def _handle_control(
        self, connection: WebSocketConnection, payload: bytes, op_code: int
    ) -> bool:
        if op_code == OpCode.CLOSE:
            frame = parse_close_payload(payload)
            connection.end(frame.code, frame.message)
            return True
        if op_code == OpCode.PING:
            connection.send(payload, OpCode.PONG)
            handler = self.behavior.ping
        elif op_code == OpCode.PONG:
            handler = self.behavior.pong
        else:
            return False
        if handler is not None:
            handler(connection, payload)
            if self._gone(connection):
                return True
        return False

    def on_close(self, connection: WebSocketConnection, code: int, reason: bytes) -> None:
        """Transport closed; emit close (always 1006) unless already emitted.

        ``code`` is the transport's close code and is not passed on.
        """
        if connection.is_shutting_down:
            return
        connection.topics.clear()
        handler = self.behavior.close
        if handler is not None:
            handler(connection, ABNORMAL_CLOSURE, bytes(reason))

    def on_writable(self, connection: WebSocketConnection) -> None:
        """Drain backpressure, finishing a pending shutdown or emitting drain."""
        if connection.shut_down:
            return
        backpressure = connection.buffered_amount
        connection.write(b"")
        drained = not backpressure or backpressure > connection.buffered_amount
        if drained:
            connection.timeout(self.idle_timeout_components[0])
            connection.has_timed_out = False
        if connection.is_shutting_down:
            if connection.buffered_amount == 0:
                connection.shutdown()
        elif drained and self.behavior.drain is not None:
            self.behavior.drain(connection)

    def on_end(self, connection: WebSocketConnection) -> None:
        """The peer half-closed; close the connection."""
        connection.close()

    def on_timeout(self, connection: WebSocketConnection) -> None:
        """Send one automatic ping, then close if the timer expires again."""
        if (
            self.behavior.send_pings_automatically
            and not connection.is_shutting_down
            and not connection.has_timed_out
        ):
            connection.has_timed_out = True
            connection.timeout(self.idle_timeout_components[1])
            connection.write(_AUTOMATIC_PING)
            return
        self._force_close(connection, ERR_WEBSOCKET_TIMEOUT)

    def on_long_timeout(self, connection: WebSocketConnection) -> None:
        """Ask a long-lived client to reconnect."""
        connection.end(1000, "please reconnect")