"""Shared pytest fixtures for xkrelay tests."""

from xkrelay.errors import TransportIO
from xkrelay.protocol import (
    PROTO_HEADER,
    checksum,
    encode_frame,
    exception_code,
    pack_channels,
)


def make_reply(function: int, states, slave_id: int = 1) -> bytes:
    """Build a confirmed echo frame carrying *states* as the status word."""
    return encode_frame(slave_id, function, pack_channels(states))


def make_exception(function: int, slave_id: int = 1) -> bytes:
    """Build a 5-byte exception reply for *function*."""
    body = bytes([PROTO_HEADER, slave_id, exception_code(function), 0x01])
    return body + bytes([checksum(body)])


class FakePort:
    """Test double for SerialPort: a byte stream, records written data."""

    def __init__(self, *replies: bytes):
        """Initialize with replies queued back to back on the stream."""
        self._stream = b"".join(replies)
        self.written = []
        self.read_sizes = []
        self.connects = 0
        self.closed = False

    def feed(self, data: bytes) -> None:
        """Append *data* to the stream of bytes the board "sends"."""
        self._stream += data

    def connect(self) -> None:
        """Count connect calls."""
        self.connects += 1

    def write(self, data: bytes) -> None:
        """Record *data* for later inspection."""
        self.written.append(bytes(data))

    def read_at_least(self, n: int) -> bytes:
        """Return the next *n* bytes, or raise TransportIO if short."""
        self.read_sizes.append(n)
        if len(self._stream) < n:
            raise TransportIO(
                "read timeout: got {} of {} bytes".format(len(self._stream), n)
            )
        data, self._stream = self._stream[:n], self._stream[n:]
        return data

    def close(self) -> None:
        """Mark the port closed."""
        self.closed = True
