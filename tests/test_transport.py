"""Tests for xkrelay.transport."""

from unittest.mock import patch

import pytest

from conftest import FakePort, make_exception, make_reply
from xkrelay.errors import Desynchronized, TransportIO
from xkrelay.protocol import FunctionCode, encode_frame
from xkrelay.transport import Transport, calculate_delay, character_delays


class TestDelay:
    """Tests for baud-derived read delays."""

    def test_9600_eight_chars(self):
        """delay(8) at 9600 baud is about 16.1 ms."""
        expected = 15_000_000 / 9600 * 8 + 35_000_000 / 9600
        assert abs(calculate_delay(9600, 8) - expected) < 10
        assert 16_000 < calculate_delay(9600, 8) < 16_200

    def test_19200_uses_formula(self):
        """19200 baud is still derived from the baud rate."""
        assert character_delays(19200) == (781, 1822)

    def test_fast_baud_constants(self):
        """Above 19200 baud the fixed constants apply."""
        assert character_delays(38400) == (750, 1750)
        assert calculate_delay(115200, 16) == 750 * 16 + 1750

    def test_zero_baud_constants(self):
        """An unknown baud rate uses the fixed constants."""
        assert character_delays(0) == (750, 1750)
        assert character_delays(-1) == (750, 1750)

    def test_transport_delay_seconds(self):
        """Transport.delay converts microseconds to seconds."""
        transport = Transport(FakePort(), 9600)
        assert transport.delay(16) == pytest.approx(
            calculate_delay(9600, 16) / 1_000_000
        )


class TestTransportSend:
    """Tests for Transport.send."""

    @patch("xkrelay.transport.time.sleep")
    def test_confirmed_reads_full_frame(self, mock_sleep):
        """A confirmed request returns the full 8-byte echo."""
        reply = make_reply(FunctionCode.ON_ONE, [True])
        port = FakePort(reply)
        transport = Transport(port, 9600)
        request = encode_frame(1, FunctionCode.ON_ONE, b"\x00\x00\x00\x01")

        assert transport.send(request) == reply
        assert port.written == [request]
        assert port.read_sizes == [4, 4]
        assert port.connects == 1

    @patch("xkrelay.transport.time.sleep")
    def test_sleeps_before_read(self, mock_sleep):
        """The wait covers request plus expected reply characters."""
        port = FakePort(make_reply(FunctionCode.READ_STATUS, []))
        transport = Transport(port, 9600)
        transport.send(encode_frame(1, FunctionCode.READ_STATUS, b""))
        mock_sleep.assert_called_once_with(transport.delay(16))

    @patch("xkrelay.transport.time.sleep")
    def test_silent_skips_read(self, mock_sleep):
        """Silent codes write and return b'' without reading or sleeping."""
        port = FakePort()
        transport = Transport(port, 9600)
        request = encode_frame(1, FunctionCode.ON_ONE_NIL, b"\x00\x00\x00\x01")

        assert transport.send(request) == b""
        assert port.written == [request]
        assert port.read_sizes == []
        mock_sleep.assert_not_called()

    @patch("xkrelay.transport.time.sleep")
    def test_exception_reads_five_bytes(self, mock_sleep):
        """An exception reply is read as exactly 5 bytes."""
        exc = make_exception(FunctionCode.OFF_ONE)
        # Trailing junk must stay unread.
        port = FakePort(exc + b"\xEE\xEE\xEE")
        transport = Transport(port, 9600)
        request = encode_frame(1, FunctionCode.OFF_ONE, b"\x00\x00\x00\x01")

        assert transport.send(request) == exc
        assert port.read_sizes == [4, 1]

    @patch("xkrelay.transport.time.sleep")
    def test_desynchronized(self, mock_sleep):
        """A reply for another function is an unrecoverable error."""
        port = FakePort(make_reply(FunctionCode.OFF_ONE, []))
        transport = Transport(port, 9600)
        request = encode_frame(1, FunctionCode.ON_ONE, b"\x00\x00\x00\x01")
        with pytest.raises(Desynchronized):
            transport.send(request)

    @patch("xkrelay.transport.time.sleep")
    def test_read_timeout_propagates(self, mock_sleep):
        """A short read surfaces as TransportIO."""
        port = FakePort(b"\x55\x01")
        transport = Transport(port, 9600)
        with pytest.raises(TransportIO):
            transport.send(encode_frame(1, FunctionCode.READ_STATUS, b""))

    @patch("xkrelay.transport.time.sleep")
    def test_partial_tail_propagates(self, mock_sleep):
        """Header arrives but the rest of the echo does not."""
        reply = make_reply(FunctionCode.READ_STATUS, [])
        port = FakePort(reply[:6])
        transport = Transport(port, 9600)
        with pytest.raises(TransportIO):
            transport.send(encode_frame(1, FunctionCode.READ_STATUS, b""))

    def test_write_error_propagates(self):
        """Write failures are not retried."""
        port = FakePort()

        def fail(data):
            raise TransportIO("write failed")

        port.write = fail
        transport = Transport(port, 9600)
        with pytest.raises(TransportIO, match="write failed"):
            transport.send(encode_frame(1, FunctionCode.RUN_CMD_NIL, b""))
