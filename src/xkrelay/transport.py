"""Timed request/response exchange over a serial link.

Writes a request frame, waits long enough for the slave to finish
transmitting its answer, then reads the answer in two stages: the
protocol minimum first, then either the rest of the echo frame or the
short exception reply, depending on the function byte received.

Example:
    >>> from xkrelay.transport import Transport
    >>> transport = Transport(port, 9600)
    >>> reply = transport.send(request)
"""

import logging
import time

from xkrelay.errors import Desynchronized
from xkrelay.protocol import (
    PROTO_EXCEPTION_SIZE,
    PROTO_MIN_SIZE,
    exception_code,
    expected_length,
)

log = logging.getLogger(__name__)

# Fixed inter-character and inter-frame delays (microseconds) used when
# the baud rate is unknown or faster than 19200.
_FAST_CHAR_DELAY_US = 750
_FAST_FRAME_DELAY_US = 1750
_FAST_BAUD_LIMIT = 19200


def character_delays(baudrate: int) -> tuple[int, int]:
    """Return ``(character_delay_us, frame_delay_us)`` for *baudrate*.

    Derived from 1.5 and 3.5 character times on a serial line.

    Example:
        >>> character_delays(9600)
        (1562, 3645)
        >>> character_delays(115200)
        (750, 1750)
    """
    if baudrate <= 0 or baudrate > _FAST_BAUD_LIMIT:
        return _FAST_CHAR_DELAY_US, _FAST_FRAME_DELAY_US
    return 15_000_000 // baudrate, 35_000_000 // baudrate


def calculate_delay(baudrate: int, chars: int) -> int:
    """Microseconds to wait for *chars* characters plus one frame gap.

    Example:
        >>> calculate_delay(9600, 8)
        16141
    """
    char_delay, frame_delay = character_delays(baudrate)
    return char_delay * chars + frame_delay


class Transport:
    """Frame exchange over a ``SerialPort``-like object.

    The port must provide ``connect()``, ``write(data)`` and
    ``read_at_least(n)``.  Errors from the port propagate unchanged;
    nothing is retried here.

    Args:
        port: Serial collaborator.
        baudrate: Line speed, used only to size the read delay.
    """

    def __init__(self, port, baudrate: int):
        self._port = port
        self.baudrate = baudrate

    def delay(self, chars: int) -> float:
        """Seconds to sleep before reading a reply of *chars* total characters."""
        return calculate_delay(self.baudrate, chars) / 1_000_000

    def send(self, request: bytes) -> bytes:
        """Write *request* and return the raw reply.

        Silent function codes return ``b""`` without reading.  A
        confirmed code returns either the full echo frame or, when the
        slave flags an exception, the short exception reply.

        Raises:
            Desynchronized: If the reply's function byte matches neither
                the request nor its exception code.
            TransportIO: On any write or read failure.
        """
        self._port.connect()

        log.debug("sending %s", request.hex(" "))
        self._port.write(request)

        function = request[2]
        to_read = expected_length(function)
        if to_read == 0:
            return b""

        time.sleep(self.delay(len(request) + to_read))

        data = bytes(self._port.read_at_least(PROTO_MIN_SIZE))
        if data[2] == function:
            if len(data) < to_read:
                data += self._port.read_at_least(to_read - len(data))
        elif data[2] == exception_code(function):
            if len(data) < PROTO_EXCEPTION_SIZE:
                data += self._port.read_at_least(
                    PROTO_EXCEPTION_SIZE - len(data)
                )
        else:
            raise Desynchronized(
                "reply function 0x{:02X} does not answer request 0x{:02X}: "
                "{}".format(data[2], function, data.hex(" "))
            )

        log.debug("received %s", data.hex(" "))
        return data
