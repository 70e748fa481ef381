"""Serial port collaborator for the relay transport.

Wraps pyserial with connect-on-demand and an idle timer that closes
the port after a quiet period.  The next transaction reopens it.

Example:
    >>> from xkrelay.serial_port import SerialPort, SerialSettings
    >>> port = SerialPort(SerialSettings("/dev/ttyUSB0", 9600))
    >>> port.connect()
    >>> port.write(frame)
    >>> reply = port.read_at_least(4)
"""

import logging
import threading
import time
from dataclasses import dataclass

import serial

from xkrelay.config import (
    DEFAULT_BYTESIZE,
    DEFAULT_PARITY,
    DEFAULT_STOPBITS,
    SERIAL_IDLE_TIMEOUT_S,
    SERIAL_TIMEOUT_S,
)
from xkrelay.errors import NotConnected, TransportIO

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SerialSettings:
    """Line settings for a relay board's serial port.

    A positive ``idle_timeout`` is raised to at least ``timeout`` so the
    idle timer cannot expire while a read is still allowed to wait.
    """

    port: str
    baudrate: int
    bytesize: int = DEFAULT_BYTESIZE
    parity: str = DEFAULT_PARITY
    stopbits: int = DEFAULT_STOPBITS
    timeout: float = SERIAL_TIMEOUT_S
    idle_timeout: float = SERIAL_IDLE_TIMEOUT_S

    def __post_init__(self):
        if 0 < self.idle_timeout < self.timeout:
            object.__setattr__(self, "idle_timeout", self.timeout)

    @classmethod
    def from_config(cls, cfg: dict) -> "SerialSettings":
        """Build settings from a dict returned by ``load_config``."""
        return cls(
            port=cfg["port"],
            baudrate=cfg["baudrate"],
            bytesize=cfg.get("bytesize", DEFAULT_BYTESIZE),
            parity=cfg.get("parity", DEFAULT_PARITY),
            stopbits=cfg.get("stopbits", DEFAULT_STOPBITS),
            timeout=cfg.get("timeout", SERIAL_TIMEOUT_S),
            idle_timeout=cfg.get("idle_timeout", SERIAL_IDLE_TIMEOUT_S),
        )


class SerialPort:
    """Half-duplex serial link to a relay board.

    Duck-typed -- tests and the transport only rely on ``connect()``,
    ``write(data)``, ``read_at_least(n)`` and ``close()``.

    Args:
        settings: SerialSettings for the port.
    """

    def __init__(self, settings: SerialSettings):
        self.settings = settings
        self._ser = None
        self._lock = threading.Lock()
        self._last_activity = 0.0
        self._close_timer = None

    @property
    def baudrate(self) -> int:
        return self.settings.baudrate

    @property
    def is_open(self) -> bool:
        return self._ser is not None

    def connect(self) -> None:
        """Open the port if needed and mark it active.

        Raises:
            NotConnected: If pyserial cannot open the device.
        """
        with self._lock:
            if self._ser is None:
                self._open()
            self._last_activity = time.monotonic()
            self._start_close_timer()

    def _open(self) -> None:
        s = self.settings
        try:
            self._ser = serial.Serial(
                port=s.port,
                baudrate=s.baudrate,
                bytesize=s.bytesize,
                parity=s.parity,
                stopbits=s.stopbits,
                timeout=s.timeout,
            )
        except serial.SerialException as exc:
            raise NotConnected(
                "could not open {}: {}".format(s.port, exc)
            ) from exc
        log.info(
            "opened %s: %d baud %d%s%d",
            s.port, s.baudrate, s.bytesize, s.parity, s.stopbits,
        )

    def write(self, data: bytes) -> None:
        """Send raw bytes on the link.

        Discards stale input, writes *data*, then flushes the output
        buffer so the frame is fully transmitted before returning.

        Raises:
            NotConnected: If the port is not open.
            TransportIO: If pyserial reports a write failure.
        """
        with self._lock:
            ser = self._require_open()
            try:
                ser.reset_input_buffer()
                ser.write(data)
                ser.flush()
            except serial.SerialException as exc:
                raise TransportIO("write failed: {}".format(exc)) from exc
            self._last_activity = time.monotonic()

    def read_at_least(self, n: int) -> bytes:
        """Read *n* bytes, waiting up to the configured timeout.

        Raises:
            NotConnected: If the port is not open.
            TransportIO: On a read failure or when fewer than *n*
                bytes arrive before the timeout.
        """
        # Holding the lock keeps the idle timer from closing the port
        # mid-read.
        with self._lock:
            ser = self._require_open()
            try:
                data = ser.read(n)
            except serial.SerialException as exc:
                raise TransportIO("read failed: {}".format(exc)) from exc
            self._last_activity = time.monotonic()
        if len(data) < n:
            raise TransportIO(
                "read timeout: got {} of {} bytes".format(len(data), n)
            )
        return data

    def close(self) -> None:
        """Stop the idle timer and close the port."""
        with self._lock:
            if self._close_timer is not None:
                self._close_timer.cancel()
                self._close_timer = None
            self._close()

    def _require_open(self):
        ser = self._ser
        if ser is None:
            raise NotConnected(
                "port {} is not open".format(self.settings.port)
            )
        return ser

    def _close(self) -> None:
        if self._ser is not None:
            self._ser.close()
            self._ser = None
            log.info("closed %s", self.settings.port)

    def _start_close_timer(self, delay: float | None = None) -> None:
        idle_timeout = self.settings.idle_timeout
        if idle_timeout <= 0 or self._close_timer is not None:
            return
        self._close_timer = threading.Timer(
            idle_timeout if delay is None else delay, self._close_idle
        )
        self._close_timer.daemon = True
        self._close_timer.start()

    def _close_idle(self) -> None:
        with self._lock:
            self._close_timer = None
            if self._ser is None:
                return
            idle = time.monotonic() - self._last_activity
            remaining = self.settings.idle_timeout - idle
            if remaining <= 0:
                log.debug("closing %s after %.1fs idle",
                          self.settings.port, idle)
                self._close()
            else:
                self._start_close_timer(remaining)
