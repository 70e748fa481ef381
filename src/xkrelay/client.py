"""Relay board client: channel, group and pulse commands.

Composes the frame codec, the timed transport and the channel state
cache.  Single-channel and pulse commands take 1-based channel
numbers.  Group commands take 0-based channel indices, matching the
bit positions of the group mask.

Each command exists in two forms.  The confirmed form waits for the
board's echo and raises on any mismatch.  The ``*_nil`` form uses the
silent function code, returns as soon as the frame is written, and
records the predicted result in the cache instead.

Example:
    >>> from xkrelay.client import RelayClient, ClientConfig
    >>> client = RelayClient(port, 9600, ClientConfig(branch_count=8))
    >>> client.on_one(1)
    >>> client.status()[:2]
    [True, False]
    >>> client.on_point_nil(3, 1000)
    >>> client.states()[2]
    True
"""

import logging
import threading
from dataclasses import dataclass

from xkrelay.cache import ChannelStateCache
from xkrelay.config import (
    DEFAULT_BAUDRATE,
    DEFAULT_BRANCHES,
    DEFAULT_SLAVE_ID,
    MAX_BRANCHES,
    PULSE_GUARD_MS,
)
from xkrelay.errors import (
    ChannelOutOfRange,
    MalformedResponse,
    SlaveException,
    UnexpectedConfirmation,
)
from xkrelay.protocol import (
    PROTO_PAYLOAD_LEN,
    Frame,
    FunctionCode,
    decode_frame,
    encode_frame,
    exception_code,
    group_mask,
    one_payload,
    pulse_payload,
    unpack_channels,
    verify_slave,
)
from xkrelay.serial_port import SerialPort, SerialSettings
from xkrelay.transport import Transport

log = logging.getLogger(__name__)

_ALL_OFF = bytes([0x00] * PROTO_PAYLOAD_LEN)
_ALL_ON = bytes([0xFF] * PROTO_PAYLOAD_LEN)


@dataclass(frozen=True)
class ClientConfig:
    """Immutable client settings.

    ``branch_count`` is clamped to DEFAULT_BRANCHES..MAX_BRANCHES.
    """

    branch_count: int = DEFAULT_BRANCHES
    slave_id: int = DEFAULT_SLAVE_ID

    def __post_init__(self):
        clamped = min(max(self.branch_count, DEFAULT_BRANCHES), MAX_BRANCHES)
        object.__setattr__(self, "branch_count", clamped)

    @classmethod
    def from_config(cls, cfg: dict) -> "ClientConfig":
        """Build a ClientConfig from a dict returned by ``load_config``."""
        return cls(
            branch_count=cfg.get("branches", DEFAULT_BRANCHES),
            slave_id=cfg.get("slave_id", DEFAULT_SLAVE_ID),
        )


class RelayClient:
    """Issues commands to one relay board over a shared serial link.

    Safe to share between threads: each request/response exchange runs
    under one lock, so frames on the link never interleave.  The state
    cache has its own lock so pulse timers never wait on serial I/O.

    Args:
        port: Serial collaborator with ``connect()``, ``write(data)``
            and ``read_at_least(n)``.
        baudrate: Line speed, used to size the read delay.
        config: ClientConfig; defaults to 8 branches, slave 1.
    """

    def __init__(self, port, baudrate: int = DEFAULT_BAUDRATE,
                 config: ClientConfig | None = None):
        self.config = config or ClientConfig()
        self._port = port
        self._transport = Transport(port, baudrate)
        self._lock = threading.Lock()
        self.cache = ChannelStateCache(self.config.branch_count)

    @classmethod
    def from_config(cls, cfg: dict) -> "RelayClient":
        """Build a client and its SerialPort from a ``load_config`` dict."""
        settings = SerialSettings.from_config(cfg)
        return cls(SerialPort(settings), settings.baudrate,
                   ClientConfig.from_config(cfg))

    @property
    def branch_count(self) -> int:
        return self.config.branch_count

    def close(self) -> None:
        """Cancel pending pulse timers and close the port."""
        self.cache.cancel_pending()
        close = getattr(self._port, "close", None)
        if close is not None:
            close()

    def states(self) -> list[bool]:
        """Cached channel states, channel 1 first."""
        return self.cache.get_all()

    # -- Exchange ------------------------------------------------------------

    # Cache updates run inside the transport lock so predictions land in
    # the same order as the frames on the wire.  Lock order is always
    # transport, then cache.

    def _exchange(self, function: int, payload: bytes) -> tuple[bytes, bytes]:
        request = encode_frame(self.config.slave_id, function, payload)
        return request, self._transport.send(request)

    def _request(self, function: int, payload: bytes,
                 update=None) -> Frame:
        with self._lock:
            request, response = self._exchange(function, payload)
            verify_slave(request, response)
            if response[2] == exception_code(function):
                log.warning("slave %d rejected function 0x%02X",
                            self.config.slave_id, function)
                raise SlaveException(function, response)
            frame = decode_frame(response)
            # Unreachable with 8-byte frames; guards future payload growth.
            if len(frame.payload) != PROTO_PAYLOAD_LEN:
                raise MalformedResponse(
                    "payload is {} bytes, expected {}".format(
                        len(frame.payload), PROTO_PAYLOAD_LEN
                    )
                )
            if update is not None:
                update(frame)
        return frame

    def _send_nil(self, function: int, payload: bytes, update) -> None:
        with self._lock:
            self._exchange(function, payload)
            update()

    # -- Validation ----------------------------------------------------------

    def _check_channel(self, channel: int) -> None:
        if not (1 <= channel <= self.branch_count):
            raise ChannelOutOfRange(channel, self.branch_count)

    def _check_group(self, indices) -> list[int]:
        indices = sorted(set(indices))
        for index in indices:
            if not (0 <= index < self.branch_count):
                raise ChannelOutOfRange(index, self.branch_count - 1, low=0)
        return indices

    # -- Status --------------------------------------------------------------

    def status(self) -> list[bool]:
        """Read every channel state from the board.

        Raises:
            MalformedResponse: If the status payload is not 4 bytes.
        """
        frame = self._request(FunctionCode.READ_STATUS, _ALL_OFF)
        return unpack_channels(frame.payload, self.branch_count)

    def status_one(self, channel: int) -> bool:
        """Read the state of 1-based *channel* from the board."""
        self._check_channel(channel)
        return self.status()[channel - 1]

    # -- Single channel ------------------------------------------------------

    def _one(self, function: int, channel: int, expected: bool | None) -> None:
        self._check_channel(channel)

        def confirm(frame):
            actual = unpack_channels(frame.payload)[channel - 1]
            if expected is not None and actual != expected:
                raise UnexpectedConfirmation(
                    "channel {} reads {} after function 0x{:02X}".format(
                        channel, int(actual), function
                    )
                )
            self.cache.set(channel, actual)

        self._request(function, one_payload(channel), confirm)

    def on_one(self, channel: int) -> None:
        """Switch 1-based *channel* on and confirm it reads back on."""
        self._one(FunctionCode.ON_ONE, channel, True)

    def off_one(self, channel: int) -> None:
        """Switch 1-based *channel* off and confirm it reads back off."""
        self._one(FunctionCode.OFF_ONE, channel, False)

    def flip_one(self, channel: int) -> None:
        """Invert 1-based *channel*.

        Any read-back value is accepted: without knowing the prior state
        the echo only proves the board answered.
        """
        self._one(FunctionCode.FLIP_ONE, channel, None)

    def _one_nil(self, function: int, channel: int, update) -> None:
        self._check_channel(channel)
        self._send_nil(function, one_payload(channel), update)

    def on_one_nil(self, channel: int) -> None:
        self._one_nil(FunctionCode.ON_ONE_NIL, channel,
                      lambda: self.cache.set(channel, True))

    def off_one_nil(self, channel: int) -> None:
        self._one_nil(FunctionCode.OFF_ONE_NIL, channel,
                      lambda: self.cache.set(channel, False))

    def flip_one_nil(self, channel: int) -> None:
        self._one_nil(FunctionCode.FLIP_ONE_NIL, channel,
                      lambda: self.cache.flip([channel]))

    # -- Groups --------------------------------------------------------------

    def _group(self, function: int, indices, apply) -> None:
        indices = self._check_group(indices)
        channels = [index + 1 for index in indices]
        self._request(function, group_mask(indices),
                      lambda frame: apply(channels))

    def on_group(self, *indices: int) -> None:
        """Switch on every 0-based channel index given; others untouched."""
        self._group(FunctionCode.ON_GROUP, indices,
                    lambda channels: self.cache.set_many(channels, True))

    def off_group(self, *indices: int) -> None:
        """Switch off every 0-based channel index given; others untouched."""
        self._group(FunctionCode.OFF_GROUP, indices,
                    lambda channels: self.cache.set_many(channels, False))

    def flip_group(self, *indices: int) -> None:
        """Invert every 0-based channel index given; others untouched."""
        self._group(FunctionCode.FLIP_GROUP, indices, self.cache.flip)

    def _group_nil(self, function: int, indices, apply) -> None:
        indices = self._check_group(indices)
        channels = [index + 1 for index in indices]
        self._send_nil(function, group_mask(indices),
                       lambda: apply(channels))

    def on_group_nil(self, *indices: int) -> None:
        self._group_nil(FunctionCode.ON_GROUP_NIL, indices,
                        lambda channels: self.cache.set_many(channels, True))

    def off_group_nil(self, *indices: int) -> None:
        self._group_nil(FunctionCode.OFF_GROUP_NIL, indices,
                        lambda channels: self.cache.set_many(channels, False))

    def flip_group_nil(self, *indices: int) -> None:
        self._group_nil(FunctionCode.FLIP_GROUP_NIL, indices, self.cache.flip)

    # -- Pulses --------------------------------------------------------------

    def _point(self, function: int, channel: int, duration_ms: int) -> None:
        self._check_channel(channel)
        self._request(function, pulse_payload(channel, duration_ms))

    def on_point(self, channel: int, duration_ms: int) -> None:
        """Switch *channel* on for *duration_ms*; the board reverts it."""
        self._point(FunctionCode.ON_POINT, channel, duration_ms)

    def off_point(self, channel: int, duration_ms: int) -> None:
        """Switch *channel* off for *duration_ms*; the board reverts it."""
        self._point(FunctionCode.OFF_POINT, channel, duration_ms)

    def _point_nil(self, function: int, channel: int, duration_ms: int,
                   value: bool) -> None:
        self._check_channel(channel)
        payload = pulse_payload(channel, duration_ms)
        delay_ms = max(duration_ms - PULSE_GUARD_MS, 0)

        def predict():
            self.cache.set(channel, value)
            self.cache.schedule_pulse(channel, not value, delay_ms / 1000)

        self._send_nil(function, payload, predict)

    def on_point_nil(self, channel: int, duration_ms: int) -> None:
        """Pulse *channel* on without waiting; cache reverts after the pulse."""
        self._point_nil(FunctionCode.ON_POINT_NIL, channel, duration_ms, True)

    def off_point_nil(self, channel: int, duration_ms: int) -> None:
        """Pulse *channel* off without waiting; cache reverts after the pulse."""
        self._point_nil(FunctionCode.OFF_POINT_NIL, channel, duration_ms,
                        False)

    # -- Everything ----------------------------------------------------------

    def on_all(self) -> None:
        """Switch every channel on (silent)."""
        self._send_nil(FunctionCode.RUN_CMD_NIL, _ALL_ON,
                       lambda: self.cache.fill(True))

    def off_all(self) -> None:
        """Switch every channel off (silent)."""
        self._send_nil(FunctionCode.RUN_CMD_NIL, _ALL_OFF,
                       lambda: self.cache.fill(False))
