"""Frame encoding and decoding for the XK relay board protocol.

Every request and confirmed response is a fixed 8-byte frame:
HEADER, SLAVE, FUNCTION, DATA0..DATA3, SUM.  SUM is the low byte of
the arithmetic sum of the first seven bytes.

A slave that rejects a confirmed request answers with a 5-byte
exception reply whose function byte is ``function | 0x80``.  Codes in
the silent range 0x30-0x38 are never answered at all.

Example:
    >>> from xkrelay.protocol import encode_frame, decode_frame, FunctionCode
    >>> raw = encode_frame(1, FunctionCode.RUN_CMD_NIL, b"\\xff\\xff\\xff\\xff")
    >>> raw.hex(' ')
    '55 01 33 ff ff ff ff 85'
    >>> frame = decode_frame(raw)
    >>> frame.function == FunctionCode.RUN_CMD_NIL
    True
"""

import struct
from dataclasses import dataclass
from enum import IntEnum

from xkrelay.errors import (
    ChannelOutOfRange,
    ChecksumMismatch,
    FrameTooShort,
    PayloadTooLarge,
    ResponseTooShort,
    SlaveIdMismatch,
)

# -- Protocol constants ------------------------------------------------------

PROTO_HEADER = 0x55
PROTO_FRAME_SIZE = 8
PROTO_PAYLOAD_LEN = 4
PROTO_MIN_SIZE = 4
PROTO_MAX_SIZE = 256
PROTO_EXCEPTION_SIZE = 5
PROTO_EXCEPTION_FLAG = 0x80

# Silent function codes occupy this inclusive range.
PROTO_SILENT_FIRST = 0x30
PROTO_SILENT_LAST = 0x38

# Pulse durations are carried in the low three payload bytes.
PROTO_PULSE_MAX_MS = 0xFFFFFF

# Wire representation covers 32 channels.
PROTO_CHANNELS = 32


class FunctionCode(IntEnum):
    """Function codes understood by the relay board."""

    READ_STATUS = 0x10
    OFF_ONE = 0x11
    ON_ONE = 0x12
    OFF_GROUP = 0x14
    ON_GROUP = 0x15
    FLIP_ONE = 0x16
    FLIP_GROUP = 0x17
    ON_POINT = 0x21
    OFF_POINT = 0x22

    OFF_POINT_NIL = 0x30
    OFF_ONE_NIL = 0x31
    ON_ONE_NIL = 0x32
    RUN_CMD_NIL = 0x33
    OFF_GROUP_NIL = 0x34
    ON_GROUP_NIL = 0x35
    FLIP_ONE_NIL = 0x36
    FLIP_GROUP_NIL = 0x37
    ON_POINT_NIL = 0x38


@dataclass(frozen=True)
class ResponsePlan:
    """How many bytes a request's answer occupies.

    ``length`` is 0 for silent codes.  ``exception_length`` is the size
    of the reply when the slave flags the request as failed.
    """

    length: int
    exception_length: int = PROTO_EXCEPTION_SIZE

    @property
    def silent(self) -> bool:
        return self.length == 0


_CONFIRMED = ResponsePlan(PROTO_FRAME_SIZE)
_SILENT = ResponsePlan(0, 0)

RESPONSE_PLANS = {
    code: _SILENT
    if PROTO_SILENT_FIRST <= code <= PROTO_SILENT_LAST
    else _CONFIRMED
    for code in FunctionCode
}


def response_plan(function: int) -> ResponsePlan:
    """Return the ResponsePlan for *function*.

    Unknown codes follow the range rule: silent inside 0x30-0x38,
    a full 8-byte echo everywhere else.

    Example:
        >>> response_plan(FunctionCode.ON_ONE).length
        8
        >>> response_plan(0x35).silent
        True
    """
    try:
        return RESPONSE_PLANS[FunctionCode(function)]
    except ValueError:
        if PROTO_SILENT_FIRST <= function <= PROTO_SILENT_LAST:
            return _SILENT
        return _CONFIRMED


def expected_length(function: int) -> int:
    """Number of response bytes a successful *function* request returns."""
    return response_plan(function).length


def is_silent(function: int) -> bool:
    """Check whether *function* suppresses the response frame."""
    return response_plan(function).silent


def exception_code(function: int) -> int:
    """Function byte a slave uses to reject *function*."""
    return function | PROTO_EXCEPTION_FLAG


@dataclass
class Frame:
    """Decoded protocol frame."""

    slave_id: int
    function: int
    payload: bytes


# -- Checksum ----------------------------------------------------------------


def checksum(data: bytes) -> int:
    """Low byte of the sum of the first seven bytes of *data*.

    Example:
        >>> checksum(bytes([0x55, 0x01, 0x33, 0xFF, 0xFF, 0xFF, 0xFF]))
        133
    """
    return sum(data[:PROTO_FRAME_SIZE - 1]) & 0xFF


# -- Encoding ----------------------------------------------------------------


def encode_frame(slave_id: int, function: int, payload: bytes) -> bytes:
    """Build a complete 8-byte request frame.

    Constructs HEADER + SLAVE + FUNCTION + PAYLOAD + SUM.  Payloads
    shorter than four bytes are zero-padded.

    Raises:
        PayloadTooLarge: If the frame would exceed PROTO_MAX_SIZE, or
            the payload does not fit the fixed 4-byte data field.
    """
    length = len(payload) + PROTO_MIN_SIZE
    if length > PROTO_MAX_SIZE:
        raise PayloadTooLarge(
            "frame length {} must not be bigger than {}".format(
                length, PROTO_MAX_SIZE
            )
        )
    if len(payload) > PROTO_PAYLOAD_LEN:
        raise PayloadTooLarge(
            "payload is {} bytes, data field holds {}".format(
                len(payload), PROTO_PAYLOAD_LEN
            )
        )
    body = bytes([PROTO_HEADER, slave_id & 0xFF, function & 0xFF])
    body += bytes(payload).ljust(PROTO_PAYLOAD_LEN, b"\x00")
    return body + bytes([checksum(body)])


# -- Decoding ----------------------------------------------------------------


def decode_frame(data: bytes) -> Frame:
    """Parse and validate an 8-byte frame.

    Raises:
        FrameTooShort: If fewer than 8 bytes are supplied.
        ChecksumMismatch: If byte 7 is not the sum of bytes 0-6.

    Example:
        >>> frame = decode_frame(bytes.fromhex('55 01 10 00 00 00 05 6b'))
        >>> frame.function, frame.payload
        (16, b'\\x00\\x00\\x00\\x05')
    """
    if len(data) < PROTO_FRAME_SIZE:
        raise FrameTooShort(
            "frame too short: {} bytes, need {}".format(
                len(data), PROTO_FRAME_SIZE
            )
        )

    expected = checksum(data)
    if data[PROTO_FRAME_SIZE - 1] != expected:
        raise ChecksumMismatch(
            "checksum mismatch: received 0x{:02X}, computed 0x{:02X}".format(
                data[PROTO_FRAME_SIZE - 1], expected
            )
        )

    return Frame(
        slave_id=data[1],
        function=data[2],
        payload=bytes(data[3:PROTO_FRAME_SIZE - 1]),
    )


def verify_slave(request: bytes, response: bytes) -> None:
    """Check that *response* plausibly answers *request*.

    Raises:
        ResponseTooShort: If *response* is under PROTO_MIN_SIZE bytes.
        SlaveIdMismatch: If the leading bytes of the two frames differ.
    """
    if len(response) < PROTO_MIN_SIZE:
        raise ResponseTooShort(
            "response length {} does not meet minimum {}".format(
                len(response), PROTO_MIN_SIZE
            )
        )
    if response[0] != request[0]:
        raise SlaveIdMismatch(
            "response slave id 0x{:02X} does not match request 0x{:02X}".format(
                response[0], request[0]
            )
        )


# -- Channel bitfields -------------------------------------------------------


def pack_channels(states) -> bytes:
    """Pack up to 32 channel states into the 4-byte big-endian bitfield.

    ``states[0]`` (channel 1) lands in bit 0 of the last byte.

    Example:
        >>> pack_channels([1, 0, 1, 0, 1, 0, 1, 0]).hex()
        '00000055'
    """
    if len(states) > PROTO_CHANNELS:
        raise PayloadTooLarge(
            "{} channels do not fit in {} bits".format(
                len(states), PROTO_CHANNELS
            )
        )
    word = 0
    for index, state in enumerate(states):
        if state:
            word |= 1 << index
    return struct.pack(">I", word)


def unpack_channels(data: bytes, count: int = PROTO_CHANNELS) -> list[bool]:
    """Unpack a 4-byte bitfield into *count* channel states, channel 1 first.

    Example:
        >>> unpack_channels(bytes([0, 0, 0, 0x05]), 4)
        [True, False, True, False]
    """
    word = struct.unpack(">I", bytes(data))[0]
    return [bool((word >> index) & 1) for index in range(count)]


def group_mask(indices) -> bytes:
    """Build a group-command bitmask from 0-based channel *indices*.

    Example:
        >>> group_mask({0, 2, 4, 6}).hex()
        '00000055'
    """
    word = 0
    for index in indices:
        if not (0 <= index < PROTO_CHANNELS):
            raise ChannelOutOfRange(index, PROTO_CHANNELS - 1, low=0)
        word |= 1 << index
    return struct.pack(">I", word)


def pulse_payload(channel: int, duration_ms: int) -> bytes:
    """Payload for a pulse command: 24-bit big-endian duration, then channel.

    Raises:
        ChannelOutOfRange: If *channel* is not in 1..PROTO_CHANNELS.
        PayloadTooLarge: If *duration_ms* does not fit in 24 bits.
    """
    if not (1 <= channel <= PROTO_CHANNELS):
        raise ChannelOutOfRange(channel, PROTO_CHANNELS)
    if not (0 <= duration_ms <= PROTO_PULSE_MAX_MS):
        raise PayloadTooLarge(
            "pulse duration {} ms out of range 0-{}".format(
                duration_ms, PROTO_PULSE_MAX_MS
            )
        )
    return struct.pack(">I", duration_ms)[1:] + bytes([channel])


def one_payload(channel: int) -> bytes:
    """Payload addressing a single 1-based *channel*."""
    return bytes([0, 0, 0, channel])
