#!/usr/bin/env python3
"""Virtual relay board simulator for xkrelay.

Listens on a serial port (typically a socat PTY) and answers request
frames the way an XK relay board does: confirmed commands get an echo
carrying the new status word, silent commands get nothing, and bad
channel numbers or unknown functions get a 5-byte exception reply.

Usage:
    python simulator.py <port> <slave_id> [branches]

Example:
    socat -d -d pty,raw,echo=0,link=/tmp/relay-board \\
                pty,raw,echo=0,link=/tmp/relay-host &
    python simulator.py /tmp/relay-board 1 8
"""

import logging
import struct
import sys
import threading

# Add parent src to path so we can import xkrelay
sys.path.insert(0, str(__import__("pathlib").Path(__file__).resolve().parents[1] / "src"))

import serial

from xkrelay.errors import RelayError
from xkrelay.protocol import (
    PROTO_FRAME_SIZE,
    PROTO_HEADER,
    FunctionCode,
    checksum,
    decode_frame,
    encode_frame,
    exception_code,
    is_silent,
)

log = logging.getLogger("simulator")

_ONE = {
    FunctionCode.ON_ONE: "on", FunctionCode.ON_ONE_NIL: "on",
    FunctionCode.OFF_ONE: "off", FunctionCode.OFF_ONE_NIL: "off",
    FunctionCode.FLIP_ONE: "flip", FunctionCode.FLIP_ONE_NIL: "flip",
}
_GROUP = {
    FunctionCode.ON_GROUP: "on", FunctionCode.ON_GROUP_NIL: "on",
    FunctionCode.OFF_GROUP: "off", FunctionCode.OFF_GROUP_NIL: "off",
    FunctionCode.FLIP_GROUP: "flip", FunctionCode.FLIP_GROUP_NIL: "flip",
}
_POINT = {
    FunctionCode.ON_POINT: "on", FunctionCode.ON_POINT_NIL: "on",
    FunctionCode.OFF_POINT: "off", FunctionCode.OFF_POINT_NIL: "off",
}


class RelayBoard:
    """In-memory model of a relay board's 32-bit output word."""

    def __init__(self, slave_id=1, branches=8):
        self.slave_id = slave_id
        self.branches = branches
        self.word = 0
        self._lock = threading.Lock()

    def _apply(self, action, mask):
        if action == "on":
            self.word |= mask
        elif action == "off":
            self.word &= ~mask
        else:
            self.word ^= mask
        self.word &= (1 << self.branches) - 1

    def _revert(self, action, mask):
        with self._lock:
            self._apply("off" if action == "on" else "on", mask)

    def handle(self, raw):
        """Apply one request frame and return the reply bytes.

        Returns ``b""`` for silent commands and for frames that are
        not for this board or fail validation.
        """
        try:
            frame = decode_frame(raw)
        except RelayError:
            return b""
        if frame.slave_id != self.slave_id:
            return b""

        function = frame.function
        payload = frame.payload
        ok = True
        with self._lock:
            if function in _ONE:
                channel = payload[3]
                if 1 <= channel <= self.branches:
                    self._apply(_ONE[function], 1 << (channel - 1))
                else:
                    ok = False
            elif function in _GROUP:
                self._apply(_GROUP[function], struct.unpack(">I", payload)[0])
            elif function in _POINT:
                channel = payload[3]
                if 1 <= channel <= self.branches:
                    mask = 1 << (channel - 1)
                    action = _POINT[function]
                    self._apply(action, mask)
                    duration = int.from_bytes(payload[:3], "big") / 1000
                    timer = threading.Timer(duration, self._revert,
                                            (action, mask))
                    timer.daemon = True
                    timer.start()
                else:
                    ok = False
            elif function == FunctionCode.RUN_CMD_NIL:
                self.word = 0
                self._apply("on", struct.unpack(">I", payload)[0])
            elif function != FunctionCode.READ_STATUS:
                ok = False
            word = self.word

        if is_silent(function):
            return b""
        if not ok:
            body = bytes([PROTO_HEADER, self.slave_id,
                          exception_code(function), 0x01])
            return body + bytes([checksum(body)])
        return encode_frame(self.slave_id, function, struct.pack(">I", word))


def run(port, slave_id, branches=8):
    """Serve requests on *port* until interrupted."""
    board = RelayBoard(slave_id, branches)
    ser = serial.Serial(port, 9600, timeout=1)
    log.info("simulator: slave=%d branches=%d listening on %s",
             slave_id, branches, port)
    try:
        while True:
            raw = ser.read(PROTO_FRAME_SIZE)
            if len(raw) < PROTO_FRAME_SIZE:
                continue
            reply = board.handle(raw)
            log.debug("rx %s tx %s", raw.hex(" "), reply.hex(" ") or "-")
            if reply:
                ser.write(reply)
                ser.flush()
    except KeyboardInterrupt:
        pass
    finally:
        ser.close()


if __name__ == "__main__":
    if len(sys.argv) not in (3, 4):
        print("usage: simulator.py <port> <slave_id> [branches]",
              file=sys.stderr)
        sys.exit(1)
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        level=logging.DEBUG,
    )
    run(sys.argv[1], int(sys.argv[2]),
        int(sys.argv[3]) if len(sys.argv) == 4 else 8)
