"""Client-side record of relay channel states.

Confirmed commands write the state the board reported.  Silent
commands write the state they are expected to produce, and pulse
commands arm a one-shot timer that writes the rest state once the
pulse ends.  None of these entries are read back from the board, so
they can drift from reality if a silent frame is lost.  Issue a
confirmed ``status()`` read when ground truth matters.

Example:
    >>> from xkrelay.cache import ChannelStateCache
    >>> cache = ChannelStateCache(8)
    >>> cache.set(3, True)
    >>> cache.get_all()[2]
    True
"""

import logging
import threading

log = logging.getLogger(__name__)


class ChannelStateCache:
    """Thread-safe map of 1-based channel index to on/off state.

    Starts with every channel off.  One lock guards all reads, writes
    and timer bookkeeping.

    Args:
        size: Number of channels tracked.
    """

    def __init__(self, size: int):
        self._states = [False] * size
        self._lock = threading.Lock()
        self._pending = set()

    def __len__(self) -> int:
        return len(self._states)

    def get(self, channel: int) -> bool:
        """Return the recorded state of 1-based *channel*."""
        with self._lock:
            return self._states[channel - 1]

    def get_all(self) -> list[bool]:
        """Return a copy of every channel state, channel 1 first."""
        with self._lock:
            return list(self._states)

    def set(self, channel: int, value: bool) -> None:
        """Overwrite the state of 1-based *channel*."""
        with self._lock:
            self._states[channel - 1] = bool(value)

    def set_many(self, channels, value: bool) -> None:
        """Overwrite every 1-based channel in *channels* with *value*."""
        with self._lock:
            for channel in channels:
                self._states[channel - 1] = bool(value)

    def flip(self, channels) -> None:
        """Invert every 1-based channel in *channels*."""
        with self._lock:
            for channel in channels:
                self._states[channel - 1] = not self._states[channel - 1]

    def fill(self, value: bool) -> None:
        """Set every channel to *value*."""
        with self._lock:
            self._states = [bool(value)] * len(self._states)

    def schedule_pulse(self, channel: int, value_after: bool,
                       delay: float) -> threading.Timer:
        """Set *channel* to *value_after* once *delay* seconds pass.

        Timers are independent: scheduling the same channel twice arms
        two timers and whichever fires last decides the final state.

        Returns:
            threading.Timer: The armed timer, already started.
        """
        timer = None

        def fire():
            with self._lock:
                self._states[channel - 1] = bool(value_after)
                self._pending.discard(timer)
            log.debug("pulse ended: channel %d -> %d",
                      channel, int(bool(value_after)))

        timer = threading.Timer(max(delay, 0.0), fire)
        timer.daemon = True
        with self._lock:
            self._pending.add(timer)
        timer.start()
        return timer

    def pending(self) -> int:
        """Number of armed pulse timers that have not fired."""
        with self._lock:
            return len(self._pending)

    def cancel_pending(self) -> None:
        """Cancel every armed pulse timer."""
        with self._lock:
            timers = list(self._pending)
            self._pending.clear()
        for timer in timers:
            timer.cancel()
