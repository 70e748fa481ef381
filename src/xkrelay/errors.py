"""Exception types raised by the xkrelay client.

Every error derives from ``RelayError`` so callers can catch the whole
family in one place.  Validation errors also derive from ``ValueError``
and I/O errors from ``OSError``, so code written against the builtin
types keeps working.

Example:
    >>> from xkrelay.errors import RelayError, ChannelOutOfRange
    >>> try:
    ...     raise ChannelOutOfRange(9, 8)
    ... except RelayError as exc:
    ...     print(exc)
    channel 9 out of range 1-8
"""


class RelayError(Exception):
    """Base class for all relay client errors."""


class ChannelOutOfRange(RelayError, ValueError):
    """A channel index fell outside the configured branch range."""

    def __init__(self, channel: int, limit: int, low: int = 1):
        super().__init__(
            "channel {} out of range {}-{}".format(channel, low, limit)
        )
        self.channel = channel
        self.limit = limit


class PayloadTooLarge(RelayError, ValueError):
    """An encoded frame would exceed the maximum frame size."""


class FrameTooShort(RelayError, ValueError):
    """Fewer bytes than a full frame were supplied to the decoder."""


class ChecksumMismatch(RelayError, ValueError):
    """The checksum byte does not match the sum of bytes 0-6."""


class SlaveIdMismatch(RelayError, ValueError):
    """The response did not come from the addressed slave."""


class ResponseTooShort(RelayError, ValueError):
    """The response is shorter than the protocol minimum."""


class MalformedResponse(RelayError, ValueError):
    """The response payload has the wrong length."""


class UnexpectedConfirmation(RelayError):
    """A confirmed command read back a state other than the one requested."""


class Desynchronized(RelayError):
    """The reply's function byte matches neither the request nor its exception."""


class SlaveException(RelayError):
    """The slave answered a confirmed request with an exception reply.

    Attributes:
        function: Function code of the request that failed.
        response: Raw exception reply bytes.
    """

    def __init__(self, function: int, response: bytes):
        super().__init__(
            "slave rejected function 0x{:02X}: {}".format(
                function, response.hex(" ")
            )
        )
        self.function = function
        self.response = bytes(response)


class TransportIO(RelayError, OSError):
    """Write, read, or read-timeout failure on the serial link."""


class NotConnected(TransportIO):
    """The serial port could not be opened."""
