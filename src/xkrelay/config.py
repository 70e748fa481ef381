"""Project-wide configuration constants and config-file loading.

Central place for tuneable parameters shared across modules.
Import individual names where needed.

Example:
    >>> from xkrelay.config import load_config, DEFAULT_BRANCHES
    >>> cfg = load_config("relay.toml")
    >>> cfg["port"]
    '/dev/ttyUSB0'
"""

import tomllib

# Branch count bounds for a relay board.
DEFAULT_BRANCHES = 8
MAX_BRANCHES = 32

DEFAULT_SLAVE_ID = 1
DEFAULT_BAUDRATE = 9600
DEFAULT_PARITY = "N"
DEFAULT_BYTESIZE = 8
DEFAULT_STOPBITS = 1

# Read timeout in seconds for the serial port.
SERIAL_TIMEOUT_S = 5.0

# Close the port after this many idle seconds (0 disables).
SERIAL_IDLE_TIMEOUT_S = 60.0

# Predicted pulse reverts fire this many milliseconds early.
PULSE_GUARD_MS = 10

_PARITIES = ("N", "E", "O")


def load_config(path: str) -> dict:
    """Read a TOML config file and validate required keys.

    ``[serial]`` requires ``port`` (str) and ``baudrate`` (int), and
    accepts ``parity``, ``bytesize``, ``stopbits``, ``timeout`` and
    ``idle_timeout``.  ``[relay]`` is optional, with ``slave_id`` and
    ``branches`` (both int).

    Raises:
        ValueError: If any required key is missing or has the wrong type.

    Example:
        >>> cfg = load_config("relay.toml")
        >>> cfg["baudrate"], cfg["branches"]
        (9600, 8)
    """
    with open(path, "rb") as f:
        raw = tomllib.load(f)

    serial_section = _require_section(raw, "serial")
    _require_str(serial_section, "port", "serial")
    _require_int(serial_section, "baudrate", "serial")

    result = {
        "port": serial_section["port"],
        "baudrate": serial_section["baudrate"],
        "parity": _optional_parity(serial_section),
        "bytesize": _optional_int(serial_section, "bytesize", "serial",
                                  DEFAULT_BYTESIZE),
        "stopbits": _optional_int(serial_section, "stopbits", "serial",
                                  DEFAULT_STOPBITS),
        "timeout": _optional_number(serial_section, "timeout", "serial",
                                    SERIAL_TIMEOUT_S),
        "idle_timeout": _optional_number(serial_section, "idle_timeout",
                                         "serial", SERIAL_IDLE_TIMEOUT_S),
    }

    relay_section = raw.get("relay", {})
    if not isinstance(relay_section, dict):
        raise ValueError("[relay] must be a table")
    slave_id = _optional_int(relay_section, "slave_id", "relay",
                             DEFAULT_SLAVE_ID)
    if not (0 <= slave_id <= 0xFF):
        raise ValueError("relay.slave_id must be in range 0-255, got %d"
                         % slave_id)
    result["slave_id"] = slave_id
    result["branches"] = _optional_int(relay_section, "branches", "relay",
                                       DEFAULT_BRANCHES)

    return result


def _require_section(raw: dict[str, object], name: str) -> dict:
    """Validate that *name* exists in *raw* and is a table."""
    if name not in raw:
        raise ValueError("missing required section: [%s]" % name)
    if not isinstance(raw[name], dict):
        raise ValueError("[%s] must be a table" % name)
    return raw[name]


def _optional_parity(section: dict[str, object]) -> str:
    """Return serial.parity, defaulting to "N"."""
    parity = section.get("parity", DEFAULT_PARITY)
    if not isinstance(parity, str):
        raise ValueError("serial.parity must be str, got %s"
                         % type(parity).__name__)
    if parity not in _PARITIES:
        raise ValueError("serial.parity must be one of %s, got '%s'"
                         % ("/".join(_PARITIES), parity))
    return parity


def _optional_int(section: dict[str, object], key: str, prefix: str,
                  default: int) -> int:
    """Return *key* from *section* as an int, or *default* if absent."""
    if key not in section:
        return default
    _require_int(section, key, prefix)
    return section[key]


def _optional_number(section: dict[str, object], key: str, prefix: str,
                     default: float) -> float:
    """Return *key* from *section* as a float, or *default* if absent."""
    if key not in section:
        return default
    value = section[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("%s.%s must be a number, got %s"
                         % (prefix, key, type(value).__name__))
    return float(value)


def _require_str(raw: dict[str, object], key: str, prefix: str) -> None:
    """Validate that *key* exists in *raw* and is a str."""
    if key not in raw:
        raise ValueError("missing required key: %s.%s" % (prefix, key))
    if not isinstance(raw[key], str):
        raise ValueError("%s.%s must be str, got %s"
                         % (prefix, key, type(raw[key]).__name__))


def _require_int(raw: dict[str, object], key: str, prefix: str) -> None:
    """Validate that *key* exists in *raw* and is an int."""
    if key not in raw:
        raise ValueError("missing required key: %s.%s" % (prefix, key))
    if isinstance(raw[key], bool) or not isinstance(raw[key], int):
        raise ValueError("%s.%s must be int, got %s"
                         % (prefix, key, type(raw[key]).__name__))
