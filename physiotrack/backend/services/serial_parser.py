import logging
import re

from schemas.readings import ParsedReading

logger = logging.getLogger(__name__)

_NUMBER = r"([-+]?(?:\d+(?:\.\d*)?|\.\d+))"

# Labels are case sensitive; each is followed by a signed decimal.
_FIELDS = {
    "angle": re.compile(r"\bAngle:\s*" + _NUMBER),
    "roll": re.compile(r"\bRoll:\s*" + _NUMBER),
    "pitch": re.compile(r"\bPitch:\s*" + _NUMBER),
    "yaw": re.compile(r"\bYaw:\s*" + _NUMBER),
}


def parse_serial_line(line: str) -> ParsedReading | None:
    """
    Parse one device line such as ``Angle: 45.3 Roll: 1.2 Pitch: -0.8 Yaw: 0.1``.
    Returns None when any of the four values is missing or malformed.
    """
    text = line.strip()
    if not text:
        return None

    values: dict[str, float] = {}
    for name, pattern in _FIELDS.items():
        match = pattern.search(text)
        if not match:
            logger.debug("Dropping serial line without %s: %r", name, text)
            return None
        try:
            values[name] = float(match.group(1))
        except ValueError:
            logger.debug("Dropping serial line with malformed %s: %r", name, text)
            return None

    return ParsedReading(raw=text, **values)
