"""
Extract message text from an ``attributedBody`` BLOB.

Newer macOS versions often leave ``message.text`` NULL and store the body as
a typedstream-archived NSAttributedString instead. Rather than decoding the
whole archive we look for the byte pair that precedes the NSString payload
and read the length-prefixed UTF-8 run that follows it.

Length encoding after the marker:
    b < 0x80   -> the run is ``b`` bytes long
    b >= 0x80  -> ``(b & 0x7F) + 1`` little-endian length bytes follow
"""

import logging

logger = logging.getLogger(__name__)

STRING_MARKER = b"\x01\x2b"

# Archives in the wild use two length bytes; four covers any 32-bit length
MAX_LENGTH_BYTES = 4


def decode_attributed_body(blob: bytes | bytearray | memoryview | None) -> str | None:
    """
    Return the plain text stored in an attributedBody BLOB.

    Returns None when there is no blob, no string payload, or the payload is
    truncated or not valid UTF-8. Never raises.
    """
    if not blob:
        return None

    data = bytes(blob)
    start = data.find(STRING_MARKER)
    if start == -1:
        return None

    pos = start + len(STRING_MARKER)
    if pos >= len(data):
        return None

    control = data[pos]
    pos += 1

    if control < 0x80:
        length = control
    else:
        width = (control & 0x7F) + 1
        if width > MAX_LENGTH_BYTES or pos + width > len(data):
            return None
        length = int.from_bytes(data[pos:pos + width], "little")
        pos += width

    if length <= 0 or pos + length > len(data):
        return None

    try:
        return data[pos:pos + length].decode("utf-8")
    except UnicodeDecodeError:
        logger.debug(f"attributedBody payload of {length} bytes is not valid UTF-8")
        return None
