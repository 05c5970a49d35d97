"""
Envelope codec for encrypted history fields.

Wire layout (base64 of the concatenation, standard alphabet, padded):

    salt (16 bytes) || iv (12 bytes) || ciphertext || GCM tag (16 bytes)

decode_envelope() runs the structural checks in a fixed order and stops at
the first failure. src.diagnostics reuses validate_structure() so that a
health report and a real decode always agree on what is malformed.
"""

import base64
import binascii
import re
from dataclasses import dataclass

from src.exceptions import FormatError

SALT_LEN = 16
IV_LEN = 12
HEADER_LEN = SALT_LEN + IV_LEN          # 28
MIN_DECODED_LEN = HEADER_LEN + 1        # 29: at least one ciphertext byte
MIN_ENCODED_LEN = 39                    # ceil(29 * 4 / 3)

BASE64_PATTERN = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")

# Check names, in evaluation order
CHECK_TYPE = "type"
CHECK_CHARSET = "charset"
CHECK_LENGTH = "length"
CHECK_DECODE = "decode"
CHECK_DECODED_LENGTH = "decoded_length"
CHECK_PAYLOAD = "payload"

CHECK_ORDER = (
    CHECK_TYPE,
    CHECK_CHARSET,
    CHECK_LENGTH,
    CHECK_DECODE,
    CHECK_DECODED_LENGTH,
)


@dataclass(frozen=True)
class EnvelopeParts:
    """Decoded envelope fields."""
    salt: bytes
    iv: bytes
    ciphertext: bytes  # includes the trailing GCM tag


def is_base64_text(envelope: str) -> bool:
    return isinstance(envelope, str) and BASE64_PATTERN.fullmatch(envelope) is not None


def validate_structure(envelope: str) -> bytes:
    """
    Run the structural checks and return the decoded bytes.

    Raises:
        FormatError: carrying the name of the first failing check
    """
    if not envelope or not isinstance(envelope, str):
        raise FormatError(CHECK_TYPE, "Data is null, empty, or not a string")

    if not is_base64_text(envelope):
        raise FormatError(CHECK_CHARSET, "Data is not valid base64")

    if len(envelope) < MIN_ENCODED_LEN:
        raise FormatError(
            CHECK_LENGTH,
            f"Data too short ({len(envelope)} chars, minimum {MIN_ENCODED_LEN})"
        )

    try:
        raw = base64.b64decode(envelope, validate=True)
    except (binascii.Error, ValueError) as e:
        raise FormatError(CHECK_DECODE, f"Base64 decode failed: {e}") from e

    if len(raw) < MIN_DECODED_LEN:
        raise FormatError(
            CHECK_DECODED_LENGTH,
            f"Decoded data too short ({len(raw)} bytes, minimum {MIN_DECODED_LEN})"
        )

    return raw


def encode_envelope(salt: bytes, iv: bytes, ciphertext: bytes) -> str:
    """Concatenate salt, iv and ciphertext (in that order) and base64-encode."""
    if len(salt) != SALT_LEN:
        raise ValueError(f"Salt must be {SALT_LEN} bytes")
    if len(iv) != IV_LEN:
        raise ValueError(f"IV must be {IV_LEN} bytes")
    if not ciphertext:
        raise ValueError("Ciphertext must not be empty")

    return base64.b64encode(bytes(salt) + bytes(iv) + bytes(ciphertext)).decode("ascii")


def decode_envelope(envelope: str) -> EnvelopeParts:
    raw = validate_structure(envelope)
    return EnvelopeParts(
        salt=raw[:SALT_LEN],
        iv=raw[SALT_LEN:HEADER_LEN],
        ciphertext=raw[HEADER_LEN:],
    )
