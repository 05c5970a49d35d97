import base64
import pytest

from src.envelope import (
    encode_envelope,
    decode_envelope,
    validate_structure,
    EnvelopeParts,
    MIN_ENCODED_LEN,
    MIN_DECODED_LEN,
    CHECK_TYPE,
    CHECK_CHARSET,
    CHECK_LENGTH,
    CHECK_DECODE,
    CHECK_DECODED_LENGTH,
)
from src.exceptions import FormatError

SALT = b"S" * 16
IV = b"I" * 12


def test_constants_match_wire_format():
    assert MIN_DECODED_LEN == 29
    assert MIN_ENCODED_LEN == 39

def test_encode_concatenates_in_fixed_order():
    envelope = encode_envelope(SALT, IV, b"ciphertext")
    assert base64.b64decode(envelope) == SALT + IV + b"ciphertext"

def test_decode_splits_fields():
    envelope = encode_envelope(SALT, IV, b"\x00\x01\x02" * 10)
    parts = decode_envelope(envelope)
    assert parts == EnvelopeParts(salt=SALT, iv=IV, ciphertext=b"\x00\x01\x02" * 10)

def test_decode_accepts_single_ciphertext_byte():
    parts = decode_envelope(encode_envelope(SALT, IV, b"x"))
    assert parts.ciphertext == b"x"

@pytest.mark.parametrize("salt, iv, ct", [
    (b"short", IV, b"x"),
    (SALT, b"short", b"x"),
    (SALT, IV, b""),
])
def test_encode_rejects_bad_field_widths(salt, iv, ct):
    with pytest.raises(ValueError):
        encode_envelope(salt, iv, ct)

# ---------------------------------------------------------------------------
# Structural checks, in order
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("value", ["", None, 123, b"bytes"])
def test_type_check(value):
    with pytest.raises(FormatError) as exc:
        validate_structure(value)
    assert exc.value.check == CHECK_TYPE

@pytest.mark.parametrize("value", ["not base64!", "abc def", "A" * 40 + "-", "AAAA===", "AA=A"])
def test_charset_check(value):
    with pytest.raises(FormatError) as exc:
        validate_structure(value)
    assert exc.value.check == CHECK_CHARSET

def test_charset_checked_before_length():
    # short AND not base64: charset wins
    with pytest.raises(FormatError) as exc:
        validate_structure("!!")
    assert exc.value.check == CHECK_CHARSET

def test_length_check():
    with pytest.raises(FormatError) as exc:
        validate_structure("short")
    assert exc.value.check == CHECK_LENGTH
    assert "Data too short (5 chars, minimum 39)" in str(exc.value)

def test_decode_check_on_bad_padding():
    # 41 characters cannot be valid padded base64
    with pytest.raises(FormatError) as exc:
        validate_structure("A" * 41)
    assert exc.value.check == CHECK_DECODE

def test_decoded_length_check():
    # 28 bytes -> 40 chars with "==" padding: long enough as text, one byte short decoded
    envelope = base64.b64encode(b"\x00" * 28).decode()
    assert len(envelope) >= MIN_ENCODED_LEN
    with pytest.raises(FormatError) as exc:
        validate_structure(envelope)
    assert exc.value.check == CHECK_DECODED_LENGTH
    assert "minimum 29" in str(exc.value)

def test_whitespace_is_not_tolerated():
    envelope = encode_envelope(SALT, IV, b"x" * 20)
    with pytest.raises(FormatError) as exc:
        decode_envelope(" " + envelope)
    assert exc.value.check == CHECK_CHARSET
