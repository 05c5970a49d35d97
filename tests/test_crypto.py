import base64
import pytest
from unittest.mock import patch

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from src.crypto_engine import (
    generate_salt,
    generate_iv,
    normalize_identifier,
    derive_key,
    encrypt_bytes,
    decrypt_bytes,
    encrypt_text,
    decrypt_text,
    KEY_LEN,
    TAG_LEN,
)
from src.config import DEFAULT_KDF_ITERATIONS
from src.exceptions import ValidationError, DecryptionError, FormatError

# ---------------------------------------------------------------------------
# Random Generation
# ---------------------------------------------------------------------------

def test_generate_salt_length_and_uniqueness():
    s1 = generate_salt()
    s2 = generate_salt()
    assert isinstance(s1, bytes)
    assert len(s1) == 16
    assert s1 != s2

def test_generate_iv_length_and_uniqueness():
    n1 = generate_iv()
    n2 = generate_iv()
    assert len(n1) == 12
    assert n1 != n2

# ---------------------------------------------------------------------------
# Identifier normalization
# ---------------------------------------------------------------------------

def test_normalize_identifier_lowercases_and_trims():
    assert normalize_identifier("  Alice@Example.COM \n") == "alice@example.com"

@pytest.mark.parametrize("bad", ["", "   ", None, 42])
def test_normalize_identifier_rejects_empty_or_non_string(bad):
    with pytest.raises(ValidationError):
        normalize_identifier(bad)

# ---------------------------------------------------------------------------
# PBKDF2 Key Derivation
# ---------------------------------------------------------------------------

def test_default_iteration_count_is_100k():
    assert DEFAULT_KDF_ITERATIONS == 100_000

def test_derive_key_length_and_determinism(alice):
    salt = generate_salt()
    k1 = derive_key(alice, salt)
    k2 = derive_key(alice, salt)
    assert len(k1) == KEY_LEN
    assert k1 == k2

def test_derive_key_differs_per_salt_and_identifier(alice, fast_kdf):
    salt = generate_salt()
    assert derive_key(alice, salt) != derive_key(alice, generate_salt())
    assert derive_key(alice, salt) != derive_key("bob@example.com", salt)

def test_derive_key_matches_pbkdf2_hmac_sha256(alice):
    """Interop: same bytes as any PBKDF2-HMAC-SHA256 implementation with 100k iterations."""
    salt = bytes(range(16))
    expected = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=100_000,
    ).derive(alice.encode("utf-8"))
    assert derive_key(alice, salt, iterations=100_000) == expected

def test_derive_key_uses_configured_iterations(alice, fast_kdf):
    salt = generate_salt()
    assert derive_key(alice, salt) == derive_key(alice, salt, iterations=fast_kdf)

@pytest.mark.parametrize("identifier", ["", None])
def test_derive_key_rejects_empty_identifier(identifier):
    with pytest.raises(ValidationError):
        derive_key(identifier, generate_salt())

@pytest.mark.parametrize("salt", [b"", b"short", b"x" * 17, "not-bytes"])
def test_derive_key_rejects_bad_salt(alice, salt):
    with pytest.raises(ValidationError):
        derive_key(alice, salt)

# ---------------------------------------------------------------------------
# AES-256-GCM
# ---------------------------------------------------------------------------

@pytest.fixture
def key():
    return b"\x11" * 32

def test_encrypt_decrypt_bytes_roundtrip(key):
    iv, ct = encrypt_bytes(b"secret data", key)
    assert len(iv) == 12
    assert len(ct) == len(b"secret data") + TAG_LEN
    assert decrypt_bytes(iv, ct, key) == b"secret data"

def test_encrypt_bytes_uses_fresh_iv(key):
    iv1, ct1 = encrypt_bytes(b"same", key)
    iv2, ct2 = encrypt_bytes(b"same", key)
    assert iv1 != iv2
    assert ct1 != ct2

def test_decrypt_bytes_rejects_every_single_bit_flip(key):
    iv, ct = encrypt_bytes(b"hello", key)
    for index in range(len(ct)):
        for bit in range(8):
            tampered = bytearray(ct)
            tampered[index] ^= 1 << bit
            with pytest.raises(DecryptionError):
                decrypt_bytes(iv, bytes(tampered), key)

def test_decrypt_bytes_fails_with_wrong_key(key):
    iv, ct = encrypt_bytes(b"secret", key)
    with pytest.raises(DecryptionError):
        decrypt_bytes(iv, ct, b"\x22" * 32)

def test_decrypt_bytes_fails_on_truncated_ciphertext(key):
    iv, ct = encrypt_bytes(b"secret", key)
    with pytest.raises(DecryptionError):
        decrypt_bytes(iv, ct[:TAG_LEN - 1], key)
    with pytest.raises(DecryptionError):
        decrypt_bytes(iv, ct[:-1], key)

def test_decrypt_bytes_fails_with_wrong_iv(key):
    iv, ct = encrypt_bytes(b"secret", key)
    with pytest.raises(DecryptionError):
        decrypt_bytes(iv[:-1], ct, key)

@pytest.mark.parametrize("bad_key", [b"", b"\x00" * 16, "x" * 32])
def test_cipher_rejects_bad_key(bad_key):
    with pytest.raises(ValidationError):
        encrypt_bytes(b"data", bad_key)

def test_encrypt_bytes_rejects_text(key):
    with pytest.raises(ValidationError):
        encrypt_bytes("text", key)

# ---------------------------------------------------------------------------
# Field envelopes
# ---------------------------------------------------------------------------

def test_encrypt_decrypt_text_hello_world(alice):
    envelope = encrypt_text("hello world", alice)
    assert isinstance(envelope, str)
    assert decrypt_text(envelope, alice) == "hello world"

def test_decrypt_text_wrong_identifier_fails(fast_kdf):
    envelope = encrypt_text("p", "a@x.com")
    with pytest.raises(DecryptionError):
        decrypt_text(envelope, "b@x.com")

def test_encrypt_text_envelope_layout(alice, fast_kdf):
    plaintext = "quantum computing"
    raw = base64.b64decode(encrypt_text(plaintext, alice))
    assert len(raw) == 16 + 12 + len(plaintext.encode()) + TAG_LEN

def test_encrypt_text_unicode_roundtrip(alice, fast_kdf):
    text = "Übersicht – 量子計算 🔍"
    assert decrypt_text(encrypt_text(text, alice), alice) == text

def test_encrypt_text_never_repeats_salt_or_iv(alice, fast_kdf):
    raw1 = base64.b64decode(encrypt_text("same", alice))
    raw2 = base64.b64decode(encrypt_text("same", alice))
    assert raw1[:16] != raw2[:16]
    assert raw1[16:28] != raw2[16:28]

def test_decrypt_text_reads_externally_built_envelope(alice):
    """An envelope assembled from salt || iv || AESGCM output decrypts unchanged."""
    salt = bytes(range(16))
    iv = bytes(range(12))
    key = PBKDF2HMAC(
        algorithm=hashes.SHA256(), length=32, salt=salt, iterations=100_000
    ).derive(alice.encode())
    ct = AESGCM(key).encrypt(iv, b"interop", None)
    envelope = base64.b64encode(salt + iv + ct).decode()

    assert decrypt_text(envelope, alice) == "interop"

@pytest.mark.parametrize("position", ["first", "middle", "tag"])
def test_decrypt_text_detects_tampered_ciphertext(alice, fast_kdf, position):
    raw = bytearray(base64.b64decode(encrypt_text("tamper me please", alice)))
    index = {"first": 28, "middle": (28 + len(raw)) // 2, "tag": len(raw) - 1}[position]
    raw[index] ^= 0x01
    with pytest.raises(DecryptionError):
        decrypt_text(base64.b64encode(bytes(raw)).decode(), alice)

def test_decrypt_text_structural_failure_skips_key_derivation(alice):
    with patch("src.crypto_engine.derive_key") as mock_derive:
        with pytest.raises(FormatError):
            decrypt_text("short", alice)
    mock_derive.assert_not_called()

def test_decrypt_text_rejects_empty_identifier(fast_kdf, alice):
    envelope = encrypt_text("x", alice)
    with pytest.raises(ValidationError):
        decrypt_text(envelope, "")
