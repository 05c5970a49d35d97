"""
Search History Crypto Engine - Core Cryptographic Operations
Handles : identifier normalization, key derivation, AES-256-GCM encryption/decryption,
random generation
"""
import os
import hashlib
from typing import Optional, Tuple

from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.exceptions import InvalidTag

from src.config import KDF_ITERATIONS
from src.exceptions import ValidationError, DecryptionError
from src.envelope import SALT_LEN, IV_LEN, encode_envelope, decode_envelope

KEY_LEN = 32    # AES-256
TAG_LEN = 16    # GCM tag, appended to the ciphertext by AESGCM


"""
==========================================================================
PART A : Random Generations
==========================================================================
"""

def generate_salt(length: int = SALT_LEN) -> bytes:
    """
    Generate a random PBKDF2 salt.

    Args:
        length: salt length in bytes (default: 16 bytes = 128 bits)

    Returns:
        Random salt as bytes

    Security:
        - A fresh salt per encrypted field means a fresh key per field,
          so AES-GCM IV reuse under one key cannot happen across records
    """
    return os.urandom(length)

def generate_iv(length: int = IV_LEN) -> bytes:
    """
    Generate a random 96-bit IV for AES-GCM.

    Security:
        - MUST be unique for every encryption with the same key
        - IV reuse under GCM leaks the XOR of plaintexts and the auth key
    """
    return os.urandom(length)


"""
==========================================================================
PART B : Key Derivation (PBKDF2-HMAC-SHA256)
==========================================================================
"""

def normalize_identifier(email: str) -> str:
    """
    Turn a user's email address into the key derivation identifier.

    >>> normalize_identifier("  Alice@Example.COM ")
    'alice@example.com'
    """
    if not isinstance(email, str):
        raise ValidationError("Identifier source must be a string")
    identifier = email.lower().strip()
    if not identifier:
        raise ValidationError("Identifier must be a non-empty string")
    return identifier

def derive_key(identifier: str, salt: bytes, iterations: Optional[int] = None) -> bytes:
    """
    Derive a 256-bit AES key from the user identifier.

    Args:
        identifier: normalized email address (see normalize_identifier)
        salt: 16-byte random salt stored in the envelope
        iterations: PBKDF2 iteration count (default: config KDF_ITERATIONS)

    Returns:
        32-byte key

    Note:
        - Deterministic for identical (identifier, salt)
        - The identifier is not a user-chosen secret; anyone who knows the
          email address can derive the key
        - CPU-bound; callers on an event loop run it in an executor
    """
    if not identifier or not isinstance(identifier, str):
        raise ValidationError("Identifier must be a non-empty string")
    if not isinstance(salt, (bytes, bytearray)) or len(salt) != SALT_LEN:
        raise ValidationError(f"Salt must be {SALT_LEN} bytes")
    if iterations is None:
        iterations = KDF_ITERATIONS

    return hashlib.pbkdf2_hmac(
        'sha256',
        identifier.encode('utf-8'),
        bytes(salt),
        iterations,
        dklen=KEY_LEN
    )


"""
=============================================================================
 PART C: ENCRYPTION/DECRYPTION (AES-256-GCM)
=============================================================================
"""

def encrypt_bytes(plaintext: bytes, key: bytes) -> Tuple[bytes, bytes]:
    """
    Encrypt raw bytes with AES-256-GCM under a fresh random IV.

    Returns:
        (iv, ciphertext_with_tag)
    """
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LEN:
        raise ValidationError("AES-256-GCM key must be 32 bytes")
    if not isinstance(plaintext, (bytes, bytearray)):
        raise ValidationError("Plaintext must be bytes")

    iv = generate_iv()
    cipher = AESGCM(bytes(key))
    # AESGCM returns ciphertext + 16-byte tag appended at the end
    ciphertext_with_tag = cipher.encrypt(iv, bytes(plaintext), None)
    return iv, ciphertext_with_tag

def decrypt_bytes(iv: bytes, ciphertext_with_tag: bytes, key: bytes) -> bytes:
    """
    Decrypt and authenticate AES-256-GCM output.

    Fails closed: a tag mismatch, truncated ciphertext or wrong key raise
    DecryptionError and no plaintext bytes are returned.
    """
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LEN:
        raise ValidationError("AES-256-GCM key must be 32 bytes")
    if len(iv) != IV_LEN:
        raise DecryptionError("Authentication failed: wrong key or data corrupted")
    if len(ciphertext_with_tag) < TAG_LEN:
        raise DecryptionError("Authentication failed: wrong key or data corrupted")

    try:
        cipher = AESGCM(bytes(key))
        return cipher.decrypt(bytes(iv), bytes(ciphertext_with_tag), None)
    except InvalidTag as e:
        raise DecryptionError(
            "Authentication failed: wrong key or data corrupted"
        ) from e

def encrypt_text(plaintext: str, identifier: str) -> str:
    """
    Encrypt one text field into a self-contained envelope string.

    A new salt (and therefore a new key) and a new IV are drawn per call.
    """
    if not isinstance(plaintext, str):
        raise ValidationError("Plaintext must be a string")

    salt = generate_salt()
    key = derive_key(identifier, salt)
    iv, ciphertext = encrypt_bytes(plaintext.encode('utf-8'), key)
    return encode_envelope(salt, iv, ciphertext)

def decrypt_text(envelope: str, identifier: str) -> str:
    """
    Decrypt an envelope produced by encrypt_text.

    Raises:
        FormatError: envelope fails structural checks (no key is derived)
        ValidationError: identifier is empty
        DecryptionError: wrong identifier or tampered ciphertext
    """
    parts = decode_envelope(envelope)
    key = derive_key(identifier, parts.salt)
    plaintext = decrypt_bytes(parts.iv, parts.ciphertext, key)
    try:
        return plaintext.decode('utf-8')
    except UnicodeDecodeError as e:
        raise DecryptionError("Decrypted field is not valid UTF-8") from e
