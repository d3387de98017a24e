"""
SecureSuite - Cryptography Module (Shared Primitives)

Every cryptographic call in SecureSuite goes through this file.
It's designed to be:
- Easy to understand and explain
- Built only on the 'cryptography' library
- Strict about inputs (bad lengths fail before any crypto runs)
- Clear (every function does one thing)

Key Architecture:
    1. Password + salt → PBKDF2-HMAC-SHA256 → master key (32 bytes)
    2. Master key → HKDF(label) → independent subkeys
       (vault encryption, vault verifier, file encryption, file MAC)
    3. Every ciphertext gets a fresh random 96-bit IV → AES-256-GCM
    4. Byte fields travel as standard base64 inside JSON

Why one stretch + HKDF labels?
    - PBKDF2 is the expensive part; running it once keeps unlock fast
    - HKDF 'info' labels give domain separation: knowing one subkey
      tells you nothing about the others
"""

import os
import hmac
import json
import base64
import hashlib
import binascii
import secrets
import string
from typing import Dict, Iterable, Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import AuthenticationFailure, InvalidInput


# =============================================================================
# Configuration
# =============================================================================

KEY_SIZE = 32            # 256-bit keys
SALT_SIZE = 16           # 128-bit salt
NONCE_SIZE = 12          # 96-bit nonce for AES-GCM
TAG_SIZE = 16            # 128-bit authentication tag
MAC_SIZE = 32            # HMAC-SHA256 output

# PBKDF2-HMAC-SHA256 work factor (same default as the browser pages)
PBKDF2_ITERATIONS = 150_000
MIN_PBKDF2_ITERATIONS = 100_000
MAX_PBKDF2_ITERATIONS = 10_000_000   # ceiling for counts read from untrusted envelopes


# =============================================================================
# Byte Utilities
# =============================================================================

def b64(data: bytes) -> str:
    """Encode bytes as standard base64 text."""
    return base64.b64encode(data).decode("ascii")


def ub64(text: str) -> bytes:
    """
    Decode standard base64 text.

    Raises:
        InvalidInput: If text is not valid base64
    """
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError, TypeError):
        raise InvalidInput("field is not valid base64") from None


def random_bytes(n: int) -> bytes:
    """Return n bytes from the OS CSPRNG (never a counter)."""
    return os.urandom(n)


def require_length(name: str, value: bytes, size: int) -> bytes:
    """Check a byte field has exactly `size` bytes."""
    if not isinstance(value, (bytes, bytearray)) or len(value) != size:
        raise InvalidInput(f"{name} must be {size} bytes")
    return bytes(value)


def require_password(password: str) -> bytes:
    """Check the password is a non-empty string and return its UTF-8 bytes."""
    if not isinstance(password, str) or not password:
        raise InvalidInput("password must not be empty")
    return password.encode("utf-8")


def iterations_in_range(iterations) -> bool:
    """True if `iterations` is an int inside the accepted PBKDF2 work-factor window."""
    return (isinstance(iterations, int) and not isinstance(iterations, bool)
            and MIN_PBKDF2_ITERATIONS <= iterations <= MAX_PBKDF2_ITERATIONS)


def require_iterations(iterations: int) -> int:
    if not iterations_in_range(iterations):
        raise InvalidInput(
            f"iterations must be between {MIN_PBKDF2_ITERATIONS} and {MAX_PBKDF2_ITERATIONS}"
        )
    return iterations


# =============================================================================
# Key Derivation
# =============================================================================

def stretch_password(password: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    """
    Stretch a password into 32 bytes of master key material with PBKDF2.

    Why PBKDF2-HMAC-SHA256?
    - It is what the browser platform API offers, so envelopes produced by
      the web pages and by this library derive identical keys
    - 150k iterations make each password guess expensive

    Args:
        password: User's password (must not be empty)
        salt: 16-byte random salt (stored alongside the data, NOT secret)
        iterations: PBKDF2 work factor (>= 100,000)

    Returns:
        32-byte master key (never used directly as a cipher key)
    """
    secret = require_password(password)
    require_length("salt", salt, SALT_SIZE)
    require_iterations(iterations)

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=bytes(salt),
        iterations=iterations,
    )
    return kdf.derive(secret)


def derive_subkey(master_key: bytes, label: str, salt: Optional[bytes] = None) -> bytes:
    """
    Derive one independent 32-byte subkey from master key material.

    The 'info' label provides domain separation: two labels give
    cryptographically unrelated keys from the same master key.
    """
    h = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        info=label.encode("utf-8"),
    )
    return h.derive(master_key)


def derive_subkeys(master_key: bytes, labels: Iterable[str], salt: Optional[bytes] = None) -> Dict[str, bytes]:
    """Derive one subkey per label (see derive_subkey)."""
    return {label: derive_subkey(master_key, label, salt) for label in labels}


# =============================================================================
# Canonical JSON
# =============================================================================

def canonical_json(obj) -> bytes:
    """
    Convert a dict or list to canonical JSON bytes.

    Same value ALWAYS produces same bytes (vault payloads, associated data, MAC input):
    - Keys sorted lexicographically
    - Compact separators (",", ":")
    - UTF-8 without escaping non-ASCII
    """
    json_str = json.dumps(obj, separators=(",", ":"), sort_keys=True, ensure_ascii=False)
    return json_str.encode("utf-8")


# =============================================================================
# Encryption (AES-256-GCM)
# =============================================================================

def encrypt(key: bytes, plaintext: bytes, associated_data: Optional[dict] = None) -> Tuple[bytes, bytes]:
    """
    Encrypt data with AES-256-GCM.

    Args:
        key: 32-byte encryption key
        plaintext: Data to encrypt
        associated_data: Optional context dict, authenticated but not encrypted

    Returns:
        (nonce, ciphertext) tuple
        - nonce: 12 fresh random bytes (must be stored with ciphertext)
        - ciphertext: encrypted data + 16-byte tag
    """
    require_length("key", key, KEY_SIZE)

    # Fresh random nonce on every call (NEVER reuse with same key!)
    nonce = random_bytes(NONCE_SIZE)
    ad_bytes = canonical_json(associated_data) if associated_data is not None else None

    ciphertext = AESGCM(key).encrypt(nonce, plaintext, ad_bytes)
    return nonce, ciphertext


def decrypt(key: bytes, nonce: bytes, ciphertext: bytes, associated_data: Optional[dict] = None) -> bytes:
    """
    Decrypt AES-256-GCM ciphertext.

    Fails closed: either the whole plaintext comes back or nothing does.

    Raises:
        InvalidInput: If key or nonce has the wrong length
        AuthenticationFailure: If tampered, wrong key, or wrong associated data
    """
    require_length("key", key, KEY_SIZE)
    require_length("iv", nonce, NONCE_SIZE)
    if len(ciphertext) < TAG_SIZE:
        raise AuthenticationFailure()

    ad_bytes = canonical_json(associated_data) if associated_data is not None else None
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, ad_bytes)
    except InvalidTag:
        raise AuthenticationFailure() from None


# =============================================================================
# Message Authentication (HMAC-SHA256)
# =============================================================================

def compute_mac(mac_key: bytes, data: bytes) -> bytes:
    """Compute a 32-byte HMAC-SHA256 over data."""
    return hmac.new(mac_key, data, hashlib.sha256).digest()


def verify_mac(mac_key: bytes, data: bytes, mac: bytes) -> bool:
    """Recompute the HMAC and compare in constant time."""
    return constant_compare(compute_mac(mac_key, data), mac)


# =============================================================================
# Password Generation
# =============================================================================

def generate_password(length: int = 20, use_symbols: bool = True) -> str:
    """
    Generate a strong random password for a new vault entry.

    Args:
        length: Password length (default 20)
        use_symbols: Include !@#$%^&*()_+-= ?

    Returns:
        Random password string
    """
    if length < 4:
        raise InvalidInput("password length must be at least 4")

    chars = string.ascii_letters + string.digits
    if use_symbols:
        chars += "!@#$%^&*()_+-="

    return "".join(secrets.choice(chars) for _ in range(length))


# =============================================================================
# Helpers
# =============================================================================

def constant_compare(a: bytes, b: bytes) -> bool:
    """
    Compare two byte strings in constant time.

    Normal comparison (a == b) stops at the first mismatch, which leaks
    how many leading bytes matched through timing.
    """
    return hmac.compare_digest(a, b)
