"""
SecureSuite - Password-Based Secure Features (Educational Version)

Three small "secure feature" tools built on the `cryptography` library:

Key Features:
- Password manager: entry list kept in a self-verifying encrypted vault
- Secure file storage: files sealed in a password-derived JSON envelope
- Sign/verify: ECDSA P-256 signatures with portable key encodings
- Identity store: SQLite-backed credential + vault storage with versioning

Components:
- crypto.py: Shared primitives (PBKDF2, HKDF, AES-GCM, HMAC, base64)
- vault.py: Vault codec and the password manager session
- files.py: Secure file envelope (.secure files)
- signing.py: ECDSA key generation, signing and verification
- store.py: Identity store (register / fetch / replace vault)
- models.py: Typed records for every JSON shape
- errors.py: Error taxonomy
- config.py: Settings and logging setup

Usage:
    python securesuite_main.py                      # Interactive menu
    python attack_demo.py                           # Tampering demo
"""

from .errors import (
    SecureSuiteError,
    InvalidInput,
    AuthenticationFailure,
    StorageConflict,
    TransientIOFailure,
)

__version__ = "0.1.0"
__author__ = "SecureSuite Team"

__all__ = [
    "SecureSuiteError",
    "InvalidInput",
    "AuthenticationFailure",
    "StorageConflict",
    "TransientIOFailure",
]
