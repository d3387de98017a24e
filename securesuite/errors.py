"""
SecureSuite - Error Taxonomy

Every failure the library reports is one of four kinds:

- InvalidInput: malformed salt/iv length, empty password, bad JSON shape
- AuthenticationFailure: tag or MAC mismatch. Covers BOTH "wrong password"
  and "tampered data" on purpose, so callers cannot be used as an oracle
- StorageConflict: duplicate identity on register, missing identity,
  stale vault version
- TransientIOFailure: storage temporarily unavailable (retryable)

Messages never contain key material, passwords or plaintext.
"""


class SecureSuiteError(Exception):
    """Base class for all SecureSuite errors."""


class InvalidInput(SecureSuiteError, ValueError):
    """Input failed validation before any cryptography ran."""


class AuthenticationFailure(SecureSuiteError):
    """Wrong password or corrupted/tampered data (intentionally not distinguished)."""

    def __init__(self, message: str = "wrong password or corrupted data"):
        super().__init__(message)


class StorageConflict(SecureSuiteError):
    """The identity store refused the operation (duplicate, missing, stale)."""


class TransientIOFailure(SecureSuiteError):
    """Storage is temporarily unavailable; the operation may be retried."""
