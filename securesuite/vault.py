"""
SecureSuite - Vault Module (Password Manager)

This file handles:
- Credential derivation (encryption key + verifier from one password)
- Vault codec (entry list <-> {iv, ciphertext})
- VaultSession: register / unlock / add / edit / remove entries

Security Architecture:
    1. Password + salt → PBKDF2 → master key
    2. Master key → HKDF("...-vault-enc-v1")      → encryption key (never leaves client)
    3. Master key → HKDF("...-vault-verifier-v1") → verifier (stored by the server)
    4. Entries → canonical JSON → AES-256-GCM (fresh IV each save)

Why two HKDF labels?
    - The server stores the verifier to check logins
    - If the verifier leaks, HKDF is one-way: the encryption key cannot be
      rebuilt from it, so the vault stays sealed

Storage model:
    Every change re-encrypts the WHOLE entry list and replaces the stored
    vault. Writes carry the version read at unlock; if another session saved
    first, the write is rejected with StorageConflict instead of silently
    losing that session's changes.
"""

import json
import logging
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from . import crypto
from .errors import AuthenticationFailure, InvalidInput, StorageConflict
from .models import (
    Credential,
    PasswordEntry,
    VaultBlob,
    entries_from_json,
    parse,
)

logger = logging.getLogger("securesuite.vault")

VAULT_KEY_LABEL = "securesuite-vault-enc-v1"
VERIFIER_LABEL = "securesuite-vault-verifier-v1"

EntryLike = Union[PasswordEntry, dict]


# =============================================================================
# Credential Derivation
# =============================================================================

def derive_credential(
    password: str,
    salt: bytes,
    iterations: int = crypto.PBKDF2_ITERATIONS
) -> Tuple[bytes, bytes]:
    """
    Derive (encryption_key, verifier) from a password.

    Deterministic: same (password, salt, iterations) always gives the same
    pair. The two outputs come from distinct HKDF labels, so they are never
    equal and neither reveals the other.

    Args:
        password: User's password (must not be empty)
        salt: 16-byte salt from the credential record
        iterations: PBKDF2 work factor (>= 100,000)

    Returns:
        (encryption_key, verifier) - both 32 bytes
    """
    master = crypto.stretch_password(password, salt, iterations)
    subkeys = crypto.derive_subkeys(master, (VAULT_KEY_LABEL, VERIFIER_LABEL))
    return subkeys[VAULT_KEY_LABEL], subkeys[VERIFIER_LABEL]


def new_credential(
    username: str,
    password: str,
    iterations: int = crypto.PBKDF2_ITERATIONS
) -> Tuple[Credential, bytes]:
    """
    Create a credential record for a new user (fresh random salt).

    Returns:
        (credential, encryption_key) - the key stays with the caller
    """
    salt = crypto.random_bytes(crypto.SALT_SIZE)
    key, verifier = derive_credential(password, salt, iterations)
    credential = parse(Credential, {"username": username, "salt": salt, "verifier": verifier})
    return credential, key


def check_password(
    password: str,
    credential: Credential,
    iterations: int = crypto.PBKDF2_ITERATIONS
) -> bytes:
    """
    Confirm a password against a stored verifier.

    Returns:
        The encryption key for this user's vault

    Raises:
        AuthenticationFailure: If the password does not match
    """
    key, verifier = derive_credential(password, credential.salt, iterations)
    if not crypto.constant_compare(verifier, credential.verifier):
        logger.warning("Password check failed for user %s", credential.username)
        raise AuthenticationFailure("wrong password or corrupted vault")
    return key


# =============================================================================
# Vault Codec
# =============================================================================

def encrypt_vault(entries: Iterable[EntryLike], key: bytes) -> VaultBlob:
    """
    Encrypt an entry list into a vault blob.

    Entries are validated, serialized as canonical JSON, and sealed with
    AES-256-GCM under a fresh random IV.

    Args:
        entries: PasswordEntry objects or {"site", "user", "pass"} dicts
        key: 32-byte encryption key from derive_credential()

    Returns:
        VaultBlob(iv, ciphertext)
    """
    payload = [parse(PasswordEntry, e).to_json_dict() for e in entries]
    iv, ciphertext = crypto.encrypt(key, crypto.canonical_json(payload))
    return VaultBlob(iv=iv, ciphertext=ciphertext)


def decrypt_vault(vault: Union[VaultBlob, dict], key: bytes) -> List[PasswordEntry]:
    """
    Decrypt a vault blob back into its entry list.

    Fails closed: a wrong key or any flipped bit raises before a single
    entry is returned.

    Raises:
        InvalidInput: If the blob shape is malformed
        AuthenticationFailure: Wrong password or corrupted vault
    """
    blob = parse(VaultBlob, vault)
    try:
        plaintext = crypto.decrypt(key, blob.iv, blob.ciphertext)
    except AuthenticationFailure:
        raise AuthenticationFailure("wrong password or corrupted vault") from None

    try:
        items = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise InvalidInput("vault payload is not valid JSON") from None
    return entries_from_json(items)


# =============================================================================
# VAULT SESSION
# =============================================================================

class VaultSession:
    """
    One user's password manager session.

    Usage:
        # Create new account
        session = VaultSession(store, "alice")
        session.register("correct horse battery staple")

        # Later: unlock
        session = VaultSession(store, "alice")
        session.unlock("correct horse battery staple")

        # Add entry (re-encrypts and saves the whole vault)
        session.add_entry("example.com", "alice", "hunter2")

        # Lock when done
        session.lock()
    """

    def __init__(self, store, username: str, iterations: int = crypto.PBKDF2_ITERATIONS):
        """
        Args:
            store: IdentityStore (anything with register/fetch/replace_vault)
            username: Account name
            iterations: PBKDF2 work factor used for this account
        """
        self.store = store
        self.username = username
        self.iterations = iterations

        # Only present when unlocked
        self.key: Optional[bytes] = None
        self.credential: Optional[Credential] = None
        self.version: Optional[int] = None
        self._entries: List[PasswordEntry] = []

    @property
    def is_unlocked(self) -> bool:
        return self.key is not None

    @property
    def entries(self) -> List[PasswordEntry]:
        """Decrypted entries (a copy; edit through the session methods)."""
        self._require_unlocked()
        return list(self._entries)

    def register(self, password: str, entries: Sequence[EntryLike] = ()) -> None:
        """
        Create the account and its first vault, leaving the session unlocked.

        Raises:
            StorageConflict: If the username already exists
        """
        credential, key = new_credential(self.username, password, self.iterations)
        items = [parse(PasswordEntry, e) for e in entries]
        blob = encrypt_vault(items, key)

        self.store.register(credential.username, credential.salt, credential.verifier, blob)
        logger.debug("Registered user %s", credential.username)

        self.credential = credential
        self.key = key
        self.version = 1
        self._entries = items

    def unlock(self, password: str) -> None:
        """
        Fetch the account, check the password, and decrypt the vault.

        Raises:
            StorageConflict: If the user does not exist
            AuthenticationFailure: Wrong password or corrupted vault
        """
        record = self.store.fetch(self.username)
        key = check_password(password, record.credential, self.iterations)
        entries = decrypt_vault(record.vault, key)

        self.credential = record.credential
        self.key = key
        self.version = record.version
        self._entries = entries
        logger.debug("Unlocked vault for %s (version %d, %d entries)",
                      self.username, record.version, len(entries))

    def lock(self) -> None:
        """Forget the key and decrypted entries."""
        self.key = None
        self.credential = None
        self.version = None
        self._entries = []

    def add_entry(
        self,
        site: str,
        user: str,
        password: str,
        url: Optional[str] = None,
        notes: Optional[str] = None
    ) -> PasswordEntry:
        """Append an entry and save. Returns the stored entry."""
        self._require_unlocked()
        entry = parse(PasswordEntry, {
            "site": site, "user": user, "pass": password, "url": url, "notes": notes,
        })
        self._save(self._entries + [entry])
        return entry

    def update_entry(self, index: int, **changes) -> PasswordEntry:
        """
        Replace fields of the entry at `index` and save.

        Field names: site, user, password (or "pass"), url, notes.
        """
        self._require_unlocked()
        current = self._entry_at(index)
        if "pass" in changes:
            changes["password"] = changes.pop("pass")
        unknown = set(changes) - set(PasswordEntry.model_fields)
        if unknown:
            raise InvalidInput(f"unknown entry fields: {', '.join(sorted(unknown))}")

        updated = parse(PasswordEntry, {**current.model_dump(), **changes})
        entries = list(self._entries)
        entries[index] = updated
        self._save(entries)
        return updated

    def remove_entry(self, index: int) -> PasswordEntry:
        """Delete the entry at `index` and save. Returns the removed entry."""
        self._require_unlocked()
        removed = self._entry_at(index)
        entries = list(self._entries)
        del entries[index]
        self._save(entries)
        return removed

    def find(self, query: str) -> List[Tuple[int, PasswordEntry]]:
        """
        Case-insensitive search across site, user and url.

        Returns:
            List of (index, entry) pairs; every entry for an empty query
        """
        self._require_unlocked()
        needle = (query or "").strip().lower()
        matches = []
        for i, e in enumerate(self._entries):
            haystack = " ".join(filter(None, (e.site, e.user, e.url))).lower()
            if needle in haystack:
                matches.append((i, e))
        return matches

    def change_password(self, new_password: str) -> None:
        """
        Re-key the account: new salt, new verifier, vault re-encrypted.

        The credential and vault are replaced together, guarded by the same
        version check as ordinary saves.
        """
        self._require_unlocked()
        credential, key = new_credential(self.username, new_password, self.iterations)
        blob = encrypt_vault(self._entries, key)
        self.version = self.store.replace_credential(
            self.username, credential, blob, expected_version=self.version
        )
        self.credential = credential
        self.key = key
        logger.info("Password changed for %s", self.username)

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    def _save(self, entries: List[PasswordEntry]) -> None:
        """Encrypt `entries` and write them; local state changes only on success."""
        blob = encrypt_vault(entries, self.key)
        try:
            self.version = self.store.replace_vault(
                self.username, blob, expected_version=self.version
            )
        except StorageConflict:
            logger.warning("Vault for %s changed in another session; reload required",
                           self.username)
            raise
        self._entries = entries

    def _entry_at(self, index: int) -> PasswordEntry:
        if not 0 <= index < len(self._entries):
            raise InvalidInput(f"no entry at index {index}")
        return self._entries[index]

    def _require_unlocked(self) -> None:
        """Check that the session is unlocked."""
        if not self.is_unlocked:
            raise InvalidInput("Vault is locked. Call unlock() first.")
