"""
SecureSuite - Identity Store

This file handles:
- SQLite database (credential records + encrypted vaults)
- register / fetch / replace_vault / replace_credential
- Import/export of the original `users.json` backend file

The store never sees a password or an encryption key: it keeps the salt,
the verifier and the opaque vault blob, exactly what the browser pages sent
to the old backend.

Concurrency:
- One connection, one lock: every operation is serialized
- Each operation is one transaction (all or nothing)
- Every vault write bumps `version`; writers that pass `expected_version`
  get StorageConflict instead of silently overwriting a newer vault
- "database is locked/busy" is retried a few times, then reported as
  TransientIOFailure
"""

import os
import json
import time
import sqlite3
import logging
import threading
from typing import Callable, List, Optional, TypeVar, Union

from .errors import InvalidInput, StorageConflict, TransientIOFailure
from .models import Credential, UserRecord, VaultBlob, parse

logger = logging.getLogger("securesuite.store")

T = TypeVar("T")


# =============================================================================
# DATABASE SCHEMA
# =============================================================================

SCHEMA = """
-- One row per identity
CREATE TABLE IF NOT EXISTS users (
    username TEXT PRIMARY KEY,
    salt BLOB NOT NULL,               -- 16 bytes, KDF salt
    verifier BLOB NOT NULL,           -- 32 bytes, HKDF verifier (NOT the key)
    vault_iv BLOB NOT NULL,           -- 12 bytes
    vault_ciphertext BLOB NOT NULL,   -- AES-GCM output (tag included)
    version INTEGER NOT NULL DEFAULT 1,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);
"""

# SQLite PRAGMAs for crash safety
PRAGMAS = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=FULL;
PRAGMA secure_delete=ON;
"""

RETRY_BACKOFF = 0.05     # seconds, doubled per attempt


# =============================================================================
# IDENTITY STORE CLASS
# =============================================================================

class IdentityStore:
    """
    Credential + vault storage behind a serialized interface.

    Usage:
        store = IdentityStore("users.db")
        store.register("alice", salt, verifier, vault)
        record = store.fetch("alice")
        version = store.replace_vault("alice", new_vault, expected_version=record.version)
        store.close()
    """

    def __init__(self, db_path: str, timeout: float = 5.0, retries: int = 3):
        """
        Open (and create if needed) the store.

        Args:
            db_path: Path to SQLite database file (":memory:" for tests)
            timeout: Seconds SQLite waits on a locked database
            retries: Attempts before a busy database becomes TransientIOFailure
        """
        self.db_path = db_path
        self.retries = max(1, retries)
        self._lock = threading.RLock()

        if db_path != ":memory:":
            d = os.path.dirname(db_path)
            if d:
                os.makedirs(d, exist_ok=True)

        try:
            self.conn = sqlite3.connect(db_path, timeout=timeout, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self.conn.executescript(PRAGMAS)
            self.conn.executescript(SCHEMA)
        except sqlite3.OperationalError as e:
            raise TransientIOFailure(f"cannot open identity store: {e}") from e

    @classmethod
    def from_settings(cls, settings) -> "IdentityStore":
        """Open the store described by a config.Settings instance."""
        return cls(settings.db_path, timeout=settings.store_timeout, retries=settings.store_retries)

    def close(self) -> None:
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None

    def __enter__(self) -> "IdentityStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def register(self, username: str, salt: bytes, verifier: bytes, vault: Union[VaultBlob, dict]) -> UserRecord:
        """
        Store a new identity.

        Raises:
            InvalidInput: Missing or malformed fields
            StorageConflict: Username already taken
        """
        if not username or salt is None or verifier is None or vault is None:
            raise InvalidInput("missing fields")
        credential = parse(Credential, {"username": username, "salt": salt, "verifier": verifier})
        blob = parse(VaultBlob, vault)
        now = int(time.time())

        def op():
            try:
                with self.conn:
                    self.conn.execute(
                        """INSERT INTO users (username, salt, verifier, vault_iv, vault_ciphertext,
                                              version, created_at, updated_at)
                           VALUES (?, ?, ?, ?, ?, 1, ?, ?)""",
                        (credential.username, credential.salt, credential.verifier,
                         blob.iv, blob.ciphertext, now, now)
                    )
            except sqlite3.IntegrityError:
                raise StorageConflict(f"user {credential.username!r} already exists") from None

        self._run(op)
        logger.debug("Stored new user %s", credential.username)
        return UserRecord(credential=credential, vault=blob, version=1,
                          created_at=now, updated_at=now)

    def fetch(self, username: str) -> UserRecord:
        """
        Load an identity's credential and current vault.

        Raises:
            StorageConflict: No such user
        """
        if not username:
            raise InvalidInput("missing username")
        row = self._run(lambda: self.conn.execute(
            "SELECT * FROM users WHERE username = ?", (username,)
        ).fetchone())
        if not row:
            raise StorageConflict(f"no such user {username!r}")
        return self._row_to_record(row)

    def replace_vault(
        self,
        username: str,
        vault: Union[VaultBlob, dict],
        expected_version: Optional[int] = None
    ) -> int:
        """
        Replace an identity's vault wholesale.

        Args:
            username: Account name
            vault: New vault blob
            expected_version: Version the caller last read. None means
                last-writer-wins (no lost-update detection)

        Returns:
            The new version number

        Raises:
            StorageConflict: No such user, or expected_version is stale
        """
        if not username or vault is None:
            raise InvalidInput("missing fields")
        blob = parse(VaultBlob, vault)
        return self._update(
            username, expected_version,
            "vault_iv = ?, vault_ciphertext = ?", (blob.iv, blob.ciphertext),
        )

    def replace_credential(
        self,
        username: str,
        credential: Union[Credential, dict],
        vault: Union[VaultBlob, dict],
        expected_version: Optional[int] = None
    ) -> int:
        """
        Replace salt, verifier and vault together (password change).

        Returns:
            The new version number
        """
        cred = parse(Credential, credential)
        blob = parse(VaultBlob, vault)
        if cred.username != username:
            raise InvalidInput("credential belongs to a different user")
        return self._update(
            username, expected_version,
            "salt = ?, verifier = ?, vault_iv = ?, vault_ciphertext = ?",
            (cred.salt, cred.verifier, blob.iv, blob.ciphertext),
        )

    def delete(self, username: str) -> None:
        """Remove an identity. Raises StorageConflict if it does not exist."""
        def op():
            with self.conn:
                cur = self.conn.execute("DELETE FROM users WHERE username = ?", (username,))
            return cur.rowcount

        if not self._run(op):
            raise StorageConflict(f"no such user {username!r}")
        logger.info("Deleted user %s", username)

    def usernames(self) -> List[str]:
        rows = self._run(lambda: self.conn.execute(
            "SELECT username FROM users ORDER BY username"
        ).fetchall())
        return [row["username"] for row in rows]

    # =========================================================================
    # users.json IMPORT / EXPORT
    # =========================================================================

    def export_json(self, path: str) -> int:
        """
        Write every identity in the original backend's users.json shape:
        {username: {"salt", "verifier", "vault": {"iv", "ciphertext"}}}

        Returns:
            Number of identities written
        """
        rows = self._run(lambda: self.conn.execute(
            "SELECT * FROM users ORDER BY username"
        ).fetchall())
        users = {row["username"]: self._row_to_record(row).to_users_json() for row in rows}

        # Write-then-rename so readers never see a half-written file
        tmp_path = f"{path}.tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(users, f, indent=2)
            os.replace(tmp_path, path)
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        logger.info("Exported %d users to %s", len(users), path)
        return len(users)

    def import_json(self, path: str) -> int:
        """
        Load identities from a users.json file. Existing usernames are skipped.

        Every record is validated before anything is written and all inserts
        share one transaction, so a bad file leaves the store untouched.

        Returns:
            Number of identities imported

        Raises:
            InvalidInput: If the file is not a users.json mapping or a record is malformed
        """
        with open(path, "r", encoding="utf-8") as f:
            try:
                users = json.load(f)
            except json.JSONDecodeError:
                raise InvalidInput("users file is not valid JSON") from None
        if not isinstance(users, dict):
            raise InvalidInput("users file must map usernames to records")

        records = []
        for username, record in users.items():
            if not isinstance(record, dict):
                raise InvalidInput(f"record for {username!r} must be an object")
            salt, verifier, vault = record.get("salt"), record.get("verifier"), record.get("vault")
            if not username or salt is None or verifier is None or vault is None:
                raise InvalidInput(f"missing fields in record for {username!r}")
            credential = parse(Credential, {"username": username, "salt": salt, "verifier": verifier})
            records.append((credential, parse(VaultBlob, vault)))
        now = int(time.time())

        def op():
            skipped = []
            with self.conn:
                for credential, blob in records:
                    cur = self.conn.execute(
                        """INSERT OR IGNORE INTO users (username, salt, verifier, vault_iv,
                                                        vault_ciphertext, version, created_at, updated_at)
                           VALUES (?, ?, ?, ?, ?, 1, ?, ?)""",
                        (credential.username, credential.salt, credential.verifier,
                         blob.iv, blob.ciphertext, now, now)
                    )
                    if cur.rowcount == 0:
                        skipped.append(credential.username)
            return skipped

        skipped = self._run(op)
        for username in skipped:
            logger.warning("Skipping existing user %s during import", username)
        imported = len(records) - len(skipped)
        logger.info("Imported %d users from %s", imported, path)
        return imported

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    def _update(self, username: str, expected_version: Optional[int], assignments: str, values: tuple) -> int:
        """Apply a versioned UPDATE; returns the new version."""
        now = int(time.time())

        def op():
            # Check and write in one statement so no other writer can slip in between
            with self.conn:
                cur = self.conn.execute(
                    f"""UPDATE users SET {assignments}, version = version + 1, updated_at = ?
                        WHERE username = ? AND (? IS NULL OR version = ?)""",
                    values + (now, username, expected_version, expected_version)
                )
                row = self.conn.execute(
                    "SELECT version FROM users WHERE username = ?", (username,)
                ).fetchone()
            if not row:
                raise StorageConflict(f"no such user {username!r}")
            if cur.rowcount == 0:
                raise StorageConflict(
                    f"vault for {username!r} is at version {row['version']}, "
                    f"expected {expected_version}"
                )
            return row["version"]

        version = self._run(op)
        logger.debug("Vault for %s now at version %d", username, version)
        return version

    def _run(self, op: Callable[[], T]) -> T:
        """
        Run one store operation under the lock, retrying a busy database.

        Authentication and conflict errors pass straight through; only
        transient SQLite lock contention is retried.
        """
        with self._lock:
            if self.conn is None:
                raise TransientIOFailure("identity store is closed")
            for attempt in range(1, self.retries + 1):
                try:
                    return op()
                except sqlite3.OperationalError as e:
                    message = str(e).lower()
                    if "locked" not in message and "busy" not in message:
                        raise TransientIOFailure(f"identity store unavailable: {e}") from e
                    if attempt == self.retries:
                        raise TransientIOFailure(
                            f"identity store busy after {attempt} attempts"
                        ) from e
                    logger.info("Identity store busy, retrying (%d/%d)", attempt, self.retries)
                    time.sleep(RETRY_BACKOFF * 2 ** (attempt - 1))

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> UserRecord:
        return UserRecord(
            credential=Credential(username=row["username"], salt=row["salt"], verifier=row["verifier"]),
            vault=VaultBlob(iv=row["vault_iv"], ciphertext=row["vault_ciphertext"]),
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
