"""
SecureSuite - Attack Demonstration

Run: python attack_demo.py

What it shows (and why attacks fail):
1) Wrong master password cannot unlock the vault.
2) A leaked verifier cannot decrypt the vault (key separation).
3) Vault ciphertext tampering in the database is detected by AES-GCM.
4) A second session's stale write is refused (no silent lost update).
5) Renaming a sealed file inside its envelope is detected by the MAC.
6) A mutated signature does not verify.
"""

import os
import sqlite3
import tempfile

from securesuite import crypto, files, signing, vault
from securesuite.errors import AuthenticationFailure, StorageConflict
from securesuite.store import IdentityStore
from securesuite.vault import VaultSession


LINE = "=" * 70
ITERATIONS = crypto.MIN_PBKDF2_ITERATIONS


def section(title: str):
    print(f"\n{LINE}\n{title}\n{LINE}")


def main():
    # Prepare a fresh store
    tmp_dir = tempfile.mkdtemp()
    db_path = os.path.join(tmp_dir, "users.db")
    master_password = "CorrectHorseBatteryStaple!"

    store = IdentityStore(db_path)
    alice = VaultSession(store, "alice", ITERATIONS)
    alice.register(master_password)
    alice.add_entry("example.com", "alice@example.com", "super_secret_password",
                    url="https://example.com/login")

    # 1) Wrong master password
    section("Attack 1: Wrong master password")
    try:
        VaultSession(store, "alice", ITERATIONS).unlock("wrong_password")
        print("Unexpected: unlocked with wrong password")
    except AuthenticationFailure as e:
        print(f"Expected failure: {e}")

    # 2) Leaked verifier used as a key
    section("Attack 2: Stolen verifier used as the vault key")
    record = store.fetch("alice")
    try:
        vault.decrypt_vault(record.vault, record.credential.verifier)
        print("Unexpected: verifier decrypted the vault")
    except AuthenticationFailure as e:
        print(f"Expected failure: verifier is not the key ({e})")

    # 3) Ciphertext tampering in the database
    section("Attack 3: Vault ciphertext tampering (AES-GCM)")
    conn = sqlite3.connect(db_path)
    ct = bytearray(conn.execute(
        "SELECT vault_ciphertext FROM users WHERE username = 'alice'"
    ).fetchone()[0])
    original = bytes(ct)
    ct[0] ^= 1  # flip one bit
    conn.execute("UPDATE users SET vault_ciphertext = ? WHERE username = 'alice'", (bytes(ct),))
    conn.commit()
    try:
        VaultSession(store, "alice", ITERATIONS).unlock(master_password)
        print("Unexpected: tampered vault still decrypted")
    except AuthenticationFailure as e:
        print(f"Expected failure: AES-GCM detected tampering ({e})")

    # Restore for the next step
    conn.execute("UPDATE users SET vault_ciphertext = ? WHERE username = 'alice'", (original,))
    conn.commit()
    conn.close()

    # 4) Lost update from a stale session
    section("Attack 4: Two sessions, stale write")
    laptop = VaultSession(store, "alice", ITERATIONS)
    laptop.unlock(master_password)
    phone = VaultSession(store, "alice", ITERATIONS)
    phone.unlock(master_password)
    laptop.add_entry("bank.example", "alice", "laptop-secret")
    try:
        phone.add_entry("mail.example", "alice", "phone-secret")
        print("Unexpected: stale write overwrote the laptop's entry")
    except StorageConflict as e:
        print(f"Expected failure: stale write refused ({e})")

    # 5) Metadata tampering on a sealed file
    section("Attack 5: Renaming a sealed file inside its envelope")
    env = files.seal_file(b"quarterly numbers", "file-pw", name="report.pdf", iterations=ITERATIONS)
    forged = env.model_copy(update={"name": "report.exe"})
    try:
        files.open_file(forged, "file-pw")
        print("Unexpected: renamed envelope opened")
    except AuthenticationFailure as e:
        print(f"Expected failure: metadata MAC mismatch ({e})")

    # 6) Mutated signature
    section("Attack 6: Mutated ECDSA signature")
    keys = signing.generate_signing_keys()
    sig = bytearray(signing.sign(keys.private_key, b"release-1.0"))
    sig[10] ^= 0x80
    if signing.verify(keys.public_key, b"release-1.0", bytes(sig)):
        print("Unexpected: mutated signature verified")
    else:
        print("Expected failure: mutated signature rejected")

    # Cleanup
    store.close()
    for name in os.listdir(tmp_dir):
        os.unlink(os.path.join(tmp_dir, name))
    os.rmdir(tmp_dir)
    print("\nDemo complete. All showcased attacks failed as expected.")


if __name__ == "__main__":
    main()
