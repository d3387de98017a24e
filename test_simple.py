"""
SecureSuite - Attack Demo + Self-Tests

Run with: python test_simple.py   (or: pytest)

This script both proves correctness and demonstrates how common attacks fail:
- Key separation (verifier cannot stand in for the encryption key)
- Wrong password on a vault (fails closed)
- Flipping any bit of a sealed file or its metadata (fails)
- Mutated signatures (rejected, never crash)
"""

import os
import json

import pytest

from securesuite import crypto, files, signing, vault
from securesuite.errors import AuthenticationFailure, InvalidInput
from securesuite.models import FileEnvelope, PasswordEntry, VaultBlob

# Minimum allowed work factor keeps the suite quick
ITERATIONS = crypto.MIN_PBKDF2_ITERATIONS

EXAMPLE_PASSWORD = "correct horse battery staple"
EXAMPLE_ENTRIES = [{"site": "example.com", "user": "a", "pass": "b"}]


def _flip(data: bytes, index: int, bit: int = 0) -> bytes:
    tampered = bytearray(data)
    tampered[index] ^= 1 << bit
    return bytes(tampered)


def test_kdf():
    """Test credential derivation from password."""
    print("Testing KDF (Key Derivation)...")

    salt = os.urandom(16)

    key1, verifier1 = vault.derive_credential("test_password", salt, ITERATIONS)
    key2, verifier2 = vault.derive_credential("test_password", salt, ITERATIONS)

    # Should be deterministic
    assert (key1, verifier1) == (key2, verifier2), "KDF should be deterministic"
    assert len(key1) == 32 and len(verifier1) == 32, "Keys should be 32 bytes"

    # Key separation: the stored verifier is never the encryption key
    assert key1 != verifier1, "Verifier must differ from encryption key"
    master = crypto.stretch_password("test_password", salt, ITERATIONS)
    assert master not in (key1, verifier1), "Raw PBKDF2 output is never used directly"

    # Different password should give different key
    key3, _ = vault.derive_credential("different_password", salt, ITERATIONS)
    assert key1 != key3, "Different passwords should give different keys"

    print("  [OK] KDF works correctly")


def test_kdf_rejects_bad_input():
    """Bad salts, empty passwords and weak work factors fail before any crypto."""
    print("Testing KDF input validation...")

    with pytest.raises(InvalidInput):
        vault.derive_credential("", os.urandom(16), ITERATIONS)
    with pytest.raises(InvalidInput):
        vault.derive_credential("pw", os.urandom(8), ITERATIONS)
    with pytest.raises(InvalidInput):
        vault.derive_credential("pw", os.urandom(16), 1000)

    print("  [OK] Invalid input rejected")


def test_encryption():
    """Test AES-GCM encryption/decryption."""
    print("Testing Encryption...")

    key = os.urandom(32)
    plaintext = b"This is a secret message!"
    ad = {"ctx": "test"}

    nonce, ciphertext = crypto.encrypt(key, plaintext, ad)
    assert crypto.decrypt(key, nonce, ciphertext, ad) == plaintext
    print("  [OK] Encryption/decryption works")

    # Flip a bit in ciphertext
    with pytest.raises(AuthenticationFailure):
        crypto.decrypt(key, nonce, _flip(ciphertext, 0), ad)
    print("  [OK] Tampering detection works")

    # Wrong associated data
    with pytest.raises(AuthenticationFailure):
        crypto.decrypt(key, nonce, ciphertext, {"ctx": "other"})
    print("  [OK] Associated data validation works")

    with pytest.raises(InvalidInput):
        crypto.decrypt(key, nonce[:8], ciphertext, ad)
    print("  [OK] Malformed IV rejected")


def test_base64_helpers():
    """Standard base64, strict on decode."""
    data = os.urandom(33)
    assert crypto.ub64(crypto.b64(data)) == data
    with pytest.raises(InvalidInput):
        crypto.ub64("not base64!!")


def test_vault_round_trip():
    """Entries survive encrypt -> decrypt under the derived key."""
    print("Testing Vault Codec...")

    key, _ = vault.derive_credential(EXAMPLE_PASSWORD, bytes(16), ITERATIONS)
    entries = EXAMPLE_ENTRIES + [
        {"site": "mail.example", "user": "alice", "pass": "pässwörd", "url": "https://mail.example"},
    ]

    blob = vault.encrypt_vault(entries, key)
    assert len(blob.iv) == 12

    restored = vault.decrypt_vault(blob, key)
    assert [e.to_json_dict() for e in restored] == entries, "Round trip must reproduce entries"

    # JSON form (what the server stores) decodes the same
    restored_json = vault.decrypt_vault(blob.model_dump(mode="json"), key)
    assert [e.to_json_dict() for e in restored_json] == entries

    assert vault.decrypt_vault(vault.encrypt_vault([], key), key) == []
    print("  [OK] Vault round trip works")


def test_vault_example_scenario():
    """Salt 0x00*16 vs 0x01*16: same plaintext, different ciphertext."""
    key0, _ = vault.derive_credential(EXAMPLE_PASSWORD, b"\x00" * 16, ITERATIONS)
    key1, _ = vault.derive_credential(EXAMPLE_PASSWORD, b"\x01" * 16, ITERATIONS)

    blob0 = vault.encrypt_vault(EXAMPLE_ENTRIES, key0)
    blob1 = vault.encrypt_vault(EXAMPLE_ENTRIES, key1)

    assert [e.to_json_dict() for e in vault.decrypt_vault(blob0, key0)] == EXAMPLE_ENTRIES
    assert key0 != key1
    assert blob0.ciphertext != blob1.ciphertext


def test_vault_wrong_password():
    """Wrong key fails closed: no empty list, no garbage entries."""
    print("Testing Wrong Password...")

    salt = os.urandom(16)
    key, _ = vault.derive_credential(EXAMPLE_PASSWORD, salt, ITERATIONS)
    wrong, _ = vault.derive_credential("Tr0ub4dor&3", salt, ITERATIONS)
    blob = vault.encrypt_vault(EXAMPLE_ENTRIES, key)

    with pytest.raises(AuthenticationFailure) as exc:
        vault.decrypt_vault(blob, wrong)
    assert "wrong password or corrupted vault" in str(exc.value)

    # Empty vaults get the same protection
    with pytest.raises(AuthenticationFailure):
        vault.decrypt_vault(vault.encrypt_vault([], key), wrong)

    print("  [OK] Wrong password detection works")


def test_vault_tamper_detection():
    """Any flipped bit in iv or ciphertext is rejected."""
    key = os.urandom(32)
    blob = vault.encrypt_vault(EXAMPLE_ENTRIES, key)

    for i in range(len(blob.ciphertext)):
        tampered = VaultBlob(iv=blob.iv, ciphertext=_flip(blob.ciphertext, i, i % 8))
        with pytest.raises(AuthenticationFailure):
            vault.decrypt_vault(tampered, key)

    for i in range(len(blob.iv)):
        tampered = VaultBlob(iv=_flip(blob.iv, i), ciphertext=blob.ciphertext)
        with pytest.raises(AuthenticationFailure):
            vault.decrypt_vault(tampered, key)


def test_vault_iv_uniqueness():
    """10,000 encryptions under one key never repeat an IV."""
    print("Testing IV uniqueness...")

    key = os.urandom(32)
    ivs = {vault.encrypt_vault(EXAMPLE_ENTRIES, key).iv for _ in range(10_000)}
    assert len(ivs) == 10_000

    print("  [OK] 10,000 distinct IVs")


def test_vault_rejects_malformed():
    """Boundary validation: wrong IV size, bad base64, bad entries."""
    key = os.urandom(32)
    with pytest.raises(InvalidInput):
        vault.decrypt_vault({"iv": crypto.b64(b"\x00" * 8), "ciphertext": crypto.b64(b"\x00" * 32)}, key)
    with pytest.raises(InvalidInput):
        vault.decrypt_vault({"iv": "???", "ciphertext": "AAAA"}, key)
    with pytest.raises(InvalidInput):
        vault.decrypt_vault({"ciphertext": crypto.b64(b"\x00" * 32)}, key)
    with pytest.raises(InvalidInput):
        vault.encrypt_vault([{"site": "", "user": "a", "pass": "b"}], key)
    with pytest.raises(InvalidInput):
        vault.encrypt_vault([{"site": "x", "user": "a"}], key)

    # Authentic ciphertext that is not an entry list
    iv, ct = crypto.encrypt(key, b'{"not": "a list"}')
    with pytest.raises(InvalidInput):
        vault.decrypt_vault(VaultBlob(iv=iv, ciphertext=ct), key)


def test_password_entry_aliases():
    entry = PasswordEntry(site="s", user="u", password="p")
    assert entry.to_json_dict() == {"site": "s", "user": "u", "pass": "p"}
    parsed = PasswordEntry.model_validate({"site": "s", "user": "u", "pass": "p"})
    assert parsed.model_dump() == entry.model_dump()


def test_check_password():
    """Verifier confirms the password without being the key."""
    credential, key = vault.new_credential("alice", EXAMPLE_PASSWORD, ITERATIONS)
    assert len(credential.salt) == 16
    assert credential.verifier != key

    assert vault.check_password(EXAMPLE_PASSWORD, credential, ITERATIONS) == key
    with pytest.raises(AuthenticationFailure):
        vault.check_password("wrong", credential, ITERATIONS)


def test_file_envelope():
    """Test secure file seal/open."""
    print("Testing Secure File Envelope...")

    data = os.urandom(1000) + b"report body"
    env = files.seal_file(data, "file-password", name="report.pdf", iterations=ITERATIONS)

    assert env.mac is not None and len(env.mac) == 32
    assert env.iterations == ITERATIONS
    assert files.open_file(env, "file-password") == data
    print("  [OK] Seal/open works")

    # Self-describing: the .secure bytes alone are enough
    raw = files.dump_envelope(env)
    assert files.open_file(raw, "file-password") == data
    assert files.load_envelope(raw).model_dump() == env.model_dump()

    # Key separation inside the envelope
    enc_key, mac_key = files.derive_file_keys("file-password", env.salt, ITERATIONS)
    assert enc_key != mac_key

    # Same file sealed twice shares nothing
    env2 = files.seal_file(data, "file-password", iterations=ITERATIONS)
    assert env2.salt != env.salt and env2.iv != env.iv


def test_file_wrong_password():
    env = files.seal_file(b"secret", "right", iterations=ITERATIONS)
    with pytest.raises(AuthenticationFailure) as exc:
        files.open_file(env, "wrong")
    assert str(exc.value) == "wrong password or corrupted file"


def test_file_tamper_detection():
    """Flipping any bit of ciphertext or metadata yields AuthenticationFailure."""
    print("Testing Secure File Tampering...")

    env = files.seal_file(b"attack at dawn", "pw", name="orders.txt", iterations=ITERATIONS)

    candidates = []
    for i in range(len(env.ciphertext)):
        candidates.append(env.model_copy(update={"ciphertext": _flip(env.ciphertext, i, i % 8)}))
    for i in range(len(env.iv)):
        candidates.append(env.model_copy(update={"iv": _flip(env.iv, i)}))
    for i in range(len(env.salt)):
        candidates.append(env.model_copy(update={"salt": _flip(env.salt, i)}))
    for i in range(len(env.mac)):
        candidates.append(env.model_copy(update={"mac": _flip(env.mac, i)}))
    candidates.append(env.model_copy(update={"name": "orders.exe"}))
    candidates.append(env.model_copy(update={"iterations": env.iterations + 1}))

    for tampered in candidates:
        with pytest.raises(AuthenticationFailure):
            files.open_file(tampered, "pw")

    # Every single-bit flip of the work factor, read back from .secure JSON
    doc = env.model_dump(mode="json")
    for bit in range(48):
        flipped = {**doc, "iterations": env.iterations ^ (1 << bit)}
        with pytest.raises(AuthenticationFailure):
            files.open_file(json.dumps(flipped), "pw")

    print("  [OK] Ciphertext and metadata tampering detected")


def test_file_without_mac():
    """Envelopes without a mac still rely on the GCM tag and header binding."""
    env = files.seal_file(b"legacy", "pw", name="a.txt", iterations=ITERATIONS)
    bare = env.model_copy(update={"mac": None})
    assert files.open_file(bare, "pw") == b"legacy"

    with pytest.raises(AuthenticationFailure):
        files.open_file(bare.model_copy(update={"name": "b.txt"}), "pw")
    with pytest.raises(AuthenticationFailure):
        files.open_file(bare.model_copy(update={"ciphertext": _flip(bare.ciphertext, 0)}), "pw")


def test_file_rejects_malformed():
    env = files.seal_file(b"x", "pw", iterations=ITERATIONS)
    doc = env.model_dump(mode="json")

    with pytest.raises(InvalidInput):
        files.open_file({**doc, "salt": crypto.b64(b"\x00" * 4)}, "pw")
    with pytest.raises(InvalidInput):
        files.open_file({**doc, "iterations": "many"}, "pw")
    with pytest.raises(InvalidInput):
        files.open_file({**doc, "kdf": "md5"}, "pw")
    with pytest.raises(InvalidInput):
        files.open_file(b"{not json", "pw")
    with pytest.raises(InvalidInput):
        files.open_file(env, "")
    with pytest.raises(InvalidInput):
        files.seal_file("text, not bytes", "pw", iterations=ITERATIONS)


def test_file_paths(tmp_path):
    """seal_path/open_path write .secure files and restore the original name."""
    src = tmp_path / "notes.txt"
    src.write_bytes(b"meeting at noon")

    sealed = files.seal_path(src, "pw", iterations=ITERATIONS)
    assert sealed.name == "notes.txt.secure"
    assert isinstance(FileEnvelope.model_validate_json(sealed.read_bytes()), FileEnvelope)

    # Refuse to clobber the original
    with pytest.raises(InvalidInput):
        files.open_path(sealed, "pw")

    src.unlink()
    opened = files.open_path(sealed, "pw")
    assert opened == src
    assert opened.read_bytes() == b"meeting at noon"

    out = files.open_path(sealed, "pw", out=tmp_path / "copy.txt")
    assert out.read_bytes() == b"meeting at noon"


def test_sealed_name_is_basename():
    env = files.seal_file(b"x", "pw", name="../../etc/passwd", iterations=ITERATIONS)
    assert env.name == "passwd"

    with pytest.raises(InvalidInput):
        files.seal_file(b"x", "pw", name="..", iterations=ITERATIONS)


def _authentic_envelope(data: bytes, password: str, name: str) -> FileEnvelope:
    """Seal by hand so the name skips seal_file's basename step (GCM still binds it)."""
    salt = crypto.random_bytes(crypto.SALT_SIZE)
    enc_key, _ = files.derive_file_keys(password, salt, ITERATIONS)
    ad = FileEnvelope.build_associated_data(ITERATIONS, salt, name)
    iv, ciphertext = crypto.encrypt(enc_key, data, ad)
    return FileEnvelope(iterations=ITERATIONS, salt=salt, iv=iv, ciphertext=ciphertext, name=name)


def test_open_path_rejects_unsafe_names(tmp_path):
    """An authentic envelope whose name is a path cannot write outside its folder."""
    for name in ("sub/evil.txt", "../evil.txt", "..", "a\\b.txt"):
        env = _authentic_envelope(b"payload", "pw", name)
        assert files.open_file(env, "pw") == b"payload"

        sealed = tmp_path / "evil.secure"
        sealed.write_bytes(files.dump_envelope(env))
        with pytest.raises(InvalidInput):
            files.open_path(sealed, "pw")

    assert sorted(p.name for p in tmp_path.iterdir()) == ["evil.secure"]
    print("  [OK] Unsafe envelope names refused")


def test_file_iterations_ceiling():
    """A huge work factor is refused before any key derivation runs."""
    env = files.seal_file(b"x", "pw", iterations=ITERATIONS)
    doc = env.model_dump(mode="json")

    loaded = files.load_envelope(json.dumps({**doc, "iterations": ITERATIONS ^ (1 << 40)}))
    with pytest.raises(AuthenticationFailure):
        files.open_file(loaded, "pw")

    with pytest.raises(InvalidInput):
        files.seal_file(b"x", "pw", iterations=crypto.MAX_PBKDF2_ITERATIONS + 1)
    with pytest.raises(InvalidInput):
        crypto.stretch_password("pw", os.urandom(crypto.SALT_SIZE), 1 << 40)


def test_signing():
    """Test ECDSA sign/verify."""
    print("Testing Sign/Verify...")

    keys = signing.generate_signing_keys()
    data = b"release-1.0.tar.gz contents"

    sig = signing.sign(keys.private_key, data)
    assert len(sig) == 64
    assert signing.verify(keys.public_key, data, sig)
    print("  [OK] Signature verifies")

    # Any single mutated byte is rejected
    for i in range(len(sig)):
        assert not signing.verify(keys.public_key, data, _flip(sig, i, i % 8))
    assert not signing.verify(keys.public_key, data + b"!", sig)

    # A different key pair does not verify
    other = signing.generate_signing_keys()
    assert not signing.verify(other.public_key, data, sig)
    print("  [OK] Mutated signatures rejected")


def test_verify_never_raises():
    keys = signing.generate_signing_keys()
    sig = signing.sign(keys.private_key, b"data")

    assert signing.verify(keys.public_key, b"data", b"") is False
    assert signing.verify(keys.public_key, b"data", sig[:63]) is False
    assert signing.verify(keys.public_key, b"data", b"\x00" * 64) is False
    assert signing.verify(keys.public_key, b"data", b"\xff" * 64) is False
    assert signing.verify(b"not a key", b"data", sig) is False
    assert signing.verify(keys.public_key, b"data", "not bytes") is False


def test_key_interchange():
    """SPKI / PKCS#8 round trip through the loaded-key API."""
    keys = signing.generate_signing_keys()

    public = signing.import_public_key(keys.public_key)
    private = signing.import_private_key(keys.private_key)
    assert signing.export_public_key(public) == keys.public_key
    assert signing.export_private_key(private) == keys.private_key

    sig = signing.sign(private, b"payload")
    assert signing.verify(public, b"payload", sig)

    with pytest.raises(InvalidInput):
        signing.import_public_key(b"\x30\x00")
    with pytest.raises(InvalidInput):
        signing.import_private_key(keys.public_key)

    # Private key stays out of reprs
    assert crypto.b64(keys.private_key) not in repr(keys)


def test_password_generation():
    """Test password generation."""
    print("Testing Password Generation...")

    pwd = crypto.generate_password(length=20, use_symbols=True)
    assert len(pwd) == 20, "Should generate requested length"

    pwd_no_sym = crypto.generate_password(length=16, use_symbols=False)
    assert len(pwd_no_sym) == 16
    assert all(c.isalnum() for c in pwd_no_sym), "Should be alphanumeric only"

    with pytest.raises(InvalidInput):
        crypto.generate_password(length=2)
    print("  [OK] Password generation works")


def run_all_tests():
    """Run the headline tests (attack demos + correctness)."""
    print("=" * 70)
    print("SecureSuite - Attack Demo + Test Suite")
    print("=" * 70)
    print()

    tests = [
        test_kdf,
        test_encryption,
        test_vault_round_trip,
        test_vault_wrong_password,
        test_vault_iv_uniqueness,
        test_file_envelope,
        test_file_tamper_detection,
        test_file_iterations_ceiling,
        test_signing,
        test_password_generation,
    ]

    failed = []

    for test in tests:
        try:
            test()
            print()
        except Exception as e:
            print(f"  [FAIL] TEST FAILED: {e}")
            failed.append((test.__name__, e))
            print()

    print("=" * 70)
    if not failed:
        print("[OK] ALL TESTS PASSED!")
    else:
        print(f"[FAIL] {len(failed)} TESTS FAILED:")
        for name, error in failed:
            print(f"  - {name}: {error}")
    print("=" * 70)

    return len(failed) == 0


if __name__ == "__main__":
    import sys
    success = run_all_tests()
    sys.exit(0 if success else 1)
