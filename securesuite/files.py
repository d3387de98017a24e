"""
SecureSuite - Secure File Storage

Seals arbitrary file bytes into a self-describing JSON envelope
(the `.secure` file format) and opens it again.

Envelope:
    {"version": 1, "kdf": "pbkdf2-sha256", "iterations": 150000,
     "salt": <16B>, "iv": <12B>, "ciphertext": <bytes>, "mac": <32B>, "name": "report.pdf"}

Security Architecture:
    1. Password + salt → PBKDF2 → master key
    2. Master key → HKDF("...-file-enc-v1") → encryption key
       Master key → HKDF("...-file-mac-v1") → MAC key
       (same salt, independent keys: confidentiality and integrity never share a key)
    3. AES-256-GCM over the file, header (version/kdf/iterations/salt/name)
       bound as associated data
    4. HMAC-SHA256 over canonical header + ciphertext → "mac"

Opening checks the MAC first (cheap, fails fast), then decrypts.
Both failures report the SAME error so an attacker cannot tell which check
tripped.
"""

import logging
from pathlib import Path
from typing import Optional, Tuple, Union

from . import crypto
from .errors import AuthenticationFailure, InvalidInput
from .models import FileEnvelope, parse

logger = logging.getLogger("securesuite.files")

FILE_KEY_LABEL = "securesuite-file-enc-v1"
FILE_MAC_LABEL = "securesuite-file-mac-v1"
SECURE_SUFFIX = ".secure"

_OPEN_FAILED = "wrong password or corrupted file"
_UNSAFE_NAMES = ("", ".", "..")


def derive_file_keys(password: str, salt: bytes, iterations: int = crypto.PBKDF2_ITERATIONS) -> Tuple[bytes, bytes]:
    """
    Derive (encryption_key, mac_key) for one envelope.

    Returns:
        Two independent 32-byte keys
    """
    master = crypto.stretch_password(password, salt, iterations)
    subkeys = crypto.derive_subkeys(master, (FILE_KEY_LABEL, FILE_MAC_LABEL), salt=salt)
    return subkeys[FILE_KEY_LABEL], subkeys[FILE_MAC_LABEL]


def _mac_input(envelope: FileEnvelope) -> bytes:
    return crypto.canonical_json(envelope.header()) + envelope.ciphertext


def seal_file(
    data: bytes,
    password: str,
    name: Optional[str] = None,
    iterations: int = crypto.PBKDF2_ITERATIONS
) -> FileEnvelope:
    """
    Encrypt file bytes into a new envelope.

    Every call draws a fresh salt and IV, so sealing the same file twice
    gives two unrelated envelopes.

    Args:
        data: File contents
        password: Password protecting the file
        name: Original file name (authenticated, restored on open)
        iterations: PBKDF2 work factor written into the envelope

    Returns:
        FileEnvelope with mac set
    """
    if not isinstance(data, (bytes, bytearray)):
        raise InvalidInput("file data must be bytes")
    if name is not None:
        name = Path(name).name or None
    if name is not None:
        _plain_name(name)

    salt = crypto.random_bytes(crypto.SALT_SIZE)
    enc_key, mac_key = derive_file_keys(password, salt, iterations)

    ad = FileEnvelope.build_associated_data(iterations, salt, name)
    iv, ciphertext = crypto.encrypt(enc_key, bytes(data), ad)

    unsigned = FileEnvelope(
        iterations=iterations, salt=salt, iv=iv, ciphertext=ciphertext, name=name,
    )
    mac = crypto.compute_mac(mac_key, _mac_input(unsigned))
    logger.debug("Sealed %d bytes (%d iterations)", len(data), iterations)
    return unsigned.model_copy(update={"mac": mac})


def open_file(envelope: Union[FileEnvelope, dict, str, bytes], password: str) -> bytes:
    """
    Verify and decrypt an envelope.

    Args:
        envelope: FileEnvelope, its dict form, or `.secure` JSON text
        password: Password used at seal time

    Returns:
        Original file bytes

    Raises:
        InvalidInput: If the envelope is malformed or the password empty
        AuthenticationFailure: Wrong password, or envelope tampered with
    """
    env = parse(FileEnvelope, envelope)

    # Untrusted until the MAC verifies, and the KDF has to run first
    if not crypto.iterations_in_range(env.iterations):
        logger.warning("Secure file rejected (iterations out of range)")
        raise AuthenticationFailure(_OPEN_FAILED)

    enc_key, mac_key = derive_file_keys(password, env.salt, env.iterations)

    # MAC first: cheaper than GCM and rejects header tampering up front
    if env.mac is not None and not crypto.verify_mac(mac_key, _mac_input(env), env.mac):
        logger.warning("Secure file rejected")
        raise AuthenticationFailure(_OPEN_FAILED)

    try:
        return crypto.decrypt(enc_key, env.iv, env.ciphertext, env.associated_data())
    except AuthenticationFailure:
        logger.warning("Secure file rejected")
        raise AuthenticationFailure(_OPEN_FAILED) from None


# =============================================================================
# .secure File Format
# =============================================================================

def dump_envelope(envelope: FileEnvelope) -> bytes:
    """Serialize an envelope as UTF-8 JSON (base64 byte fields)."""
    return envelope.model_dump_json(exclude_none=True).encode("utf-8")


def load_envelope(data: Union[bytes, str]) -> FileEnvelope:
    """Parse `.secure` file contents."""
    return parse(FileEnvelope, data)


def seal_path(
    path: Union[str, Path],
    password: str,
    out: Optional[Union[str, Path]] = None,
    iterations: int = crypto.PBKDF2_ITERATIONS,
    overwrite: bool = False
) -> Path:
    """
    Seal a file on disk; writes `<path>.secure` unless `out` is given.

    Returns:
        Path of the written envelope
    """
    src = Path(path)
    dest = Path(out) if out else src.with_name(src.name + SECURE_SUFFIX)
    _check_writable(dest, overwrite)

    envelope = seal_file(src.read_bytes(), password, name=src.name, iterations=iterations)
    dest.write_bytes(dump_envelope(envelope))
    logger.info("Sealed %s -> %s", src.name, dest.name)
    return dest


def open_path(
    path: Union[str, Path],
    password: str,
    out: Optional[Union[str, Path]] = None,
    overwrite: bool = False
) -> Path:
    """
    Open a `.secure` file; restores the original name next to it unless `out` is given.

    Returns:
        Path of the written plaintext file
    """
    src = Path(path)
    envelope = load_envelope(src.read_bytes())
    data = open_file(envelope, password)

    if out:
        dest = Path(out)
    elif envelope.name:
        dest = src.with_name(_plain_name(envelope.name))
    elif src.suffix == SECURE_SUFFIX:
        dest = src.with_suffix("")
    else:
        dest = src.with_name(src.name + ".out")
    _check_writable(dest, overwrite)

    dest.write_bytes(data)
    logger.info("Opened %s -> %s", src.name, dest.name)
    return dest


def _plain_name(name: str) -> str:
    """Reject names that would leave the target directory."""
    if name in _UNSAFE_NAMES or any(c in name for c in ("/", "\\", "\0")):
        raise InvalidInput("envelope name is not a plain file name")
    return name


def _check_writable(dest: Path, overwrite: bool) -> None:
    if dest.exists() and not overwrite:
        raise InvalidInput(f"{dest.name} already exists")
