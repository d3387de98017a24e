"""
SecureSuite - Sign / Verify (ECDSA P-256)

Keys travel in standard interchange encodings:
- public key:  SPKI DER   (safe to share)
- private key: PKCS#8 DER (never leaves the signing context)

Signatures use the 64-byte IEEE P1363 form (r || s), which is what the
browser platform API produces, so signatures made here verify there and
vice versa.
"""

import logging
from typing import Union

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)

from .errors import InvalidInput
from .models import KeyPair

logger = logging.getLogger("securesuite.signing")

CURVE = ec.SECP256R1()
COORD_SIZE = 32
SIGNATURE_SIZE = 2 * COORD_SIZE

PublicKeyLike = Union[bytes, ec.EllipticCurvePublicKey]
PrivateKeyLike = Union[bytes, ec.EllipticCurvePrivateKey]


def generate_signing_keys() -> KeyPair:
    """Generate a fresh P-256 key pair (SPKI / PKCS#8 DER)."""
    private_key = ec.generate_private_key(CURVE)
    return KeyPair(
        public_key=export_public_key(private_key.public_key()),
        private_key=export_private_key(private_key),
    )


# =============================================================================
# Key Interchange
# =============================================================================

def export_public_key(public_key: ec.EllipticCurvePublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def export_private_key(private_key: ec.EllipticCurvePrivateKey) -> bytes:
    return private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def import_public_key(spki: bytes) -> ec.EllipticCurvePublicKey:
    """
    Load an SPKI DER public key.

    Raises:
        InvalidInput: If the bytes are not a P-256 public key
    """
    try:
        key = serialization.load_der_public_key(spki)
    except (ValueError, TypeError, UnsupportedAlgorithm):
        raise InvalidInput("not an SPKI-encoded public key") from None
    if not isinstance(key, ec.EllipticCurvePublicKey) or key.curve.name != CURVE.name:
        raise InvalidInput("public key is not ECDSA P-256")
    return key


def import_private_key(pkcs8: bytes) -> ec.EllipticCurvePrivateKey:
    """
    Load a PKCS#8 DER private key.

    Raises:
        InvalidInput: If the bytes are not a P-256 private key
    """
    try:
        key = serialization.load_der_private_key(pkcs8, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm):
        raise InvalidInput("not a PKCS#8-encoded private key") from None
    if not isinstance(key, ec.EllipticCurvePrivateKey) or key.curve.name != CURVE.name:
        raise InvalidInput("private key is not ECDSA P-256")
    return key


# =============================================================================
# Sign / Verify
# =============================================================================

def sign(private_key: PrivateKeyLike, data: bytes) -> bytes:
    """
    Sign data with ECDSA/SHA-256.

    Args:
        private_key: PKCS#8 DER bytes or a loaded key
        data: Bytes to sign

    Returns:
        64-byte signature (r || s)
    """
    if isinstance(private_key, (bytes, bytearray)):
        private_key = import_private_key(bytes(private_key))

    der = private_key.sign(data, ec.ECDSA(hashes.SHA256()))
    r, s = decode_dss_signature(der)
    return r.to_bytes(COORD_SIZE, "big") + s.to_bytes(COORD_SIZE, "big")


def verify(public_key: PublicKeyLike, data: bytes, signature: bytes) -> bool:
    """
    Check a signature. A pure predicate: malformed input returns False.

    Args:
        public_key: SPKI DER bytes or a loaded key
        data: Signed bytes
        signature: 64-byte r || s signature

    Returns:
        True only for the exact (data, key) that produced the signature
    """
    if not isinstance(signature, (bytes, bytearray)) or len(signature) != SIGNATURE_SIZE:
        return False
    try:
        if isinstance(public_key, (bytes, bytearray)):
            public_key = import_public_key(bytes(public_key))
        r = int.from_bytes(signature[:COORD_SIZE], "big")
        s = int.from_bytes(signature[COORD_SIZE:], "big")
        public_key.verify(encode_dss_signature(r, s), data, ec.ECDSA(hashes.SHA256()))
    except (InvalidSignature, InvalidInput, ValueError, TypeError):
        logger.debug("Signature rejected")
        return False
    return True
