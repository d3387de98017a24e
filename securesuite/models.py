"""
SecureSuite - Typed Records

Every JSON shape that crosses a boundary (storage, file, transport) is an
explicit pydantic model. Byte fields are raw `bytes` in Python and standard
base64 strings in JSON, so a record parsed from JSON and a record built in
code look the same to the rest of the library.

Shapes:
    Vault:      {"iv", "ciphertext"}
    File:       {"version", "kdf", "iterations", "salt", "iv", "ciphertext", "mac"?, "name"?}
    Credential: {"username", "salt", "verifier"}
"""

from typing import Annotated, Any, List, Literal, Optional, Type, TypeVar

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    ValidationError,
    field_validator,
)

from . import crypto
from .errors import InvalidInput


def _decode_b64(value: Any) -> Any:
    if isinstance(value, str):
        return crypto.ub64(value)
    return value


B64Bytes = Annotated[
    bytes,
    BeforeValidator(_decode_b64),
    PlainSerializer(crypto.b64, return_type=str, when_used="json"),
]

M = TypeVar("M", bound=BaseModel)


def parse(model: Type[M], data: Any) -> M:
    """
    Validate `data` (dict, JSON str/bytes, or model instance) as `model`.

    Raises:
        InvalidInput: Naming the offending fields, never echoing their values
    """
    if isinstance(data, model):
        return data
    try:
        if isinstance(data, (str, bytes, bytearray)):
            return model.model_validate_json(data)
        return model.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(
            ".".join(str(part) for part in err["loc"]) or model.__name__
            for err in e.errors()
        )
        raise InvalidInput(f"invalid {model.__name__}: {fields}") from None


# =============================================================================
# Password Manager
# =============================================================================

class PasswordEntry(BaseModel):
    """One password manager row: {"site", "user", "pass"} plus optional extras."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    site: str = Field(min_length=1)
    user: str
    password: str = Field(alias="pass")
    url: Optional[str] = None
    notes: Optional[str] = None

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class VaultBlob(BaseModel):
    """Encrypted entry list: fresh IV + AES-GCM ciphertext (tag included)."""

    model_config = ConfigDict(frozen=True)

    iv: B64Bytes
    ciphertext: B64Bytes

    @field_validator("iv")
    @classmethod
    def validate_iv(cls, v: bytes) -> bytes:
        if len(v) != crypto.NONCE_SIZE:
            raise ValueError(f"iv must be {crypto.NONCE_SIZE} bytes")
        return v

    @field_validator("ciphertext")
    @classmethod
    def validate_ciphertext(cls, v: bytes) -> bytes:
        if len(v) < crypto.TAG_SIZE:
            raise ValueError("ciphertext shorter than the GCM tag")
        return v


class Credential(BaseModel):
    """What the server keeps to confirm a password: never the password itself."""

    model_config = ConfigDict(frozen=True)

    username: str = Field(min_length=1, max_length=128)
    salt: B64Bytes
    verifier: B64Bytes

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("username must not be blank")
        return v

    @field_validator("salt")
    @classmethod
    def validate_salt(cls, v: bytes) -> bytes:
        if len(v) != crypto.SALT_SIZE:
            raise ValueError(f"salt must be {crypto.SALT_SIZE} bytes")
        return v

    @field_validator("verifier")
    @classmethod
    def validate_verifier(cls, v: bytes) -> bytes:
        if len(v) != crypto.KEY_SIZE:
            raise ValueError(f"verifier must be {crypto.KEY_SIZE} bytes")
        return v


class UserRecord(BaseModel):
    """A stored identity: credential + current vault + optimistic version."""

    credential: Credential
    vault: VaultBlob
    version: int = Field(default=1, ge=1)
    created_at: int = 0
    updated_at: int = 0

    @property
    def username(self) -> str:
        return self.credential.username

    def to_users_json(self) -> dict:
        """Shape used by the original users.json backend file."""
        cred = self.credential.model_dump(mode="json")
        return {
            "salt": cred["salt"],
            "verifier": cred["verifier"],
            "vault": self.vault.model_dump(mode="json"),
        }


# =============================================================================
# Secure File Storage
# =============================================================================

ENVELOPE_VERSION = 1
ENVELOPE_KDF = "pbkdf2-sha256"


class FileEnvelope(BaseModel):
    """Self-describing sealed file: everything needed to re-derive keys but the password."""

    model_config = ConfigDict(frozen=True)

    version: Literal[1] = ENVELOPE_VERSION
    kdf: Literal["pbkdf2-sha256"] = ENVELOPE_KDF
    # Range is checked by files.open_file so a tampered count reads as an authentication failure
    iterations: int = Field(ge=1)
    salt: B64Bytes
    iv: B64Bytes
    ciphertext: B64Bytes
    mac: Optional[B64Bytes] = None
    name: Optional[str] = None

    @field_validator("salt")
    @classmethod
    def validate_salt(cls, v: bytes) -> bytes:
        if len(v) != crypto.SALT_SIZE:
            raise ValueError(f"salt must be {crypto.SALT_SIZE} bytes")
        return v

    @field_validator("iv")
    @classmethod
    def validate_iv(cls, v: bytes) -> bytes:
        if len(v) != crypto.NONCE_SIZE:
            raise ValueError(f"iv must be {crypto.NONCE_SIZE} bytes")
        return v

    @field_validator("ciphertext")
    @classmethod
    def validate_ciphertext(cls, v: bytes) -> bytes:
        if len(v) < crypto.TAG_SIZE:
            raise ValueError("ciphertext shorter than the GCM tag")
        return v

    @field_validator("mac")
    @classmethod
    def validate_mac(cls, v: Optional[bytes]) -> Optional[bytes]:
        if v is not None and len(v) != crypto.MAC_SIZE:
            raise ValueError(f"mac must be {crypto.MAC_SIZE} bytes")
        return v

    @staticmethod
    def build_associated_data(iterations: int, salt: bytes, name: Optional[str]) -> dict:
        """Header fields bound into the GCM tag (the IV is bound by GCM itself)."""
        return {
            "version": ENVELOPE_VERSION,
            "kdf": ENVELOPE_KDF,
            "iterations": iterations,
            "salt": crypto.b64(salt),
            "name": name,
        }

    def associated_data(self) -> dict:
        return self.build_associated_data(self.iterations, self.salt, self.name)

    def header(self) -> dict:
        """Every metadata field; MAC input together with the ciphertext."""
        return {**self.associated_data(), "iv": crypto.b64(self.iv)}


# =============================================================================
# Signing
# =============================================================================

class KeyPair(BaseModel):
    """ECDSA key pair in interchange encodings (SPKI DER / PKCS#8 DER)."""

    model_config = ConfigDict(frozen=True)

    public_key: B64Bytes
    private_key: B64Bytes = Field(repr=False)


def entries_from_json(items: Any) -> List[PasswordEntry]:
    """Validate a decoded JSON list as password entries."""
    if not isinstance(items, list):
        raise InvalidInput("vault payload must be a JSON list of entries")
    return [parse(PasswordEntry, item) for item in items]
