import hashlib
from typing import Tuple, Union

import structlog
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from credledger.exceptions import InvalidArgument, SigningError

logger = structlog.get_logger(__name__)

KeyMaterial = Union[bytes, str]


def _to_bytes(data: Union[bytes, str]) -> bytes:
    if isinstance(data, str):
        return data.encode('utf-8')
    return bytes(data)


def sha256_hex(data: Union[bytes, str]) -> str:
    return hashlib.sha256(_to_bytes(data)).hexdigest()


def generate_keypair() -> Tuple[Ed25519PrivateKey, bytes]:
    private_key = Ed25519PrivateKey.generate()
    return private_key, public_key_bytes(private_key)


def public_key_bytes(private_key: Ed25519PrivateKey) -> bytes:
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def private_key_bytes(private_key: Ed25519PrivateKey) -> bytes:
    return private_key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )


def load_private_key(material: KeyMaterial) -> Ed25519PrivateKey:
    """Load a raw Ed25519 private key from bytes or a hex string."""
    try:
        raw = bytes.fromhex(material) if isinstance(material, str) else material
        return Ed25519PrivateKey.from_private_bytes(raw)
    except (ValueError, TypeError) as e:
        raise InvalidArgument(f"invalid private key: {e}") from e


def load_public_key(material: KeyMaterial) -> Ed25519PublicKey:
    try:
        raw = bytes.fromhex(material) if isinstance(material, str) else material
        return Ed25519PublicKey.from_public_bytes(raw)
    except (ValueError, TypeError) as e:
        raise InvalidArgument(f"invalid public key: {e}") from e


def sign(message: Union[bytes, str], private_key) -> str:
    """Sign ``message`` and return the signature as hex.

    ``private_key`` may be an ``Ed25519PrivateKey`` or its raw/hex encoding.
    """
    if private_key is None:
        raise SigningError("private key is required")
    if not isinstance(private_key, Ed25519PrivateKey):
        try:
            private_key = load_private_key(private_key)
        except InvalidArgument as e:
            raise SigningError(str(e)) from e
    return private_key.sign(_to_bytes(message)).hex()


def verify(message: Union[bytes, str], signature: Union[bytes, str], public_key) -> bool:
    """Check ``signature`` over ``message``.

    Never raises: a missing or malformed key, a signature that is not hex, or
    a signature that does not match all come back as ``False``.
    """
    if not message or not signature or not public_key:
        return False
    try:
        if not isinstance(public_key, Ed25519PublicKey):
            public_key = load_public_key(public_key)
        sig = bytes.fromhex(signature) if isinstance(signature, str) else bytes(signature)
        public_key.verify(sig, _to_bytes(message))
        return True
    except InvalidSignature:
        return False
    except (InvalidArgument, ValueError, TypeError) as e:
        logger.debug("signature_check_malformed", error=str(e))
        return False
