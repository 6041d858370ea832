"""Key parsing and secp256k1 operations for Paygate."""

from typing import Tuple

from coincurve import PrivateKey
from cryptography.hazmat.primitives.asymmetric import ec

from .types import KEY_SIZE, InvalidKeyError


def key_from_hex(value: str, name: str = "key") -> bytes:
    """
    Decode a 64-character hex key into 32 bytes.

    Args:
        value: Hex-encoded key (case-insensitive)
        name: Label used in error messages

    Returns:
        32-byte key

    Raises:
        InvalidKeyError: If the value is not valid hex or not 32 bytes
    """
    try:
        data = bytes.fromhex(value)
    except (ValueError, TypeError) as e:
        raise InvalidKeyError(f"{name} is not valid hex") from e

    if len(data) != KEY_SIZE:
        raise InvalidKeyError(f"{name} must be {KEY_SIZE} bytes, got {len(data)}")

    return data


def generate_secret_key() -> bytes:
    """Generate a random secp256k1 secret key (32 bytes)."""
    return PrivateKey().secret


def get_public_key(secret_key: bytes) -> bytes:
    """
    Derive the BIP-340 x-only public key for a secret key.

    Args:
        secret_key: 32-byte secp256k1 secret key

    Returns:
        32-byte x-only public key
    """
    _check_length(secret_key, "Secret key")
    try:
        return PrivateKey(secret_key).public_key_xonly.format()
    except ValueError as e:
        raise InvalidKeyError(f"Invalid secret key: {e}") from e


def generate_keypair() -> Tuple[bytes, bytes]:
    """
    Generate a random key pair.

    Returns:
        Tuple of (secret_key, x_only_public_key)
    """
    secret = generate_secret_key()
    return secret, get_public_key(secret)


def ecdh_shared_x(secret_key: bytes, public_key: bytes) -> bytes:
    """
    Perform secp256k1 ECDH and return the shared point's x-coordinate.

    The x-only public key is lifted to the even-y point, matching BIP-340.

    Args:
        secret_key: Our 32-byte secret key
        public_key: Their 32-byte x-only public key

    Returns:
        32-byte shared x-coordinate
    """
    _check_length(secret_key, "Secret key")
    _check_length(public_key, "Public key")

    try:
        private = ec.derive_private_key(int.from_bytes(secret_key, "big"), ec.SECP256K1())
    except ValueError as e:
        raise InvalidKeyError(f"Invalid secret key: {e}") from e

    try:
        peer = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), b"\x02" + public_key)
    except ValueError as e:
        raise InvalidKeyError(f"Public key is not on secp256k1: {e}") from e

    return private.exchange(ec.ECDH(), peer)


def _check_length(key: bytes, name: str) -> None:
    if len(key) != KEY_SIZE:
        raise InvalidKeyError(f"{name} must be {KEY_SIZE} bytes, got {len(key)}")
