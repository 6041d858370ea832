"""NIP-44 payload framing for Paygate."""

import base64
import binascii
from dataclasses import dataclass

from .types import (
    NIP44_VERSION,
    NONCE_SIZE,
    MAC_SIZE,
    MIN_PAYLOAD_SIZE,
    MAX_PAYLOAD_SIZE,
    MIN_DECODED_SIZE,
    MAX_DECODED_SIZE,
    DecryptionError,
)


@dataclass
class EncryptedPayload:
    """NIP-44 v2 encrypted payload."""
    nonce: bytes  # 32 bytes
    ciphertext: bytes  # padded plaintext length + 2
    mac: bytes  # 32 bytes
    version: int = NIP44_VERSION


def encode_payload(payload: EncryptedPayload) -> str:
    """
    Encode a payload to its base64 wire form.

    Format (before base64):
        [0]        version (0x02)
        [1-32]     nonce (32 bytes)
        [33..n-32] ciphertext (variable)
        [n-32..n]  mac (32 bytes)

    Args:
        payload: EncryptedPayload to encode

    Returns:
        Base64 string
    """
    data = bytes([payload.version]) + payload.nonce + payload.ciphertext + payload.mac
    return base64.b64encode(data).decode("ascii")


def decode_payload(encoded: str) -> EncryptedPayload:
    """
    Decode a base64 wire payload.

    Args:
        encoded: Base64 payload string

    Returns:
        Decoded EncryptedPayload

    Raises:
        DecryptionError: If the payload has an unknown version or invalid size
    """
    length = len(encoded)
    # '#' marks a non-base64 encoding reserved for future versions
    if length == 0 or encoded[0] == "#":
        raise DecryptionError("Unknown version")

    if length < MIN_PAYLOAD_SIZE or length > MAX_PAYLOAD_SIZE:
        raise DecryptionError(f"Invalid payload size: {length}")

    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecryptionError(f"Invalid base64: {e}") from e

    size = len(data)
    if size < MIN_DECODED_SIZE or size > MAX_DECODED_SIZE:
        raise DecryptionError(f"Invalid data size: {size}")

    if data[0] != NIP44_VERSION:
        raise DecryptionError(f"Unknown version {data[0]}")

    return EncryptedPayload(
        version=data[0],
        nonce=data[1 : 1 + NONCE_SIZE],
        ciphertext=data[1 + NONCE_SIZE : size - MAC_SIZE],
        mac=data[size - MAC_SIZE :],
    )


def is_nip44_payload(encoded: str) -> bool:
    """
    Check if a string looks like a NIP-44 v2 payload.

    Args:
        encoded: String to check

    Returns:
        True if the string decodes to a version 2 payload of valid size
    """
    try:
        decode_payload(encoded)
    except DecryptionError:
        return False
    return True
