"""NIP-44 v2 encryption and decryption for Paygate."""

import os
from typing import Optional, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hmac
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.hkdf import HKDFExpand

from .envelope import EncryptedPayload, encode_payload, decode_payload
from .keys import ecdh_shared_x
from .types import (
    NIP44_SALT,
    NONCE_SIZE,
    KEY_SIZE,
    CHACHA_NONCE_SIZE,
    MESSAGE_KEYS_SIZE,
    MIN_PLAINTEXT_SIZE,
    MAX_PLAINTEXT_SIZE,
    InvalidKeyError,
    EncryptionError,
    DecryptionError,
    InvalidMacError,
)


def derive_conversation_key(secret_key: bytes, public_key: bytes) -> bytes:
    """
    Derive the conversation key shared by two parties.

    ECDH x-coordinate followed by HKDF-extract with salt "nip44-v2". The result
    is symmetric: derive(secA, pubB) == derive(secB, pubA).

    Args:
        secret_key: Our 32-byte secret key
        public_key: Their 32-byte x-only public key

    Returns:
        32-byte conversation key
    """
    shared_x = ecdh_shared_x(secret_key, public_key)
    return _hmac_sha256(NIP44_SALT, shared_x)


def derive_message_keys(conversation_key: bytes, nonce: bytes) -> Tuple[bytes, bytes, bytes]:
    """
    Derive per-message keys with HKDF-expand.

    Args:
        conversation_key: 32-byte conversation key
        nonce: 32-byte message nonce

    Returns:
        Tuple of (chacha_key, chacha_nonce, hmac_key)
    """
    if len(conversation_key) != KEY_SIZE:
        raise InvalidKeyError(f"Invalid conversation key length: {len(conversation_key)}")
    if len(nonce) != NONCE_SIZE:
        raise InvalidKeyError(f"Invalid nonce length: {len(nonce)}")

    keys = HKDFExpand(algorithm=SHA256(), length=MESSAGE_KEYS_SIZE, info=nonce).derive(conversation_key)
    chacha_key = keys[0:32]
    chacha_nonce = keys[32 : 32 + CHACHA_NONCE_SIZE]
    hmac_key = keys[32 + CHACHA_NONCE_SIZE : MESSAGE_KEYS_SIZE]
    return chacha_key, chacha_nonce, hmac_key


def calc_padded_len(unpadded_len: int) -> int:
    """
    Compute the bucketed length a plaintext is padded to.

    Args:
        unpadded_len: Plaintext length in bytes

    Returns:
        Padded length (excluding the 2-byte length prefix)
    """
    if unpadded_len <= 0:
        raise EncryptionError(f"Invalid plaintext length: {unpadded_len}")
    if unpadded_len <= 32:
        return 32

    next_power = 1 << (unpadded_len - 1).bit_length()
    chunk = 32 if next_power <= 256 else next_power // 8
    return chunk * ((unpadded_len - 1) // chunk + 1)


def pad(plaintext: bytes) -> bytes:
    """
    Prefix the plaintext with its big-endian u16 length and zero-pad it.

    Raises:
        EncryptionError: If the plaintext is empty or longer than 65535 bytes
    """
    length = len(plaintext)
    if length < MIN_PLAINTEXT_SIZE or length > MAX_PLAINTEXT_SIZE:
        raise EncryptionError(f"Invalid plaintext length: {length}")

    padding = calc_padded_len(length) - length
    return length.to_bytes(2, byteorder="big") + plaintext + bytes(padding)


def unpad(padded: bytes) -> bytes:
    """
    Strip the length prefix and zero padding.

    Raises:
        DecryptionError: If the prefix or total length is inconsistent
    """
    if len(padded) < 2:
        raise DecryptionError("Invalid padding")

    length = int.from_bytes(padded[0:2], byteorder="big")
    if (
        length == 0
        or length > len(padded) - 2
        or len(padded) != 2 + calc_padded_len(length)
    ):
        raise DecryptionError("Invalid padding")

    return padded[2 : 2 + length]


def encrypt(plaintext: str, conversation_key: bytes, nonce: Optional[bytes] = None) -> str:
    """
    Encrypt a message with NIP-44 v2.

    Args:
        plaintext: Message to encrypt
        conversation_key: 32-byte conversation key
        nonce: Optional 32-byte nonce (random if omitted; only pass one for test vectors)

    Returns:
        Base64 payload
    """
    if nonce is None:
        nonce = os.urandom(NONCE_SIZE)

    chacha_key, chacha_nonce, hmac_key = derive_message_keys(conversation_key, nonce)
    padded = pad(plaintext.encode("utf-8"))
    ciphertext = _chacha20(chacha_key, chacha_nonce, padded)
    mac = _hmac_sha256(hmac_key, nonce + ciphertext)

    return encode_payload(EncryptedPayload(nonce=nonce, ciphertext=ciphertext, mac=mac))


def decrypt(payload: str, conversation_key: bytes) -> str:
    """
    Decrypt a NIP-44 v2 payload.

    Args:
        payload: Base64 payload
        conversation_key: 32-byte conversation key

    Returns:
        Decrypted message text

    Raises:
        DecryptionError: On unknown version, bad size or bad padding
        InvalidMacError: If the authentication tag does not match
    """
    decoded = decode_payload(payload)
    chacha_key, chacha_nonce, hmac_key = derive_message_keys(conversation_key, decoded.nonce)

    h = hmac.HMAC(hmac_key, SHA256())
    h.update(decoded.nonce + decoded.ciphertext)
    try:
        h.verify(decoded.mac)
    except InvalidSignature as e:
        raise InvalidMacError("Invalid MAC") from e

    padded = _chacha20(chacha_key, chacha_nonce, decoded.ciphertext)
    try:
        return unpad(padded).decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionError("Plaintext is not valid UTF-8") from e


def _hmac_sha256(key: bytes, data: bytes) -> bytes:
    h = hmac.HMAC(key, SHA256())
    h.update(data)
    return h.finalize()


def _chacha20(key: bytes, nonce: bytes, data: bytes) -> bytes:
    """RFC 8439 ChaCha20 with the block counter starting at 0."""
    # cryptography takes a 16-byte nonce: 4-byte little-endian counter + 12-byte nonce
    cipher = Cipher(algorithms.ChaCha20(key, bytes(4) + nonce), mode=None)
    encryptor = cipher.encryptor()
    return encryptor.update(data) + encryptor.finalize()
