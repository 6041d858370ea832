"""Tests for NIP-44 v2 encryption and decryption."""

import base64

import pytest
from paygate.crypto import (
    calc_padded_len,
    decrypt,
    derive_conversation_key,
    derive_message_keys,
    encrypt,
    pad,
    unpad,
)
from paygate.envelope import decode_payload, encode_payload, is_nip44_payload
from paygate.keys import generate_keypair
from paygate.types import (
    DecryptionError,
    EncryptionError,
    InvalidKeyError,
    InvalidMacError,
    MAX_PAYLOAD_SIZE,
    MIN_PAYLOAD_SIZE,
)
from .test_vectors import (
    ALICE_SECRET_HEX,
    BOB_SECRET_HEX,
    ALICE_PUBLIC_KEY_HEX,
    BOB_PUBLIC_KEY_HEX,
    ALICE_BOB_CONVERSATION_KEY_HEX,
    CONVERSATION_KEY_VECTORS,
    FIXED_NONCE_HEX,
    FIXED_NONCE_PAYLOAD,
    FIXED_NONCE_PLAINTEXT,
    PADDED_LENGTH_VECTORS,
    TEST_MESSAGES,
)


@pytest.fixture
def conversation_key() -> bytes:
    return bytes.fromhex(ALICE_BOB_CONVERSATION_KEY_HEX)


class TestConversationKey:
    """Test conversation key derivation."""

    @pytest.mark.parametrize("sec1, pub2, expected", CONVERSATION_KEY_VECTORS)
    def test_published_vectors(self, sec1: str, pub2: str, expected: str) -> None:
        key = derive_conversation_key(bytes.fromhex(sec1), bytes.fromhex(pub2))
        assert key.hex() == expected

    def test_fixed_keys(self) -> None:
        key = derive_conversation_key(
            bytes.fromhex(ALICE_SECRET_HEX),
            bytes.fromhex(BOB_PUBLIC_KEY_HEX),
        )
        assert key.hex() == ALICE_BOB_CONVERSATION_KEY_HEX

    def test_symmetric(self) -> None:
        """Either side derives the same key from the other's public key."""
        alice_secret, alice_public = generate_keypair()
        bob_secret, bob_public = generate_keypair()

        assert derive_conversation_key(alice_secret, bob_public) == derive_conversation_key(
            bob_secret, alice_public
        )

    def test_fixed_keys_symmetric(self) -> None:
        key = derive_conversation_key(
            bytes.fromhex(BOB_SECRET_HEX),
            bytes.fromhex(ALICE_PUBLIC_KEY_HEX),
        )
        assert key.hex() == ALICE_BOB_CONVERSATION_KEY_HEX

    def test_rejects_short_keys(self) -> None:
        with pytest.raises(InvalidKeyError):
            derive_conversation_key(b"short", bytes.fromhex(BOB_PUBLIC_KEY_HEX))


class TestMessageKeys:
    """Test per-message key derivation."""

    def test_key_sizes(self, conversation_key: bytes) -> None:
        chacha_key, chacha_nonce, hmac_key = derive_message_keys(conversation_key, bytes(32))

        assert len(chacha_key) == 32
        assert len(chacha_nonce) == 12
        assert len(hmac_key) == 32

    def test_different_nonces_give_different_keys(self, conversation_key: bytes) -> None:
        keys1 = derive_message_keys(conversation_key, bytes(32))
        keys2 = derive_message_keys(conversation_key, bytes(31) + b"\x01")

        assert keys1 != keys2

    def test_rejects_wrong_lengths(self, conversation_key: bytes) -> None:
        with pytest.raises(InvalidKeyError, match="nonce"):
            derive_message_keys(conversation_key, bytes(16))

        with pytest.raises(InvalidKeyError, match="conversation key"):
            derive_message_keys(bytes(31), bytes(32))


class TestPadding:
    """Test length bucketing and padding."""

    @pytest.mark.parametrize("unpadded, padded", PADDED_LENGTH_VECTORS)
    def test_padded_length_vectors(self, unpadded: int, padded: int) -> None:
        assert calc_padded_len(unpadded) == padded

    def test_bucket_never_shrinks(self) -> None:
        """Every length fits in its bucket, and buckets grow with the length."""
        previous = 0
        for n in range(1, 65536):
            bucket = calc_padded_len(n)
            assert bucket >= n
            assert bucket >= previous
            previous = bucket

    @pytest.mark.parametrize("length", [1, 32, 33, 64, 65, 65535])
    def test_pad_unpad_roundtrip(self, length: int) -> None:
        plaintext = bytes((i % 251) + 1 for i in range(length))
        padded = pad(plaintext)

        assert len(padded) == 2 + calc_padded_len(length)
        assert padded[:2] == length.to_bytes(2, "big")
        assert unpad(padded) == plaintext

    def test_pad_rejects_empty(self) -> None:
        with pytest.raises(EncryptionError):
            pad(b"")

    def test_pad_rejects_oversized(self) -> None:
        with pytest.raises(EncryptionError):
            pad(b"x" * 65536)

    def test_unpad_rejects_zero_length(self) -> None:
        with pytest.raises(DecryptionError, match="padding"):
            unpad(bytes(34))

    def test_unpad_rejects_length_past_buffer(self) -> None:
        padded = (40).to_bytes(2, "big") + bytes(32)
        with pytest.raises(DecryptionError, match="padding"):
            unpad(padded)

    def test_unpad_rejects_wrong_bucket(self) -> None:
        """The buffer must be exactly the bucket size for the declared length."""
        padded = pad(b"hello") + bytes(32)
        with pytest.raises(DecryptionError, match="padding"):
            unpad(padded)


class TestEncryption:
    """Test message encryption."""

    def test_fixed_nonce_vector(self, conversation_key: bytes) -> None:
        payload = encrypt(FIXED_NONCE_PLAINTEXT, conversation_key, nonce=bytes.fromhex(FIXED_NONCE_HEX))
        assert payload == FIXED_NONCE_PAYLOAD

    def test_decrypt_fixed_nonce_vector(self, conversation_key: bytes) -> None:
        assert decrypt(FIXED_NONCE_PAYLOAD, conversation_key) == FIXED_NONCE_PLAINTEXT

    def test_payload_layout(self, conversation_key: bytes) -> None:
        """Encoded payload is version 2, nonce, ciphertext, mac."""
        payload = encrypt("Hello, wallet!", conversation_key)
        decoded = decode_payload(payload)

        assert decoded.version == 2
        assert len(decoded.nonce) == 32
        assert len(decoded.mac) == 32
        assert len(decoded.ciphertext) == 2 + 32
        assert is_nip44_payload(payload)

    def test_random_nonce(self, conversation_key: bytes) -> None:
        """Same plaintext encrypts differently each time."""
        assert encrypt("same", conversation_key) != encrypt("same", conversation_key)

    def test_payload_size_bounds(self, conversation_key: bytes) -> None:
        smallest = encrypt("a", conversation_key)
        largest = encrypt("a" * 65535, conversation_key)

        assert len(smallest) == MIN_PAYLOAD_SIZE
        assert len(largest) == MAX_PAYLOAD_SIZE

    def test_rejects_empty_plaintext(self, conversation_key: bytes) -> None:
        with pytest.raises(EncryptionError):
            encrypt("", conversation_key)


class TestDecryption:
    """Test message decryption."""

    @pytest.mark.parametrize("name", sorted(TEST_MESSAGES))
    def test_roundtrip(self, conversation_key: bytes, name: str) -> None:
        message = TEST_MESSAGES[name]
        assert decrypt(encrypt(message, conversation_key), conversation_key) == message

    def test_roundtrip_between_parties(self) -> None:
        """Sender and recipient derive keys independently."""
        alice_secret, alice_public = generate_keypair()
        bob_secret, bob_public = generate_keypair()

        payload = encrypt("ping", derive_conversation_key(alice_secret, bob_public))
        assert decrypt(payload, derive_conversation_key(bob_secret, alice_public)) == "ping"

    def test_empty_payload(self, conversation_key: bytes) -> None:
        with pytest.raises(DecryptionError, match="Unknown version"):
            decrypt("", conversation_key)

    def test_reserved_prefix(self, conversation_key: bytes) -> None:
        with pytest.raises(DecryptionError, match="Unknown version"):
            decrypt("#" + "a" * 200, conversation_key)

    def test_short_payload(self, conversation_key: bytes) -> None:
        with pytest.raises(DecryptionError, match="Invalid payload size"):
            decrypt("AAAA", conversation_key)

    def test_truncated_payload(self, conversation_key: bytes) -> None:
        payload = encrypt("Hello, wallet!", conversation_key)
        with pytest.raises(DecryptionError):
            decrypt(payload[:-4], conversation_key)

    def test_wrong_version(self, conversation_key: bytes) -> None:
        data = bytearray(base64.b64decode(encrypt("hi", conversation_key)))
        data[0] = 1
        with pytest.raises(DecryptionError, match="Unknown version 1"):
            decrypt(base64.b64encode(bytes(data)).decode(), conversation_key)

    @pytest.mark.parametrize("position", [0, 1, 17, 33])
    def test_single_byte_tamper(self, conversation_key: bytes, position: int) -> None:
        """Flipping any ciphertext byte fails authentication."""
        decoded = decode_payload(encrypt("Hello, wallet!", conversation_key))
        ciphertext = bytearray(decoded.ciphertext)
        ciphertext[position] ^= 0x01
        decoded.ciphertext = bytes(ciphertext)

        with pytest.raises(InvalidMacError, match="Invalid MAC"):
            decrypt(encode_payload(decoded), conversation_key)

    def test_tampered_mac(self, conversation_key: bytes) -> None:
        decoded = decode_payload(encrypt("Hello, wallet!", conversation_key))
        decoded.mac = bytes(32)

        with pytest.raises(InvalidMacError):
            decrypt(encode_payload(decoded), conversation_key)

    def test_wrong_key(self, conversation_key: bytes) -> None:
        payload = encrypt("secret", conversation_key)
        with pytest.raises(InvalidMacError):
            decrypt(payload, bytes(32))
