"""
Signed Nostr events for Paygate.

This module computes NIP-01 event ids and signs/verifies them with BIP-340
Schnorr signatures, so requests to the wallet service can be authenticated
and responses can be checked before they are trusted.
"""

import hashlib
import json
import os
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from coincurve import PrivateKey, PublicKeyXOnly

from .keys import get_public_key
from .types import KEY_SIZE, InvalidKeyError


# Size constants
SCHNORR_SIGNATURE_SIZE = 64
EVENT_ID_SIZE = 32


@dataclass
class Event:
    """A Nostr event (NIP-01)."""
    pubkey: str  # 64 hex chars, x-only
    created_at: int
    kind: int
    tags: list[list[str]] = field(default_factory=list)
    content: str = ""
    id: str = ""
    sig: str = ""

    def tag_values(self, name: str) -> list[str]:
        """Returns the first value of every tag with the given name, in order."""
        return [tag[1] for tag in self.tags if len(tag) >= 2 and tag[0] == name]

    def first_tag(self, name: str) -> Optional[str]:
        """Returns the first value of the first tag with the given name."""
        values = self.tag_values(name)
        return values[0] if values else None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the relay wire representation."""
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": self.tags,
            "content": self.content,
            "sig": self.sig,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Event":
        """
        Parse an event received from a relay.

        Raises:
            ValueError: If a required field is missing or has the wrong type
        """
        try:
            event = cls(
                id=str(data["id"]),
                pubkey=str(data["pubkey"]),
                created_at=int(data["created_at"]),
                kind=int(data["kind"]),
                tags=[[str(v) for v in tag] for tag in data["tags"]],
                content=str(data["content"]),
                sig=str(data["sig"]),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed event: {e}") from e
        return event


def serialize_event(event: Event) -> str:
    """
    Canonical NIP-01 serialization used for the event id.

    The array is [0, pubkey, created_at, kind, tags, content]; tag order is kept.
    """
    return json.dumps(
        [0, event.pubkey, event.created_at, event.kind, event.tags, event.content],
        separators=(",", ":"),
        ensure_ascii=False,
    )


def compute_event_id(event: Event) -> str:
    """
    Compute the event id (sha256 of the canonical serialization).

    Args:
        event: The event (id and sig fields are ignored)

    Returns:
        64-character hex id
    """
    return hashlib.sha256(serialize_event(event).encode("utf-8")).hexdigest()


def sign_event(event: Event, secret_key: bytes) -> Event:
    """
    Compute the id of an event and sign it.

    Args:
        event: Unsigned event; its pubkey must belong to secret_key
        secret_key: 32-byte secp256k1 secret key

    Returns:
        A copy of the event with id and sig set

    Raises:
        InvalidKeyError: If the key does not match the event's pubkey
    """
    if get_public_key(secret_key).hex() != event.pubkey.lower():
        raise InvalidKeyError("Secret key does not match event pubkey")

    event_id = compute_event_id(event)
    signature = PrivateKey(secret_key).sign_schnorr(bytes.fromhex(event_id), os.urandom(32))
    return replace(event, id=event_id, sig=signature.hex())


def verify_event(event: Event) -> bool:
    """
    Verify that an event's id matches its content and its signature is valid.

    Args:
        event: The signed event

    Returns:
        True if the id and the Schnorr signature are valid, False otherwise
    """
    if event.id != compute_event_id(event):
        return False

    try:
        pubkey = bytes.fromhex(event.pubkey)
        signature = bytes.fromhex(event.sig)
        message = bytes.fromhex(event.id)
    except ValueError:
        return False

    if len(pubkey) != KEY_SIZE or len(signature) != SCHNORR_SIGNATURE_SIZE or len(message) != EVENT_ID_SIZE:
        return False

    try:
        return PublicKeyXOnly(pubkey).verify(signature, message)
    except ValueError:
        return False
