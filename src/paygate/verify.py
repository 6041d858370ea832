"""
Proof-of-payment verification.

A Lightning payment hash is sha256(preimage). Holding the preimage proves the
invoice was settled, so a token built from a checked preimage is "proved". Some
wallet services never reveal the preimage; for those, settlement can only be
taken on the wallet's word and the token is "trusted" (empty preimage).
"""

import hashlib
import time
from typing import Optional

from .models import VerificationToken
from .types import VerificationError


def verify_preimage(preimage: str, payment_hash: str) -> bool:
    """
    Check that sha256(preimage) equals the payment hash.

    Args:
        preimage: Hex-encoded preimage
        payment_hash: Hex-encoded payment hash (case-insensitive)

    Returns:
        True if the preimage hashes to the payment hash
    """
    try:
        preimage_bytes = bytes.fromhex(preimage)
    except (ValueError, TypeError):
        return False

    return hashlib.sha256(preimage_bytes).hexdigest() == payment_hash.lower()


def is_usable_preimage(preimage: Optional[str]) -> bool:
    """Whether a wallet-reported preimage can be used as proof.

    Wallets report unsettled invoices with an empty or all-zero preimage.
    """
    if not preimage:
        return False
    return preimage.strip("0") != ""


def create_verification_token(
    preimage: str,
    payment_hash: str,
    settled_at: Optional[int] = None,
) -> VerificationToken:
    """
    Create a proved verification token.

    Args:
        preimage: Hex-encoded preimage
        payment_hash: Hex-encoded payment hash
        settled_at: Settlement time (defaults to now)

    Returns:
        VerificationToken carrying the preimage

    Raises:
        VerificationError: If the preimage does not hash to the payment hash
    """
    if not verify_preimage(preimage, payment_hash):
        raise VerificationError("Payment verification failed: invalid preimage")

    return VerificationToken(
        payment_hash=payment_hash.lower(),
        preimage=preimage.lower(),
        settled_at=settled_at if settled_at is not None else int(time.time()),
    )


def create_trusted_token(payment_hash: str, settled_at: Optional[int] = None) -> VerificationToken:
    """
    Create a trusted verification token (no preimage).

    Only use this when the wallet service asserts settlement without returning
    a preimage. Consumers can tell these apart through ``token.confidence``.

    Args:
        payment_hash: Hex-encoded payment hash
        settled_at: Settlement time reported by the wallet (defaults to now)

    Returns:
        VerificationToken with an empty preimage
    """
    return VerificationToken(
        payment_hash=payment_hash.lower(),
        preimage="",
        settled_at=settled_at if settled_at is not None else int(time.time()),
    )
