"""Type definitions for Paygate."""

from typing import Optional


# NIP-44 v2 constants
NIP44_VERSION = 0x02
NIP44_SALT = b"nip44-v2"
NONCE_SIZE = 32
MAC_SIZE = 32
KEY_SIZE = 32
CHACHA_NONCE_SIZE = 12
MESSAGE_KEYS_SIZE = 76  # chacha key (32) + chacha nonce (12) + hmac key (32)

MIN_PLAINTEXT_SIZE = 1
MAX_PLAINTEXT_SIZE = 65535

# Encoded (base64) and decoded payload bounds
MIN_PAYLOAD_SIZE = 132
MAX_PAYLOAD_SIZE = 87472
MIN_DECODED_SIZE = 99
MAX_DECODED_SIZE = 65603

# NIP-47 (Nostr Wallet Connect) constants
NWC_URI_SCHEME = "nostr+walletconnect"
NWC_REQUEST_KIND = 23194
NWC_RESPONSE_KIND = 23195
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_CONNECT_TIMEOUT = 30.0

# Clock-skew tolerance for the response subscription filter
SUBSCRIPTION_SINCE_SKEW = 10

MSATS_PER_SAT = 1000


# Exception types
class PaygateError(Exception):
    """Base exception for Paygate errors."""
    pass


class ConnectionStringError(PaygateError):
    """Malformed wallet connection string."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        self.field = field
        super().__init__(message)


class TransportError(PaygateError):
    """Relay connection could not be opened, timed out, or closed mid-flight."""
    pass


class RelayRejectedError(TransportError):
    """The relay refused a published event or closed a subscription."""
    pass


class CryptoError(PaygateError):
    """Base class for cryptographic failures."""
    pass


class InvalidKeyError(CryptoError):
    """Key material has the wrong length or is not a valid curve point/scalar."""
    pass


class EncryptionError(CryptoError):
    """Encryption failed."""
    pass


class DecryptionError(CryptoError):
    """Decryption failed (unknown version, bad size, bad padding)."""
    pass


class InvalidMacError(DecryptionError):
    """Authentication tag mismatch."""
    pass


class ProtocolError(PaygateError):
    """The wallet service returned an explicit error object."""

    def __init__(self, code: str, message: str, method: Optional[str] = None) -> None:
        self.code = code
        self.message = message
        self.method = method
        prefix = f"{method} failed: " if method else ""
        super().__init__(f"{prefix}{message} ({code})")


class CorrelationError(PaygateError):
    """A correlated response could not be decrypted or parsed."""
    pass


class RequestTimeoutError(PaygateError, TimeoutError):
    """No correlated response arrived within the request budget."""

    def __init__(self, method: str, timeout: float) -> None:
        self.method = method
        self.timeout = timeout
        super().__init__(f"NWC request timeout: {method} ({timeout:g}s)")


class SettlementTimeoutError(PaygateError, TimeoutError):
    """The reconciler exhausted its poll budget without a verdict."""

    def __init__(self, polls: int) -> None:
        self.polls = polls
        super().__init__(f"Payment not detected after {polls} polls")


class VerificationError(PaygateError):
    """A proof of payment does not hash to the target payment hash."""
    pass


class StateError(PaygateError):
    """Payment lifecycle misuse."""
    pass


class IllegalTransitionError(StateError):
    """A transition outside the payment state table was attempted."""

    def __init__(self, source: str, target: str) -> None:
        self.source = source
        self.target = target
        super().__init__(f"Invalid state transition: {source} -> {target}")
