"""
Paygate - Lightning micropayment gate over Nostr Wallet Connect

Python implementation of a payment gate that talks to a NIP-47 wallet service
using NIP-44 v2 encryption and verifies settlement by proof of payment.
"""

from .keys import generate_keypair, generate_secret_key, get_public_key
from .crypto import (
    derive_conversation_key,
    derive_message_keys,
    calc_padded_len,
    pad,
    unpad,
    encrypt,
    decrypt,
)
from .envelope import EncryptedPayload, encode_payload, decode_payload, is_nip44_payload
from .event import Event, compute_event_id, sign_event, verify_event
from .uri import ConnectionParams, parse_nwc_uri, build_nwc_uri
from .types import (
    NWC_REQUEST_KIND,
    NWC_RESPONSE_KIND,
    PaygateError,
    ConnectionStringError,
    TransportError,
    RelayRejectedError,
    CryptoError,
    InvalidKeyError,
    EncryptionError,
    DecryptionError,
    InvalidMacError,
    ProtocolError,
    CorrelationError,
    RequestTimeoutError,
    SettlementTimeoutError,
    VerificationError,
    StateError,
    IllegalTransitionError,
)
from .models import (
    NwcMethod,
    NwcRequest,
    NwcError,
    NwcResponse,
    Transaction,
    Invoice,
    Confidence,
    VerificationToken,
)
from .verify import (
    verify_preimage,
    create_verification_token,
    create_trusted_token,
)
from .relay import Transport, RelayTransport
from .client import NwcClient
from .state import PaymentState, PaymentData, PaymentStateMachine
from .reconciler import (
    ReconcilerConfig,
    ReconcilerEvent,
    SettlementReconciler,
    detect_settlement,
)
from .gate import GateConfig, ExternalPayer, PaymentGate

__version__ = "0.1.0"

__all__ = [
    # Keys
    "generate_keypair",
    "generate_secret_key",
    "get_public_key",
    # Crypto
    "derive_conversation_key",
    "derive_message_keys",
    "calc_padded_len",
    "pad",
    "unpad",
    "encrypt",
    "decrypt",
    # Envelope
    "EncryptedPayload",
    "encode_payload",
    "decode_payload",
    "is_nip44_payload",
    # Events
    "Event",
    "compute_event_id",
    "sign_event",
    "verify_event",
    # Connection string
    "ConnectionParams",
    "parse_nwc_uri",
    "build_nwc_uri",
    # Constants
    "NWC_REQUEST_KIND",
    "NWC_RESPONSE_KIND",
    # Errors
    "PaygateError",
    "ConnectionStringError",
    "TransportError",
    "RelayRejectedError",
    "CryptoError",
    "InvalidKeyError",
    "EncryptionError",
    "DecryptionError",
    "InvalidMacError",
    "ProtocolError",
    "CorrelationError",
    "RequestTimeoutError",
    "SettlementTimeoutError",
    "VerificationError",
    "StateError",
    "IllegalTransitionError",
    # Models
    "NwcMethod",
    "NwcRequest",
    "NwcError",
    "NwcResponse",
    "Transaction",
    "Invoice",
    "Confidence",
    "VerificationToken",
    # Verification
    "verify_preimage",
    "create_verification_token",
    "create_trusted_token",
    # Relay
    "Transport",
    "RelayTransport",
    # Client
    "NwcClient",
    # State
    "PaymentState",
    "PaymentData",
    "PaymentStateMachine",
    # Reconciler
    "ReconcilerConfig",
    "ReconcilerEvent",
    "SettlementReconciler",
    "detect_settlement",
    # Gate
    "GateConfig",
    "ExternalPayer",
    "PaymentGate",
]
