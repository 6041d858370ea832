"""Models for Nostr Wallet Connect requests, invoices and settlement proofs."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class NwcMethod(Enum):
    """Wallet service methods used by Paygate."""
    MAKE_INVOICE = "make_invoice"
    LOOKUP_INVOICE = "lookup_invoice"
    LIST_TRANSACTIONS = "list_transactions"


@dataclass
class NwcRequest:
    """Request payload (JSON before encryption)."""
    method: str
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"method": self.method, "params": self.params}


@dataclass
class NwcError:
    """Error object returned by a wallet service."""
    code: str
    message: str


@dataclass
class NwcResponse:
    """Response payload (JSON after decryption)."""
    result_type: str
    error: Optional[NwcError] = None
    result: Optional[dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NwcResponse":
        """
        Parse a decrypted response.

        Raises:
            ValueError: If the payload is not a response object
        """
        if not isinstance(data, dict):
            raise ValueError("Response must be a JSON object")

        error = None
        raw_error = data.get("error")
        if raw_error:
            if not isinstance(raw_error, dict):
                raise ValueError("Response error must be an object")
            error = NwcError(
                code=str(raw_error.get("code", "INTERNAL")),
                message=str(raw_error.get("message", "")),
            )

        result = data.get("result")
        if result is not None and not isinstance(result, dict):
            raise ValueError("Response result must be an object")

        return cls(
            result_type=str(data.get("result_type", "")),
            error=error,
            result=result,
        )


@dataclass
class Transaction:
    """A wallet transaction record (list_transactions entry)."""
    type: Optional[str] = None
    state: Optional[str] = None
    invoice: Optional[str] = None
    description: Optional[str] = None
    preimage: Optional[str] = None
    payment_hash: Optional[str] = None
    amount: Optional[int] = None  # millisats
    fees_paid: Optional[int] = None
    created_at: Optional[int] = None
    expires_at: Optional[int] = None
    settled_at: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Transaction":
        """Creates a record from a wallet result object, ignoring unknown fields."""
        return cls(
            type=_opt_str(data.get("type")),
            state=_opt_str(data.get("state")),
            invoice=_opt_str(data.get("invoice")),
            description=_opt_str(data.get("description")),
            preimage=_opt_str(data.get("preimage")),
            payment_hash=_opt_str(data.get("payment_hash")),
            amount=_opt_int(data.get("amount")),
            fees_paid=_opt_int(data.get("fees_paid")),
            created_at=_opt_int(data.get("created_at")),
            expires_at=_opt_int(data.get("expires_at")),
            settled_at=_opt_int(data.get("settled_at")),
        )


@dataclass
class Invoice(Transaction):
    """An invoice returned by make_invoice or lookup_invoice.

    The payment hash is the durable key that correlates a created invoice with
    its later settlement signal.
    """

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Invoice":
        """
        Parse an invoice result.

        Raises:
            ValueError: If the invoice string or payment hash is missing
        """
        record = Transaction.from_dict(data)
        if not record.invoice and not record.payment_hash:
            raise ValueError("Invoice result has neither invoice nor payment_hash")
        return cls(**record.__dict__)


class Confidence(Enum):
    """How a settlement was established."""
    PROVED = "proved"
    TRUSTED = "trusted"


@dataclass(frozen=True)
class VerificationToken:
    """Proof that an invoice was paid.

    Build it through ``create_verification_token`` (preimage checked against
    the payment hash) or ``create_trusted_token`` (wallet assertion only, empty
    preimage). The two paths are distinguishable through ``confidence``.
    """

    payment_hash: str
    preimage: str
    settled_at: int

    @property
    def confidence(self) -> Confidence:
        return Confidence.PROVED if self.preimage else Confidence.TRUSTED

    @property
    def is_proved(self) -> bool:
        return self.confidence == Confidence.PROVED

    def to_dict(self) -> dict[str, Any]:
        return {
            "paymentHash": self.payment_hash,
            "preimage": self.preimage,
            "settledAt": self.settled_at,
        }


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _opt_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
