"""
Settlement reconciliation for Paygate.

The SettlementReconciler decides whether an invoice has been paid using only
what the wallet service reports. It polls lookup_invoice, falls back to
scanning list_transactions, and classifies every verdict as proved (preimage
checked against the payment hash) or trusted (wallet assertion only).
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol, Sequence

from .models import Invoice, Transaction, VerificationToken
from .verify import create_trusted_token, create_verification_token, is_usable_preimage
from .types import PaygateError, SettlementTimeoutError


logger = logging.getLogger(__name__)

SETTLED_STATES = frozenset({"settled", "paid", "complete", "completed"})
UNSETTLED_STATES = frozenset({"pending", "expired", "failed"})


@dataclass
class ReconcilerConfig:
    """Polling policy for the settlement reconciler."""
    poll_interval: float = 3.0
    max_polls: int = 100  # 5 minutes at 3s intervals
    confirm_after: int = 5
    burst_checks: int = 5
    burst_interval: float = 3.0
    list_lookback: int = 10
    list_limit: Optional[int] = 20

    def __post_init__(self) -> None:
        if self.poll_interval < 0 or self.burst_interval < 0:
            raise ValueError("Intervals must not be negative")
        if self.max_polls < 1:
            raise ValueError("max_polls must be at least 1")
        if self.burst_checks < 1:
            raise ValueError("burst_checks must be at least 1")


class ReconcilerEvent(Enum):
    """Events the reconciler reports to its owner."""
    CONFIRM_AVAILABLE = "confirm_available"
    BURST_STARTED = "burst_started"
    BURST_FAILED = "burst_failed"


class WalletLookup(Protocol):
    """The subset of NwcClient the reconciler needs."""

    async def lookup_invoice(
        self,
        payment_hash: Optional[str] = None,
        invoice: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Invoice: ...

    async def list_transactions(
        self,
        from_time: Optional[int] = None,
        until: Optional[int] = None,
        limit: Optional[int] = None,
        type: Optional[str] = "incoming",
        timeout: Optional[float] = None,
    ) -> list[Transaction]: ...


def detect_settlement(record: Transaction, payment_hash: str) -> Optional[VerificationToken]:
    """
    Apply the tiered detection rule to one wallet record.

    1. Proved: a usable (non-empty, non-zero) preimage is present.
    2. Trusted: no usable preimage, but settled_at is set or the state says settled.
    3. Otherwise not settled.

    A record whose state explicitly says pending/expired/failed is never settled.

    Args:
        record: Invoice or transaction reported by the wallet.
        payment_hash: The payment hash being reconciled.

    Returns:
        A VerificationToken, or None if the record does not show settlement.

    Raises:
        VerificationError: If the reported preimage does not hash to payment_hash.
    """
    state = (record.state or "").lower()
    if state in UNSETTLED_STATES:
        return None

    if is_usable_preimage(record.preimage):
        return create_verification_token(record.preimage, payment_hash, record.settled_at)

    if record.settled_at or state in SETTLED_STATES:
        # Trusted path: the wallet asserts settlement without a proof
        return create_trusted_token(payment_hash, record.settled_at)

    return None


def find_matching(
    transactions: Sequence[Transaction],
    payment_hash: str,
    invoice: Optional[str] = None,
) -> list[Transaction]:
    """Transactions keyed by the payment hash, or by the invoice string when the hash is missing."""
    target = payment_hash.lower()
    matches = []
    for tx in transactions:
        if tx.payment_hash and tx.payment_hash.lower() == target:
            matches.append(tx)
        elif invoice and tx.invoice == invoice:
            matches.append(tx)
    return matches


class SettlementReconciler:
    """
    Polls the wallet until an invoice is settled, the budget runs out, or it is cancelled.

    Polls are strictly sequential: each check finishes before the next one is
    scheduled, so at most one wallet request from this reconciler is in flight.
    After ``confirm_after`` misses the owner is told (CONFIRM_AVAILABLE) that it
    may offer ``request_burst()`` or ``submit_preimage()``.
    """

    def __init__(
        self,
        client: WalletLookup,
        payment_hash: str,
        invoice: Optional[str] = None,
        since: Optional[int] = None,
        config: Optional[ReconcilerConfig] = None,
        listener: Optional[Callable[[ReconcilerEvent], None]] = None,
    ) -> None:
        """
        Initialize the reconciler.

        Args:
            client: Wallet client used for lookups.
            payment_hash: Payment hash of the invoice to reconcile.
            invoice: The invoice string (used to match transactions without a hash).
            since: Lower time bound for list_transactions (default: now minus lookback).
            config: Polling policy.
            listener: Called with ReconcilerEvents.
        """
        self.client = client
        self.payment_hash = payment_hash.lower()
        self.invoice = invoice
        self.config = config or ReconcilerConfig()
        self.since = since if since is not None else int(time.time()) - self.config.list_lookback
        self.listener = listener

        self.poll_count = 0
        self.list_supported = True
        self.confirm_available = False
        self._cancelled = False
        self._burst_requested = False
        self._bursting = False
        self._result: Optional[VerificationToken] = None
        self._wake = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def result(self) -> Optional[VerificationToken]:
        return self._result

    # MARK: - Control

    def cancel(self) -> None:
        """Stop polling. Idempotent."""
        self._cancelled = True
        self._wake.set()

    def request_burst(self) -> None:
        """Ask for several rapid re-checks before normal polling resumes. Ignored while a burst is running."""
        if self._cancelled or self._result is not None or self._bursting:
            return
        self._burst_requested = True
        self._wake.set()

    def submit_preimage(self, preimage: str) -> VerificationToken:
        """
        Check a preimage supplied by the payer and stop polling if it is valid.

        Returns:
            The proved VerificationToken.

        Raises:
            VerificationError: If the preimage does not hash to the payment hash.
        """
        token = create_verification_token(preimage, self.payment_hash)
        self._result = token
        self._wake.set()
        return token

    # MARK: - Polling

    async def run(self) -> Optional[VerificationToken]:
        """
        Poll until settled.

        Returns:
            The VerificationToken, or None if cancelled.

        Raises:
            SettlementTimeoutError: If max_polls checks found nothing.
            VerificationError: If the wallet reported a preimage that does not match.
        """
        while self.poll_count < self.config.max_polls:
            await self._sleep(self.config.poll_interval)
            if self._done():
                return self._outcome()

            if self._burst_requested:
                token = await self._burst()
            else:
                self.poll_count += 1
                token = await self.check()
                if token is None and self.poll_count == self.config.confirm_after:
                    self.confirm_available = True
                    self._emit(ReconcilerEvent.CONFIRM_AVAILABLE)

            if token is not None and self._result is None:
                self._result = token
            if self._done():
                return self._outcome()

        logger.info("No settlement for %s after %d polls", self.payment_hash, self.poll_count)
        raise SettlementTimeoutError(self.poll_count)

    async def check(self) -> Optional[VerificationToken]:
        """
        Run one detection pass: lookup_invoice, then list_transactions as fallback.

        Wallet errors are logged and count as a miss. A list_transactions
        failure marks the capability unsupported for the rest of the session.
        """
        try:
            record = await self.client.lookup_invoice(payment_hash=self.payment_hash)
        except PaygateError as e:
            logger.warning("lookup_invoice failed: %s", e)
        else:
            token = detect_settlement(record, self.payment_hash)
            if token is not None:
                return token

        if not self.list_supported:
            return None

        try:
            transactions = await self.client.list_transactions(
                from_time=self.since,
                limit=self.config.list_limit,
            )
        except PaygateError as e:
            logger.info("list_transactions unavailable, disabling fallback: %s", e)
            self.list_supported = False
            return None

        for tx in find_matching(transactions, self.payment_hash, self.invoice):
            token = detect_settlement(tx, self.payment_hash)
            if token is not None:
                return token

        return None

    async def _burst(self) -> Optional[VerificationToken]:
        self._burst_requested = False
        self._bursting = True
        self._emit(ReconcilerEvent.BURST_STARTED)

        try:
            for i in range(self.config.burst_checks):
                if i > 0:
                    await self._sleep(self.config.burst_interval)
                if self._done():
                    return None
                token = await self.check()
                if token is not None:
                    return token
        finally:
            self._bursting = False

        self._emit(ReconcilerEvent.BURST_FAILED)
        return None

    async def _sleep(self, seconds: float) -> None:
        """Wait for the interval, waking early on cancel, burst or submitted proof."""
        if self._done() or self._burst_requested:
            return
        self._wake.clear()
        try:
            await asyncio.wait_for(self._wake.wait(), seconds)
        except asyncio.TimeoutError:
            pass

    def _done(self) -> bool:
        return self._cancelled or self._result is not None

    def _outcome(self) -> Optional[VerificationToken]:
        if self._result is not None and not self._cancelled:
            return self._result
        return None

    def _emit(self, event: ReconcilerEvent) -> None:
        if self.listener is None:
            return
        try:
            self.listener(event)
        except Exception:
            logger.exception("Reconciler listener failed")
