"""
Payment gate orchestration.

PaymentGate drives one payment from invoice creation to a verified proof. It
owns the NwcClient, the PaymentStateMachine and, while waiting for payment,
a SettlementReconciler. A UI layer talks to it through ``start()``,
``retry()``, ``confirm_paid()`` and ``submit_preimage()`` and observes it
through state-change and affordance listeners.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

from .client import NwcClient
from .models import VerificationToken
from .reconciler import ReconcilerConfig, ReconcilerEvent, SettlementReconciler
from .state import PaymentData, PaymentState, PaymentStateMachine, StateListener
from .types import (
    DEFAULT_REQUEST_TIMEOUT,
    MSATS_PER_SAT,
    PaygateError,
    SettlementTimeoutError,
    StateError,
    VerificationError,
)
from .uri import ConnectionParams
from .verify import create_verification_token


logger = logging.getLogger(__name__)

PAYMENT_TIMEOUT_MESSAGE = "Payment timeout: invoice expired"

AffordanceListener = Callable[[ReconcilerEvent], None]
SuccessHook = Callable[[VerificationToken], None]


@dataclass
class GateConfig:
    """
    Settings for a payment gate.

    Attributes:
        amount: Price in sats (converted to millisats on the wire).
        description: Invoice description.
        expiry: Optional invoice expiry in seconds.
        request_timeout: Seconds to wait for each wallet response.
        reconciler: Polling policy while awaiting payment.
    """

    amount: int
    description: str = "Verification payment"
    expiry: Optional[int] = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    reconciler: ReconcilerConfig = field(default_factory=ReconcilerConfig)

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise ValueError("amount must be a positive number of sats")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")


class ExternalPayer(ABC):
    """A one-click payment provider (e.g. a browser-extension wallet).

    The gate treats it as a black box: given an invoice it returns a
    preimage, or None if the payment was not made.
    """

    def is_available(self) -> bool:
        """Whether the provider can be offered for this payment."""
        return True

    @abstractmethod
    async def pay(self, invoice: str) -> Optional[str]:
        """Pay the invoice. Returns the hex preimage, or None."""
        pass


class PaymentGate:
    """
    Gates an action behind a Lightning micropayment.

    Example usage:
        ```python
        gate = PaymentGate(
            "nostr+walletconnect://...",
            GateConfig(amount=21),
            on_success=lambda token: unlock(token.to_dict()),
        )
        gate.on_state_change(lambda state, data: render(state, data))

        token = await gate.start()
        ```
    """

    def __init__(
        self,
        wallet: Union[str, ConnectionParams],
        config: GateConfig,
        on_success: Optional[SuccessHook] = None,
        external_payer: Optional[ExternalPayer] = None,
        client: Optional[NwcClient] = None,
    ) -> None:
        """
        Initialize the gate.

        Args:
            wallet: NWC connection string (or parsed params) of the receiving wallet.
            config: Gate settings.
            on_success: Called once with the VerificationToken on verification.
            external_payer: Optional one-click payment provider.
            client: Preconfigured NwcClient (default: built from ``wallet``).
        """
        self.config = config
        self.on_success = on_success
        self.external_payer = external_payer
        self.client = client or NwcClient(wallet, request_timeout=config.request_timeout)

        self.machine = PaymentStateMachine()
        self.token: Optional[VerificationToken] = None
        self._reconciler: Optional[SettlementReconciler] = None
        self._affordance_listeners: list[AffordanceListener] = []
        self._generation = 0

    @property
    def state(self) -> PaymentState:
        return self.machine.state

    @property
    def data(self) -> PaymentData:
        return self.machine.data

    # MARK: - Observers

    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        """Register a ``(state, data)`` listener. Returns an unsubscribe callable."""
        return self.machine.on_state_change(listener)

    def on_affordance(self, listener: AffordanceListener) -> Callable[[], None]:
        """Register a listener for confirm/burst affordance events. Returns an unsubscribe callable."""
        self._affordance_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._affordance_listeners:
                self._affordance_listeners.remove(listener)

        return unsubscribe

    # MARK: - Lifecycle

    async def start(self) -> Optional[VerificationToken]:
        """
        Run one payment: create the invoice, offer the external payer, then poll.

        Failures end in the ``failed`` state rather than being raised.

        Returns:
            The VerificationToken, or None if the payment failed or was abandoned.

        Raises:
            IllegalTransitionError: If the gate is not idle.
        """
        generation = self._generation
        self.machine.transition(PaymentState.CREATING_INVOICE)

        try:
            invoice = await self.client.make_invoice(
                self.config.amount * MSATS_PER_SAT,
                self.config.description,
                expiry=self.config.expiry,
            )
        except PaygateError as e:
            logger.warning("Invoice creation failed: %s", e)
            if generation == self._generation:
                self._fail(str(e))
            return None

        if generation != self._generation:
            return None

        if not invoice.invoice or not invoice.payment_hash:
            self._fail("Wallet returned an incomplete invoice")
            return None

        logger.info("Invoice created, payment hash %s", invoice.payment_hash)
        self.machine.transition(
            PaymentState.AWAITING_PAYMENT,
            invoice=invoice.invoice,
            payment_hash=invoice.payment_hash,
            amount=self.config.amount,
        )

        if self.external_payer is not None and self.external_payer.is_available():
            settled = await self._pay_externally(generation, invoice.invoice, invoice.payment_hash)
            if settled or generation != self._generation:
                return self.token
            if self.state is not PaymentState.AWAITING_PAYMENT:
                return self.token

        since = None
        if invoice.created_at is not None:
            since = invoice.created_at - self.config.reconciler.list_lookback

        reconciler = SettlementReconciler(
            self.client,
            invoice.payment_hash,
            invoice=invoice.invoice,
            since=since,
            config=self.config.reconciler,
            listener=self._emit_affordance,
        )
        self._reconciler = reconciler

        try:
            token = await reconciler.run()
        except SettlementTimeoutError:
            if generation == self._generation:
                self._fail(PAYMENT_TIMEOUT_MESSAGE)
            return None
        except VerificationError as e:
            if generation == self._generation:
                self._fail(str(e))
            return None
        finally:
            if self._reconciler is reconciler:
                self._reconciler = None

        if token is not None and generation == self._generation:
            self._complete(token)
        return self.token

    async def _pay_externally(self, generation: int, invoice: str, payment_hash: str) -> bool:
        """Offer the invoice to the external payer. Returns True once the gate has settled."""
        self.machine.transition(PaymentState.EXTERNAL_PAYMENT_PROMPT)

        try:
            preimage = await self.external_payer.pay(invoice)
        except Exception as e:
            logger.warning("External payment failed: %s", e)
            preimage = None

        if generation != self._generation or self.state is not PaymentState.EXTERNAL_PAYMENT_PROMPT:
            return False

        if preimage:
            try:
                token = create_verification_token(preimage, payment_hash)
            except VerificationError as e:
                self._fail(str(e))
                return True
            self._complete(token)
            return True

        # Fall back to polling
        self.machine.transition(PaymentState.AWAITING_PAYMENT)
        return False

    def retry(self) -> None:
        """Abandon the current payment and return to idle."""
        self._generation += 1
        if self._reconciler is not None:
            self._reconciler.cancel()
            self._reconciler = None
        self.token = None
        self.machine.reset()

    def confirm_paid(self) -> None:
        """The payer says they paid: re-check rapidly before resuming normal polling."""
        if self._reconciler is None:
            logger.debug("confirm_paid() ignored, no payment is being polled")
            return
        self._reconciler.request_burst()

    def submit_preimage(self, preimage: str) -> VerificationToken:
        """
        Accept a preimage pasted by the payer.

        An invalid preimage leaves the state unchanged so the payer can try again.

        Returns:
            The proved VerificationToken.

        Raises:
            StateError: If no invoice is awaiting payment.
            VerificationError: If the preimage does not match the invoice.
        """
        if self.state not in (PaymentState.AWAITING_PAYMENT, PaymentState.EXTERNAL_PAYMENT_PROMPT):
            raise StateError(f"No invoice awaiting payment (state: {self.state.value})")

        preimage = preimage.strip()
        if self._reconciler is not None:
            token = self._reconciler.submit_preimage(preimage)
        else:
            token = create_verification_token(preimage, self.data.payment_hash or "")

        self._complete(token)
        return token

    async def close(self) -> None:
        """Stop polling and disconnect from the relay."""
        self._generation += 1
        if self._reconciler is not None:
            self._reconciler.cancel()
            self._reconciler = None
        await self.client.disconnect()

    # MARK: - Outcomes

    def _complete(self, token: VerificationToken) -> None:
        if self.state is PaymentState.VERIFIED:
            return

        self.token = token
        if token.is_proved:
            logger.info("Payment %s verified by preimage", token.payment_hash)
            self.machine.transition(PaymentState.VERIFIED, preimage=token.preimage)
        else:
            logger.info("Payment %s settled on the wallet's word (no preimage)", token.payment_hash)
            self.machine.transition(PaymentState.VERIFIED)

        if self.on_success is not None:
            try:
                self.on_success(token)
            except Exception:
                logger.exception("Success hook failed")

    def _fail(self, message: str) -> None:
        if self.machine.can_transition(PaymentState.FAILED):
            self.machine.transition(PaymentState.FAILED, error=message)

    def _emit_affordance(self, event: ReconcilerEvent) -> None:
        for listener in list(self._affordance_listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Affordance listener failed")
