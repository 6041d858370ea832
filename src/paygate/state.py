"""Payment lifecycle state machine."""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Optional

from .types import IllegalTransitionError


class PaymentState(Enum):
    """State of a payment gate."""
    IDLE = "idle"
    CREATING_INVOICE = "creating_invoice"
    AWAITING_PAYMENT = "awaiting_payment"
    EXTERNAL_PAYMENT_PROMPT = "external_payment_prompt"
    VERIFIED = "verified"
    FAILED = "failed"


VALID_TRANSITIONS: dict[PaymentState, frozenset[PaymentState]] = {
    PaymentState.IDLE: frozenset({PaymentState.CREATING_INVOICE}),
    PaymentState.CREATING_INVOICE: frozenset({PaymentState.AWAITING_PAYMENT, PaymentState.FAILED}),
    PaymentState.AWAITING_PAYMENT: frozenset({
        PaymentState.EXTERNAL_PAYMENT_PROMPT,
        PaymentState.VERIFIED,
        PaymentState.FAILED,
    }),
    PaymentState.EXTERNAL_PAYMENT_PROMPT: frozenset({
        PaymentState.VERIFIED,
        PaymentState.AWAITING_PAYMENT,
        PaymentState.FAILED,
    }),
    PaymentState.VERIFIED: frozenset(),
    PaymentState.FAILED: frozenset({PaymentState.IDLE}),
}


@dataclass(frozen=True)
class PaymentData:
    """Data accumulated over a payment's lifecycle.

    Attributes:
        invoice: BOLT-11 payment request.
        payment_hash: Hex payment hash of the invoice.
        preimage: Hex preimage once the payment is proved.
        error: Human-readable failure message.
        amount: Amount in sats.
    """

    invoice: Optional[str] = None
    payment_hash: Optional[str] = None
    preimage: Optional[str] = None
    error: Optional[str] = None
    amount: Optional[int] = None


StateListener = Callable[[PaymentState, PaymentData], None]


class PaymentStateMachine:
    """Strict finite-state model of one payment.

    Transitions outside ``VALID_TRANSITIONS`` raise ``IllegalTransitionError``.
    Listeners are called synchronously, in registration order, after every
    successful transition and after ``reset()``.
    """

    def __init__(self) -> None:
        self._state = PaymentState.IDLE
        self._data = PaymentData()
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> PaymentState:
        return self._state

    @property
    def data(self) -> PaymentData:
        return self._data

    def can_transition(self, target: PaymentState) -> bool:
        """Whether ``target`` is reachable from the current state."""
        return target in VALID_TRANSITIONS[self._state]

    def transition(self, target: PaymentState, **changes: Any) -> None:
        """
        Move to ``target`` and merge ``changes`` into the accumulated data.

        Args:
            target: The new state.
            **changes: PaymentData fields to set; others keep their values.

        Raises:
            IllegalTransitionError: If the pair is not in the transition table.
            TypeError: If a change names an unknown field.
        """
        if not self.can_transition(target):
            raise IllegalTransitionError(self._state.value, target.value)

        data = replace(self._data, **changes)
        self._state = target
        self._data = data
        self._notify()

    def reset(self) -> None:
        """Force ``idle`` and clear all data, bypassing the transition table."""
        self._state = PaymentState.IDLE
        self._data = PaymentData()
        self._notify()

    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            A callable that unregisters the listener (safe to call twice).
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._state, self._data)
