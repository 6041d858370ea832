"""
Nostr Wallet Connect client for Paygate.

The NwcClient sends NIP-44 encrypted requests to a wallet service over a shared
relay connection and correlates the encrypted responses.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from .crypto import derive_conversation_key, encrypt, decrypt
from .event import Event, sign_event, verify_event
from .keys import get_public_key
from .models import Invoice, NwcMethod, NwcRequest, NwcResponse, Transaction
from .relay import RelayTransport, Transport
from .types import (
    DEFAULT_REQUEST_TIMEOUT,
    NWC_REQUEST_KIND,
    NWC_RESPONSE_KIND,
    SUBSCRIPTION_SINCE_SKEW,
    CorrelationError,
    CryptoError,
    ProtocolError,
    RelayRejectedError,
    RequestTimeoutError,
    TransportError,
)
from .uri import ConnectionParams, parse_nwc_uri


logger = logging.getLogger(__name__)


class RequestState(Enum):
    """Lifecycle of one outstanding request."""
    UNSENT = "unsent"
    SUBSCRIBED = "subscribed"
    PUBLISHED = "published"
    RESOLVED = "resolved"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"


@dataclass
class PendingRequest:
    """A request waiting for its correlated response."""
    method: str
    event: Event
    subscription_id: str
    future: asyncio.Future
    state: RequestState = RequestState.UNSENT
    publish_task: Optional[asyncio.Task] = field(default=None, repr=False)

    def resolve(self, response: NwcResponse) -> None:
        if not self.future.done():
            self.state = RequestState.RESOLVED
            self.future.set_result(response)

    def reject(self, error: Exception) -> None:
        if not self.future.done():
            self.state = RequestState.REJECTED
            self.future.set_exception(error)


class NwcClient:
    """
    Client for a Nostr Wallet Connect (NIP-47) wallet service.

    Each request is tracked by its own subscription, keyed by the request event
    id, so several requests can be in flight on one relay connection.

    Example usage:
        ```python
        client = NwcClient("nostr+walletconnect://...")

        invoice = await client.make_invoice(21_000, "Verification payment")
        status = await client.lookup_invoice(invoice.payment_hash)

        await client.disconnect()
        ```
    """

    def __init__(
        self,
        connection: Union[str, ConnectionParams],
        transport: Optional[Transport] = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        """
        Initialize the client.

        Args:
            connection: A nostr+walletconnect:// URI or parsed ConnectionParams.
            transport: Relay transport (default: websocket to the URI's relay).
            request_timeout: Default seconds to wait for a response.

        Raises:
            ConnectionStringError: If the URI is malformed.
            InvalidKeyError: If a key is not a valid secp256k1 key.
        """
        if isinstance(connection, str):
            connection = parse_nwc_uri(connection)

        self.params = connection
        self.request_timeout = request_timeout
        self._secret = connection.secret_bytes
        self.client_pubkey = get_public_key(self._secret).hex()
        self._conversation_key = derive_conversation_key(self._secret, connection.wallet_pubkey_bytes)

        self.transport = transport or RelayTransport(connection.relay_url)
        self._pending: dict[str, PendingRequest] = {}
        self._unregister = [
            self.transport.on_message(self._handle_message),
            self.transport.on_close(self._handle_close),
        ]

    @property
    def wallet_pubkey(self) -> str:
        """The wallet service's public key (hex)."""
        return self.params.wallet_pubkey

    @property
    def pending_count(self) -> int:
        """Number of requests waiting for a response."""
        return len(self._pending)

    # MARK: - Connection

    async def connect(self) -> None:
        """Connect to the relay if not already connected."""
        if not self.transport.connected:
            await self.transport.connect()

    async def disconnect(self) -> None:
        """Close the relay connection. Every outstanding request fails."""
        await self.transport.close()
        self._reject_all(TransportError("Disconnected"))

    # MARK: - Requests

    async def send_request(
        self,
        method: str,
        params: dict[str, Any],
        timeout: Optional[float] = None,
    ) -> NwcResponse:
        """
        Send an encrypted request and wait for the matching response.

        The response subscription is opened first; the request is only
        published once the relay acknowledges it (EOSE), so a fast wallet
        reply cannot arrive before the relay is listening for it.

        Args:
            method: NWC method name.
            params: Method parameters.
            timeout: Seconds to wait (default: the client's request_timeout).

        Returns:
            The decrypted NwcResponse.

        Raises:
            TransportError: If the relay is unreachable or closes mid-request.
            ProtocolError: If the wallet returned an error object.
            CorrelationError: If the response could not be decrypted or parsed.
            RequestTimeoutError: If no response arrived in time.
        """
        timeout = self.request_timeout if timeout is None else timeout
        await self.connect()

        payload = json.dumps(NwcRequest(method, params).to_dict(), separators=(",", ":"), sort_keys=True)
        event = sign_event(
            Event(
                pubkey=self.client_pubkey,
                created_at=int(time.time()),
                kind=NWC_REQUEST_KIND,
                tags=[["p", self.wallet_pubkey]],
                content=encrypt(payload, self._conversation_key),
            ),
            self._secret,
        )

        # The event id is unique per request, so subscription ids cannot collide
        subscription_id = event.id
        pending = PendingRequest(
            method=method,
            event=event,
            subscription_id=subscription_id,
            future=asyncio.get_running_loop().create_future(),
        )
        self._pending[subscription_id] = pending

        response_filter = {
            "kinds": [NWC_RESPONSE_KIND],
            "#e": [event.id],
            "#p": [self.client_pubkey],
            "since": event.created_at - SUBSCRIPTION_SINCE_SKEW,
        }

        try:
            # The acknowledgment may be dispatched before subscribe() returns
            pending.state = RequestState.SUBSCRIBED
            await self.transport.subscribe(response_filter, subscription_id=subscription_id)
            response = await asyncio.wait_for(pending.future, timeout)
        except asyncio.TimeoutError:
            pending.state = RequestState.TIMED_OUT
            raise RequestTimeoutError(method, timeout) from None
        finally:
            self._pending.pop(subscription_id, None)
            if pending.publish_task is not None and not pending.publish_task.done():
                pending.publish_task.cancel()
            try:
                await self.transport.unsubscribe(subscription_id)
            except TransportError as e:
                logger.debug("Could not close subscription %s: %s", subscription_id, e)

        if response.error is not None:
            raise ProtocolError(response.error.code, response.error.message, method=method)

        if response.result_type and response.result_type != method:
            logger.warning("Response result_type %r does not match method %r", response.result_type, method)

        return response

    async def make_invoice(
        self,
        amount_msat: int,
        description: str,
        expiry: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> Invoice:
        """
        Create an invoice on the wallet service.

        Args:
            amount_msat: Amount in millisats.
            description: Invoice description.
            expiry: Optional expiry in seconds.
            timeout: Optional per-call timeout.

        Returns:
            The created Invoice.
        """
        params: dict[str, Any] = {"amount": amount_msat, "description": description}
        if expiry is not None:
            params["expiry"] = expiry

        response = await self.send_request(NwcMethod.MAKE_INVOICE.value, params, timeout)
        return self._parse_invoice(NwcMethod.MAKE_INVOICE.value, response)

    async def lookup_invoice(
        self,
        payment_hash: Optional[str] = None,
        invoice: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Invoice:
        """
        Look up an invoice by payment hash or invoice string.

        Returns:
            The Invoice, including settled_at and preimage when the wallet reports them.

        Raises:
            ValueError: If neither payment_hash nor invoice is given.
        """
        if payment_hash is None and invoice is None:
            raise ValueError("lookup_invoice needs a payment_hash or an invoice")

        params: dict[str, Any] = {}
        if payment_hash is not None:
            params["payment_hash"] = payment_hash
        if invoice is not None:
            params["invoice"] = invoice

        response = await self.send_request(NwcMethod.LOOKUP_INVOICE.value, params, timeout)
        return self._parse_invoice(NwcMethod.LOOKUP_INVOICE.value, response)

    async def list_transactions(
        self,
        from_time: Optional[int] = None,
        until: Optional[int] = None,
        limit: Optional[int] = None,
        type: Optional[str] = "incoming",
        timeout: Optional[float] = None,
    ) -> list[Transaction]:
        """
        List recent transactions.

        Not every wallet service implements this method; callers should treat
        a failure as the capability being absent.

        Args:
            from_time: Only transactions created at or after this Unix time.
            until: Only transactions created before this Unix time.
            limit: Maximum number of transactions.
            type: "incoming", "outgoing", or None for both.
            timeout: Optional per-call timeout.

        Returns:
            Transactions in the order the wallet returned them.
        """
        params: dict[str, Any] = {}
        if from_time is not None:
            params["from"] = from_time
        if until is not None:
            params["until"] = until
        if limit is not None:
            params["limit"] = limit
        if type is not None:
            params["type"] = type

        method = NwcMethod.LIST_TRANSACTIONS.value
        response = await self.send_request(method, params, timeout)

        transactions = (response.result or {}).get("transactions")
        if not isinstance(transactions, list):
            raise ProtocolError("INTERNAL", "Missing transactions in result", method=method)

        return [Transaction.from_dict(tx) for tx in transactions if isinstance(tx, dict)]

    # MARK: - Relay Traffic

    def _handle_message(self, message: list[Any]) -> None:
        """Route one inbound relay message to the request it belongs to."""
        kind = message[0]

        if kind == "EOSE" and len(message) >= 2:
            pending = self._pending.get(message[1])
            if pending is not None and pending.state == RequestState.SUBSCRIBED:
                self._publish(pending)

        elif kind == "EVENT" and len(message) >= 3:
            pending = self._pending.get(message[1])
            if pending is None:
                return
            if pending.state != RequestState.PUBLISHED:
                # Nothing can answer a request that was not published yet
                logger.debug("Ignoring event on %s before publish", pending.subscription_id)
                return
            self._handle_response(pending, message[2])

        elif kind == "OK" and len(message) >= 3:
            if message[2] is True:
                return
            detail = message[3] if len(message) >= 4 else ""
            for pending in list(self._pending.values()):
                if pending.event.id == message[1]:
                    logger.warning("Relay rejected %s request: %s", pending.method, detail)
                    pending.reject(RelayRejectedError(f"Relay rejected request: {detail}"))

        elif kind == "CLOSED" and len(message) >= 2:
            pending = self._pending.get(message[1])
            if pending is not None:
                detail = message[2] if len(message) >= 3 else ""
                pending.reject(RelayRejectedError(f"Relay closed subscription: {detail}"))

        elif kind == "NOTICE" and len(message) >= 2:
            logger.info("Relay notice: %s", message[1])

    def _publish(self, pending: PendingRequest) -> None:
        """Publish a request once its subscription is active."""
        pending.state = RequestState.PUBLISHED

        async def publish() -> None:
            try:
                await self.transport.publish(pending.event)
            except TransportError as e:
                pending.reject(e)

        pending.publish_task = asyncio.ensure_future(publish())

    def _handle_response(self, pending: PendingRequest, raw_event: Any) -> None:
        """Validate, decrypt and deliver a response event."""
        try:
            event = Event.from_dict(raw_event)
        except ValueError as e:
            logger.warning("Ignoring malformed event: %s", e)
            return

        if event.kind != NWC_RESPONSE_KIND:
            return
        if event.pubkey != self.wallet_pubkey:
            logger.warning("Ignoring response from unexpected pubkey %s", event.pubkey)
            return
        if event.first_tag("e") != pending.event.id:
            logger.warning("Ignoring response for another request on %s", pending.subscription_id)
            return
        if not verify_event(event):
            logger.warning("Ignoring response %s with invalid signature", event.id)
            return

        try:
            plaintext = decrypt(event.content, self._conversation_key)
        except CryptoError as e:
            pending.reject(CorrelationError(f"Failed to decrypt {pending.method} response: {e}"))
            return

        try:
            response = NwcResponse.from_dict(json.loads(plaintext))
        except (ValueError, json.JSONDecodeError) as e:
            pending.reject(CorrelationError(f"Invalid {pending.method} response: {e}"))
            return

        pending.resolve(response)

    def _handle_close(self, error: Optional[Exception]) -> None:
        self._reject_all(error or TransportError("Relay connection closed"))

    def _reject_all(self, error: Exception) -> None:
        for pending in list(self._pending.values()):
            pending.reject(error)

    @staticmethod
    def _parse_invoice(method: str, response: NwcResponse) -> Invoice:
        if response.result is None:
            raise ProtocolError("INTERNAL", "Missing result", method=method)
        try:
            return Invoice.from_dict(response.result)
        except ValueError as e:
            raise ProtocolError("INTERNAL", str(e), method=method) from e
