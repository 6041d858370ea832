"""Nostr Wallet Connect URI handling."""

import re
from dataclasses import dataclass
from urllib.parse import urlencode, parse_qs

from .types import NWC_URI_SCHEME, ConnectionStringError


_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")
_PREFIX = f"{NWC_URI_SCHEME}://"


@dataclass(frozen=True)
class ConnectionParams:
    """Parameters parsed from a nostr+walletconnect:// URI.

    Attributes:
        wallet_pubkey: Hex x-only public key of the wallet service (lowercase).
        relay_url: WebSocket URL of the relay.
        secret: Hex secret key of this client (lowercase).
    """

    wallet_pubkey: str
    relay_url: str
    secret: str

    @property
    def wallet_pubkey_bytes(self) -> bytes:
        return bytes.fromhex(self.wallet_pubkey)

    @property
    def secret_bytes(self) -> bytes:
        return bytes.fromhex(self.secret)


def parse_nwc_uri(uri: str) -> ConnectionParams:
    """Parse a wallet connection URI.

    Format: nostr+walletconnect://<walletPubkey>?relay=<relayUrl>&secret=<secretHex>

    Args:
        uri: The connection string.

    Returns:
        ConnectionParams with keys normalized to lowercase.

    Raises:
        ConnectionStringError: If the URI is invalid; ``field`` names the
            offending component.
    """
    trimmed = uri.strip()

    if not trimmed.lower().startswith(_PREFIX):
        raise ConnectionStringError(
            f'Invalid NWC URI: must start with "{_PREFIX}"', field="scheme"
        )

    rest = trimmed[len(_PREFIX):]
    pubkey, sep, query = rest.partition("?")

    if not pubkey:
        raise ConnectionStringError("Invalid NWC URI: missing wallet pubkey", field="pubkey")

    if not _HEX_KEY.match(pubkey):
        raise ConnectionStringError(
            "Invalid NWC URI: wallet pubkey must be 64 hex characters", field="pubkey"
        )

    if not sep:
        raise ConnectionStringError("Invalid NWC URI: missing query parameters", field="relay")

    params = parse_qs(query)

    relay_url = params.get("relay", [""])[0]
    if not relay_url:
        raise ConnectionStringError("Invalid NWC URI: missing relay parameter", field="relay")
    if not relay_url.startswith(("wss://", "ws://")):
        raise ConnectionStringError(
            "Invalid NWC URI: relay must be a WebSocket URL", field="relay"
        )

    secret = params.get("secret", [""])[0]
    if not secret:
        raise ConnectionStringError("Invalid NWC URI: missing secret parameter", field="secret")
    if not _HEX_KEY.match(secret):
        raise ConnectionStringError(
            "Invalid NWC URI: secret must be 64 hex characters", field="secret"
        )

    return ConnectionParams(
        wallet_pubkey=pubkey.lower(),
        relay_url=relay_url,
        secret=secret.lower(),
    )


def build_nwc_uri(params: ConnectionParams) -> str:
    """Create a wallet connection URI from its parameters.

    Args:
        params: The connection parameters.

    Returns:
        The nostr+walletconnect:// URI string.
    """
    query = urlencode({"relay": params.relay_url, "secret": params.secret})
    return f"{_PREFIX}{params.wallet_pubkey}?{query}"
