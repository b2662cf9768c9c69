"""
Signed session tokens for node-facing operations

A node accepts control calls (resource reservation, reboot, ...) when they
carry two headers:

- X-SignedPubKey: an ephemeral P-256 public key, signed once by the wallet
- X-SignedOperation: the operation (time, path, domain, method), signed
  by that ephemeral key

SessionCache keeps the wallet-signed public key token for one wallet session
so that the user signs once per TTL instead of once per call.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse

from .clients import Account
from .constants import KEYPAIR_TTL_SECONDS
from .crypto import SessionKeyPair
from .errors import InvalidAccount

logger = logging.getLogger(__name__)


def iso_timestamp(ts: float) -> str:
    """2024-01-01T00:00:00.000Z"""
    dt = datetime.fromtimestamp(ts, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def compact_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


@dataclass
class PubKeyHeader:
    payload: str
    signature: str

    def to_dict(self) -> Dict[str, str]:
        return {"payload": self.payload, "signature": self.signature}


@dataclass
class AuthPubKeyToken:
    key_pair: SessionKeyPair
    header: PubKeyHeader
    chain: str
    expires_at: float

    def is_valid_for(self, chain: str, now: float) -> bool:
        return self.chain == chain and self.expires_at >= now


class SessionCache:
    """
    Holds the wallet-signed public key token of one wallet session.

    The token is reused until it expires or the account switches chain.

    Args:
        account: Wallet account that signs the public key payload
        ttl: Token lifetime in seconds
        clock: Time source (unix seconds)
    """

    def __init__(
        self,
        account: Optional[Account] = None,
        ttl: float = KEYPAIR_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.account = account
        self.ttl = ttl
        self._clock = clock
        self._token: Optional[AuthPubKeyToken] = None
        self._lock = threading.Lock()

    @property
    def token(self) -> Optional[AuthPubKeyToken]:
        return self._token

    def invalidate(self) -> None:
        with self._lock:
            self._token = None

    def get_pub_key_token(self, domain: Optional[str] = None) -> AuthPubKeyToken:
        """Return the cached token, or have the wallet sign a fresh one."""
        if self.account is None:
            raise InvalidAccount()

        chain = getattr(self.account, "chain", "ETH")
        now = self._clock()

        with self._lock:
            cached = self._token
            if cached is not None:
                if cached.is_valid_for(chain, now):
                    return cached
                logger.debug("session token expired or chain changed, renewing")
                self._token = None

            token = self._sign_new_token(domain, chain, now)
            self._token = token
            return token

    def operation_token(
        self, url: str, method: str = "POST", token: Optional[AuthPubKeyToken] = None
    ) -> Dict[str, str]:
        """Sign {time, path, domain, method} for url with the session key."""
        if token is None:
            token = self.get_pub_key_token()
        parsed = urlparse(url)
        payload = compact_json(
            {
                "time": iso_timestamp(self._clock())[:-1] + "+00:00",
                "path": parsed.path,
                "domain": parsed.hostname,
                "method": method,
            }
        ).encode("utf-8")
        return {
            "payload": payload.hex(),
            "signature": token.key_pair.sign(payload),
        }

    def signed_headers(self, url: str, method: str = "POST") -> Dict[str, str]:
        """Headers authenticating one operation against a node."""
        token = self.get_pub_key_token()
        operation = self.operation_token(url, method, token=token)
        return {
            "Content-Type": "application/json",
            "X-SignedOperation": compact_json(operation),
            "X-SignedPubKey": compact_json(token.header.to_dict()),
        }

    def _sign_new_token(self, domain: Optional[str], chain: str, now: float) -> AuthPubKeyToken:
        key_pair = SessionKeyPair.generate(created_at=now)
        expires_at = now + self.ttl

        raw: Dict[str, Any] = {
            "alg": "ECDSA",
            "pubkey": key_pair.public_jwk(),
            "address": self.account.address,
        }
        if domain:
            raw["domain"] = domain
        raw["chain"] = "SOL" if chain == "SOL" else "ETH"
        raw["expires"] = iso_timestamp(expires_at)

        payload = compact_json(raw).encode("utf-8").hex()
        signature = self.account.sign_message(payload)

        return AuthPubKeyToken(
            key_pair=key_pair,
            header=PubKeyHeader(payload=payload, signature=signature),
            chain=chain,
            expires_at=expires_at,
        )
