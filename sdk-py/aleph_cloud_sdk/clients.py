"""
Collaborator interfaces

The SDK never talks to the message network or a wallet directly; it is
handed objects satisfying these protocols. Write access is a capability:
only clients implementing AuthenticatedMessageClient can publish, and
mutating operations go through require_signer().
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from .errors import InvalidAccount


@runtime_checkable
class Account(Protocol):
    """A wallet identity able to sign arbitrary payloads."""

    address: str
    chain: str

    def sign_message(self, payload: str) -> str:
        """Sign a text payload, return the signature as hex."""
        ...


@runtime_checkable
class StreamAccount(Protocol):
    """A wallet able to open and adjust token streams (PAYG)."""

    address: str

    def get_aleph_balance(self) -> Decimal:
        ...

    def get_aleph_flow(self, receiver: str) -> Decimal:
        ...

    def increase_aleph_flow(self, receiver: str, rate: Decimal) -> Any:
        ...

    def decrease_aleph_flow(self, receiver: str, rate: Decimal) -> Any:
        ...


@runtime_checkable
class MessageClient(Protocol):
    """Read side of the message network."""

    def fetch_aggregate(self, address: str, key: str) -> Dict[str, Any]:
        ...

    def get_messages(
        self,
        addresses: Optional[List[str]] = None,
        message_types: Optional[List[str]] = None,
        channels: Optional[List[str]] = None,
        hashes: Optional[List[str]] = None,
        pagination: int = 200,
        page: int = 1,
    ) -> Dict[str, Any]:
        ...

    def get_message(self, item_hash: str) -> Dict[str, Any]:
        ...

    def get_posts(
        self,
        types: Optional[str] = None,
        addresses: Optional[List[str]] = None,
        channels: Optional[List[str]] = None,
        hashes: Optional[List[str]] = None,
        pagination: int = 200,
        page: int = 1,
    ) -> Dict[str, Any]:
        ...


@runtime_checkable
class AuthenticatedMessageClient(MessageClient, Protocol):
    """Message client holding a signing account: the write capability."""

    account: Account

    def create_aggregate(self, key: str, channel: str, content: Dict[str, Any]) -> Dict[str, Any]:
        ...

    def create_store(
        self,
        channel: str,
        file_content: Optional[bytes] = None,
        file_hash: Optional[str] = None,
        storage_engine: str = "storage",
    ) -> Dict[str, Any]:
        ...

    def create_instance(self, config: Dict[str, Any]) -> Dict[str, Any]:
        ...

    def create_program(self, config: Dict[str, Any]) -> Dict[str, Any]:
        ...

    def create_post(
        self,
        post_type: str,
        channel: str,
        content: Dict[str, Any],
        ref: Optional[str] = None,
    ) -> Dict[str, Any]:
        ...

    def forget(self, channel: str, hashes: List[str]) -> Dict[str, Any]:
        ...


@runtime_checkable
class PricingOracle(Protocol):
    """Cost estimates for messages that are not published yet (or already are)."""

    def get_estimated_cost(self, message_type: str, config: Dict[str, Any]) -> Dict[str, Any]:
        """Return {cost, payment_type, detail: [{type, name, cost_hold, cost_stream}]}."""
        ...

    def get_cost(self, item_hash: str) -> Dict[str, Any]:
        ...

    def get_cost_computable_message(self, message_type: str, config: Dict[str, Any]) -> Dict[str, Any]:
        """Return the unsigned message whose item_content a node can price."""
        ...


@runtime_checkable
class FileSizeLookup(Protocol):
    """Sizes (MiB) of already stored volumes, keyed by reference hash."""

    def get_sizes_map(self) -> Dict[str, float]:
        ...


def require_signer(client: Any) -> AuthenticatedMessageClient:
    """Return the client if it can publish, raise InvalidAccount otherwise."""
    if not isinstance(client, AuthenticatedMessageClient):
        raise InvalidAccount()
    return client


def client_address(client: Any) -> Optional[str]:
    """Address of the account behind a client, if it has one."""
    account = getattr(client, "account", None)
    return getattr(account, "address", None)
