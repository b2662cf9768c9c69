"""Shared fakes for the manager tests."""

import itertools
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest
import requests

from aleph_cloud_sdk.config import SDKConfig
from aleph_cloud_sdk.crypto import Ed25519Account

USER_ADDRESS = "0x1111111111111111111111111111111111111111"
NOW = 1_700_000_000


class FakeResponse:
    def __init__(self, status_code: int = 200, json_data: Any = None, content: bytes = b""):
        self.status_code = status_code
        self._json = json_data
        self.content = content

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> Any:
        if self._json is None:
            raise ValueError("no JSON body")
        return self._json

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    """Canned responses keyed by (method, url). A list is consumed one response per call."""

    def __init__(self):
        self.headers: Dict[str, str] = {}
        self.routes: Dict[tuple, Any] = {}
        self.calls: List[Dict[str, Any]] = []

    def route(self, method: str, url: str, response: Any) -> None:
        self.routes[(method, url)] = response

    def _answer(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        answer = self.routes.get((method, url))
        if answer is None:
            return FakeResponse(404)
        if isinstance(answer, list):
            answer = answer.pop(0) if len(answer) > 1 else answer[0]
        if isinstance(answer, Exception):
            raise answer
        return answer

    def get(self, url: str, params: Any = None, timeout: Any = None, **kwargs: Any) -> FakeResponse:
        return self._answer("GET", url, params=params)

    def post(self, url: str, json: Any = None, data: Any = None, headers: Any = None, timeout: Any = None) -> FakeResponse:
        return self._answer("POST", url, json=json, data=data, headers=headers)


class FakeClient:
    """Read-only message client backed by in-memory aggregates, messages and posts."""

    def __init__(self, account: Any = None):
        if account is not None:
            self.account = account
        self.aggregates: Dict[tuple, Dict[str, Any]] = {}
        self.messages: List[Dict[str, Any]] = []
        self.posts: List[Dict[str, Any]] = []

    def fetch_aggregate(self, address: str, key: str) -> Dict[str, Any]:
        return dict(self.aggregates.get((address, key), {}))

    def get_messages(self, addresses=None, message_types=None, channels=None, hashes=None, pagination=200, page=1):
        found = []
        for message in self.messages:
            if message_types and message.get("type") not in message_types:
                continue
            if hashes and message["item_hash"] not in hashes:
                continue
            found.append(message)
        return {"messages": found}

    def get_message(self, item_hash: str) -> Dict[str, Any]:
        for message in self.messages:
            if message["item_hash"] == item_hash:
                return message
        raise KeyError(item_hash)

    def get_posts(self, types=None, addresses=None, channels=None, hashes=None, pagination=200, page=1):
        found = [p for p in self.posts if not hashes or p["item_hash"] in hashes]
        return {"posts": found}


class FakeAuthClient(FakeClient):
    """Message client able to publish; every write is recorded in calls."""

    def __init__(self, account: Any = None):
        super().__init__(account or Ed25519Account(address=USER_ADDRESS, chain="ETH"))
        self.calls: List[tuple] = []
        self._ids = itertools.count(1)

    def _hash(self, prefix: str) -> str:
        return f"{prefix}{next(self._ids):04d}"

    def create_aggregate(self, key: str, channel: str, content: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(("aggregate", key, content))
        stored = self.aggregates.setdefault((self.account.address, key), {})
        for item_key, value in content.items():
            if value is None:
                stored.pop(item_key, None)
            else:
                stored[item_key] = value
        return {"item_hash": self._hash("agg"), "content": {"key": key, "content": content}}

    def create_store(self, channel: str, file_content: Optional[bytes] = None, file_hash: Optional[str] = None, storage_engine: str = "storage") -> Dict[str, Any]:
        item_hash = self._hash("store")
        self.calls.append(("store", item_hash, file_hash or len(file_content or b"")))
        message = {
            "item_hash": item_hash,
            "type": "STORE",
            "chain": "ETH",
            "sender": self.account.address,
            "time": NOW,
            "content": {"item_hash": file_hash or f"file-{item_hash}", "size": len(file_content or b"")},
        }
        self.messages.append(message)
        return message

    def create_instance(self, config: Dict[str, Any]) -> Dict[str, Any]:
        item_hash = self._hash("instance")
        self.calls.append(("instance", item_hash, config))
        content = {k: v for k, v in config.items() if k != "channel"}
        message = {"item_hash": item_hash, "type": "INSTANCE", "chain": "ETH", "sender": self.account.address, "time": NOW, "content": content}
        self.messages.append(message)
        return message

    def create_program(self, config: Dict[str, Any]) -> Dict[str, Any]:
        item_hash = self._hash("program")
        self.calls.append(("program", item_hash, config))
        content = {
            "code": {"ref": config.get("program_ref") or f"code-{item_hash}", "entrypoint": config.get("entrypoint"), "encoding": config.get("encoding")},
            "runtime": {"ref": config.get("runtime")},
            "on": {"http": True, "persistent": config.get("persistent", False)},
            "metadata": config.get("metadata"),
            "payment": config.get("payment"),
            "volumes": config.get("volumes") or [],
        }
        message = {"item_hash": item_hash, "type": "PROGRAM", "chain": "ETH", "sender": self.account.address, "time": NOW, "content": content}
        self.messages.append(message)
        return message

    def create_post(self, post_type: str, channel: str, content: Dict[str, Any], ref: Optional[str] = None) -> Dict[str, Any]:
        item_hash = self._hash("post")
        self.calls.append(("post", post_type, content))
        self.posts.append({"item_hash": item_hash, "time": NOW, "content": content})
        return {"item_hash": item_hash, "time": NOW, "content": {"type": post_type, "content": content}}

    def forget(self, channel: str, hashes: List[str]) -> Dict[str, Any]:
        self.calls.append(("forget", list(hashes)))
        return {"item_hash": self._hash("forget")}


class FakePricing:
    def __init__(self, estimate: Optional[Dict[str, Any]] = None, cost: Any = "0.01"):
        self.estimate = estimate if estimate is not None else {"cost": "0", "detail": []}
        self.cost = cost
        self.estimated: List[tuple] = []

    def get_estimated_cost(self, message_type: str, config: Dict[str, Any]) -> Dict[str, Any]:
        self.estimated.append((message_type, config))
        return self.estimate

    def get_cost(self, item_hash: str) -> Dict[str, Any]:
        return {"cost": self.cost}

    def get_cost_computable_message(self, message_type: str, config: Dict[str, Any]) -> Dict[str, Any]:
        return {"item_content": '{"type":"%s"}' % message_type}


class FakeStreamAccount:
    def __init__(self, balance: Any = 1000, flows: Optional[Dict[str, Any]] = None):
        self.address = USER_ADDRESS
        self.balance = Decimal(str(balance))
        self.flows = {k: Decimal(str(v)) for k, v in (flows or {}).items()}
        self.failures: Dict[str, str] = {}
        self.calls: List[tuple] = []

    def get_aleph_balance(self) -> Decimal:
        return self.balance

    def get_aleph_flow(self, receiver: str) -> Decimal:
        return self.flows.get(receiver, Decimal(0))

    def increase_aleph_flow(self, receiver: str, rate: Decimal) -> None:
        self.calls.append(("increase", receiver, rate))

    def decrease_aleph_flow(self, receiver: str, rate: Decimal) -> None:
        if receiver in self.failures:
            raise Exception(self.failures[receiver])
        self.calls.append(("decrease", receiver, rate))


@pytest.fixture
def config():
    return SDKConfig()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def client():
    return FakeAuthClient()


@pytest.fixture
def pricing():
    return FakePricing()


@pytest.fixture
def stream_account():
    return FakeStreamAccount()


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    """Retry delays are not waited for in tests."""
    monkeypatch.setattr("aleph_cloud_sdk.selector.time.sleep", lambda _: None)
    monkeypatch.setattr("aleph_cloud_sdk.http.time.sleep", lambda _: None)
