"""
Provisioned resources as read back from the network
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .constants import DEFAULT_API_SERVER, DEFAULT_VM_URL, EntityType
from .utils import get_date, get_explorer_url


@dataclass
class Executable:
    """Common shape of instances, GPU instances, confidential instances and programs."""

    id: str
    type: EntityType
    name: str = ""
    time: float = 0
    date: str = ""
    url: str = ""
    size: float = 0
    confirmed: bool = False
    payment: Dict[str, Any] = field(default_factory=dict)
    requirements: Dict[str, Any] = field(default_factory=dict)
    resources: Dict[str, Any] = field(default_factory=dict)
    volumes: List[Dict[str, Any]] = field(default_factory=list)
    environment: Dict[str, Any] = field(default_factory=dict)
    content: Dict[str, Any] = field(default_factory=dict)

    @property
    def payment_type(self) -> str:
        return self.payment.get("type", "hold")

    @property
    def is_stream(self) -> bool:
        return self.payment_type == "superfluid"

    @property
    def node_hash(self) -> Optional[str]:
        return (self.requirements.get("node") or {}).get("node_hash")

    @staticmethod
    def _common(message: Dict[str, Any], unnamed: str) -> Dict[str, Any]:
        content = message.get("content") or {}
        metadata = content.get("metadata") or {}
        item_hash = message["item_hash"]
        ts = message.get("time") or content.get("time") or 0
        return {
            "id": item_hash,
            "name": metadata.get("name") or unnamed,
            "time": ts,
            "date": get_date(ts),
            "url": get_explorer_url(item_hash, message.get("chain", "ETH"), message.get("sender", ""), message.get("type", "")),
            "size": message.get("size") or 0,
            "confirmed": bool(message.get("confirmed")),
            "payment": content.get("payment") or {},
            "requirements": content.get("requirements") or {},
            "resources": content.get("resources") or {},
            "volumes": content.get("volumes") or [],
            "environment": content.get("environment") or {},
            "content": content,
        }


@dataclass
class Instance(Executable):
    rootfs: Dict[str, Any] = field(default_factory=dict)
    authorized_keys: List[str] = field(default_factory=list)

    @classmethod
    def from_message(cls, message: Dict[str, Any], entity_type: EntityType = "instance") -> "Instance":
        content = message.get("content") or {}
        return cls(
            type=entity_type,
            rootfs=content.get("rootfs") or {},
            authorized_keys=content.get("authorized_keys") or [],
            **cls._common(message, "Unnamed instance"),
        )


@dataclass
class Program(Executable):
    code: Dict[str, Any] = field(default_factory=dict)
    runtime: Dict[str, Any] = field(default_factory=dict)
    on: Dict[str, Any] = field(default_factory=dict)
    url_vm: str = ""
    ref_url: str = ""

    @property
    def is_persistent(self) -> bool:
        return bool(self.on.get("persistent"))

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "Program":
        content = message.get("content") or {}
        item_hash = message["item_hash"]
        code = content.get("code") or {}
        return cls(
            type="program",
            code=code,
            runtime=content.get("runtime") or {},
            on=content.get("on") or {},
            url_vm=f"{DEFAULT_VM_URL}{item_hash}",
            ref_url=f"/storage/volume/{code.get('ref', '')}",
            **cls._common(message, "Unnamed program"),
        )


@dataclass
class Volume:
    id: str
    item_hash: str = ""
    time: float = 0
    date: str = ""
    url: str = ""
    size: float = 0
    confirmed: bool = False
    content: Dict[str, Any] = field(default_factory=dict)
    type: str = "volume"

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "Volume":
        content = message.get("content") or {}
        ts = message.get("time") or content.get("time") or 0
        file_hash = content.get("item_hash", "")
        return cls(
            id=message["item_hash"],
            item_hash=file_hash,
            time=ts,
            date=get_date(ts),
            url=f"{DEFAULT_API_SERVER}/api/v0/storage/raw/{file_hash}",
            size=content.get("size") or message.get("size") or 0,
            confirmed=bool(message.get("confirmed")),
            content=content,
        )


@dataclass
class Domain:
    id: str
    name: str
    target: str
    ref: str
    updated_at: str = ""
    date: str = ""
    confirmed: bool = True
    ref_url: str = ""
    options: Dict[str, Any] = field(default_factory=dict)
    type: str = "domain"


@dataclass
class SSHKey:
    id: str
    key: str
    label: Optional[str] = None
    name: str = ""
    time: float = 0
    date: str = ""
    url: str = ""
    confirmed: bool = False
    type: str = "sshKey"

    @classmethod
    def from_post(cls, post: Dict[str, Any], content: Optional[Dict[str, Any]] = None) -> "SSHKey":
        if content is None:
            content = post.get("content") or {}
        ts = post.get("time") or 0
        label = content.get("label")
        return cls(
            id=post["item_hash"],
            key=content.get("key", ""),
            label=label,
            name=label or "Unnamed SSH key",
            time=ts,
            date=get_date(ts),
            url=get_explorer_url(post["item_hash"]),
            confirmed=bool(post.get("confirmed")),
        )


@dataclass
class Website:
    id: str
    name: str
    framework: str = "none"
    version: int = 1
    volume_id: Optional[str] = None
    volume_history: List[str] = field(default_factory=list)
    ens: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    created_at: float = 0
    updated_at: str = ""
    date: str = ""
    url: str = ""
    size: float = 0
    confirmed: bool = True
    type: str = "website"


@dataclass
class ForwardedPorts:
    id: str
    entity_hash: str
    ports: Dict[str, Dict[str, bool]] = field(default_factory=dict)
    updated_at: str = ""
    date: str = ""
