"""
Request fields shared by the entity managers

Requests are plain dataclasses describing what the caller wants. Managers
read them and never write back into them.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .constants import Blockchain, DomainTarget, PaymentMethod, VolumeType
from .utils import convert_byte_units, get_hours, to_decimal


@dataclass(frozen=True)
class StreamDuration:
    duration: int
    unit: str = "h"

    def hours(self) -> int:
        return get_hours(self.duration, self.unit)


@dataclass(frozen=True)
class PaymentConfig:
    """
    How a resource is paid.

    Hold locks tokens for the resource's lifetime. Stream opens a continuous
    flow to the hosting node (80%) and the community treasury (20%).
    """

    method: PaymentMethod = "hold"
    chain: Blockchain = "ETH"
    sender: Optional[str] = None
    receiver: Optional[str] = None
    stream_cost: Decimal = Decimal(0)
    stream_duration: Optional[StreamDuration] = None

    @classmethod
    def hold(cls, chain: Blockchain = "ETH") -> "PaymentConfig":
        return cls(method="hold", chain=chain)

    @classmethod
    def stream(
        cls,
        chain: Blockchain,
        receiver: Optional[str],
        stream_cost: Any,
        duration: int = 1,
        unit: str = "h",
        sender: Optional[str] = None,
    ) -> "PaymentConfig":
        return cls(
            method="stream",
            chain=chain,
            sender=sender,
            receiver=receiver,
            stream_cost=to_decimal(stream_cost),
            stream_duration=StreamDuration(duration, unit),
        )

    @property
    def is_stream(self) -> bool:
        return self.method == "stream"

    def hours(self) -> int:
        return self.stream_duration.hours() if self.stream_duration else 1


@dataclass(frozen=True)
class Specs:
    """Compute sizing. ram and storage are in MiB."""

    cpu: int = 0
    ram: int = 0
    storage: int = 0


@dataclass(frozen=True)
class EnvVarField:
    name: str
    value: str


@dataclass(frozen=True)
class VolumeField:
    """
    A volume attached to an execution.

    new: a file to upload first. existing: an already stored volume by
    reference hash. persistent: a host-side disk of a declared size (MiB).
    """

    volume_type: VolumeType
    mount_path: str = ""
    file: Optional[bytes] = None
    ref_hash: Optional[str] = None
    use_latest: bool = False
    size: Optional[float] = None
    name: Optional[str] = None

    @classmethod
    def new(cls, file: bytes, mount_path: str = "", use_latest: bool = False) -> "VolumeField":
        return cls(volume_type="new", file=file, mount_path=mount_path, use_latest=use_latest)

    @classmethod
    def existing(cls, ref_hash: str, mount_path: str = "", use_latest: bool = False, size: Optional[float] = None) -> "VolumeField":
        return cls(volume_type="existing", ref_hash=ref_hash, mount_path=mount_path, use_latest=use_latest, size=size)

    @classmethod
    def persistent(cls, name: str, mount_path: str, size: float) -> "VolumeField":
        return cls(volume_type="persistent", name=name, mount_path=mount_path, size=size)

    @property
    def is_new_upload(self) -> bool:
        return self.volume_type == "new" and bool(self.file)

    def size_mib(self, sizes: Optional[Dict[str, float]] = None) -> Decimal:
        """Declared, uploaded or looked-up size of the volume in MiB."""
        if self.volume_type == "new":
            return convert_byte_units(len(self.file or b""), "B", "MiB")
        if self.volume_type == "existing":
            if sizes and self.ref_hash in sizes:
                return to_decimal(sizes[self.ref_hash])
        return to_decimal(self.size or 0)


@dataclass(frozen=True)
class DomainField:
    name: str
    target: DomainTarget = "instance"
    ref: Optional[str] = None


@dataclass(frozen=True)
class SSHKeyField:
    key: str
    label: Optional[str] = None
    is_new: bool = False
    is_selected: bool = True


def as_list(value: Any) -> List[Any]:
    """Accept a single item or a list of items."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]
