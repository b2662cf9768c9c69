"""
Port forwarding configuration of instances
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .aggregate import AggregateManager, now_date
from .clients import MessageClient
from .constants import DEFAULT_CONSOLE_CHANNEL, DEFAULT_PORT_FORWARDING_AGGREGATE_KEY, MAX_PORTS_ALLOWED, SYSTEM_PORTS
from .entities import ForwardedPorts
from .errors import MaxPortsExceeded

logger = logging.getLogger(__name__)

PortMap = Dict[str, Dict[str, bool]]


@dataclass(frozen=True)
class PortEntry:
    port: str
    tcp: bool = True
    udp: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {"tcp": self.tcp, "udp": self.udp}


@dataclass(frozen=True)
class AddForwardedPorts:
    entity_hash: str
    ports: PortMap


def _port_number(port: str) -> Optional[int]:
    try:
        return int(str(port).strip())
    except ValueError:
        return None


def validate_port_entry(entry: PortEntry) -> Tuple[bool, Optional[str]]:
    """
    Validate one port entry from user input.

    Returns:
        (is_valid, error_message)
    """
    number = _port_number(entry.port)
    if number is None or number < 1 or number > 65535:
        return False, "Port must be between 1 and 65535"

    if not entry.tcp and not entry.udp:
        return False, "At least one protocol (TCP or UDP) must be selected"

    if number in SYSTEM_PORTS:
        return False, f"Port {entry.port} is a reserved system port"

    return True, None


class ForwardedPortsManager(AggregateManager[ForwardedPorts, AddForwardedPorts]):
    """
    One aggregate key per instance hash: {"ports": {"8080": {"tcp": true, "udp": false}}}
    """

    key = DEFAULT_PORT_FORWARDING_AGGREGATE_KEY
    add_step = "portForwarding"
    del_step = "portForwardingDel"

    def __init__(self, client: MessageClient, channel: str = DEFAULT_CONSOLE_CHANNEL, account: Any = None):
        super().__init__(client, channel, account)

    def key_of(self, entity: AddForwardedPorts) -> str:
        return entity.entity_hash

    def build_item(self, entity: AddForwardedPorts) -> Dict[str, Any]:
        return {"ports": entity.ports}

    def parse_item(self, key: str, content: Dict[str, Any]) -> ForwardedPorts:
        date = now_date()
        return ForwardedPorts(
            id=key,
            entity_hash=key,
            ports={str(port): dict(proto) for port, proto in (content.get("ports") or {}).items()},
            updated_at=date,
            date=date,
        )

    def get_by_entity_hash(self, entity_hash: str) -> Optional[ForwardedPorts]:
        for entity in self.get_all():
            if entity.entity_hash == entity_hash:
                return entity
        return None

    def del_by_entity_hash(self, entity_hash: str) -> None:
        self.delete(entity_hash)

    def add_multiple_ports(self, entity_hash: str, new_ports: List[PortEntry]) -> ForwardedPorts:
        """Merge new ports into an instance's configuration and publish it."""
        existing = self.get_by_entity_hash(entity_hash)
        ports: PortMap = dict(existing.ports) if existing else {}
        for entry in new_ports:
            ports[str(_port_number(entry.port))] = entry.to_dict()

        if len(ports) > MAX_PORTS_ALLOWED:
            raise MaxPortsExceeded(MAX_PORTS_ALLOWED, len(ports))

        return self.add(AddForwardedPorts(entity_hash=entity_hash, ports=ports))[0]

    def remove_port(self, entity_hash: str, port: str) -> None:
        """Remove one port; the instance entry goes away with its last port."""
        existing = self.get_by_entity_hash(entity_hash)
        ports: PortMap = dict(existing.ports) if existing else {}
        ports.pop(str(_port_number(port)), None)

        if ports:
            self.add(AddForwardedPorts(entity_hash=entity_hash, ports=ports))
        else:
            self.delete(entity_hash)

    def validate_port_conflicts(self, entity_hash: str, new_ports: List[PortEntry]) -> Tuple[bool, List[str]]:
        """
        Returns:
            (has_conflicts, ports already configured on the instance)
        """
        existing = self.get_by_entity_hash(entity_hash)
        current = existing.ports if existing else {}
        conflicts = [entry.port for entry in new_ports if str(_port_number(entry.port)) in current]
        return bool(conflicts), conflicts
