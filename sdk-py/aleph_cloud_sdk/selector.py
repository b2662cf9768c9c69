"""
Placement of executions on compute resource nodes

Resolves which CRN hosts an execution, reserves resources on it before a
stream-paid instance is published and tells it about the allocation
afterwards. Also reads the execution status a node reports.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional, Tuple

import requests

from .clients import PricingOracle
from .config import SDKConfig
from .entities import Executable
from .errors import InstanceStartupFailed, InvalidCRNAddress, InvalidResponse
from .http import get_json, new_session, post_json
from .node import NodeManager, NodeSpec
from .session import SessionCache
from .utils import normalize_url

logger = logging.getLogger(__name__)

ExecutableOperation = Literal["reboot", "stop", "confidential_init_secret", "erase"]

IPV6_PREFIX_RE = re.compile(r"/\d+$")
LAST_ZERO_RE = re.compile(r"0(?!.*0)")


@dataclass
class ExecutableStatus:
    version: Literal["v1", "v2"]
    hash: str
    node: NodeSpec
    ipv4: Optional[str] = None
    ipv6: Optional[str] = None
    ipv6_parsed: Optional[str] = None
    host_ipv4: Optional[str] = None
    ipv4_parsed: Optional[str] = None
    mapped_ports: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    status: Optional[Dict[str, Any]] = None


def format_vm_ipv6(ipv6: str) -> str:
    """Drop the prefix length and turn the network address into the VM address."""
    return LAST_ZERO_RE.sub("1", IPV6_PREFIX_RE.sub("", ipv6), count=1)


class NodeSelector:
    """
    Resolves and talks to the node hosting an execution.

    Args:
        node_manager: Node directory (CRN specs list)
        pricing: Pricing oracle, source of the cost-computable message sent
            when reserving resources
        session_cache: Signed session tokens for node control endpoints
        config: SDK configuration (scheduler URL, timeouts)
        session: requests session
    """

    def __init__(
        self,
        node_manager: NodeManager,
        pricing: Optional[PricingOracle] = None,
        session_cache: Optional[SessionCache] = None,
        config: Optional[SDKConfig] = None,
        session: Optional[requests.Session] = None,
    ):
        self.node_manager = node_manager
        self.pricing = pricing
        self.session_cache = session_cache or SessionCache()
        self.config = config or SDKConfig()
        self.session = session or new_session()

    def resolve_node(self, executable: Executable) -> Optional[NodeSpec]:
        """
        Find the CRN hosting an execution.

        Stream-paid executions are pinned: the requirements node hash wins,
        then the node whose stream reward address is the payment receiver.
        Hold-paid executions are placed by the scheduler.

        Returns:
            The node specs, or None when the execution is not allocated or
            its node is not listed.
        """
        if executable.is_stream:
            receiver = executable.payment.get("receiver")
            if not receiver:
                return None

            nodes = self.node_manager.get_all_crns_specs()
            node_hash = executable.node_hash
            if node_hash:
                for node in nodes:
                    if node.hash == node_hash:
                        return node
            for node in nodes:
                if node.stream_reward == receiver:
                    return node
            return None

        allocation = self.get_scheduler_allocation(executable.id)
        if not allocation:
            return None

        node_id = allocation.get("node_id")
        node_url = normalize_url(allocation.get("url"))

        nodes = self.node_manager.get_all_crns_specs()
        for node in nodes:
            if node.hash == node_id:
                return node
        for node in nodes:
            if node.address and normalize_url(node.address) == node_url:
                return node

        logger.debug("scheduler node %s of %s is not listed", node_id, executable.id)
        return None

    def get_scheduler_allocation(self, executable_id: str) -> Optional[Dict[str, Any]]:
        """Scheduler view of an allocation ({node_id, url, ...}); None when not allocated."""
        url = f"{self.config.scheduler_url}/api/v0/allocation/{executable_id}"
        response = self.session.get(url, timeout=self.config.http_timeout)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return (response.json() or {}).get("node")

    def reserve_crn_resources(self, node: NodeSpec, message_type: str, config: Dict[str, Any]) -> None:
        """
        Ask the node to hold resources for an execution about to be published.

        Raises:
            InvalidCRNAddress: node has no address
            InstanceStartupFailed: node refused, or could not be reached
        """
        if not node.address:
            raise InvalidCRNAddress()

        url = f"{normalize_url(node.address)}/control/reserve_resources"
        headers = self.session_cache.signed_headers(url)
        message = self.pricing.get_cost_computable_message(message_type, config)

        error = ""
        try:
            response = post_json(
                self.session,
                url,
                headers=headers,
                data=message["item_content"],
                timeout=self.config.http_timeout,
            )
            body = response.json()
            if body.get("status") == "reserved":
                logger.debug("resources reserved on %s", node.hash)
                return
            error = str(body.get("error") or body)
        except (requests.RequestException, ValueError) as e:
            error = str(e)

        raise InstanceStartupFailed(node.hash, error)

    def notify_crn_allocation(
        self,
        node: NodeSpec,
        instance_id: str,
        attempts: int = 5,
        delay: float = 1.0,
    ) -> None:
        """
        Tell the node an execution was published and should be started.

        Retried with a fixed delay; the last node error is reported when
        every attempt fails.
        """
        if not node.address:
            raise InvalidCRNAddress()

        url = f"{normalize_url(node.address)}/control/allocation/notify"
        error = ""

        for attempt in range(attempts):
            try:
                response = post_json(
                    self.session,
                    url,
                    payload={"instance": instance_id},
                    timeout=self.config.http_timeout,
                )
                body = response.json()
                if body.get("success"):
                    return
                error = str((body.get("errors") or {}).get(instance_id, ""))
            except (requests.RequestException, ValueError) as e:
                error = str(e)

            logger.debug("allocation notify %d/%d on %s failed: %s", attempt + 1, attempts, node.hash, error)
            time.sleep(delay)

        logger.error("node %s did not accept allocation of %s", node.hash, instance_id)
        raise InstanceStartupFailed(node.hash, error)

    def fetch_executions(self, node_url: str) -> Tuple[str, Dict[str, Any]]:
        """Execution list of a node: v2 when available, v1 otherwise."""
        try:
            response = self.session.get(f"{node_url}/v2/about/executions/list", timeout=self.config.http_timeout)
            if response.ok:
                return "v2", response.json()
            logger.debug("executions v2 on %s answered %s", node_url, response.status_code)
        except (requests.RequestException, ValueError) as e:
            logger.debug("executions v2 on %s failed: %s", node_url, e)

        return "v1", get_json(self.session, f"{node_url}/about/executions/list", timeout=self.config.http_timeout)

    def check_status(self, executable: Executable) -> Optional[ExecutableStatus]:
        """Networking and lifecycle status reported by the hosting node."""
        node = self.resolve_node(executable)
        if node is None:
            return None
        if not node.address:
            raise InvalidCRNAddress()

        version, executions = self.fetch_executions(normalize_url(node.address))
        if not isinstance(executions, dict):
            raise InvalidResponse("executions list")

        execution = executions.get(executable.id)
        if not execution:
            return None

        networking = execution.get("networking")
        if not networking:
            return None

        if version == "v1":
            ipv6 = networking.get("ipv6") or ""
            return ExecutableStatus(
                version="v1",
                hash=executable.id,
                node=node,
                ipv4=networking.get("ipv4"),
                ipv6=ipv6,
                ipv6_parsed=format_vm_ipv6(ipv6),
            )

        status = execution.get("status") or {}
        return ExecutableStatus(
            version="v2",
            hash=executable.id,
            node=node,
            host_ipv4=networking.get("host_ipv4"),
            ipv4=networking.get("ipv4_network"),
            ipv4_parsed=networking.get("ipv4_ip"),
            ipv6=networking.get("ipv6_network"),
            ipv6_parsed=networking.get("ipv6_ip"),
            mapped_ports=networking.get("mapped_ports") or {},
            status={
                "running": execution.get("running", False),
                "defined_at": status.get("defined_at"),
                "preparing_at": status.get("preparing_at"),
                "prepared_at": status.get("prepared_at"),
                "starting_at": status.get("starting_at"),
                "started_at": status.get("started_at"),
                "stopping_at": status.get("stopping_at"),
                "stopped_at": status.get("stopped_at"),
            },
        )

    def send_post_operation(
        self,
        hostname: str,
        operation: ExecutableOperation,
        vm_id: str,
        require_signature: bool = True,
    ) -> requests.Response:
        """POST a machine operation (reboot, stop, ...) to the hosting node."""
        url = f"{normalize_url(hostname)}/control/machine/{vm_id}/{operation}"
        if require_signature:
            headers = self.session_cache.signed_headers(url)
        else:
            headers = {"Content-Type": "application/json"}
        return post_json(self.session, url, headers=headers, timeout=self.config.http_timeout)
