"""
Shared plumbing of the instance and program managers

Turns request fields into the message content a node expects (resources,
volumes, payment, host requirements) and estimates costs for drafts.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

import requests

from .clients import MessageClient, PricingOracle
from .constants import EntityType, PaymentMethod
from .cost import CostAllocator, CostSummary, ExecutionCostProps, parse_cost
from .domain import DomainManager
from .entities import Domain, Executable
from .errors import InstanceNotFound, ReceiverRequired, StreamNotSupported
from .fields import DomainField, EnvVarField, PaymentConfig, Specs, VolumeField, as_list
from .node import NodeSpec
from .payment import PaymentStreamCoordinator
from .selector import ExecutableOperation, ExecutableStatus, NodeSelector
from .steps import StepGenerator
from .utils import is_blockchain_payg_compatible
from .volume import VolumeManager

logger = logging.getLogger(__name__)

X = TypeVar("X", bound=Executable)

# Placeholders for volumes that are not uploaded yet when pricing a draft
MOCK_VOLUME_REF = "cafe" * 16
MOCK_VOLUME_MOUNT_PATH = "/mocked-mount-path"
MOCK_VOLUME_NAME = "mock-name"


class ExecutableManager(Generic[X]):
    """
    Args:
        client: Message client; publishing requires an authenticated one
        pricing: Pricing oracle for estimates and published costs
        volume_manager: Uploads new volumes attached to an execution
        domain_manager: Links custom domains to a published execution
        node_selector: Resolves and talks to hosting nodes
        payments: Opens and closes stream payments
        channel: Channel the execution messages are published on
    """

    entity_type: EntityType = "instance"
    message_type = "INSTANCE"

    def __init__(
        self,
        client: MessageClient,
        pricing: PricingOracle,
        volume_manager: VolumeManager,
        domain_manager: DomainManager,
        node_selector: NodeSelector,
        payments: PaymentStreamCoordinator,
        channel: str,
        account: Any = None,
    ):
        self.client = client
        self.pricing = pricing
        self.volume_manager = volume_manager
        self.domain_manager = domain_manager
        self.node_selector = node_selector
        self.payments = payments
        self.channel = channel
        self.account = account if account is not None else getattr(client, "account", None)
        self.allocator = CostAllocator()

    # Reads

    def get(self, entity_id: str) -> Optional[X]:
        raise NotImplementedError

    def ensure(self, entity_or_id: Union[str, X]) -> X:
        if not isinstance(entity_or_id, str):
            return entity_or_id
        entity = self.get(entity_or_id)
        if entity is None:
            raise InstanceNotFound(entity_or_id)
        return entity

    def check_status(self, executable: X) -> Optional[ExecutableStatus]:
        return self.node_selector.check_status(executable)

    def get_allocation_node(self, executable: X) -> Optional[NodeSpec]:
        return self.node_selector.resolve_node(executable)

    def send_post_operation(
        self,
        hostname: str,
        operation: ExecutableOperation,
        vm_id: str,
        require_signature: bool = True,
    ) -> requests.Response:
        return self.node_selector.send_post_operation(hostname, operation, vm_id, require_signature)

    def get_total_cost_by_hash(self, payment_method: str, item_hash: str) -> Decimal:
        """Current cost of a published execution, scaled for stream payments."""
        costs = self.pricing.get_cost(item_hash)
        method = "hold" if payment_method == "hold" else "stream"
        return parse_cost(method, costs.get("cost", 0))

    # Message content

    @staticmethod
    def parse_env_vars(env_vars: Optional[List[EnvVarField]]) -> Optional[Dict[str, str]]:
        if not env_vars:
            return None
        return {var.name: var.value for var in env_vars}

    @staticmethod
    def parse_specs(specs: Optional[Specs]) -> Optional[Dict[str, int]]:
        if specs is None:
            return None
        return {"vcpus": specs.cpu, "memory": specs.ram}

    @staticmethod
    def parse_metadata(
        name: Optional[str] = None,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        out: Dict[str, Any] = dict(metadata or {})
        out["name"] = name or "Untitled"
        if tags:
            out["tags"] = list(tags)
        return out

    @staticmethod
    def parse_payment(payment: Optional[PaymentConfig]) -> Dict[str, Any]:
        """
        Payment section of a message about to be published.

        Raises:
            ReceiverRequired: stream payment without a receiver
            StreamNotSupported: stream payment on a chain without streams
        """
        if payment is None:
            return {"chain": "ETH", "type": "hold"}
        if payment.is_stream:
            if not payment.receiver:
                raise ReceiverRequired()
            if not is_blockchain_payg_compatible(payment.chain):
                raise StreamNotSupported()
            return {"chain": payment.chain, "type": "superfluid", "receiver": payment.receiver}
        return {"chain": payment.chain, "type": "hold"}

    @staticmethod
    def parse_payment_for_cost_estimation(payment: Optional[PaymentConfig]) -> Dict[str, Any]:
        """Same shape as parse_payment, without validation: drafts may be incomplete."""
        if payment is not None and payment.is_stream:
            return {"chain": payment.chain, "type": "superfluid", "receiver": payment.receiver}
        return {"chain": payment.chain if payment else "ETH", "type": "hold"}

    def parse_requirements(self, node: Optional[NodeSpec]) -> Optional[Dict[str, Any]]:
        if node is None or not node.hash:
            return None
        requirement: Dict[str, Any] = {"node_hash": node.hash}
        if node.terms_and_conditions:
            requirement["terms_and_conditions"] = node.terms_and_conditions
        return {"node": requirement}

    def parse_volumes_for_cost_estimation(self, volumes: Any) -> Optional[List[Dict[str, Any]]]:
        volume_list: List[VolumeField] = as_list(volumes)
        if not volume_list:
            return None

        parsed = []
        for volume in volume_list:
            if volume.volume_type == "persistent":
                parsed.append(
                    {
                        "persistence": "host",
                        "name": volume.name or MOCK_VOLUME_NAME,
                        "mount": volume.mount_path or MOCK_VOLUME_MOUNT_PATH,
                        "size_mib": volume.size or 0,
                    }
                )
                continue
            parsed.append(
                {
                    "ref": volume.ref_hash or MOCK_VOLUME_REF,
                    "use_latest": volume.use_latest,
                    "mount": volume.mount_path or MOCK_VOLUME_MOUNT_PATH,
                    "estimated_size_mib": self.volume_manager.get_volume_size(volume),
                }
            )
        return parsed

    def parse_volumes_steps(self, volumes: Any, results: Dict[str, Any]) -> StepGenerator[Optional[List[Dict[str, Any]]]]:
        """Upload new volumes, then describe every volume as the message expects it."""
        volume_list: List[VolumeField] = as_list(volumes)
        if not volume_list:
            return None

        uploaded = yield from self.volume_manager.add_steps(volume_list)
        if uploaded:
            results["volume"] = uploaded
        refs = iter(uploaded or [])

        parsed: List[Dict[str, Any]] = []
        for volume in volume_list:
            if volume.volume_type == "persistent":
                parsed.append(
                    {
                        "persistence": "host",
                        "mount": volume.mount_path,
                        "size_mib": volume.size,
                        "name": volume.name,
                    }
                )
                continue

            estimated_size = self.volume_manager.get_volume_size(volume)
            if volume.is_new_upload:
                ref = next(refs).id
            else:
                ref = volume.ref_hash
            parsed.append(
                {
                    "mount": volume.mount_path,
                    "ref": ref,
                    "use_latest": volume.use_latest,
                    "estimated_size_mib": estimated_size,
                }
            )
        return parsed

    def parse_domains_steps(self, ref: str, domains: Optional[List[DomainField]]) -> StepGenerator[List[Domain]]:
        """Point the requested domains at a published execution. Taken names are skipped."""
        if not domains:
            return []
        with_ref = [DomainField(name=d.name, target=d.target, ref=ref) for d in domains]
        created = yield from self.domain_manager.add_steps(with_ref, "ignore")
        return created

    def get_domain_add_steps(self, domains: Optional[List[DomainField]]) -> List[str]:
        if not domains:
            return []
        return self.domain_manager.get_add_steps(domains, "ignore")

    # Costs

    def estimate_cost(
        self,
        config: Dict[str, Any],
        props: ExecutionCostProps,
        payment_method: PaymentMethod,
    ) -> CostSummary:
        """Price a draft message; a failing oracle is reported, not hidden."""
        costs = self.pricing.get_estimated_cost(self.message_type, config)
        return self.allocator.estimate(props, costs, payment_method)
