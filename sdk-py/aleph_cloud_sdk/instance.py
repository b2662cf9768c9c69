"""
Virtual machine instances: plain, GPU and confidential

Creating an instance uploads new SSH keys and volumes, publishes the
instance message, then (for stream payments) opens the payment flows,
links domains and tells the hosting node about the allocation.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .clients import MessageClient, PricingOracle, StreamAccount, require_signer
from .constants import DEFAULT_CONFIDENTIAL_CHANNEL, DEFAULT_GPU_INSTANCE_CHANNEL, DEFAULT_INSTANCE_CHANNEL
from .cost import CostSummary, ExecutionCostProps
from .domain import DomainManager
from .entities import Instance
from .errors import ConnectYourWallet, InvalidNode, InvalidResponse
from .executable import ExecutableManager
from .fields import DomainField, EnvVarField, PaymentConfig, Specs, SSHKeyField, VolumeField, as_list
from .forwarded_ports import ForwardedPortsManager
from .node import NodeSpec
from .payment import PaymentStreamCoordinator
from .selector import NodeSelector
from .ssh import SSHKeyManager
from .steps import StepGenerator, StepSequence
from .volume import VolumeManager

logger = logging.getLogger(__name__)

ALLOCATION_ATTEMPTS = 10
ALLOCATION_DELAY = 2.0


@dataclass(frozen=True)
class InstanceRequest:
    """
    A new instance.

    system_volume_size is the root filesystem size in MiB; it defaults to
    specs.storage. node is required for stream payments.
    """

    image: str
    specs: Specs
    name: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    system_volume_size: Optional[int] = None
    ssh_keys: List[SSHKeyField] = field(default_factory=list)
    volumes: List[VolumeField] = field(default_factory=list)
    env_vars: List[EnvVarField] = field(default_factory=list)
    domains: List[DomainField] = field(default_factory=list)
    payment: Optional[PaymentConfig] = None
    node: Optional[NodeSpec] = None

    @property
    def is_stream(self) -> bool:
        return self.payment is not None and self.payment.is_stream

    @property
    def rootfs_size(self) -> int:
        if self.system_volume_size is not None:
            return self.system_volume_size
        return self.specs.storage


class InstanceManager(ExecutableManager[Instance]):
    """
    Args:
        ssh_key_manager: Publishes new SSH keys before the instance
        forwarded_ports_manager: Cleans up port forwarding on delete
        (see ExecutableManager for the rest)
    """

    entity_type = "instance"
    message_type = "INSTANCE"

    def __init__(
        self,
        client: MessageClient,
        pricing: PricingOracle,
        volume_manager: VolumeManager,
        domain_manager: DomainManager,
        ssh_key_manager: SSHKeyManager,
        node_selector: NodeSelector,
        payments: PaymentStreamCoordinator,
        forwarded_ports_manager: ForwardedPortsManager,
        channel: str = DEFAULT_INSTANCE_CHANNEL,
        account: Any = None,
    ):
        super().__init__(client, pricing, volume_manager, domain_manager, node_selector, payments, channel, account)
        self.ssh_key_manager = ssh_key_manager
        self.forwarded_ports_manager = forwarded_ports_manager

    def matches(self, content: Dict[str, Any]) -> bool:
        """Plain instances: neither trusted execution nor GPUs."""
        return not is_confidential(content) and not has_gpu(content)

    # Reads

    def get_all(self) -> List[Instance]:
        if self.account is None:
            return []
        try:
            response = self.client.get_messages(
                addresses=[self.account.address],
                message_types=[self.message_type],
                channels=[self.channel],
            )
        except Exception as e:
            logger.warning("could not list %s messages of %s: %s", self.entity_type, self.account.address, e)
            return []
        return self.parse_messages(response.get("messages") or [])

    def get(self, entity_id: str) -> Optional[Instance]:
        instances = self.parse_messages([self.client.get_message(entity_id)])
        return instances[0] if instances else None

    def parse_messages(self, messages: List[Dict[str, Any]]) -> List[Instance]:
        return [
            self.parse_message(message)
            for message in messages
            if message.get("content") is not None and self.matches(message["content"])
        ]

    def parse_message(self, message: Dict[str, Any]) -> Instance:
        instance = Instance.from_message(message, self.entity_type)
        instance.size = instance.rootfs.get("size_mib") or 0
        return instance

    # Plans

    @staticmethod
    def new_ssh_keys(keys: Optional[List[SSHKeyField]]) -> List[SSHKeyField]:
        return [k for k in keys or [] if k.is_new and k.is_selected]

    def get_add_steps(self, request: InstanceRequest) -> List[str]:
        steps: List[str] = []
        steps += self.ssh_key_manager.get_add_steps(self.new_ssh_keys(request.ssh_keys), throw_on_collision=False)
        steps += self.volume_manager.get_add_steps(request.volumes)
        steps.append("instance")
        if request.is_stream:
            steps.append("stream")
        steps += self.get_domain_add_steps(request.domains)
        if request.is_stream:
            steps.append("allocate")
        return steps

    def get_del_steps(self, instances: Any) -> List[str]:
        steps: List[str] = []
        for instance_or_id in as_list(instances):
            instance = self.ensure(instance_or_id)
            if instance.is_stream:
                steps.append("streamDel")
            steps.append("instanceDel")
            steps.append("portForwardingDel")
        return steps

    # Workflows

    def add_steps(self, request: InstanceRequest, stream_account: Optional[StreamAccount] = None) -> StepSequence[Instance]:
        return StepSequence(self._add, request, stream_account)

    def add(self, request: InstanceRequest, stream_account: Optional[StreamAccount] = None) -> Instance:
        return self.add_steps(request, stream_account).run()

    def del_steps(
        self,
        instances: Union[str, Instance, List[Union[str, Instance]]],
        stream_account: Optional[StreamAccount] = None,
    ) -> StepSequence[None]:
        return StepSequence(self._del, as_list(instances), stream_account)

    def delete(
        self,
        instances: Union[str, Instance, List[Union[str, Instance]]],
        stream_account: Optional[StreamAccount] = None,
    ) -> None:
        self.del_steps(instances, stream_account).run()

    def get_cost(self, request: InstanceRequest) -> CostSummary:
        payment_method = "stream" if request.is_stream else "hold"
        config = self.parse_instance_for_cost_estimation(request)
        props = ExecutionCostProps(
            entity_type=self.entity_type,
            cpu=request.specs.cpu,
            ram=request.specs.ram,
            rootfs_size=request.rootfs_size,
            volumes=config.get("volumes") or [],
            domains=[domain.name for domain in request.domains],
        )
        return self.estimate_cost(config, props, payment_method)

    def get_stream_payment_details(
        self, instance_or_id: Union[str, Instance], stream_account: Optional[StreamAccount]
    ) -> Optional[Dict[str, Dict[str, Any]]]:
        return self.payments.get_stream_payment_details(self.ensure(instance_or_id), stream_account)

    # Message content

    def parse_rootfs(self, request: InstanceRequest) -> Dict[str, Any]:
        return {"parent": {"ref": request.image}, "size_mib": request.rootfs_size}

    def parse_instance_for_cost_estimation(self, request: InstanceRequest) -> Dict[str, Any]:
        config: Dict[str, Any] = {
            "channel": self.channel,
            "rootfs": self.parse_rootfs(request),
            "payment": self.parse_payment_for_cost_estimation(request.payment),
        }
        resources = self.parse_specs(request.specs)
        if resources:
            config["resources"] = resources
        volumes = self.parse_volumes_for_cost_estimation(request.volumes)
        if volumes:
            config["volumes"] = volumes
        requirements = self.parse_requirements(request.node)
        if requirements:
            config["requirements"] = requirements
        return config

    def parse_instance_steps(
        self,
        request: InstanceRequest,
        stream_account: Optional[StreamAccount],
        results: Dict[str, Any],
    ) -> StepGenerator[Dict[str, Any]]:
        """Validate the request, publish its SSH keys and volumes, build the message content."""
        payment = self.parse_payment(request.payment)
        if request.is_stream:
            if request.node is None or not request.node.address:
                raise InvalidNode()
            if stream_account is None:
                raise ConnectYourWallet()

        config: Dict[str, Any] = {
            "channel": self.channel,
            "metadata": self.parse_metadata(request.name, request.tags),
            "rootfs": self.parse_rootfs(request),
            "payment": payment,
        }
        variables = self.parse_env_vars(request.env_vars)
        if variables:
            config["variables"] = variables
        resources = self.parse_specs(request.specs)
        if resources:
            config["resources"] = resources
        requirements = self.parse_requirements(request.node)
        if requirements:
            config["requirements"] = requirements

        authorized_keys = yield from self.parse_ssh_keys_steps(request.ssh_keys, results)
        if authorized_keys:
            config["authorized_keys"] = authorized_keys

        volumes = yield from self.parse_volumes_steps(request.volumes, results)
        if volumes:
            config["volumes"] = volumes

        return config

    def parse_ssh_keys_steps(
        self, keys: Optional[List[SSHKeyField]], results: Dict[str, Any]
    ) -> StepGenerator[Optional[List[str]]]:
        """Publish the new keys (already registered ones are skipped), return every selected key."""
        created = yield from self.ssh_key_manager.add_steps(self.new_ssh_keys(keys), throw_on_collision=False)
        if created:
            results["ssh"] = created
        selected = [k.key for k in keys or [] if k.is_selected]
        return selected or None

    def _add(
        self,
        request: InstanceRequest,
        stream_account: Optional[StreamAccount],
        results: Dict[str, Any],
    ) -> StepGenerator[Instance]:
        signer = require_signer(self.client)
        config = yield from self.parse_instance_steps(request, stream_account, results)

        yield "instance"

        if request.is_stream:
            self.node_selector.reserve_crn_resources(request.node, self.message_type, config)
        response = signer.create_instance(config)
        if not response or not response.get("item_hash"):
            raise InvalidResponse("instance message")
        instance = self.parse_message(response)
        results["instance"] = instance
        logger.info("published %s %s", self.entity_type, instance.id)

        if request.is_stream:
            results["stream"] = yield from self.payments.add_stream_steps(request.payment, request.node, stream_account)

        domains = yield from self.parse_domains_steps(instance.id, request.domains)
        if domains:
            results["domain"] = domains

        if request.is_stream:
            yield "allocate"
            self.node_selector.notify_crn_allocation(
                request.node, instance.id, attempts=ALLOCATION_ATTEMPTS, delay=ALLOCATION_DELAY
            )

        return instance

    def _del(
        self,
        instances: List[Union[str, Instance]],
        stream_account: Optional[StreamAccount],
        results: Dict[str, Any],
    ) -> StepGenerator[None]:
        signer = require_signer(self.client)

        for instance_or_id in instances:
            instance = self.ensure(instance_or_id)

            if instance.is_stream:
                yield "streamDel"
                self.payments.teardown(instance, stream_account)

            yield "instanceDel"
            results.setdefault("instanceDel", []).append(signer.forget(self.channel, [instance.id]))

            yield "portForwardingDel"
            try:
                self.forwarded_ports_manager.del_by_entity_hash(instance.id)
            except Exception as e:
                logger.error("could not remove forwarded ports of %s: %s", instance.id, e)

        return None


class GpuInstanceManager(InstanceManager):
    """Instances pinned to a node GPU, published with requirements.gpu."""

    entity_type = "gpuInstance"

    def __init__(self, *args: Any, channel: str = DEFAULT_GPU_INSTANCE_CHANNEL, **kwargs: Any):
        super().__init__(*args, channel=channel, **kwargs)

    def matches(self, content: Dict[str, Any]) -> bool:
        return has_gpu(content) and not is_confidential(content)

    def parse_requirements(self, node: Optional[NodeSpec]) -> Optional[Dict[str, Any]]:
        requirements = super().parse_requirements(node)
        if node is None or not node.gpu:
            return requirements
        requirements = dict(requirements or {})
        requirements["gpu"] = [{"vendor": node.gpu.get("vendor"), "device_name": node.gpu.get("device_name")}]
        return requirements


class ConfidentialInstanceManager(InstanceManager):
    """Instances running in a trusted execution environment."""

    entity_type = "confidential"

    def __init__(self, *args: Any, channel: str = DEFAULT_CONFIDENTIAL_CHANNEL, **kwargs: Any):
        super().__init__(*args, channel=channel, **kwargs)

    def matches(self, content: Dict[str, Any]) -> bool:
        return is_confidential(content)


def is_confidential(content: Dict[str, Any]) -> bool:
    return bool((content.get("environment") or {}).get("trusted_execution"))


def has_gpu(content: Dict[str, Any]) -> bool:
    return bool((content.get("requirements") or {}).get("gpu"))
