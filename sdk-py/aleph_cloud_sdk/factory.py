"""
Wires every manager around one client
"""

from dataclasses import dataclass
from typing import Any, Optional

import requests

from .balance import BalanceManager
from .clients import FileSizeLookup, MessageClient, PricingOracle
from .config import SDKConfig
from .domain import DomainManager
from .forwarded_ports import ForwardedPortsManager
from .http import new_session
from .instance import ConfidentialInstanceManager, GpuInstanceManager, InstanceManager
from .node import NodeManager
from .payment import PaymentStreamCoordinator
from .program import ProgramManager
from .selector import NodeSelector
from .session import SessionCache
from .ssh import SSHKeyManager
from .volume import VolumeManager
from .website import WebsiteManager


@dataclass
class Managers:
    client: MessageClient
    config: SDKConfig
    session_cache: SessionCache
    node_manager: NodeManager
    node_selector: NodeSelector
    payments: PaymentStreamCoordinator
    balance_manager: BalanceManager
    ssh_key_manager: SSHKeyManager
    domain_manager: DomainManager
    volume_manager: VolumeManager
    forwarded_ports_manager: ForwardedPortsManager
    instance_manager: InstanceManager
    gpu_instance_manager: GpuInstanceManager
    confidential_instance_manager: ConfidentialInstanceManager
    program_manager: ProgramManager
    website_manager: WebsiteManager


def create_managers(
    client: MessageClient,
    pricing: Optional[PricingOracle] = None,
    account: Any = None,
    config: Optional[SDKConfig] = None,
    session: Optional[requests.Session] = None,
    sizes: Optional[FileSizeLookup] = None,
) -> Managers:
    """
    Build the full manager set sharing one HTTP session, one node cache and
    one session token cache.

    Args:
        client: Message client; pass an authenticated one to publish
        pricing: Pricing oracle (cost estimates, node reservations)
        account: Wallet account (defaults to the client's account)
        config: SDK configuration (defaults to SDKConfig.from_env())
        session: requests session shared by every HTTP call
        sizes: Size lookup for stored volumes
    """
    config = config or SDKConfig.from_env()
    session = session or new_session()
    if account is None:
        account = getattr(client, "account", None)

    session_cache = SessionCache(account)
    node_manager = NodeManager(client, config=config, session=session, account=account)
    node_selector = NodeSelector(node_manager, pricing=pricing, session_cache=session_cache, config=config, session=session)
    payments = PaymentStreamCoordinator(client, pricing)

    ssh_key_manager = SSHKeyManager(client, account=account)
    domain_manager = DomainManager(client, config=config, session=session, account=account)
    volume_manager = VolumeManager(client, pricing=pricing, sizes=sizes, account=account)
    forwarded_ports_manager = ForwardedPortsManager(client, account=account)

    instance_args = dict(
        client=client,
        pricing=pricing,
        volume_manager=volume_manager,
        domain_manager=domain_manager,
        ssh_key_manager=ssh_key_manager,
        node_selector=node_selector,
        payments=payments,
        forwarded_ports_manager=forwarded_ports_manager,
        account=account,
    )

    return Managers(
        client=client,
        config=config,
        session_cache=session_cache,
        node_manager=node_manager,
        node_selector=node_selector,
        payments=payments,
        balance_manager=BalanceManager(config=config, session=session),
        ssh_key_manager=ssh_key_manager,
        domain_manager=domain_manager,
        volume_manager=volume_manager,
        forwarded_ports_manager=forwarded_ports_manager,
        instance_manager=InstanceManager(**instance_args),
        gpu_instance_manager=GpuInstanceManager(**instance_args),
        confidential_instance_manager=ConfidentialInstanceManager(**instance_args),
        program_manager=ProgramManager(
            client,
            pricing,
            volume_manager,
            domain_manager,
            node_selector,
            payments,
            account=account,
            config=config,
            session=session,
        ),
        website_manager=WebsiteManager(client, volume_manager, domain_manager, pricing=pricing, account=account),
    )
