"""
Aleph Cloud SDK v0.1
Provisioning of decentralized compute resources

Workflows: instances, programs, volumes, domains, websites, SSH keys, ports
Costs: itemized estimates with volume-discount cascade
Payments: pay-as-you-go token streams
Nodes: directory, placement and status of compute resource nodes
"""

import logging

from .steps import StepSequence, drive
from .errors import (
    AlephSDKError,
    RequestFailed,
    InvalidResponse,
    InvalidAccount,
    InvalidParameter,
    ConnectYourWallet,
    ConnectYourPaymentWallet,
    InstanceNotFound,
    InvalidNode,
    InvalidCRNAddress,
    InstanceStartupFailed,
    MaxFlowRate,
    InsufficientBalance,
    DomainUsed,
    SSHKeysUsed,
    StreamNotSupported,
    ReceiverRequired,
    ReceiverRewardRequired,
    MissingVolumeData,
    CustomRuntimeNeeded,
    InvalidCodeFile,
    InvalidCodeType,
    MaxPortsExceeded,
)
from .config import SDKConfig, configure_logging
from .clients import (
    Account,
    StreamAccount,
    MessageClient,
    AuthenticatedMessageClient,
    PricingOracle,
    FileSizeLookup,
)
from .crypto import Ed25519Account

# Requests and entities
from .fields import PaymentConfig, Specs, EnvVarField, VolumeField, DomainField, SSHKeyField
from .entities import Executable, Instance, Program, Volume, Domain, SSHKey, Website, ForwardedPorts

# Costs
from .cost import CostLine, CostSummary, CostAllocator, ExecutionCostProps, cascade_discount

# Payments
from .payment import FlowSplit, PaymentStreamCoordinator, plan_stream, validate_capacity

# Nodes
from .node import NodeManager, NodeSpec, CRN, CCN, ReducedSpecs, StreamNotSupportedIssue
from .selector import NodeSelector, ExecutableStatus
from .session import SessionCache

# Managers
from .volume import VolumeManager
from .domain import DomainManager
from .ssh import SSHKeyManager
from .forwarded_ports import ForwardedPortsManager, PortEntry, validate_port_entry
from .instance import InstanceRequest, InstanceManager, GpuInstanceManager, ConfidentialInstanceManager
from .program import CodeField, ProgramRequest, ProgramManager
from .website import WebsiteRequest, WebsiteManager
from .balance import BalanceManager
from .factory import Managers, create_managers

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"
__all__ = [
    # Workflows
    "StepSequence",
    "drive",
    # Errors
    "AlephSDKError",
    "RequestFailed",
    "InvalidResponse",
    "InvalidAccount",
    "InvalidParameter",
    "ConnectYourWallet",
    "ConnectYourPaymentWallet",
    "InstanceNotFound",
    "InvalidNode",
    "InvalidCRNAddress",
    "InstanceStartupFailed",
    "MaxFlowRate",
    "InsufficientBalance",
    "DomainUsed",
    "SSHKeysUsed",
    "StreamNotSupported",
    "ReceiverRequired",
    "ReceiverRewardRequired",
    "MissingVolumeData",
    "CustomRuntimeNeeded",
    "InvalidCodeFile",
    "InvalidCodeType",
    "MaxPortsExceeded",
    # Config & collaborators
    "SDKConfig",
    "configure_logging",
    "Account",
    "StreamAccount",
    "MessageClient",
    "AuthenticatedMessageClient",
    "PricingOracle",
    "FileSizeLookup",
    "Ed25519Account",
    # Requests and entities
    "PaymentConfig",
    "Specs",
    "EnvVarField",
    "VolumeField",
    "DomainField",
    "SSHKeyField",
    "Executable",
    "Instance",
    "Program",
    "Volume",
    "Domain",
    "SSHKey",
    "Website",
    "ForwardedPorts",
    # Costs
    "CostLine",
    "CostSummary",
    "CostAllocator",
    "ExecutionCostProps",
    "cascade_discount",
    # Payments
    "FlowSplit",
    "PaymentStreamCoordinator",
    "plan_stream",
    "validate_capacity",
    # Nodes
    "NodeManager",
    "NodeSpec",
    "CRN",
    "CCN",
    "ReducedSpecs",
    "StreamNotSupportedIssue",
    "NodeSelector",
    "ExecutableStatus",
    "SessionCache",
    # Managers
    "VolumeManager",
    "DomainManager",
    "SSHKeyManager",
    "ForwardedPortsManager",
    "PortEntry",
    "validate_port_entry",
    "InstanceRequest",
    "InstanceManager",
    "GpuInstanceManager",
    "ConfidentialInstanceManager",
    "CodeField",
    "ProgramRequest",
    "ProgramManager",
    "WebsiteRequest",
    "WebsiteManager",
    "BalanceManager",
    "Managers",
    "create_managers",
]
