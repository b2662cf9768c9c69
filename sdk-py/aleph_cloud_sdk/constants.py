"""
Network constants: channels, aggregate keys, addresses, step kinds
"""

from decimal import Decimal
from typing import Dict, Literal

# Channels and keys
DEFAULT_CHANNEL = "ALEPH-CLOUDSOLUTIONS"

DEFAULT_INSTANCE_CHANNEL = DEFAULT_CHANNEL
DEFAULT_GPU_INSTANCE_CHANNEL = DEFAULT_CHANNEL
DEFAULT_CONFIDENTIAL_CHANNEL = DEFAULT_CHANNEL
DEFAULT_PROGRAM_CHANNEL = DEFAULT_CHANNEL
DEFAULT_VOLUME_CHANNEL = DEFAULT_CHANNEL
DEFAULT_DOMAIN_CHANNEL = DEFAULT_CHANNEL
DEFAULT_WEBSITE_CHANNEL = DEFAULT_CHANNEL
DEFAULT_SSH_CHANNEL = DEFAULT_CHANNEL
DEFAULT_CONSOLE_CHANNEL = DEFAULT_CHANNEL

DEFAULT_DOMAIN_AGGREGATE_KEY = "domains"
DEFAULT_WEBSITE_AGGREGATE_KEY = "websites"
DEFAULT_PORT_FORWARDING_AGGREGATE_KEY = "port-forwarding"
DEFAULT_SSH_POST_TYPE = "ALEPH-SSH"

# Addresses
COMMUNITY_WALLET_ADDRESS = "0x5aBd3258C5492fD378EBC2e0017416E199e5Da56"
SETTINGS_AGGREGATE_ADDRESS = "0xFba561a84A537fCaa567bb7A2257e7142701ae2A"
SCORING_ADDRESS = "0x4D52380D3191274a04846c89c069E6C3F2Ed94e4"
MONITOR_ADDRESS = "0xa1B3bb7d2332383D96b7796B908fB7f7F3c2Be10"

# Endpoints
DEFAULT_API_SERVER = "https://api.aleph.im"
SCHEDULER_URL = "https://scheduler.api.aleph.sh"
CRN_LIST_URL = "https://crns-list.aleph.sh/crns.json"
DNS_API_URL = "https://api.dns.public.aleph.sh"
CRN_RELEASES_URL = "https://api.github.com/repos/aleph-im/aleph-vm/releases"
CCN_RELEASES_URL = "https://api.github.com/repos/aleph-im/pyaleph/releases"
EXPLORER_URL = "https://explorer.aleph.im"
DEFAULT_VM_URL = "https://aleph.sh/vm/"

# Payment streams
EXTRA_WEI = Decimal(3600) / Decimal(10) ** 18
WEI_PER_TOKEN = Decimal(10) ** 18
MAX_FLOW_RATE = Decimal(100)
RECEIVER_SHARE = Decimal("0.8")
STREAM_COST_FACTOR = 3600
NO_FLOW_TO_DECREASE = "No flow to decrease flow"

# Nodes
MIN_STREAM_CRN_VERSION = "1.1.0"
SCORE_THRESHOLD = 0.8
MAX_STAKED_PER_NODE = 1_000_000
MAX_LINKED_PER_NODE = 5
MIN_STAKE_BALANCE = 10_000
BENCHMARK_VM_ID = "873889eb4ce554385e7263724bd0745130099c24fd9c535f0a648100138a2514"

# Cache lifetimes (seconds)
CRN_SPECS_TTL = 300
RELEASES_TTL = 300
NODE_PROBE_TTL = 3600
NODES_TTL = 5

# Session tokens
KEYPAIR_TTL_SECONDS = 2 * 60 * 60

# Forwarded ports
MAX_PORTS_ALLOWED = 20
SYSTEM_PORTS = frozenset({22})

# Entity kinds
EntityType = Literal[
    "volume",
    "program",
    "instance",
    "gpuInstance",
    "sshKey",
    "domain",
    "website",
    "confidential",
]

ENTITY_TYPE_NAMES: Dict[str, str] = {
    "volume": "Volume",
    "program": "Function",
    "instance": "Instance",
    "gpuInstance": "GPU Instance",
    "sshKey": "SSH Key",
    "domain": "Domain",
    "website": "Website",
    "confidential": "Confidential",
}

DomainTarget = Literal["ipfs", "program", "instance", "confidential"]
VolumeType = Literal["new", "existing", "persistent"]
PaymentMethod = Literal["hold", "stream"]
Blockchain = Literal["ETH", "AVAX", "BASE", "SOL"]
CollisionPolicy = Literal["throw", "ignore", "override"]

PAYG_COMPATIBLE_CHAINS = frozenset({"BASE", "AVAX"})

# Step kinds
AddStepKind = Literal[
    "ssh",
    "volume",
    "domain",
    "stream",
    "instance",
    "program",
    "website",
    "allocate",
    "portForwarding",
]
DelStepKind = Literal[
    "sshDel",
    "volumeDel",
    "domainDel",
    "streamDel",
    "instanceDel",
    "programDel",
    "websiteDel",
    "portForwardingDel",
]
UpdateStepKind = Literal[
    "sshUp",
    "volumeUp",
    "domainUp",
    "instanceUp",
    "programUp",
    "websiteUp",
]

# Pricing detail line types
EXECUTION = "EXECUTION"
EXECUTION_INSTANCE_VOLUME_ROOTFS = "EXECUTION_INSTANCE_VOLUME_ROOTFS"
EXECUTION_PROGRAM_VOLUME_CODE = "EXECUTION_PROGRAM_VOLUME_CODE"
EXECUTION_PROGRAM_VOLUME_RUNTIME = "EXECUTION_PROGRAM_VOLUME_RUNTIME"
EXECUTION_VOLUME_INMUTABLE = "EXECUTION_VOLUME_INMUTABLE"
EXECUTION_VOLUME_PERSISTENT = "EXECUTION_VOLUME_PERSISTENT"
EXECUTION_VOLUME_DISCOUNT = "EXECUTION_VOLUME_DISCOUNT"

# Program runtimes
RUNTIME_DEBIAN = "63f07193e6ee9d207b7d1fcf8286f9aee34e6f12f101d2ec77c1229f92964696"
RUNTIME_NODE_LTS = "3c238dd3ffba73ab9b2cccb90a11e40e78aff396152de922a6d794a0a65a305e"

FUNCTION_RUNTIMES: Dict[str, str] = {
    "python": RUNTIME_DEBIAN,
    "javascript": RUNTIME_NODE_LTS,
}
DEFAULT_ENTRYPOINT = "main:app"
