"""
Node directory: compute resource nodes (CRN) and core channel nodes (CCN)

Reads the network-wide node aggregate, enriches it with scores and metrics,
probes individual CRNs and decides which ones can host stream-paid
executions.
"""

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional, Tuple, Union

import requests

from .clients import MessageClient
from .config import SDKConfig
from .constants import (
    BENCHMARK_VM_ID,
    CRN_SPECS_TTL,
    MAX_LINKED_PER_NODE,
    MAX_STAKED_PER_NODE,
    MIN_STAKE_BALANCE,
    MIN_STREAM_CRN_VERSION,
    MONITOR_ADDRESS,
    NODE_PROBE_TTL,
    NODES_TTL,
    RELEASES_TTL,
    SCORE_THRESHOLD,
    SCORING_ADDRESS,
)
from .errors import InvalidResponse
from .http import get_json, new_session, with_retries
from .utils import TTLCache, extract_valid_eth_address, get_latest_releases, get_version_number, normalize_url

logger = logging.getLogger(__name__)

PROBE_DELAY = 0.2


class StreamNotSupportedIssue(IntEnum):
    Valid = 0
    IPV6 = 1
    MinSpecs = 2
    Version = 3
    RewardAddress = 4
    MismatchRewardAddress = 5


@dataclass
class NodeSpec:
    """
    Live specs of a compute resource node, as listed by the CRN list
    program or reported by the node itself.

    cpu, mem and disk keep the node's own usage report
    ({"count": ...}, {"available_kB": ...}).
    """

    hash: str
    name: str = ""
    address: Optional[str] = None
    stream_reward: Optional[str] = None
    terms_and_conditions: Optional[str] = None
    version: Optional[str] = None
    cpu: Dict[str, Any] = field(default_factory=dict)
    mem: Dict[str, Any] = field(default_factory=dict)
    disk: Dict[str, Any] = field(default_factory=dict)
    gpu: Dict[str, Any] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeSpec":
        flat = dict(data)
        usage = flat.pop("system_usage", None) or {}
        flat = {**usage, **flat}

        known = {
            "hash", "name", "address", "stream_reward", "terms_and_conditions",
            "version", "cpu", "mem", "disk", "gpu",
        }
        return cls(
            hash=flat.get("hash", ""),
            name=flat.get("name") or "",
            address=flat.get("address"),
            stream_reward=flat.get("stream_reward"),
            terms_and_conditions=flat.get("terms_and_conditions"),
            version=flat.get("version"),
            cpu=flat.get("cpu") or {},
            mem=flat.get("mem") or {},
            disk=flat.get("disk") or {},
            gpu=flat.get("gpu") or {},
            extra={k: v for k, v in flat.items() if k not in known},
        )

    @property
    def cpu_count(self) -> int:
        return int(self.cpu.get("count") or 0)

    @property
    def ram_mib(self) -> float:
        return (self.mem.get("available_kB") or 0) / 1024

    @property
    def storage_mib(self) -> float:
        return (self.disk.get("available_kB") or 0) / 1024

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "hash": self.hash,
            "name": self.name,
            "cpu": self.cpu,
            "mem": self.mem,
            "disk": self.disk,
        }
        for key in ("address", "stream_reward", "terms_and_conditions", "version"):
            value = getattr(self, key)
            if value is not None:
                d[key] = value
        if self.gpu:
            d["gpu"] = self.gpu
        return d


@dataclass
class ReducedSpecs:
    """Minimum sizing an execution needs (ram and storage in MiB)."""

    cpu: int
    ram: int
    storage: int


@dataclass
class CRN:
    hash: str
    name: str = ""
    owner: str = ""
    address: Optional[str] = None
    parent: Optional[str] = None
    locked: bool = False
    stream_reward: Optional[str] = None
    score: float = 0.0
    version: Optional[str] = None
    score_data: Optional[Dict[str, Any]] = None
    metrics_data: Optional[Dict[str, Any]] = None
    parent_data: Optional["CCN"] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CRN":
        return cls(
            hash=data["hash"],
            name=data.get("name") or "",
            owner=data.get("owner") or "",
            address=data.get("address"),
            parent=data.get("parent"),
            locked=bool(data.get("locked")),
            stream_reward=data.get("stream_reward"),
            score=data.get("score") or 0.0,
            extra=data,
        )


@dataclass
class CCN:
    hash: str
    name: str = ""
    owner: str = ""
    locked: bool = False
    registration_url: Optional[str] = None
    authorized: List[str] = field(default_factory=list)
    stakers: Dict[str, Any] = field(default_factory=dict)
    total_staked: float = 0.0
    resource_nodes: List[str] = field(default_factory=list)
    score: float = 0.0
    version: Optional[str] = None
    score_data: Optional[Dict[str, Any]] = None
    metrics_data: Optional[Dict[str, Any]] = None
    crns_data: List[CRN] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CCN":
        return cls(
            hash=data["hash"],
            name=data.get("name") or "",
            owner=data.get("owner") or "",
            locked=bool(data.get("locked")),
            registration_url=data.get("registration_url"),
            authorized=list(data.get("authorized") or []),
            stakers=dict(data.get("stakers") or {}),
            total_staked=data.get("total_staked") or 0.0,
            resource_nodes=list(data.get("resource_nodes") or []),
            score=data.get("score") or 0.0,
            extra=data,
        )


@dataclass
class NodesResponse:
    ccns: List[CCN]
    crns: List[CRN]
    timestamp: float = 0


AlephNode = Union[CRN, CCN]


def validate_min_node_specs(min_specs: ReducedSpecs, node: NodeSpec) -> bool:
    """True when the node has at least the requested cpu, ram and disk available."""
    return (
        min_specs.cpu <= node.cpu_count
        and min_specs.ram <= node.ram_mib
        and min_specs.storage <= node.storage_mib
    )


class NodeManager:
    """
    Read access to the node directory.

    Args:
        client: Message client used for score and metrics posts
        config: SDK configuration (API server, CRN list and releases URLs)
        session: requests session, shared with other managers
        cache: TTL cache, shared so that specs are fetched once per TTL
        account: Wallet used for the "is this my node" checks
    """

    def __init__(
        self,
        client: MessageClient,
        config: Optional[SDKConfig] = None,
        session: Optional[requests.Session] = None,
        cache: Optional[TTLCache] = None,
        account: Any = None,
    ):
        self.client = client
        self.config = config or SDKConfig()
        self.session = session or new_session()
        self.cache = cache or TTLCache()
        self.account = account if account is not None else getattr(client, "account", None)

    # Network-wide lists

    def get_all_crns_specs(self) -> List[NodeSpec]:
        """Specs of every CRN from the CRN list program. [] when unavailable."""

        def load() -> List[NodeSpec]:
            res = get_json(self.session, self.config.crn_list_url, timeout=self.config.http_timeout)
            if not isinstance(res, dict) or res.get("crns") is None:
                raise InvalidResponse("crns list")
            return [NodeSpec.from_dict(crn) for crn in res["crns"]]

        try:
            return self.cache.get_or_load("all_crn_specs", CRN_SPECS_TTL, load)
        except (requests.RequestException, InvalidResponse, ValueError) as e:
            logger.warning("could not load CRN specs: %s", e)
            return []

    def get_all_nodes(self) -> NodesResponse:
        """Every CCN and CRN, with scores, metrics and parent/child links."""
        ccns, crns = self._fetch_all_nodes()

        scores = self._get_scores()
        metrics = self._get_metrics()

        self._apply_scores(crns, scores.get("crn") or [])
        self._apply_scores(ccns, scores.get("ccn") or [])
        self._apply_metrics(crns, metrics.get("crn") or [])
        self._apply_metrics(ccns, metrics.get("ccn") or [])

        self._link_children(ccns, crns)
        self._link_parents(crns, ccns)

        return NodesResponse(ccns=ccns, crns=crns)

    def get_crn_nodes(self) -> List[CRN]:
        return self.get_all_nodes().crns

    def get_ccn_nodes(self) -> List[CCN]:
        return self.get_all_nodes().ccns

    # Per-node probes

    def get_crn_specs(self, node: Union[CRN, NodeSpec], retries: int = 2) -> Optional[NodeSpec]:
        """Live usage report of one node, or None when it does not answer."""

        def parse(res: Dict[str, Any]) -> NodeSpec:
            if not isinstance(res, dict) or res.get("cpu") is None:
                raise InvalidResponse("usage report")
            return NodeSpec.from_dict({**res, "hash": node.hash, "name": node.name})

        return self._probe(node, "/about/usage/system", f"crn_specs_{node.hash}_1", parse, retries)

    def get_crn_config(self, node: Union[CRN, NodeSpec], retries: int = 2) -> Optional[Dict[str, Any]]:
        """Node configuration, with payment.matched_reward_addresses injected."""

        def parse(res: Dict[str, Any]) -> Dict[str, Any]:
            if not isinstance(res, dict):
                raise InvalidResponse("config")
            config = {**res, "hash": node.hash, "name": node.name}
            payment = config.get("payment")
            if payment:
                config["payment"] = {
                    **payment,
                    "matched_reward_addresses": payment.get("PAYMENT_RECEIVER_ADDRESS") == node.stream_reward,
                }
            return config

        return self._probe(node, "/status/config", f"crn_specs_{node.hash}_2", parse, retries)

    def get_crn_ips(self, node: Union[CRN, NodeSpec], retries: int = 2) -> Optional[Dict[str, Any]]:
        def parse(res: Dict[str, Any]) -> Dict[str, Any]:
            if not isinstance(res, dict) or res.get("vm") is None:
                raise InvalidResponse("ipv6 check")
            return {**res, "hash": node.hash, "name": node.name}

        return self._probe(node, "/status/check/ipv6", f"crn_ips_{node.hash}_1", parse, retries)

    def get_crn_benchmark(self, node: Union[CRN, NodeSpec], retries: int = 4) -> Optional[Dict[str, Any]]:
        def parse(res: Dict[str, Any]) -> Dict[str, Any]:
            if not isinstance(res, dict) or res.get("benchmark") is None:
                raise InvalidResponse("benchmark")
            benchmark = res["benchmark"]
            average = benchmark.get("average", 0) if isinstance(benchmark, dict) else 0
            return {"hash": node.hash, "name": node.name, "benchmark": average}

        return self._probe(
            node,
            f"/vm/{BENCHMARK_VM_ID}/benchmark",
            f"crn_benchmark_cpu_{node.hash}",
            parse,
            retries,
        )

    def get_crns_specs(self, nodes: List[CRN]) -> List[NodeSpec]:
        specs = [self.get_crn_specs(node) for node in nodes]
        return [spec for spec in specs if spec is not None]

    # Releases

    def get_latest_crn_version(self) -> Dict[str, Optional[str]]:
        return self._latest_releases("crn_versions", self.config.crn_releases_url)

    def get_latest_ccn_version(self) -> Dict[str, Optional[str]]:
        return self._latest_releases("ccn_versions", self.config.ccn_releases_url)

    def get_latest_version(self, node: AlephNode) -> Dict[str, Optional[str]]:
        if isinstance(node, CRN):
            return self.get_latest_crn_version()
        return self.get_latest_ccn_version()

    # Stream payment support

    def get_node_version_number(self, node: Union[CRN, NodeSpec]) -> int:
        if isinstance(node, NodeSpec) and node.version:
            return get_version_number(node.version)
        metrics = getattr(node, "metrics_data", None)
        if metrics and metrics.get("version"):
            return get_version_number(metrics["version"])
        if node.version:
            return get_version_number(node.version)
        return 0

    def is_stream_payment_not_supported(self, node: Union[CRN, NodeSpec]) -> StreamNotSupportedIssue:
        """Cheap checks first: reward address, then node version."""
        if not extract_valid_eth_address(node.stream_reward):
            return StreamNotSupportedIssue.RewardAddress

        if self.get_node_version_number(node) < get_version_number(MIN_STREAM_CRN_VERSION):
            return StreamNotSupportedIssue.Version

        return StreamNotSupportedIssue.Valid

    def is_stream_payment_fully_supported(self, node: Union[CRN, NodeSpec]) -> bool:
        """Basic checks plus the node's own config agreeing on the reward address."""
        if self.is_stream_payment_not_supported(node) != StreamNotSupportedIssue.Valid:
            return False

        if isinstance(node, NodeSpec):
            config = self.get_crn_config(node)
            payment = (config or {}).get("payment") or {}
            if not payment.get("matched_reward_addresses"):
                return False

        return True

    def validate_min_node_specs(self, min_specs: ReducedSpecs, node: NodeSpec) -> bool:
        return validate_min_node_specs(min_specs, node)

    # Ownership, staking and linking

    def is_user_node(self, node: AlephNode) -> bool:
        if self.account is None:
            return False
        return self.account.address == node.owner

    def is_user_stake(self, node: CCN) -> bool:
        if self.account is None:
            return False
        return bool(node.stakers.get(self.account.address))

    def is_kyc_required(self, node: CCN) -> bool:
        return bool(node.registration_url)

    def is_kyc_cleared(self, node: CCN) -> bool:
        if self.account is None:
            return False
        return self.account.address in node.authorized

    def is_locked(self, node: CCN) -> bool:
        if not node.locked:
            return False
        return not (self.is_kyc_required(node) and self.is_kyc_cleared(node))

    def is_linked(self, node: CRN) -> bool:
        return node.parent_data is not None

    def is_stakeable(self, node: CCN) -> Tuple[bool, str]:
        if node.total_staked >= MAX_STAKED_PER_NODE:
            return False, "Too many ALEPH staked on that node"
        if self.is_locked(node):
            return False, "This node is locked"
        return True, f"{node.hash} is stakeable"

    def is_stakeable_by(self, node: CCN, balance: Optional[float]) -> Tuple[bool, str]:
        ok, reason = self.is_stakeable(node)
        if not ok:
            return ok, reason
        if not balance or balance < MIN_STAKE_BALANCE:
            return False, f"You need at least {MIN_STAKE_BALANCE} ALEPH to stake"
        if self.is_user_node(node):
            return False, "You can't stake while you operate a node"
        if self.is_user_stake(node):
            return False, "Already staking in this node"
        return True, f"Stake {balance:.2f} ALEPH in this node"

    def is_linkable(self, node: CRN) -> Tuple[bool, str]:
        if node.locked:
            return False, "This node is locked"
        if node.parent:
            return False, f"The node is already linked to {node.parent} ccn"
        return True, f"{node.hash} is linkable"

    def is_linkable_by(self, node: CRN, user_node: Optional[CCN]) -> Tuple[bool, str]:
        ok, reason = self.is_linkable(node)
        if not ok:
            return ok, reason
        if user_node is None or not self.is_user_node(user_node):
            return False, "The user doesn't own a core channel node"
        if len(user_node.resource_nodes) >= MAX_LINKED_PER_NODE:
            return False, f"The user node is already linked to {len(user_node.resource_nodes)} nodes"
        return True, f"Link {node.hash} to {user_node.hash}"

    def has_issues(self, node: AlephNode, staking: bool = False) -> Optional[str]:
        """First health warning for a node, or None."""
        if isinstance(node, CRN):
            if node.score < SCORE_THRESHOLD:
                return "The CRN is underperforming"
            if node.parent_data is None:
                return "The CRN is not being linked to a CCN"
            if (node.parent_data.score or 0) <= 0:
                return "The linked CCN is underperforming"
            return None

        if node.score < SCORE_THRESHOLD:
            return "The CCN is underperforming"
        if len(node.crns_data) < 2:
            return "The CCN has free slots to link more CRNs"
        if not staking and any(crn.score < SCORE_THRESHOLD for crn in node.crns_data):
            return "One of the linked CRN is underperforming"
        return None

    # Internals

    def _probe(self, node, path, cache_key, parse, retries):
        if not node.address:
            return None

        base = normalize_url(node.address)
        if not base.startswith(("http://", "https://")):
            return None
        url = f"{base}{path}"

        def load():
            return self.cache.get_or_load(
                cache_key,
                NODE_PROBE_TTL,
                lambda: parse(get_json(self.session, url, timeout=self.config.http_timeout)),
            )

        try:
            return with_retries(load, retries=retries, delay=PROBE_DELAY, label=url)
        except (requests.RequestException, InvalidResponse, ValueError, KeyError) as e:
            logger.warning("probe %s gave up: %s", url, e)
            return None

    def _latest_releases(self, cache_key: str, url: str) -> Dict[str, Optional[str]]:
        return self.cache.get_or_load(
            cache_key,
            RELEASES_TTL,
            lambda: get_latest_releases(get_json(self.session, url, timeout=self.config.http_timeout)),
        )

    def _fetch_all_nodes(self) -> Tuple[List[CCN], List[CRN]]:
        url = f"{self.config.api_server}/api/v0/aggregates/{MONITOR_ADDRESS}.json"

        def load() -> Dict[str, Any]:
            content = get_json(
                self.session,
                url,
                timeout=self.config.http_timeout,
                params={"keys": "corechannel", "limit": 100},
            )
            return ((content or {}).get("data") or {}).get("corechannel") or {}

        corechannel = self.cache.get_or_load("nodes", NODES_TTL, load)
        ccns = [CCN.from_dict(n) for n in corechannel.get("nodes") or []]
        crns = [CRN.from_dict(n) for n in corechannel.get("resource_nodes") or []]
        return ccns, crns

    def _latest_post_content(self, post_type: str, key: str) -> Dict[str, Any]:
        res = self.client.get_posts(types=post_type, addresses=[SCORING_ADDRESS], pagination=1, page=1)
        posts = res.get("posts") or []
        if not posts:
            return {}
        return (posts[0].get("content") or {}).get(key) or {}

    def _get_scores(self) -> Dict[str, List[Dict[str, Any]]]:
        return self._latest_post_content("aleph-scoring-scores", "scores")

    def _get_metrics(self) -> Dict[str, List[Dict[str, Any]]]:
        return self._latest_post_content("aleph-network-metrics", "metrics")

    @staticmethod
    def _apply_scores(nodes: List[Any], scores: List[Dict[str, Any]]) -> None:
        by_node = {s["node_id"]: s for s in scores if "node_id" in s}
        for node in nodes:
            score = by_node.get(node.hash)
            if not score:
                continue
            node.score = score.get("total_score", 0.0)
            node.version = score.get("version")
            node.score_data = score

    @staticmethod
    def _apply_metrics(nodes: List[Any], metrics: List[Dict[str, Any]]) -> None:
        by_node = {m["node_id"]: m for m in metrics if "node_id" in m}
        for node in nodes:
            if node.hash in by_node:
                node.metrics_data = by_node[node.hash]

    @staticmethod
    def _link_children(ccns: List[CCN], crns: List[CRN]) -> None:
        children: Dict[str, List[CRN]] = {}
        for crn in crns:
            if crn.parent:
                children.setdefault(crn.parent, []).append(crn)
        for ccn in ccns:
            ccn.crns_data = children.get(ccn.hash, [])

    @staticmethod
    def _link_parents(crns: List[CRN], ccns: List[CCN]) -> None:
        by_hash = {ccn.hash: ccn for ccn in ccns}
        for crn in crns:
            if crn.parent and crn.parent in by_hash:
                crn.parent_data = by_hash[crn.parent]
