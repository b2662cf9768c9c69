"""
Static websites: an IPFS folder pinned as a volume, listed in the
websites aggregate and optionally served on custom domains
"""

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union

from .aggregate import AggregateManager
from .clients import MessageClient, PricingOracle, require_signer
from .constants import DEFAULT_WEBSITE_AGGREGATE_KEY, DEFAULT_WEBSITE_CHANNEL, PaymentMethod
from .cost import CostAllocator, CostSummary
from .domain import DomainManager
from .entities import Domain, Volume, Website
from .errors import InvalidResponse, MissingVolumeData
from .fields import DomainField, as_list
from .steps import StepGenerator, StepSequence
from .utils import get_date
from .volume import VolumeManager

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 10


@dataclass(frozen=True)
class WebsiteRequest:
    name: str
    cid: str
    framework: str = "none"
    tags: List[str] = field(default_factory=list)
    ens: Optional[str] = None
    domains: List[DomainField] = field(default_factory=list)


class WebsiteManager(AggregateManager[Website, WebsiteRequest]):
    """
    Websites aggregate: one key per website name.

    Every update pins a new volume and pushes the previous one onto
    volume_history, so older versions can be restored.
    """

    key = DEFAULT_WEBSITE_AGGREGATE_KEY
    add_step = "website"
    del_step = "websiteDel"

    def __init__(
        self,
        client: MessageClient,
        volume_manager: VolumeManager,
        domain_manager: DomainManager,
        pricing: Optional[PricingOracle] = None,
        channel: str = DEFAULT_WEBSITE_CHANNEL,
        account: Any = None,
    ):
        super().__init__(client, channel, account)
        self.volume_manager = volume_manager
        self.domain_manager = domain_manager
        self.pricing = pricing
        self.allocator = CostAllocator()

    def key_of(self, entity: WebsiteRequest) -> str:
        return entity.name

    def build_item(self, entity: WebsiteRequest) -> Dict[str, Any]:
        raise NotImplementedError("website items need the published volume id")

    def parse_item(self, key: str, content: Dict[str, Any]) -> Website:
        metadata = content.get("metadata") or {}
        volume_id = content.get("volume_id")
        updated_at = content.get("updated_at") or 0
        date = get_date(updated_at) if updated_at else ""
        return Website(
            id=key,
            name=key,
            framework=content.get("framework") or metadata.get("framework") or "none",
            version=content.get("version") or 1,
            volume_id=volume_id,
            volume_history=list(content.get("volume_history") or []),
            ens=content.get("ens"),
            tags=list(metadata.get("tags") or []),
            created_at=content.get("created_at") or 0,
            updated_at=date,
            date=date,
            url=f"/storage/volume/{volume_id}",
        )

    # Reads

    def get_domains(self, website: Website) -> List[Domain]:
        return [domain for domain in self.domain_manager.get_all() if domain.ref == website.volume_id]

    def get_history_volumes(self, website: Website) -> Dict[str, Volume]:
        """The oldest history volumes, up to HISTORY_LIMIT, that are still stored, by id."""
        ids = website.volume_history[:HISTORY_LIMIT]
        if not ids:
            return {}
        volumes = {volume.id: volume for volume in self.volume_manager.get_all(ids=ids)}
        return {volume_id: volumes[volume_id] for volume_id in ids if volume_id in volumes}

    def get_cost(self, files: Optional[List[bytes]] = None, payment_method: PaymentMethod = "hold") -> CostSummary:
        """Storage estimate of a website folder given as its file contents."""
        if not files or self.account is None or self.pricing is None:
            return CostSummary.empty(payment_method)

        size = sum(len(f) for f in files)
        costs = self.pricing.get_estimated_cost(
            "STORE",
            {"channel": self.channel, "file_size": size, "payment_type": payment_method},
        )
        lines = self.allocator.store_lines(costs, size, "New website folder", payment_method)
        return CostSummary(
            payment_method=payment_method,
            cost=sum((line.cost for line in lines), Decimal(0)),
            lines=lines,
        )

    # Plans

    def get_add_steps(self, request: Optional[WebsiteRequest] = None, *args: Any) -> List[str]:
        steps = ["volume", self.add_step]
        if request is not None and request.domains:
            steps.append("domain")
        return steps

    def get_del_steps(self, websites: Any = None) -> List[str]:
        steps: List[str] = []
        for website_or_id in as_list(websites):
            _, volumes = self._resolve(website_or_id)
            if volumes:
                steps.append("volumeDel")
            steps.append(self.del_step)
        return steps

    def get_update_steps(
        self,
        cid: Optional[str] = None,
        version: Optional[str] = None,
        domains: Optional[List[Union[Domain, DomainField]]] = None,
    ) -> List[str]:
        if not cid and not version:
            raise MissingVolumeData()
        steps: List[str] = []
        if cid:
            steps.append("volumeUp")
        steps.append("websiteUp")
        if domains:
            steps.append("domainUp")
        return steps

    # Workflows

    def add_steps(self, request: WebsiteRequest) -> StepSequence[Website]:
        return StepSequence(self._add_website, request)

    def add(self, request: WebsiteRequest) -> Website:
        return self.add_steps(request).run()

    def del_steps(self, websites: Union[str, Website, List[Union[str, Website]]]) -> StepSequence[None]:
        return StepSequence(self._del_websites, as_list(websites))

    def update_steps(
        self,
        website: Website,
        cid: Optional[str] = None,
        version: Optional[str] = None,
        domains: Optional[List[Union[Domain, DomainField]]] = None,
    ) -> StepSequence[Website]:
        return StepSequence(self._update_website, website, cid, version, as_list(domains))

    def update(
        self,
        website: Website,
        cid: Optional[str] = None,
        version: Optional[str] = None,
        domains: Optional[List[Union[Domain, DomainField]]] = None,
    ) -> Website:
        return self.update_steps(website, cid, version, domains).run()

    def _resolve(self, website_or_id: Union[str, Website]) -> Tuple[str, List[str]]:
        """Website key and the volumes (current and history) to forget with it."""
        website = self.get(website_or_id) if isinstance(website_or_id, str) else website_or_id
        if website is None:
            return website_or_id, []
        volumes = [website.volume_id] if website.volume_id else []
        for volume_id in website.volume_history:
            if volume_id not in volumes:
                volumes.append(volume_id)
        return website.id, volumes

    def _pin(self, cid: str) -> Volume:
        signer = require_signer(self.client)
        message = signer.create_store(self.channel, file_hash=cid, storage_engine="ipfs")
        volumes = self.volume_manager.parse_messages([message])
        if not volumes:
            raise InvalidResponse("store message")
        return volumes[0]

    def _publish(self, website_id: str, item: Dict[str, Any]) -> Website:
        signer = require_signer(self.client)
        response = signer.create_aggregate(self.key, self.channel, {website_id: item})
        for website in self.parse_new_aggregate(response):
            if website.id == website_id:
                return website
        raise InvalidResponse(f"website {website_id} missing")

    def _add_website(self, request: WebsiteRequest, results: Dict[str, Any]) -> StepGenerator[Website]:
        require_signer(self.client)

        yield "volume"

        volume = self._pin(request.cid)
        results["volume"] = volume

        now = time.time()
        item = {
            "metadata": {"name": request.name, "tags": list(request.tags), "framework": request.framework},
            "version": 1,
            "volume_id": volume.id,
            "ens": request.ens,
            "created_at": now,
            "updated_at": now,
        }

        yield self.add_step

        website = self._publish(request.name, item)
        results[self.add_step] = website
        logger.info("published website %s on volume %s", website.id, volume.id)

        if request.domains:
            domains = [DomainField(name=d.name, target="ipfs", ref=volume.id) for d in request.domains]
            results["domain"] = yield from self.domain_manager.add_steps(domains, "override")
        return website

    def _del_websites(self, websites: List[Union[str, Website]], results: Dict[str, Any]) -> StepGenerator[None]:
        signer = require_signer(self.client)

        for website_or_id in websites:
            website_id, volumes = self._resolve(website_or_id)
            if volumes:
                yield from self.volume_manager.del_steps(volumes)

            yield self.del_step
            results.setdefault(self.del_step, []).append(
                signer.create_aggregate(self.key, self.channel, {website_id: None})
            )
        return None

    def _update_website(
        self,
        website: Website,
        cid: Optional[str],
        version: Optional[str],
        domains: List[Union[Domain, DomainField]],
        results: Dict[str, Any],
    ) -> StepGenerator[Website]:
        require_signer(self.client)
        if not cid and not version:
            raise MissingVolumeData()
        if version and version not in website.volume_history:
            raise MissingVolumeData()

        volume_id = version or ""
        if cid:
            yield "volumeUp"
            volume = self._pin(cid)
            results["volumeUp"] = volume
            if not version:
                volume_id = volume.id

        history = [v for v in website.volume_history + [website.volume_id] if v]
        item = {
            "metadata": {"name": website.name, "tags": list(website.tags), "framework": website.framework},
            "name": website.name,
            "framework": website.framework,
            "version": website.version + 1,
            "volume_id": volume_id,
            "volume_history": history,
            "ens": website.ens,
            "created_at": website.created_at,
            "updated_at": time.time(),
        }

        yield "websiteUp"

        updated = self._publish(website.id, item)
        results["websiteUp"] = updated

        if domains:
            yield "domainUp"
            fields = [DomainField(name=d.name, target="ipfs", ref=volume_id) for d in domains]
            results["domainUp"] = self.domain_manager.add(fields, "override")
        return updated
