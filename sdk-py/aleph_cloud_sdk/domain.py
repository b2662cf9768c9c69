"""
Custom domains pointing at instances, programs or IPFS folders
"""

import logging
import time
from typing import Any, Dict, List, Optional, Union

import requests

from .aggregate import AggregateManager
from .clients import MessageClient
from .config import SDKConfig
from .constants import DEFAULT_DOMAIN_AGGREGATE_KEY, DEFAULT_DOMAIN_CHANNEL, CollisionPolicy
from .entities import Domain
from .errors import DomainUsed, InvalidAccount, InvalidParameter
from .fields import DomainField, as_list
from .http import new_session, post_json
from .session import iso_timestamp
from .steps import StepGenerator, StepSequence

logger = logging.getLogger(__name__)

REF_PATHS: Dict[str, str] = {
    "program": "computing/function",
    "instance": "computing/instance",
    "confidential": "computing/confidential",
    "ipfs": "storage/volume",
}

COLLISION_POLICIES = ("throw", "ignore", "override")


class DomainManager(AggregateManager[Domain, DomainField]):
    """
    Domains aggregate: one key per domain name.

    Confidential targets are stored as instance targets flagged with
    options.confidential; IPFS targets serve /404.html for unknown paths.
    """

    key = DEFAULT_DOMAIN_AGGREGATE_KEY
    add_step = "domain"
    del_step = "domainDel"

    def __init__(
        self,
        client: MessageClient,
        config: Optional[SDKConfig] = None,
        session: Optional[requests.Session] = None,
        channel: str = DEFAULT_DOMAIN_CHANNEL,
        account: Any = None,
    ):
        super().__init__(client, channel, account)
        self.config = config or SDKConfig()
        self.session = session or new_session()

    def key_of(self, entity: DomainField) -> str:
        return entity.name

    def build_item(self, entity: DomainField) -> Dict[str, Any]:
        if not entity.ref:
            raise InvalidParameter("ref")

        confidential = entity.target == "confidential"
        target = "instance" if confidential else entity.target
        item: Dict[str, Any] = {
            "message_id": entity.ref,
            "type": target,
            "programType": target,
            "updated_at": iso_timestamp(time.time()),
        }
        if target == "ipfs":
            item["options"] = {"catch_all_path": "/404.html"}
        elif confidential:
            item["options"] = {"confidential": True}
        return item

    def parse_item(self, key: str, content: Dict[str, Any]) -> Domain:
        target = content.get("type", "instance")
        options = content.get("options") or {}
        if options.get("confidential"):
            target = "confidential"
        updated_at = content.get("updated_at") or ""
        date = updated_at[:19].replace("T", " ") if updated_at else "-"
        ref = content.get("message_id", "")
        return Domain(
            id=key,
            name=key,
            target=target,
            ref=ref,
            updated_at=date,
            date=date,
            ref_url=f"/{REF_PATHS.get(target, 'storage/volume')}/{ref}",
            options=options,
        )

    def filter_collisions(self, domains: List[DomainField], on_collision: CollisionPolicy = "throw") -> List[DomainField]:
        """
        Apply a collision policy against the domains already registered.

        throw: raise DomainUsed on the first taken name. ignore: drop taken
        names. override: keep everything, taken names are rewritten.
        """
        if on_collision not in COLLISION_POLICIES:
            raise InvalidParameter("on_collision")
        if on_collision == "override":
            return list(domains)

        taken = {domain.name for domain in self.get_all()}
        if on_collision == "ignore":
            return [domain for domain in domains if domain.name not in taken]

        for domain in domains:
            if domain.name in taken:
                raise DomainUsed(domain.name)
        return list(domains)

    def get_add_steps(self, domains: Any = None, on_collision: CollisionPolicy = "throw") -> List[str]:
        remaining = self.filter_collisions(as_list(domains), on_collision)
        return [self.add_step] if remaining else []

    def add_steps(
        self,
        domains: Union[DomainField, List[DomainField]],
        on_collision: CollisionPolicy = "throw",
    ) -> StepSequence[List[Domain]]:
        return StepSequence(self._add_domains, as_list(domains), on_collision)

    def add(self, domains: Union[DomainField, List[DomainField]], on_collision: CollisionPolicy = "throw") -> List[Domain]:
        return self.add_steps(domains, on_collision).run()

    def _add_domains(
        self, domains: List[DomainField], on_collision: CollisionPolicy, results: Dict[str, Any]
    ) -> StepGenerator[List[Domain]]:
        parsed = self.filter_collisions(domains, on_collision)
        if not parsed:
            return []
        created = yield from self._add(parsed, results)
        return created

    def retry(self, domain: Domain) -> List[Domain]:
        """Publish a domain entry again, as it is."""
        return self.add(DomainField(name=domain.name, target=domain.target, ref=domain.ref), "override")

    def update_name_steps(self, domain: Domain, new_name: str) -> StepSequence[Domain]:
        content = self.build_item(DomainField(name=new_name, target=domain.target, ref=domain.ref))
        return self.update_steps(domain.name, new_name, content)

    def update_name(self, domain: Domain, new_name: str) -> Domain:
        return self.update_name_steps(domain, new_name).run()

    def check_status(self, domain: Domain) -> Dict[str, Any]:
        """
        DNS configuration status of a domain.

        Returns:
            {status, tasks_status: {cname, delegation, owner_proof}, err, help}
        """
        if self.account is None:
            raise InvalidAccount()

        target = "instance" if domain.target == "confidential" else domain.target
        response = post_json(
            self.session,
            f"{self.config.dns_api_url}/domain/check",
            payload={"name": domain.name, "owner": self.account.address, "target": target},
            timeout=self.config.http_timeout,
        )
        return response.json()
