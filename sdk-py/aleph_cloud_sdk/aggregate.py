"""
Base manager for entities stored as keys of a per-account aggregate

Domains, websites and forwarded ports all live in one aggregate each,
keyed by entity id. Deleting an entity writes null to its key.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

from .clients import MessageClient, client_address, require_signer
from .errors import InvalidResponse
from .fields import as_list
from .steps import StepGenerator, StepSequence

logger = logging.getLogger(__name__)

E = TypeVar("E")
A = TypeVar("A")

AggregateContent = Dict[str, Optional[Dict[str, Any]]]


def now_date() -> str:
    return datetime.now(tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


class AggregateManager(Generic[E, A]):
    """
    Subclasses set key, add_step and del_step, and implement key_of,
    build_item and parse_item.
    """

    key: str = ""
    add_step: str = ""
    del_step: str = ""

    def __init__(self, client: MessageClient, channel: str, account: Any = None):
        self.client = client
        self.channel = channel
        self.account = account if account is not None else getattr(client, "account", None)

    # Hooks

    def key_of(self, entity: A) -> str:
        raise NotImplementedError

    def build_item(self, entity: A) -> Dict[str, Any]:
        raise NotImplementedError

    def parse_item(self, key: str, content: Dict[str, Any]) -> E:
        raise NotImplementedError

    def entity_id(self, entity: Union[str, E]) -> str:
        return entity if isinstance(entity, str) else entity.id

    def entity_date(self, entity: E) -> str:
        return getattr(entity, "date", "") or ""

    # Reads

    def get_all(self) -> List[E]:
        address = getattr(self.account, "address", None) or client_address(self.client)
        if not address:
            return []
        try:
            response = self.client.fetch_aggregate(address, self.key)
        except Exception as e:
            logger.warning("could not read %s aggregate of %s: %s", self.key, address, e)
            return []
        entities = self.parse_aggregate(response or {})
        return sorted(entities, key=self.entity_date, reverse=True)

    def get(self, entity_id: str) -> Optional[E]:
        for entity in self.get_all():
            if self.entity_id(entity) == entity_id:
                return entity
        return None

    def parse_aggregate(self, aggregate: AggregateContent) -> List[E]:
        return [self.parse_item(key, value) for key, value in aggregate.items() if value is not None]

    def parse_new_aggregate(self, response: Dict[str, Any]) -> List[E]:
        return self.parse_aggregate(response["content"]["content"])

    # Plans

    def get_add_steps(self, entities: Any = None, *args: Any) -> List[str]:
        return [self.add_step]

    def get_del_steps(self, entities: Any = None) -> List[str]:
        return [self.del_step] if as_list(entities) else []

    def get_update_steps(self, *args: Any) -> List[str]:
        return [self.add_step]

    # Workflows

    def build_content(self, entities: Union[A, List[A]]) -> AggregateContent:
        return {self.key_of(entity): self.build_item(entity) for entity in as_list(entities)}

    def add_steps(self, entities: Union[A, List[A]]) -> StepSequence[List[E]]:
        return StepSequence(self._add, entities)

    def add(self, entities: Union[A, List[A]]) -> List[E]:
        return self.add_steps(entities).run()

    def del_steps(self, entities: Union[str, E, List[Union[str, E]]]) -> StepSequence[None]:
        return StepSequence(self._del, entities)

    def delete(self, entities: Union[str, E, List[Union[str, E]]]) -> None:
        self.del_steps(entities).run()

    def update_steps(self, old_key: str, new_key: str, content: Dict[str, Any]) -> StepSequence[E]:
        return StepSequence(self._update, old_key, new_key, content)

    def update(self, old_key: str, new_key: str, content: Dict[str, Any]) -> E:
        return self.update_steps(old_key, new_key, content).run()

    def _add(self, entities: Union[A, List[A]], results: Dict[str, Any]) -> StepGenerator[List[E]]:
        signer = require_signer(self.client)
        content = self.build_content(entities)

        yield self.add_step

        response = signer.create_aggregate(self.key, self.channel, content)
        results[self.add_step] = response
        return self.parse_new_aggregate(response)

    def _del(self, entities: Any, results: Dict[str, Any]) -> StepGenerator[None]:
        signer = require_signer(self.client)
        items = as_list(entities)
        if not items:
            return None

        yield self.del_step

        content: AggregateContent = {self.entity_id(item): None for item in items}
        results[self.del_step] = signer.create_aggregate(self.key, self.channel, content)
        return None

    def _update(self, old_key: str, new_key: str, content: Dict[str, Any], results: Dict[str, Any]) -> StepGenerator[E]:
        signer = require_signer(self.client)
        aggregate: AggregateContent = {}
        if old_key != new_key:
            aggregate[old_key] = None
        aggregate[new_key] = content

        yield self.add_step

        response = signer.create_aggregate(self.key, self.channel, aggregate)
        results[self.add_step] = response
        for entity in self.parse_new_aggregate(response):
            if self.entity_id(entity) == new_key:
                return entity
        raise InvalidResponse(f"updated {self.key} entry {new_key} missing")
