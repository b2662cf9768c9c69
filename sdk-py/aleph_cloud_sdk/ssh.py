"""
SSH public keys, stored as ALEPH-SSH posts
"""

import logging
from typing import Any, Dict, List, Optional, Union

from .clients import MessageClient, require_signer
from .constants import DEFAULT_SSH_CHANNEL, DEFAULT_SSH_POST_TYPE
from .entities import SSHKey
from .errors import SSHKeysUsed
from .fields import SSHKeyField, as_list
from .steps import StepGenerator, StepSequence

logger = logging.getLogger(__name__)


class SSHKeyManager:
    """
    Args:
        client: Message client; publishing requires an authenticated one
        channel: Channel the posts are published on
        account: Owner of the keys (defaults to the client's account)
    """

    def __init__(
        self,
        client: MessageClient,
        channel: str = DEFAULT_SSH_CHANNEL,
        post_type: str = DEFAULT_SSH_POST_TYPE,
        account: Any = None,
    ):
        self.client = client
        self.channel = channel
        self.post_type = post_type
        self.account = account if account is not None else getattr(client, "account", None)

    def get_all(self) -> List[SSHKey]:
        if self.account is None:
            return []
        try:
            response = self.client.get_posts(
                types=self.post_type,
                addresses=[self.account.address],
                channels=[self.channel],
            )
        except Exception as e:
            logger.warning("could not list SSH keys of %s: %s", self.account.address, e)
            return []
        keys = [SSHKey.from_post(post) for post in response.get("posts") or []]
        return sorted(keys, key=lambda k: k.date, reverse=True)

    def get(self, key_id: str) -> Optional[SSHKey]:
        if self.account is None:
            return None
        response = self.client.get_posts(
            types=self.post_type,
            addresses=[self.account.address],
            channels=[self.channel],
            hashes=[key_id],
        )
        posts = response.get("posts") or []
        return SSHKey.from_post(posts[0]) if posts else None

    def get_by_values(self, values: List[str]) -> List[Optional[SSHKey]]:
        """Registered key matching each public key string, or None."""
        by_key = {k.key: k for k in self.get_all()}
        return [by_key.get(value) for value in values]

    def filter_collisions(self, keys: List[SSHKeyField], throw_on_collision: bool = True) -> List[SSHKeyField]:
        """Drop (or refuse) keys whose public key string is already registered."""
        registered = {k.key for k in self.get_all()}
        if not throw_on_collision:
            return [k for k in keys if k.key not in registered]
        for k in keys:
            if k.key in registered:
                raise SSHKeysUsed(k.label or k.key)
        return list(keys)

    def get_add_steps(self, keys: Any, throw_on_collision: bool = True) -> List[str]:
        return ["ssh"] if self.filter_collisions(as_list(keys), throw_on_collision) else []

    def add_steps(self, keys: Union[SSHKeyField, List[SSHKeyField]], throw_on_collision: bool = True) -> StepSequence[List[SSHKey]]:
        return StepSequence(self._add, as_list(keys), throw_on_collision)

    def add(self, keys: Union[SSHKeyField, List[SSHKeyField]], throw_on_collision: bool = True) -> List[SSHKey]:
        return self.add_steps(keys, throw_on_collision).run()

    def get_del_steps(self, keys: Any) -> List[str]:
        return ["sshDel"] if as_list(keys) else []

    def del_steps(self, keys: Union[str, SSHKey, List[Union[str, SSHKey]]]) -> StepSequence[None]:
        return StepSequence(self._del, as_list(keys))

    def delete(self, keys: Union[str, SSHKey, List[Union[str, SSHKey]]]) -> None:
        self.del_steps(keys).run()

    def _add(self, keys: List[SSHKeyField], throw_on_collision: bool, results: Dict[str, Any]) -> StepGenerator[List[SSHKey]]:
        signer = require_signer(self.client)
        keys = self.filter_collisions(keys, throw_on_collision)
        if not keys:
            return []

        yield "ssh"

        created = []
        for k in keys:
            response = signer.create_post(self.post_type, self.channel, {"key": k.key, "label": k.label})
            created.append(SSHKey.from_post(response, (response.get("content") or {}).get("content")))
        results["ssh"] = created
        return created

    def _del(self, keys: List[Union[str, SSHKey]], results: Dict[str, Any]) -> StepGenerator[None]:
        signer = require_signer(self.client)
        if not keys:
            return None

        yield "sshDel"

        hashes = [k if isinstance(k, str) else k.id for k in keys]
        results["sshDel"] = signer.forget(self.channel, hashes)
        return None
