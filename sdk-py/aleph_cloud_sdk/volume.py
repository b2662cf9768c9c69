"""
Storage volumes (STORE messages)
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from .clients import FileSizeLookup, MessageClient, PricingOracle, require_signer
from .constants import DEFAULT_VOLUME_CHANNEL, PaymentMethod
from .cost import CostAllocator, CostSummary
from .entities import Volume
from .fields import VolumeField, as_list
from .steps import StepGenerator, StepSequence

logger = logging.getLogger(__name__)


class VolumeManager:
    """
    Args:
        client: Message client; uploading requires an authenticated one
        pricing: Pricing oracle for store estimates
        sizes: Size lookup for already stored volumes
        channel: Channel the store messages are published on
    """

    def __init__(
        self,
        client: MessageClient,
        pricing: Optional[PricingOracle] = None,
        sizes: Optional[FileSizeLookup] = None,
        channel: str = DEFAULT_VOLUME_CHANNEL,
        account: Any = None,
    ):
        self.client = client
        self.pricing = pricing
        self.sizes = sizes
        self.channel = channel
        self.account = account if account is not None else getattr(client, "account", None)
        self.allocator = CostAllocator()

    def sizes_map(self) -> Dict[str, float]:
        if self.sizes is None:
            return {}
        return self.sizes.get_sizes_map()

    def get_volume_size(self, volume: VolumeField) -> float:
        """Size in MiB: uploaded file size, stored size, or declared size."""
        sizes = self.sizes_map() if volume.volume_type == "existing" else None
        return float(volume.size_mib(sizes))

    def get_all(self, ids: Optional[List[str]] = None) -> List[Volume]:
        addresses = None
        channels = None
        if not ids:
            if self.account is None:
                return []
            addresses = [self.account.address]
            channels = [self.channel]
        try:
            response = self.client.get_messages(
                addresses=addresses,
                message_types=["STORE"],
                channels=channels,
                hashes=ids,
            )
        except Exception as e:
            logger.warning("could not list volumes: %s", e)
            return []
        return self.parse_messages(response.get("messages") or [])

    def get(self, volume_id: str) -> Optional[Volume]:
        volumes = self.parse_messages([self.client.get_message(volume_id)])
        return volumes[0] if volumes else None

    def parse_messages(self, messages: List[Dict[str, Any]]) -> List[Volume]:
        sizes = self.sizes_map()
        volumes = []
        for message in messages:
            if message.get("content") is None:
                continue
            volume = Volume.from_message(message)
            if volume.id in sizes:
                volume.size = sizes[volume.id]
            volumes.append(volume)
        return volumes

    @staticmethod
    def new_uploads(volumes: List[VolumeField]) -> List[VolumeField]:
        return [v for v in volumes if v.is_new_upload]

    def get_add_steps(self, volumes: Any) -> List[str]:
        return ["volume"] if self.new_uploads(as_list(volumes)) else []

    def add_steps(self, volumes: Union[VolumeField, List[VolumeField]]) -> StepSequence[List[Volume]]:
        return StepSequence(self._add, as_list(volumes))

    def add(self, volumes: Union[VolumeField, List[VolumeField]]) -> List[Volume]:
        return self.add_steps(volumes).run()

    def get_del_steps(self, volumes: Any) -> List[str]:
        return ["volumeDel"] if as_list(volumes) else []

    def del_steps(self, volumes: Union[str, Volume, List[Union[str, Volume]]]) -> StepSequence[None]:
        return StepSequence(self._del, as_list(volumes))

    def delete(self, volumes: Union[str, Volume, List[Union[str, Volume]]]) -> None:
        self.del_steps(volumes).run()

    def get_cost(self, volume: Optional[VolumeField], payment_method: PaymentMethod = "hold") -> CostSummary:
        """Storage estimate of a new upload. Empty summary when there is nothing to price."""
        if volume is None or not volume.is_new_upload or self.pricing is None:
            return CostSummary.empty(payment_method)

        costs = self.pricing.get_estimated_cost(
            "STORE",
            {"channel": self.channel, "file_size": len(volume.file), "payment_type": payment_method},
        )
        lines = self.allocator.store_lines(
            costs,
            len(volume.file),
            volume.name or volume.mount_path or "volume",
            payment_method,
        )
        # store prices are already quoted per payment method
        return CostSummary(
            payment_method=payment_method,
            cost=sum((line.cost for line in lines), Decimal(0)),
            lines=lines,
        )

    def _add(self, volumes: List[VolumeField], results: Dict[str, Any]) -> StepGenerator[List[Volume]]:
        signer = require_signer(self.client)
        uploads = self.new_uploads(volumes)
        if not uploads:
            return []

        yield "volume"

        messages = [signer.create_store(self.channel, file_content=volume.file) for volume in uploads]
        results["volume"] = messages
        return self.parse_messages(messages)

    def _del(self, volumes: List[Union[str, Volume]], results: Dict[str, Any]) -> StepGenerator[None]:
        signer = require_signer(self.client)
        if not volumes:
            return None

        yield "volumeDel"

        hashes = [v if isinstance(v, str) else v.id for v in volumes]
        results["volumeDel"] = signer.forget(self.channel, hashes)
        return None
