"""
Pay-as-you-go stream payments

A stream-paid execution is funded by two token flows opened from the
user's wallet: 80% of the hourly cost to the hosting node's reward address
and 20% to the community treasury. Each leg is padded with EXTRA_WEI so
that rounding on the stream contract never leaves it underfunded.
"""

import logging
import time
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from typing import Any, Dict, List, Optional

from .clients import MessageClient, PricingOracle, StreamAccount
from .constants import (
    COMMUNITY_WALLET_ADDRESS,
    EXTRA_WEI,
    MAX_FLOW_RATE,
    NO_FLOW_TO_DECREASE,
    RECEIVER_SHARE,
    SETTINGS_AGGREGATE_ADDRESS,
    WEI_PER_TOKEN,
)
from .cost import parse_cost
from .entities import Executable
from .errors import (
    ConnectYourPaymentWallet,
    ConnectYourWallet,
    InsufficientBalance,
    InvalidNode,
    InvalidParameter,
    MaxFlowRate,
    ReceiverRequired,
    ReceiverRewardRequired,
)
from .fields import PaymentConfig
from .node import NodeSpec
from .steps import StepGenerator
from .utils import to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FlowSplit:
    """Hourly flow of each leg, before the EXTRA_WEI padding."""

    receiver: Decimal
    community: Decimal

    @property
    def receiver_rate(self) -> Decimal:
        return self.receiver + EXTRA_WEI

    @property
    def community_rate(self) -> Decimal:
        return self.community + EXTRA_WEI

    @property
    def total(self) -> Decimal:
        return self.receiver + self.community


@dataclass(frozen=True)
class CommunitySettings:
    community_wallet_address: str
    community_wallet_timestamp: float = 0


def plan_stream(total_hourly_cost: Any) -> FlowSplit:
    """Split an hourly cost 80/20 between the node and the community."""
    total = to_decimal(total_hourly_cost)
    receiver = total * RECEIVER_SHARE
    return FlowSplit(receiver=receiver, community=total - receiver)


def validate_capacity(
    existing_receiver: Any,
    existing_community: Any,
    split: FlowSplit,
    balance: Any,
    hours: int,
    stream_cost: Any,
) -> None:
    """
    Check a new stream fits next to the wallet's current flows.

    Raises:
        MaxFlowRate: either leg would exceed MAX_FLOW_RATE tokens/hour
        InsufficientBalance: balance cannot cover current flows for the
            stream duration plus the new stream cost
    """
    existing_receiver = to_decimal(existing_receiver)
    existing_community = to_decimal(existing_community)

    if existing_receiver + split.receiver > MAX_FLOW_RATE or existing_community + split.community > MAX_FLOW_RATE:
        raise MaxFlowRate()

    needed = (existing_receiver + existing_community) * hours + to_decimal(stream_cost)
    balance = to_decimal(balance)
    if balance < needed:
        raise InsufficientBalance(needed - balance)


def flow_rate_wei(rate: Any) -> int:
    """Padded hourly rate in wei, as the stream contract stores it."""
    padded = (to_decimal(rate) + EXTRA_WEI) * WEI_PER_TOKEN
    return int(padded.to_integral_value(rounding=ROUND_FLOOR))


class PaymentStreamCoordinator:
    """
    Opens, inspects and closes the flows funding stream-paid executions.

    Args:
        client: Message client, used to read the network settings aggregate
        pricing: Pricing oracle, used for the cost of published executions
    """

    def __init__(self, client: MessageClient, pricing: PricingOracle):
        self.client = client
        self.pricing = pricing

    def get_settings(self) -> CommunitySettings:
        """Community treasury address and the time it started receiving 20%."""
        settings = self.client.fetch_aggregate(SETTINGS_AGGREGATE_ADDRESS, "settings") or {}
        return CommunitySettings(
            community_wallet_address=settings.get("community_wallet_address") or COMMUNITY_WALLET_ADDRESS,
            community_wallet_timestamp=settings.get("community_wallet_timestamp") or 0,
        )

    def add_stream_steps(
        self,
        payment: PaymentConfig,
        node: Optional[NodeSpec],
        account: Optional[StreamAccount],
    ) -> StepGenerator[FlowSplit]:
        """
        Validate, then (after one "stream" suspension) open both flows.

        Community leg first, then the receiver leg.
        """
        if node is None or not node.address:
            raise InvalidNode()
        if account is None:
            raise ConnectYourWallet()
        if not payment.receiver:
            raise ReceiverRequired()

        hours = payment.hours()
        if hours < 1:
            raise InvalidParameter("stream_duration")

        settings = self.get_settings()
        split = plan_stream(payment.stream_cost / hours)

        validate_capacity(
            existing_receiver=account.get_aleph_flow(payment.receiver),
            existing_community=account.get_aleph_flow(settings.community_wallet_address),
            split=split,
            balance=account.get_aleph_balance(),
            hours=hours,
            stream_cost=payment.stream_cost,
        )

        yield "stream"

        account.increase_aleph_flow(settings.community_wallet_address, split.community_rate)
        account.increase_aleph_flow(payment.receiver, split.receiver_rate)
        logger.info("opened streams to %s and %s", payment.receiver, settings.community_wallet_address)
        return split

    def executable_cost(self, executable: Executable) -> Decimal:
        """Current hourly cost of a published execution."""
        costs = self.pricing.get_cost(executable.id)
        method = "stream" if executable.is_stream else "hold"
        return parse_cost(method, costs.get("cost", 0))

    def teardown(self, executable: Executable, account: Optional[StreamAccount]) -> None:
        """
        Close the flows funding an execution.

        Executions created before the community treasury existed only
        stream to the node. Missing flows are not an error.
        """
        if not executable.is_stream:
            return
        if account is None:
            raise ConnectYourPaymentWallet()

        receiver = executable.payment.get("receiver")
        if not receiver:
            raise ReceiverRewardRequired()

        settings = self.get_settings()
        cost = self.executable_cost(executable)

        if executable.time >= settings.community_wallet_timestamp:
            split = plan_stream(cost)
            decreases = [
                (receiver, split.receiver_rate),
                (settings.community_wallet_address, split.community_rate),
            ]
        else:
            decreases = [(receiver, cost + EXTRA_WEI)]

        errors: List[Exception] = []
        for address, rate in decreases:
            try:
                account.decrease_aleph_flow(address, rate)
            except Exception as e:
                if str(e) == NO_FLOW_TO_DECREASE:
                    logger.warning("no flow to %s left to decrease", address)
                    continue
                errors.append(e)

        if errors:
            raise errors[0]

    def get_stream_payment_details(
        self, executable: Executable, account: Optional[StreamAccount]
    ) -> Optional[Dict[str, Dict[str, Any]]]:
        """
        Active flows funding an execution, in wei per hour.

        Returns:
            {"sender_to_receiver": {...}, "sender_to_community": {...}} with
            only the active legs, or None for hold-paid executions.
        """
        if not executable.is_stream:
            return None
        if account is None:
            raise ConnectYourPaymentWallet()

        receiver = executable.payment.get("receiver")
        if not receiver:
            raise ReceiverRewardRequired()

        settings = self.get_settings()
        cost = self.executable_cost(executable)
        sender = account.address
        now = time.time()
        details: Dict[str, Dict[str, Any]] = {}

        main_active = to_decimal(account.get_aleph_flow(receiver)) > 0

        if executable.time >= settings.community_wallet_timestamp:
            split = plan_stream(cost)
            community = settings.community_wallet_address
            community_active = to_decimal(account.get_aleph_flow(community)) > 0
            if main_active:
                details["sender_to_receiver"] = {
                    "sender": sender,
                    "receiver": receiver,
                    "flow_rate": flow_rate_wei(split.receiver),
                    "last_updated": now,
                }
            if community_active:
                details["sender_to_community"] = {
                    "sender": sender,
                    "receiver": community,
                    "flow_rate": flow_rate_wei(split.community),
                    "last_updated": now,
                }
        elif main_active:
            details["sender_to_receiver"] = {
                "sender": sender,
                "receiver": receiver,
                "flow_rate": flow_rate_wei(cost),
                "last_updated": now,
            }

        return details
