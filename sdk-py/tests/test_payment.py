"""Tests for pay-as-you-go stream payments."""

from decimal import Decimal

import pytest

from aleph_cloud_sdk.constants import EXTRA_WEI, SETTINGS_AGGREGATE_ADDRESS
from aleph_cloud_sdk.entities import Instance
from aleph_cloud_sdk.errors import (
    ConnectYourPaymentWallet,
    ConnectYourWallet,
    InsufficientBalance,
    InvalidNode,
    InvalidParameter,
    MaxFlowRate,
    ReceiverRequired,
)
from aleph_cloud_sdk.fields import PaymentConfig
from aleph_cloud_sdk.node import NodeSpec
from aleph_cloud_sdk.payment import (
    PaymentStreamCoordinator,
    flow_rate_wei,
    plan_stream,
    validate_capacity,
)

from conftest import NOW, FakeClient, FakePricing, FakeStreamAccount

RECEIVER = "0x2222222222222222222222222222222222222222"
COMMUNITY = "0x3333333333333333333333333333333333333333"


@pytest.fixture
def settings_client():
    client = FakeClient()
    client.aggregates[(SETTINGS_AGGREGATE_ADDRESS, "settings")] = {
        "community_wallet_address": COMMUNITY,
        "community_wallet_timestamp": NOW - 1000,
    }
    return client


@pytest.fixture
def coordinator(settings_client):
    return PaymentStreamCoordinator(settings_client, FakePricing(cost="0.01"))


@pytest.fixture
def node():
    return NodeSpec(hash="node-1", name="crn", address="https://crn.example.org", stream_reward=RECEIVER)


def stream_instance(created=NOW, receiver=RECEIVER):
    return Instance(
        id="instance-1",
        type="instance",
        time=created,
        payment={"type": "superfluid", "chain": "BASE", "receiver": receiver},
    )


class TestPlanStream:
    """Test the 80/20 flow split."""

    def test_split(self):
        """Test receiver and community shares."""
        split = plan_stream("5")
        assert split.receiver == Decimal(4)
        assert split.community == Decimal(1)
        assert split.total == Decimal(5)

    def test_padding(self):
        """Test that each leg is padded with the wei epsilon."""
        split = plan_stream("5")
        assert split.receiver_rate == Decimal(4) + EXTRA_WEI
        assert split.community_rate == Decimal(1) + EXTRA_WEI

    def test_flow_rate_wei(self):
        """Test the padded hourly rate expressed in wei."""
        assert flow_rate_wei("1") == 10 ** 18 + 3600


class TestValidateCapacity:
    """Test flow rate and balance checks."""

    def test_within_limits(self):
        """Test a stream that fits."""
        validate_capacity(0, 0, plan_stream(5), balance=100, hours=2, stream_cost=10)

    def test_receiver_leg_over_max(self):
        """Test the receiver leg crossing the maximum flow rate."""
        with pytest.raises(MaxFlowRate):
            validate_capacity(97, 0, plan_stream(5), balance=10 ** 6, hours=1, stream_cost=5)

    def test_community_leg_over_max(self):
        """Test the community leg crossing the maximum flow rate."""
        with pytest.raises(MaxFlowRate):
            validate_capacity(0, "99.5", plan_stream(5), balance=10 ** 6, hours=1, stream_cost=5)

    def test_existing_flows_count_against_balance(self):
        """Test that current flows for the stream duration are reserved."""
        with pytest.raises(InsufficientBalance) as excinfo:
            validate_capacity(3, 1, plan_stream(5), balance=20, hours=4, stream_cost=10)
        assert excinfo.value.amount == Decimal(6)


class TestAddStream:
    """Test opening the flows of a new execution."""

    def test_flows_opened_after_suspension(self, coordinator, node, stream_account):
        """Test that no flow is opened before the caller resumes."""
        payment = PaymentConfig.stream("BASE", RECEIVER, "10", duration=2, unit="h")
        gen = coordinator.add_stream_steps(payment, node, stream_account)

        assert next(gen) == "stream"
        assert stream_account.calls == []

        with pytest.raises(StopIteration) as stop:
            next(gen)
        split = stop.value.value
        assert split.receiver == Decimal(4)
        assert stream_account.calls == [
            ("increase", COMMUNITY, Decimal(1) + EXTRA_WEI),
            ("increase", RECEIVER, Decimal(4) + EXTRA_WEI),
        ]

    def test_validation_happens_before_suspension(self, coordinator, node):
        """Test that an overdrawn wallet fails before the stream step is offered."""
        account = FakeStreamAccount(balance=1)
        payment = PaymentConfig.stream("BASE", RECEIVER, "10")
        with pytest.raises(InsufficientBalance):
            next(coordinator.add_stream_steps(payment, node, account))
        assert account.calls == []

    def test_max_flow(self, coordinator, node):
        """Test an existing flow pushing the receiver leg over the limit."""
        account = FakeStreamAccount(flows={RECEIVER: 98})
        payment = PaymentConfig.stream("BASE", RECEIVER, "10")
        with pytest.raises(MaxFlowRate):
            next(coordinator.add_stream_steps(payment, node, account))

    def test_requirements(self, coordinator, node, stream_account):
        """Test missing node, wallet and receiver."""
        payment = PaymentConfig.stream("BASE", RECEIVER, "10")
        with pytest.raises(InvalidNode):
            next(coordinator.add_stream_steps(payment, None, stream_account))
        with pytest.raises(ConnectYourWallet):
            next(coordinator.add_stream_steps(payment, node, None))
        with pytest.raises(ReceiverRequired):
            next(coordinator.add_stream_steps(PaymentConfig.stream("BASE", None, "10"), node, stream_account))

    def test_zero_duration(self, coordinator, node, stream_account):
        """Test that an empty stream duration is rejected before any flow is read."""
        payment = PaymentConfig.stream("BASE", RECEIVER, "10", duration=0)
        with pytest.raises(InvalidParameter) as excinfo:
            next(coordinator.add_stream_steps(payment, node, stream_account))
        assert excinfo.value.name == "stream_duration"
        assert stream_account.calls == []

    def test_default_community_address(self, node, stream_account):
        """Test the built-in treasury address when no settings aggregate exists."""
        coordinator = PaymentStreamCoordinator(FakeClient(), FakePricing())
        assert coordinator.get_settings().community_wallet_address.startswith("0x")
        assert coordinator.get_settings().community_wallet_timestamp == 0


class TestTeardown:
    """Test closing the flows of a deleted execution."""

    def test_both_legs_decreased(self, coordinator, stream_account):
        """Test 80% to the receiver and 20% to the community, each padded."""
        coordinator.teardown(stream_instance(), stream_account)

        hourly = Decimal("0.01") * 3600
        assert stream_account.calls == [
            ("decrease", RECEIVER, hourly * Decimal("0.8") + EXTRA_WEI),
            ("decrease", COMMUNITY, hourly - hourly * Decimal("0.8") + EXTRA_WEI),
        ]

    def test_legacy_execution_single_leg(self, coordinator, stream_account):
        """Test executions created before the treasury only stream to the node."""
        coordinator.teardown(stream_instance(created=NOW - 5000), stream_account)
        assert stream_account.calls == [("decrease", RECEIVER, Decimal(36) + EXTRA_WEI)]

    def test_missing_flow_is_ignored(self, coordinator, stream_account):
        """Test that an already closed leg does not fail the teardown."""
        stream_account.failures[RECEIVER] = "No flow to decrease flow"
        coordinator.teardown(stream_instance(), stream_account)
        assert [call[1] for call in stream_account.calls] == [COMMUNITY]

    def test_other_errors_raised_after_both_legs(self, coordinator, stream_account):
        """Test that a failing leg does not stop the other one."""
        stream_account.failures[RECEIVER] = "rpc unavailable"
        with pytest.raises(Exception, match="rpc unavailable"):
            coordinator.teardown(stream_instance(), stream_account)
        assert [call[1] for call in stream_account.calls] == [COMMUNITY]

    def test_hold_execution_untouched(self, coordinator, stream_account):
        """Test that hold-paid executions have nothing to close."""
        instance = Instance(id="instance-2", type="instance", payment={"type": "hold"})
        coordinator.teardown(instance, stream_account)
        assert stream_account.calls == []

    def test_wallet_required(self, coordinator):
        """Test teardown without a stream wallet."""
        with pytest.raises(ConnectYourPaymentWallet):
            coordinator.teardown(stream_instance(), None)


class TestStreamDetails:
    """Test reporting of active flows."""

    def test_active_legs_only(self, coordinator):
        """Test that inactive legs are left out."""
        account = FakeStreamAccount(flows={RECEIVER: 1})
        details = coordinator.get_stream_payment_details(stream_instance(), account)

        assert list(details) == ["sender_to_receiver"]
        leg = details["sender_to_receiver"]
        assert leg["receiver"] == RECEIVER
        assert leg["flow_rate"] == flow_rate_wei(Decimal(36) * Decimal("0.8"))

    def test_both_legs(self, coordinator):
        """Test reporting both receiver and community legs."""
        account = FakeStreamAccount(flows={RECEIVER: 1, COMMUNITY: 1})
        details = coordinator.get_stream_payment_details(stream_instance(), account)
        assert details["sender_to_community"]["receiver"] == COMMUNITY

    def test_hold_execution(self, coordinator, stream_account):
        """Test that hold-paid executions report no details."""
        instance = Instance(id="instance-2", type="instance", payment={"type": "hold"})
        assert coordinator.get_stream_payment_details(instance, stream_account) is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
