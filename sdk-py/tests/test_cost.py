"""Tests for itemized cost estimates and the discount cascade."""

from decimal import Decimal

import pytest

from aleph_cloud_sdk.cost import (
    CostAllocator,
    CostSummary,
    ExecutionCostProps,
    absorb_discount,
    cascade_discount,
    parse_cost,
)


def instance_costs(discount="-3", rootfs="5", execution="10", extra=None):
    detail = [
        {"type": "EXECUTION", "name": "compute", "cost_hold": execution},
        {"type": "EXECUTION_INSTANCE_VOLUME_ROOTFS", "name": "rootfs", "cost_hold": rootfs},
        {"type": "EXECUTION_VOLUME_DISCOUNT", "name": "discount", "cost_hold": discount},
    ]
    return {"cost": "0", "detail": detail + (extra or [])}


@pytest.fixture
def allocator():
    return CostAllocator()


@pytest.fixture
def instance_props():
    return ExecutionCostProps(entity_type="instance", cpu=2, ram=4096, rootfs_size=20480)


class TestCascadeDiscount:
    """Test the ordered consumption of the volume discount."""

    def test_discount_fully_absorbed(self):
        """Test a component that absorbs the whole discount."""
        assert absorb_discount(Decimal(5), Decimal(3)) == (Decimal(2), Decimal(0))

    def test_component_fully_covered(self):
        """Test a component whose cost the discount covers entirely."""
        assert absorb_discount(Decimal(5), Decimal(8)) == (Decimal(0), Decimal(3))

    def test_no_discount_left(self):
        """Test that components after exhaustion pay full price."""
        assert absorb_discount(Decimal(5), Decimal(0)) == (Decimal(5), Decimal(0))

    def test_cascade_in_order(self):
        """Test the cascade stopping at the first partially covered component."""
        assert cascade_discount([2, 3, 4, 5], 6) == [Decimal(0), Decimal(0), Decimal(3), Decimal(5)]

    def test_negative_discount_is_magnitude(self):
        """Test that the oracle's negative discount is used by magnitude."""
        assert cascade_discount([5], "-3") == [Decimal(2)]

    def test_total_discount_bounded(self):
        """Test that consumed discount never exceeds the offer nor the raw total."""
        raw = [Decimal("1.5"), Decimal("2.5"), Decimal("4")]
        for discount in (Decimal(0), Decimal(1), Decimal(3), Decimal(8), Decimal(20)):
            net = cascade_discount(raw, discount)
            consumed = sum(raw) - sum(net)
            assert consumed == min(discount, sum(raw))
            assert all(n >= 0 for n in net)


class TestParseCost:
    """Test payment method scaling."""

    def test_hold_unchanged(self):
        """Test that hold costs are returned as is."""
        assert parse_cost("hold", "12") == Decimal(12)

    def test_stream_scaled(self):
        """Test that stream costs are multiplied by 3600."""
        assert parse_cost("stream", "0.01") == Decimal("36.00")


class TestCostAllocator:
    """Test CostAllocator line building."""

    def test_instance_with_partial_rootfs_discount(self, allocator, instance_props):
        """Test an instance whose discount covers part of the root filesystem."""
        summary = allocator.estimate(instance_props, instance_costs(), "hold")

        assert [line.id for line in summary.lines] == ["EXECUTION", "EXECUTION_INSTANCE_VOLUME_ROOTFS"]
        execution, rootfs = summary.lines
        assert execution.name == "INSTANCE"
        assert execution.cost == Decimal(10)
        assert execution.detail == "2x86-64bit.4GB-RAM.12GB-HDD"
        assert rootfs.name == "STORAGE"
        assert rootfs.label == "SYSTEM"
        assert rootfs.cost == Decimal(2)
        assert rootfs.detail == "8.00 GiB"
        assert summary.cost == Decimal(12)
        assert summary.payment_method == "hold"

    def test_stream_total_scaled_lines_unchanged(self, allocator, instance_props):
        """Test that stream scales the total only."""
        summary = allocator.estimate(instance_props, instance_costs(), "stream")

        assert [line.cost for line in summary.lines] == [Decimal(10), Decimal(2)]
        assert summary.cost == Decimal(43200)

    def test_stream_lines_priced_from_hold_quotes(self, allocator, instance_props):
        """Test that stream quotes never replace hold quotes on the lines."""
        costs = {
            "cost": "0",
            "detail": [
                {"type": "EXECUTION", "name": "compute", "cost_hold": "10", "cost_stream": "0.01"},
                {"type": "EXECUTION_INSTANCE_VOLUME_ROOTFS", "name": "rootfs", "cost_hold": "5", "cost_stream": "0.005"},
                {"type": "EXECUTION_VOLUME_DISCOUNT", "name": "discount", "cost_hold": "-3", "cost_stream": "-0.003"},
            ],
        }
        summary = allocator.estimate(instance_props, costs, "stream")

        assert [line.cost for line in summary.lines] == [Decimal(10), Decimal(2)]
        assert summary.cost == Decimal(43200)

    def test_rootfs_fully_discounted(self, allocator, instance_props):
        """Test that no system storage line is emitted when the discount covers it."""
        summary = allocator.estimate(instance_props, instance_costs(discount="-5"), "hold")

        assert [line.id for line in summary.lines] == ["EXECUTION"]
        assert summary.lines[0].detail == "2x86-64bit.4GB-RAM.20GB-HDD"
        assert summary.cost == Decimal(10)

    def test_no_discount(self, allocator, instance_props):
        """Test the whole root filesystem billed as extra storage."""
        summary = allocator.estimate(instance_props, instance_costs(discount="0"), "hold")

        execution, rootfs = summary.lines
        assert execution.detail == "2x86-64bit.4GB-RAM"
        assert rootfs.cost == Decimal(5)
        assert rootfs.detail == "20.0 GiB"
        assert summary.cost == Decimal(15)

    def test_leftover_discount_flows_to_attached_volumes(self, allocator):
        """Test discount left after the root filesystem reaching attached volumes."""
        props = ExecutionCostProps(
            entity_type="instance",
            cpu=1,
            ram=2048,
            rootfs_size=20480,
            volumes=[{"mount": "/data", "size_mib": 1024, "persistence": "host", "name": "data"}],
        )
        extra = [{"type": "EXECUTION_VOLUME_PERSISTENT", "name": "EXECUTION_VOLUME_PERSISTENT:/data", "cost_hold": "4"}]
        summary = allocator.estimate(props, instance_costs(discount="-8", extra=extra), "hold")

        assert [line.id for line in summary.lines] == [
            "EXECUTION",
            "EXECUTION_VOLUME_PERSISTENT|EXECUTION_VOLUME_PERSISTENT:/data",
        ]
        volume = summary.lines[-1]
        assert volume.label == "PERSISTENT"
        assert volume.detail == "1.00 GiB"
        assert volume.cost == Decimal(1)
        assert summary.cost == Decimal(11)

    def test_volume_order_moves_partial_discount(self, allocator):
        """Test that reordering volumes changes which one is partly discounted but not the total."""
        first = {"mount": "/a", "size_mib": 1024, "persistence": "host", "name": "a"}
        second = {"mount": "/b", "size_mib": 1024, "persistence": "host", "name": "b"}
        extra = [
            {"type": "EXECUTION_VOLUME_PERSISTENT", "name": "EXECUTION_VOLUME_PERSISTENT:/a", "cost_hold": "4"},
            {"type": "EXECUTION_VOLUME_PERSISTENT", "name": "EXECUTION_VOLUME_PERSISTENT:/b", "cost_hold": "6"},
        ]
        totals = []
        for volumes, expected in (([first, second], {"/a": 0, "/b": 3}), ([second, first], {"/a": 3, "/b": 0})):
            props = ExecutionCostProps(entity_type="instance", cpu=1, ram=2048, rootfs_size=20480, volumes=volumes)
            summary = allocator.estimate(props, instance_costs(discount="-12", extra=extra), "hold")
            costs = {line.id.rsplit(":", 1)[-1]: line.cost for line in summary.lines[1:]}
            assert costs == {mount: Decimal(cost) for mount, cost in expected.items()}
            totals.append(summary.cost)
        assert totals[0] == totals[1] == Decimal(13)

    def test_program_cascade_order(self, allocator):
        """Test discount flowing from code to runtime to volumes for programs."""
        props = ExecutionCostProps(
            entity_type="program",
            cpu=1,
            ram=2048,
            volumes=[{"mount": "/opt/libs", "ref": "cafe", "estimated_size_mib": 512}],
            is_persistent=True,
        )
        costs = {
            "cost": "0",
            "detail": [
                {"type": "EXECUTION", "name": "compute", "cost_hold": "200"},
                {"type": "EXECUTION_PROGRAM_VOLUME_CODE", "name": "code", "cost_hold": "3"},
                {"type": "EXECUTION_PROGRAM_VOLUME_RUNTIME", "name": "runtime", "cost_hold": "4"},
                {"type": "EXECUTION_VOLUME_INMUTABLE", "name": "EXECUTION_VOLUME_INMUTABLE:/opt/libs", "cost_hold": "5"},
                {"type": "EXECUTION_VOLUME_DISCOUNT", "name": "discount", "cost_hold": "-9"},
            ],
        }
        summary = allocator.estimate(props, costs, "hold")

        by_label = {line.label: line for line in summary.lines if line.label}
        assert by_label["CODE"].cost == Decimal(0)
        assert by_label["RUNTIME"].cost == Decimal(0)
        assert by_label["VOLUME"].cost == Decimal(3)
        assert by_label["VOLUME"].detail == "512 MiB"
        assert summary.lines[0].name == "FUNCTION"
        assert summary.lines[-1].id == "PROGRAM_TYPE"
        assert summary.lines[-1].detail == "persistent"
        assert summary.cost == Decimal(203)

    def test_domain_lines_are_free(self, allocator, instance_props):
        """Test one zero-cost line per custom domain."""
        instance_props.domains = ["a.example.org", "b.example.org"]
        summary = allocator.estimate(instance_props, instance_costs(), "hold")

        domains = [line for line in summary.lines if line.id == "DOMAIN"]
        assert [line.detail for line in domains] == ["a.example.org", "b.example.org"]
        assert all(line.cost == 0 for line in domains)
        assert summary.cost == Decimal(12)

    def test_empty_pricing(self, allocator, instance_props):
        """Test an oracle response without detail lines."""
        for costs in (None, {}, {"cost": "5", "detail": []}):
            summary = allocator.estimate(instance_props, costs, "stream")
            assert summary.lines == []
            assert summary.cost == 0

    def test_estimate_is_deterministic(self, allocator, instance_props):
        """Test that the same inputs produce the same lines."""
        first = allocator.estimate(instance_props, instance_costs(), "hold")
        second = allocator.estimate(instance_props, instance_costs(), "hold")
        assert first.to_dict() == second.to_dict()

    def test_store_lines(self, allocator):
        """Test lines of a plain storage estimate."""
        lines = allocator.store_lines(
            {"detail": [{"type": "STORAGE", "name": "STORAGE", "cost_hold": "0.5"}]},
            3 * 1024 * 1024,
            "WEBSITE",
        )
        assert len(lines) == 1
        assert lines[0].id == "WEBSITE"
        assert lines[0].detail == "3.00 MiB"
        assert lines[0].cost == Decimal("0.5")

    def test_store_lines_stream_quote(self, allocator):
        """Test that storage lines take the stream quote for stream payments."""
        costs = {"detail": [{"type": "STORAGE", "name": "STORAGE", "cost_hold": "0.5", "cost_stream": "0.0001"}]}
        assert allocator.store_lines(costs, 1024, "WEBSITE", "stream")[0].cost == Decimal("0.0001")
        assert allocator.store_lines(costs, 1024, "WEBSITE", "hold")[0].cost == Decimal("0.5")


class TestCostSummary:
    """Test CostSummary serialization."""

    def test_empty(self):
        """Test the empty summary."""
        summary = CostSummary.empty("stream")
        assert summary.to_dict() == {"paymentMethod": "stream", "cost": "0", "lines": []}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
