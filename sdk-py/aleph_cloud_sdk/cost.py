"""
Cost estimation with volume-discount cascade

The pricing oracle returns raw per-component costs plus one lump volume
discount. The discount is consumed by components in a fixed order: root
filesystem, program code volume, program runtime volume, then attached
volumes in declaration order. Each component absorbs as much as it can;
the first one that cannot absorb everything takes the remainder and the
cascade stops.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .constants import (
    ENTITY_TYPE_NAMES,
    EXECUTION,
    EXECUTION_INSTANCE_VOLUME_ROOTFS,
    EXECUTION_PROGRAM_VOLUME_CODE,
    EXECUTION_PROGRAM_VOLUME_RUNTIME,
    EXECUTION_VOLUME_DISCOUNT,
    EXECUTION_VOLUME_INMUTABLE,
    EXECUTION_VOLUME_PERSISTENT,
    STREAM_COST_FACTOR,
    EntityType,
    PaymentMethod,
)
from .utils import convert_byte_units, format_number, human_readable_size, to_decimal

ZERO = Decimal(0)


@dataclass
class CostLine:
    id: str
    name: str
    detail: str
    cost: Decimal
    label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "detail": self.detail,
            "cost": str(self.cost),
        }
        if self.label is not None:
            d["label"] = self.label
        return d


@dataclass
class CostSummary:
    payment_method: PaymentMethod
    cost: Decimal
    lines: List[CostLine] = field(default_factory=list)

    @classmethod
    def empty(cls, payment_method: PaymentMethod = "hold") -> "CostSummary":
        return cls(payment_method=payment_method, cost=ZERO, lines=[])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "paymentMethod": self.payment_method,
            "cost": str(self.cost),
            "lines": [line.to_dict() for line in self.lines],
        }


@dataclass
class ExecutionCostProps:
    """
    What the allocator needs to know about an execution besides its prices.

    volumes are machine volume dicts as published: {mount, estimated_size_mib}
    for immutable volumes, {mount, size_mib, persistence} for persistent ones.
    """

    entity_type: EntityType
    cpu: int = 0
    ram: int = 0
    rootfs_size: int = 0
    volumes: List[Dict[str, Any]] = field(default_factory=list)
    domains: List[str] = field(default_factory=list)
    is_persistent: bool = False


def parse_cost(payment_method: str, cost: Any) -> Decimal:
    """Hold costs are used as is; stream costs are scaled by 3600."""
    cost = to_decimal(cost)
    if payment_method == "hold":
        return cost
    return cost * STREAM_COST_FACTOR


def absorb_discount(raw: Decimal, remaining: Decimal) -> Tuple[Decimal, Decimal]:
    """
    Apply the remaining discount to one component.

    Returns:
        (net cost, discount left for the next component)
    """
    if remaining <= 0:
        return raw, ZERO
    if remaining >= raw:
        return ZERO, remaining - raw
    return raw - remaining, ZERO


def cascade_discount(costs: Sequence[Any], discount: Any) -> List[Decimal]:
    """Net cost of each component after consuming discount in order."""
    remaining = abs(to_decimal(discount))
    net: List[Decimal] = []
    for raw in costs:
        value, remaining = absorb_discount(to_decimal(raw), remaining)
        net.append(value)
    return net


def _hold_cost(line: Optional[Dict[str, Any]]) -> Decimal:
    if not line:
        return ZERO
    return to_decimal(line.get("cost_hold", 0))


def _store_cost(line: Dict[str, Any], payment_method: str) -> Decimal:
    if payment_method == "hold" or line.get("cost_stream") is None:
        return to_decimal(line.get("cost_hold", 0))
    return to_decimal(line["cost_stream"])


class CostAllocator:
    """
    Turns a pricing oracle response into an itemized CostSummary.

    Pure: no network access, same input gives the same lines.
    """

    def estimate(
        self,
        props: ExecutionCostProps,
        costs: Optional[Dict[str, Any]],
        payment_method: PaymentMethod = "hold",
    ) -> CostSummary:
        """
        Itemize an execution's cost.

        Lines are priced from the hold quotes whatever the payment method;
        the total is the sum of the lines, scaled by 3600 once for stream
        payments.
        """
        lines = self.execution_lines(props, costs)
        return self.summarize(lines, payment_method)

    def summarize(self, lines: List[CostLine], payment_method: PaymentMethod) -> CostSummary:
        total = sum((line.cost for line in lines), ZERO)
        return CostSummary(
            payment_method=payment_method,
            cost=parse_cost(payment_method, total),
            lines=lines,
        )

    def execution_lines(
        self,
        props: ExecutionCostProps,
        costs: Optional[Dict[str, Any]],
    ) -> List[CostLine]:
        if not costs or not costs.get("detail"):
            return []

        detail_map: Dict[str, Dict[str, Any]] = {}
        for line in costs["detail"]:
            detail_map.setdefault(line["type"], line)

        is_program = props.entity_type == "program"
        remaining = abs(_hold_cost(detail_map.get(EXECUTION_VOLUME_DISCOUNT)))

        execution_cost = _hold_cost(detail_map.get(EXECUTION))

        rootfs_detail = detail_map.get(EXECUTION_INSTANCE_VOLUME_ROOTFS)
        rootfs_size = to_decimal(props.rootfs_size) if rootfs_detail and not is_program else ZERO
        included_size = rootfs_size
        extra_cost = ZERO
        extra_size = ZERO

        if rootfs_detail:
            rootfs_cost = _hold_cost(rootfs_detail)
            extra_cost, next_remaining = absorb_discount(rootfs_cost, remaining)
            if rootfs_cost > 0:
                percent_extra = extra_cost / rootfs_cost
            else:
                percent_extra = ZERO
            extra_size = (rootfs_size * percent_extra).quantize(Decimal(1), rounding=ROUND_HALF_UP)
            included_size = rootfs_size - extra_size
            remaining = next_remaining

        detail = f"{props.cpu}x86-64bit.{format_number(convert_byte_units(props.ram, 'MiB', 'GiB'))}GB-RAM"
        if included_size:
            detail += f".{format_number(convert_byte_units(included_size, 'MiB', 'GiB'))}GB-HDD"

        lines: List[CostLine] = [
            CostLine(
                id=EXECUTION,
                name=ENTITY_TYPE_NAMES[props.entity_type].upper(),
                detail=detail,
                cost=execution_cost,
            )
        ]

        if extra_cost:
            lines.append(
                CostLine(
                    id=EXECUTION_INSTANCE_VOLUME_ROOTFS,
                    name="STORAGE",
                    label="SYSTEM",
                    detail=human_readable_size(extra_size, "MiB"),
                    cost=extra_cost,
                )
            )

        if is_program:
            for line_type, label, text in (
                (EXECUTION_PROGRAM_VOLUME_CODE, "CODE", "Code volume"),
                (EXECUTION_PROGRAM_VOLUME_RUNTIME, "RUNTIME", "Runtime volume"),
            ):
                program_detail = detail_map.get(line_type)
                if not program_detail:
                    continue
                net, remaining = absorb_discount(_hold_cost(program_detail), remaining)
                lines.append(CostLine(id=line_type, name="STORAGE", label=label, detail=text, cost=net))

        volume_details: Dict[str, Dict[str, Any]] = {}
        for line in costs["detail"]:
            if line["type"] in (EXECUTION_VOLUME_INMUTABLE, EXECUTION_VOLUME_PERSISTENT):
                mount = line.get("name", "").split(":", 1)[-1]
                volume_details[mount] = line

        for volume in props.volumes:
            volume_detail = volume_details.get(volume.get("mount", ""))
            if not volume_detail:
                continue
            persistent = "size_mib" in volume
            size = volume["size_mib"] if persistent else volume.get("estimated_size_mib", 0)
            net, remaining = absorb_discount(_hold_cost(volume_detail), remaining)
            lines.append(
                CostLine(
                    id=f"{volume_detail['type']}|{volume_detail.get('name', '')}",
                    name="STORAGE",
                    label="PERSISTENT" if persistent else "VOLUME",
                    detail=human_readable_size(size, "MiB"),
                    cost=net,
                )
            )

        if is_program:
            lines.append(
                CostLine(
                    id="PROGRAM_TYPE",
                    name="TYPE",
                    detail="persistent" if props.is_persistent else "on-demand",
                    cost=ZERO,
                )
            )

        for domain in props.domains:
            lines.append(CostLine(id="DOMAIN", name="CUSTOM DOMAIN", detail=domain, cost=ZERO))

        return lines

    def store_lines(
        self,
        costs: Optional[Dict[str, Any]],
        size_bytes: int,
        line_id: str,
        payment_method: PaymentMethod = "hold",
    ) -> List[CostLine]:
        """Lines of a plain storage estimate (volume upload, website folder)."""
        if not costs:
            return []
        return [
            CostLine(
                id=line_id,
                name=line.get("name", "STORAGE"),
                detail=human_readable_size(size_bytes),
                cost=_store_cost(line, payment_method),
            )
            for line in costs.get("detail", [])
        ]
