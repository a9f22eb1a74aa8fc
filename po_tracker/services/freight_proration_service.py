from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from po_tracker.models import PackingList, PackingListItem, PurchaseOrder
from po_tracker.services.errors import NotFoundError


ZERO = Decimal('0')


@dataclass(frozen=True)
class PackingListFreightShare:
    packing_list_id: int
    code: str
    shipping_cost: Decimal
    list_total_quantity: int
    unit_freight: Decimal
    order_quantity: int
    allocated_freight: Decimal


@dataclass(frozen=True)
class FreightAllocation:
    purchase_order_id: int
    ordered_quantity: int
    shipped_quantity: int
    total_freight: Decimal
    unit_shipping_cost: Decimal | None
    shares: list[PackingListFreightShare]


def unit_freight(shipping_cost: Decimal | None, list_total_quantity: int) -> Decimal:
    if not list_total_quantity or list_total_quantity <= 0:
        return ZERO
    return Decimal(shipping_cost or 0) / Decimal(list_total_quantity)


def allocate_freight(
    *,
    purchase_order_id: int,
    ordered_quantity: int,
    shares: list[PackingListFreightShare],
) -> FreightAllocation:
    total = sum((share.allocated_freight for share in shares), ZERO)
    shipped = sum(share.order_quantity for share in shares)
    # Divide by the ordered quantity so partially shipped orders still carry a forward estimate.
    unit_cost = total / Decimal(ordered_quantity) if ordered_quantity > 0 else None
    return FreightAllocation(
        purchase_order_id=purchase_order_id,
        ordered_quantity=ordered_quantity,
        shipped_quantity=shipped,
        total_freight=total,
        unit_shipping_cost=unit_cost,
        shares=shares,
    )


def _list_totals(db: Session, packing_list_ids: list[int]) -> dict[int, int]:
    if not packing_list_ids:
        return {}
    rows = db.execute(
        select(PackingListItem.packing_list_id, func.coalesce(func.sum(PackingListItem.total_quantity), 0))
        .where(PackingListItem.packing_list_id.in_(packing_list_ids))
        .group_by(PackingListItem.packing_list_id)
    ).all()
    return {int(pl_id): int(total or 0) for pl_id, total in rows}


def get_freight_allocation(db: Session, *, purchase_order_id: int) -> FreightAllocation:
    ordered_quantity = db.execute(
        select(PurchaseOrder.quantity).where(PurchaseOrder.id == purchase_order_id)
    ).scalar_one_or_none()
    if ordered_quantity is None:
        raise NotFoundError('Purchase order not found')

    rows = db.execute(
        select(
            PackingList.id,
            PackingList.code,
            PackingList.shipping_cost,
            func.coalesce(func.sum(PackingListItem.total_quantity), 0),
        )
        .join(PackingListItem, PackingListItem.packing_list_id == PackingList.id)
        .where(PackingListItem.purchase_order_id == purchase_order_id)
        .group_by(PackingList.id, PackingList.code, PackingList.shipping_cost)
        .order_by(PackingList.shipment_date.asc(), PackingList.id.asc())
    ).all()
    totals = _list_totals(db, [int(row[0]) for row in rows])

    shares: list[PackingListFreightShare] = []
    for pl_id, code, shipping_cost, order_qty in rows:
        list_total = totals.get(int(pl_id), 0)
        per_unit = unit_freight(shipping_cost, list_total)
        shares.append(
            PackingListFreightShare(
                packing_list_id=int(pl_id),
                code=code,
                shipping_cost=Decimal(shipping_cost or 0),
                list_total_quantity=list_total,
                unit_freight=per_unit,
                order_quantity=int(order_qty or 0),
                allocated_freight=per_unit * int(order_qty or 0),
            )
        )
    return allocate_freight(
        purchase_order_id=purchase_order_id,
        ordered_quantity=int(ordered_quantity or 0),
        shares=shares,
    )


def prorate_packing_list(db: Session, *, packing_list_id: int) -> dict[int, Decimal]:
    """Freight allocated to each item of one packing list, keyed by item id.

    Items without an order reference still absorb their share, so the values
    always add back up to the list's freight cost.
    """
    packing_list = db.execute(select(PackingList).where(PackingList.id == packing_list_id)).scalar_one_or_none()
    if packing_list is None:
        raise NotFoundError('Packing list not found')

    items = db.execute(
        select(PackingListItem.id, PackingListItem.total_quantity).where(PackingListItem.packing_list_id == packing_list_id)
    ).all()
    list_total = sum(int(qty or 0) for _, qty in items)
    per_unit = unit_freight(packing_list.shipping_cost, list_total)
    return {int(item_id): per_unit * int(qty or 0) for item_id, qty in items}


def purchase_order_ids_for_packing_lists(db: Session, *, packing_list_ids: list[int]) -> set[int]:
    if not packing_list_ids:
        return set()
    rows = db.execute(
        select(PackingListItem.purchase_order_id)
        .where(
            PackingListItem.packing_list_id.in_(packing_list_ids),
            PackingListItem.purchase_order_id.is_not(None),
        )
        .distinct()
    ).scalars().all()
    return {int(po_id) for po_id in rows}


def freight_by_order(db: Session, *, purchase_order_ids: list[int]) -> dict[int, Decimal]:
    """Batch variant of the allocated freight total for list views."""
    if not purchase_order_ids:
        return {}
    rows = db.execute(
        select(PackingListItem.packing_list_id, PackingListItem.purchase_order_id, PackingListItem.total_quantity)
        .where(PackingListItem.purchase_order_id.in_(purchase_order_ids))
    ).all()
    pl_ids = list({int(row[0]) for row in rows})
    totals = _list_totals(db, pl_ids)
    costs: dict[int, Decimal] = {}
    if pl_ids:
        costs = {
            int(pl_id): cost
            for pl_id, cost in db.execute(
                select(PackingList.id, PackingList.shipping_cost).where(PackingList.id.in_(pl_ids))
            ).all()
        }

    allocated: dict[int, Decimal] = defaultdict(lambda: ZERO)
    for pl_id, po_id, qty in rows:
        per_unit = unit_freight(costs.get(int(pl_id)), totals.get(int(pl_id), 0))
        allocated[int(po_id)] += per_unit * int(qty or 0)
    return {po_id: allocated.get(po_id, ZERO) for po_id in purchase_order_ids}
