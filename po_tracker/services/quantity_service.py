from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from po_tracker.models import (
    DeliveryStatus,
    FactoryShipment,
    KoreaArrival,
    PackingListItem,
    PurchaseOrder,
)
from po_tracker.services.errors import NotFoundError


class FactoryStatus(str, Enum):
    WAITING = 'WAITING'
    SHIPPING = 'SHIPPING'
    RECEIVED = 'RECEIVED'


class WorkStatus(str, Enum):
    WAITING = 'WAITING'
    IN_PROGRESS = 'IN_PROGRESS'
    DONE = 'DONE'


@dataclass(frozen=True)
class QuantitySummary:
    purchase_order_id: int
    ordered_quantity: int
    factory_shipped_quantity: int
    unreceived_quantity: int
    packing_shipped_quantity: int
    unshipped_quantity: int
    arrived_quantity: int
    in_transit_quantity: int

    def as_dict(self) -> dict:
        return {
            'ordered_quantity': self.ordered_quantity,
            'factory_shipped_quantity': self.factory_shipped_quantity,
            'unreceived_quantity': self.unreceived_quantity,
            'packing_shipped_quantity': self.packing_shipped_quantity,
            'unshipped_quantity': self.unshipped_quantity,
            'arrived_quantity': self.arrived_quantity,
            'in_transit_quantity': self.in_transit_quantity,
        }


def summarize_quantities(
    *,
    purchase_order_id: int,
    ordered: int,
    factory_shipped: int,
    packing_shipped: int,
    arrived: int,
) -> QuantitySummary:
    """Combine the raw child-record totals of one order into its quantity state.

    Every derived figure is clamped at zero. Over-shipment (more packed than the
    factory shipped, or more arrived than packed) is tolerated because physical
    corrections are entered after the fact.

    "Unshipped" is the factory-shipped quantity still waiting for a packing list.
    """
    ordered = max(int(ordered or 0), 0)
    factory_shipped = max(int(factory_shipped or 0), 0)
    packing_shipped = max(int(packing_shipped or 0), 0)
    arrived = max(int(arrived or 0), 0)
    return QuantitySummary(
        purchase_order_id=purchase_order_id,
        ordered_quantity=ordered,
        factory_shipped_quantity=factory_shipped,
        unreceived_quantity=max(ordered - factory_shipped, 0),
        packing_shipped_quantity=packing_shipped,
        unshipped_quantity=max(factory_shipped - packing_shipped, 0),
        arrived_quantity=arrived,
        in_transit_quantity=max(packing_shipped - arrived, 0),
    )


def _sum_by_order(db: Session, query) -> dict[int, int]:
    return {int(order_id): int(total or 0) for order_id, total in db.execute(query).all()}


def get_quantity_summaries(db: Session, *, purchase_order_ids: list[int]) -> dict[int, QuantitySummary]:
    if not purchase_order_ids:
        return {}
    ids = list(dict.fromkeys(purchase_order_ids))

    ordered = {
        int(po_id): int(qty or 0)
        for po_id, qty in db.execute(
            select(PurchaseOrder.id, PurchaseOrder.quantity).where(PurchaseOrder.id.in_(ids))
        ).all()
    }
    factory_shipped = _sum_by_order(
        db,
        select(FactoryShipment.purchase_order_id, func.coalesce(func.sum(FactoryShipment.quantity), 0))
        .where(FactoryShipment.purchase_order_id.in_(ids))
        .group_by(FactoryShipment.purchase_order_id),
    )
    # Items without an order reference never match here.
    packing_shipped = _sum_by_order(
        db,
        select(PackingListItem.purchase_order_id, func.coalesce(func.sum(PackingListItem.total_quantity), 0))
        .where(PackingListItem.purchase_order_id.in_(ids))
        .group_by(PackingListItem.purchase_order_id),
    )
    arrived = _sum_by_order(
        db,
        select(PackingListItem.purchase_order_id, func.coalesce(func.sum(KoreaArrival.quantity), 0))
        .join(PackingListItem, PackingListItem.id == KoreaArrival.packing_list_item_id)
        .where(PackingListItem.purchase_order_id.in_(ids))
        .group_by(PackingListItem.purchase_order_id),
    )

    return {
        po_id: summarize_quantities(
            purchase_order_id=po_id,
            ordered=ordered[po_id],
            factory_shipped=factory_shipped.get(po_id, 0),
            packing_shipped=packing_shipped.get(po_id, 0),
            arrived=arrived.get(po_id, 0),
        )
        for po_id in ids
        if po_id in ordered
    }


def get_quantity_summary(db: Session, *, purchase_order_id: int) -> QuantitySummary:
    summaries = get_quantity_summaries(db, purchase_order_ids=[purchase_order_id])
    if purchase_order_id not in summaries:
        raise NotFoundError('Purchase order not found')
    return summaries[purchase_order_id]


def derive_factory_status(summary: QuantitySummary) -> FactoryStatus:
    shipped = summary.factory_shipped_quantity
    if shipped > 0 and shipped >= summary.ordered_quantity:
        return FactoryStatus.RECEIVED
    if shipped > 0:
        return FactoryStatus.SHIPPING
    return FactoryStatus.WAITING


def derive_delivery_status(summary: QuantitySummary, stored: DeliveryStatus) -> DeliveryStatus:
    if summary.in_transit_quantity > 0:
        return DeliveryStatus.IN_TRANSIT
    if summary.packing_shipped_quantity > 0:
        return DeliveryStatus.ARRIVED
    return stored


def derive_work_status(work_start_date: date | None, work_end_date: date | None) -> WorkStatus:
    if work_end_date:
        return WorkStatus.DONE
    if work_start_date:
        return WorkStatus.IN_PROGRESS
    return WorkStatus.WAITING
