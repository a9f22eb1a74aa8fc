from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from po_tracker.models import CostItem, PurchaseOrder
from po_tracker.services.cost_calculation_service import (
    CostBreakdown,
    CostInput,
    CostItemInput,
    calculate_costs,
)
from po_tracker.services.errors import NotFoundError
from po_tracker.services.freight_proration_service import (
    get_freight_allocation,
    purchase_order_ids_for_packing_lists,
)

logger = logging.getLogger(__name__)

# Writes to any of these columns invalidate the stored derived prices.
COST_INPUT_FIELDS = frozenset(
    {
        'quantity',
        'unit_price',
        'back_margin',
        'commission_rate',
        'shipping_cost',
        'warehouse_shipping_cost',
        'advance_payment_rate',
        'order_date',
    }
)


def build_cost_input(db: Session, purchase_order: PurchaseOrder, *, prorated_freight: Decimal | None = None) -> CostInput:
    # Sessions run with autoflush off; pending cost items and packing-list rows must be visible.
    db.flush()
    items = db.execute(
        select(CostItem)
        .where(CostItem.purchase_order_id == purchase_order.id)
        .order_by(CostItem.display_order.asc(), CostItem.id.asc())
    ).scalars().all()
    if prorated_freight is None:
        prorated_freight = get_freight_allocation(db, purchase_order_id=purchase_order.id).total_freight
    return CostInput(
        quantity=int(purchase_order.quantity or 0),
        unit_price=Decimal(purchase_order.unit_price or 0),
        back_margin=purchase_order.back_margin,
        commission_rate=Decimal(purchase_order.commission_rate or 0),
        shipping_cost=Decimal(purchase_order.shipping_cost or 0),
        warehouse_shipping_cost=Decimal(purchase_order.warehouse_shipping_cost or 0),
        advance_payment_rate=Decimal(purchase_order.advance_payment_rate or 0),
        order_date=purchase_order.order_date,
        cost_items=tuple(
            CostItemInput(item_type=item.item_type, cost=Decimal(item.cost or 0), is_admin_only=bool(item.is_admin_only))
            for item in items
        ),
        prorated_freight=prorated_freight,
    )


def calculate_purchase_order_costs(db: Session, purchase_order: PurchaseOrder) -> CostBreakdown:
    return calculate_costs(build_cost_input(db, purchase_order))


def recalculate_purchase_order(db: Session, *, purchase_order_id: int) -> CostBreakdown:
    """Recompute and persist the derived price fields of one order.

    Flushes but does not commit; callers own the transaction.
    """
    purchase_order = db.get(PurchaseOrder, purchase_order_id)
    if purchase_order is None:
        raise NotFoundError('Purchase order not found')

    breakdown = calculate_purchase_order_costs(db, purchase_order)
    purchase_order.order_unit_price = breakdown.order_unit_price
    purchase_order.expected_final_unit_price = breakdown.expected_final_unit_price
    purchase_order.advance_payment_amount = breakdown.advance_payment_amount
    purchase_order.balance_payment_amount = breakdown.balance_payment_amount
    db.flush()
    return breakdown


@dataclass
class RecalculationReport:
    succeeded: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)


class RecalculationQueue:
    """Purchase orders whose derived prices must be recomputed after the current write commits."""

    def __init__(self) -> None:
        self._pending: list[int] = []

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def pending(self) -> list[int]:
        return list(self._pending)

    def enqueue(self, *purchase_order_ids: int | None) -> None:
        for po_id in purchase_order_ids:
            if po_id is None:
                continue
            po_id = int(po_id)
            if po_id not in self._pending:
                self._pending.append(po_id)

    def enqueue_for_packing_lists(self, db: Session, *, packing_list_ids: list[int]) -> None:
        self.enqueue(*sorted(purchase_order_ids_for_packing_lists(db, packing_list_ids=packing_list_ids)))

    def drain(self, session_factory: sessionmaker) -> RecalculationReport:
        """Recompute every queued order in its own session.

        A failing order is rolled back and logged; it never stops the rest of
        the queue and is never raised to the caller.
        """
        pending, self._pending = self._pending, []
        report = RecalculationReport()
        for po_id in pending:
            db = session_factory()
            try:
                breakdown = recalculate_purchase_order(db, purchase_order_id=po_id)
                db.commit()
            except Exception:
                db.rollback()
                logger.exception('Cost recalculation failed for purchase order %s', po_id)
                report.failed.append(po_id)
            else:
                logger.debug(
                    'Recalculated purchase order %s: expected_final_unit_price=%s',
                    po_id,
                    breakdown.expected_final_unit_price,
                )
                report.succeeded.append(po_id)
            finally:
                db.close()
        return report
