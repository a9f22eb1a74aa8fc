"""Read-only aggregates for the assistant and the payment screens."""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from po_tracker.models import PackingList, PaymentSourceType, PaymentType, PurchaseOrder
from po_tracker.services.cost_calculation_service import calculate_costs
from po_tracker.services.errors import NotFoundError
from po_tracker.services.freight_proration_service import get_freight_allocation
from po_tracker.services.payment_request_service import open_requests_by_source
from po_tracker.services.purchase_order_service import derive_payment_status
from po_tracker.services.quantity_service import get_quantity_summary
from po_tracker.services.reconciliation_service import build_cost_input


def purchase_order_summary(db: Session, *, purchase_order_id: int, include_admin_costs: bool = False) -> dict:
    purchase_order = db.get(PurchaseOrder, purchase_order_id)
    if purchase_order is None:
        raise NotFoundError('Purchase order not found')

    quantities = get_quantity_summary(db, purchase_order_id=purchase_order_id)
    allocation = get_freight_allocation(db, purchase_order_id=purchase_order_id)
    breakdown = calculate_costs(build_cost_input(db, purchase_order, prorated_freight=allocation.total_freight))
    open_requests = open_requests_by_source(
        db, source_type=PaymentSourceType.PURCHASE_ORDER, source_ids=[str(purchase_order.id)]
    ).get(str(purchase_order.id), {})

    costs = {
        'order_unit_price': breakdown.order_unit_price,
        'commission': breakdown.commission,
        'final_payment_amount': breakdown.final_payment_amount,
        'prorated_freight': breakdown.prorated_freight,
        'expected_final_unit_price': breakdown.expected_final_unit_price,
        'commission_rule': breakdown.rule_name,
    }
    if include_admin_costs:
        costs['admin_only_cost_total'] = breakdown.admin_only_cost_total

    return {
        'purchase_order_id': purchase_order.id,
        'po_number': purchase_order.po_number,
        'product_name': purchase_order.product_name,
        'quantities': quantities.as_dict(),
        'costs': costs,
        'payments': {
            'status': derive_payment_status(
                purchase_order.advance_payment_date, purchase_order.balance_payment_date
            ).value,
            'advance_payment_amount': breakdown.advance_payment_amount,
            'advance_payment_date': purchase_order.advance_payment_date,
            'balance_payment_amount': breakdown.balance_payment_amount,
            'balance_payment_date': purchase_order.balance_payment_date,
            'open_requests': {
                payment_type.value: open_requests.get(payment_type)
                for payment_type in (PaymentType.ADVANCE, PaymentType.BALANCE)
            },
        },
    }


def packing_list_code_summary(db: Session, *, code: str) -> dict:
    packing_lists = db.execute(
        select(PackingList).where(PackingList.code == code).order_by(PackingList.shipment_date.asc())
    ).scalars().all()
    if not packing_lists:
        raise NotFoundError('Packing list not found')

    open_requests = open_requests_by_source(
        db, source_type=PaymentSourceType.PACKING_LIST, source_ids=[code]
    ).get(code, {})
    paid_on = next((pl.wk_payment_date for pl in packing_lists if pl.wk_payment_date), None)
    return {
        'code': code,
        'packing_list_ids': [pl.id for pl in packing_lists],
        'shipment_dates': [pl.shipment_date for pl in packing_lists],
        'total_shipping_cost': sum((Decimal(pl.shipping_cost or 0) for pl in packing_lists), Decimal('0')),
        'wk_payment_date': paid_on,
        'open_shipping_request': open_requests.get(PaymentType.SHIPPING),
    }
