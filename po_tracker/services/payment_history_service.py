"""Combined payment history: order advance/balance payments and packing-list freight payments."""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from po_tracker.models import PackingList, PackingListItem, PaymentSourceType, PaymentType, PurchaseOrder
from po_tracker.services.cost_calculation_service import calculate_costs
from po_tracker.services.freight_proration_service import freight_by_order
from po_tracker.services.payment_request_service import open_requests_by_source
from po_tracker.services.reconciliation_service import build_cost_input


class PaymentHistoryStatus(str, Enum):
    PAID = 'paid'
    PENDING = 'pending'


def _status(paid_on: date | None) -> PaymentHistoryStatus:
    return PaymentHistoryStatus.PAID if paid_on else PaymentHistoryStatus.PENDING


def _matches_period(
    paid_dates: list[date | None],
    fallback: date | None,
    *,
    date_from: date | None,
    date_to: date | None,
) -> bool:
    """Payment dates decide the period; unpaid entries fall back to their order or shipment date."""
    candidates = [paid for paid in paid_dates if paid] or ([fallback] if fallback else [])
    if date_from is not None and not any(day >= date_from for day in candidates):
        return False
    if date_to is not None and not any(day <= date_to for day in candidates):
        return False
    return True


def _sort_date(primary: date | None, created_at) -> date | None:
    if primary is not None:
        return primary
    return created_at.date() if created_at is not None else None


def purchase_order_payments(
    db: Session,
    *,
    status: PaymentHistoryStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    search: str | None = None,
    include_admin_costs: bool = False,
) -> list[dict]:
    query = select(PurchaseOrder)
    term = (search or '').strip()
    if term:
        pattern = f'%{term}%'
        query = query.where(or_(PurchaseOrder.po_number.ilike(pattern), PurchaseOrder.product_name.ilike(pattern)))
    orders = db.execute(query.order_by(PurchaseOrder.id.asc())).scalars().all()
    if not orders:
        return []

    freight = freight_by_order(db, purchase_order_ids=[order.id for order in orders])
    open_requests = open_requests_by_source(
        db, source_type=PaymentSourceType.PURCHASE_ORDER, source_ids=[str(order.id) for order in orders]
    )

    entries = []
    for order in orders:
        breakdown = calculate_costs(build_cost_input(db, order, prorated_freight=freight[order.id]))
        if breakdown.advance_payment_amount <= 0 and breakdown.balance_payment_amount <= 0:
            continue

        advance_status = _status(order.advance_payment_date)
        balance_status = _status(order.balance_payment_date)
        if status is not None and status not in (advance_status, balance_status):
            continue
        if not _matches_period(
            [order.advance_payment_date, order.balance_payment_date],
            order.order_date,
            date_from=date_from,
            date_to=date_to,
        ):
            continue

        requests = open_requests.get(str(order.id), {})
        entry = {
            'source_type': PaymentSourceType.PURCHASE_ORDER.value,
            'source_id': str(order.id),
            'po_number': order.po_number,
            'product_name': order.product_name,
            'main_image_url': order.main_image_url,
            'quantity': order.quantity,
            'order_date': order.order_date,
            'final_payment_amount': breakdown.final_payment_amount,
            'expected_final_unit_price': breakdown.expected_final_unit_price,
            'advance': {
                'amount': breakdown.advance_payment_amount,
                'payment_date': order.advance_payment_date,
                'status': advance_status.value,
                'open_request': requests.get(PaymentType.ADVANCE),
            },
            'balance': {
                'amount': breakdown.balance_payment_amount,
                'payment_date': order.balance_payment_date,
                'status': balance_status.value,
                'open_request': requests.get(PaymentType.BALANCE),
            },
            'sort_date': _sort_date(order.order_date, order.created_at),
        }
        if include_admin_costs:
            entry['admin_only_cost_total'] = breakdown.admin_only_cost_total
        entries.append(entry)
    return entries


def packing_list_payments(
    db: Session,
    *,
    status: PaymentHistoryStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    search: str | None = None,
) -> list[dict]:
    """One entry per packing-list code; freight is requested and paid per code."""
    query = select(PackingList)
    term = (search or '').strip()
    if term:
        query = query.where(PackingList.code.ilike(f'%{term}%'))
    packing_lists = db.execute(query.order_by(PackingList.code.asc(), PackingList.id.asc())).scalars().all()
    if not packing_lists:
        return []

    by_code: dict[str, list[PackingList]] = defaultdict(list)
    for packing_list in packing_lists:
        by_code[packing_list.code].append(packing_list)

    po_numbers: dict[int, set[str]] = defaultdict(set)
    for pl_id, po_number in db.execute(
        select(PackingListItem.packing_list_id, PurchaseOrder.po_number)
        .join(PurchaseOrder, PurchaseOrder.id == PackingListItem.purchase_order_id)
        .where(PackingListItem.packing_list_id.in_([pl.id for pl in packing_lists]))
    ).all():
        po_numbers[int(pl_id)].add(po_number)

    open_requests = open_requests_by_source(
        db, source_type=PaymentSourceType.PACKING_LIST, source_ids=list(by_code)
    )

    entries = []
    for code, group in by_code.items():
        paid_dates = [pl.wk_payment_date for pl in group if pl.wk_payment_date]
        paid_on = max(paid_dates) if paid_dates else None
        latest_shipment = max(pl.shipment_date for pl in group)
        entry_status = _status(paid_on)
        if status is not None and status != entry_status:
            continue
        if not _matches_period([paid_on], latest_shipment, date_from=date_from, date_to=date_to):
            continue

        entries.append(
            {
                'source_type': PaymentSourceType.PACKING_LIST.value,
                'source_id': code,
                'packing_list_ids': [pl.id for pl in group],
                'logistics_company': next((pl.logistics_company for pl in group if pl.logistics_company), None),
                'po_numbers': sorted(set().union(*(po_numbers[pl.id] for pl in group))),
                'shipment_dates': sorted(pl.shipment_date for pl in group),
                'amount': sum((Decimal(pl.shipping_cost or 0) for pl in group), Decimal('0')),
                'payment_date': paid_on,
                'status': entry_status.value,
                'open_request': open_requests.get(code, {}).get(PaymentType.SHIPPING),
                'sort_date': latest_shipment,
            }
        )
    return entries


def list_payment_history(
    db: Session,
    *,
    source_type: PaymentSourceType | None = None,
    status: PaymentHistoryStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    search: str | None = None,
    include_admin_costs: bool = False,
) -> list[dict]:
    """Newest first by order or shipment date; entries without any date go last."""
    entries: list[dict] = []
    if source_type in (None, PaymentSourceType.PURCHASE_ORDER):
        entries.extend(
            purchase_order_payments(
                db,
                status=status,
                date_from=date_from,
                date_to=date_to,
                search=search,
                include_admin_costs=include_admin_costs,
            )
        )
    if source_type in (None, PaymentSourceType.PACKING_LIST):
        entries.extend(
            packing_list_payments(db, status=status, date_from=date_from, date_to=date_to, search=search)
        )
    entries.sort(key=lambda entry: entry['sort_date'] or date.min, reverse=True)
    return entries
