from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from po_tracker.models import (
    FactoryShipment,
    KoreaArrival,
    PackagingUnit,
    PackingList,
    PackingListItem,
    PurchaseOrder,
)
from po_tracker.services.errors import ConflictError, NotFoundError, ValidationError
from po_tracker.services.freight_proration_service import prorate_packing_list
from po_tracker.services.reconciliation_service import RecalculationQueue

logger = logging.getLogger(__name__)

MONEY = Decimal('0.01')

PACKING_LIST_FIELDS = frozenset(
    {
        'code',
        'shipment_date',
        'logistics_company',
        'warehouse_arrival_date',
        'actual_weight',
        'weight_ratio',
        'shipping_cost',
        'payment_date',
    }
)
ITEM_FIELDS = frozenset({'purchase_order_id', 'product_name', 'entry_quantity', 'box_count', 'unit', 'total_quantity'})


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def calculate_weight(actual_weight: Decimal | None, weight_ratio: Decimal | None) -> Decimal | None:
    """Surcharge-adjusted weight: actual weight raised by the ratio percent."""
    if actual_weight is None:
        return None
    ratio = Decimal(weight_ratio or 0)
    return (Decimal(actual_weight) * (Decimal('1') + ratio / Decimal('100'))).quantize(MONEY, rounding=ROUND_HALF_UP)


def _get_packing_list(db: Session, packing_list_id: int) -> PackingList:
    packing_list = db.get(PackingList, packing_list_id)
    if packing_list is None:
        raise NotFoundError('Packing list not found')
    return packing_list


def _get_item(db: Session, item_id: int) -> PackingListItem:
    item = db.get(PackingListItem, item_id)
    if item is None:
        raise NotFoundError('Packing list item not found')
    return item


def _ensure_unique_code_date(db: Session, *, code: str, shipment_date: date, exclude_id: int | None = None) -> None:
    query = select(PackingList.id).where(PackingList.code == code, PackingList.shipment_date == shipment_date)
    if exclude_id is not None:
        query = query.where(PackingList.id != exclude_id)
    if db.execute(query.limit(1)).first():
        raise ConflictError(f'Packing list {code} for {shipment_date.isoformat()} already exists')


def _validate_packing_list_values(values: dict) -> None:
    unknown = sorted(values.keys() - PACKING_LIST_FIELDS)
    if unknown:
        raise ValidationError(f'Unknown packing list fields: {", ".join(unknown)}')
    if 'code' in values and not (values['code'] or '').strip():
        raise ValidationError('Packing list code is required')
    if 'shipment_date' in values and values['shipment_date'] is None:
        raise ValidationError('Shipment date is required')
    if 'shipping_cost' in values:
        if values['shipping_cost'] is None:
            values['shipping_cost'] = Decimal('0')
        if values['shipping_cost'] < 0:
            raise ValidationError('Shipping cost cannot be negative')
    for key in ('actual_weight', 'weight_ratio'):
        if values.get(key) is not None and values[key] < 0:
            raise ValidationError(f'{key} cannot be negative')


def serialize_packing_list(packing_list: PackingList) -> dict:
    return {
        'id': packing_list.id,
        'code': packing_list.code,
        'shipment_date': packing_list.shipment_date,
        'logistics_company': packing_list.logistics_company,
        'warehouse_arrival_date': packing_list.warehouse_arrival_date,
        'actual_weight': packing_list.actual_weight,
        'weight_ratio': packing_list.weight_ratio,
        'calculated_weight': packing_list.calculated_weight,
        'shipping_cost': packing_list.shipping_cost,
        'payment_date': packing_list.payment_date,
        'wk_payment_date': packing_list.wk_payment_date,
        'created_by': packing_list.created_by,
        'updated_by': packing_list.updated_by,
        'created_at': packing_list.created_at,
        'updated_at': packing_list.updated_at,
    }


def serialize_arrival(arrival: KoreaArrival) -> dict:
    return {
        'id': arrival.id,
        'packing_list_item_id': arrival.packing_list_item_id,
        'arrival_date': arrival.arrival_date,
        'quantity': arrival.quantity,
    }


def list_packing_lists(db: Session, *, code: str | None = None, limit: int = 100, offset: int = 0) -> list[dict]:
    query = select(PackingList)
    if code:
        query = query.where(PackingList.code.ilike(f'%{code.strip()}%'))
    packing_lists = db.execute(
        query.order_by(PackingList.shipment_date.desc(), PackingList.id.desc()).limit(limit).offset(offset)
    ).scalars().all()

    ids = [pl.id for pl in packing_lists]
    totals: dict[int, tuple[int, int]] = {}
    if ids:
        totals = {
            int(pl_id): (int(count or 0), int(quantity or 0))
            for pl_id, count, quantity in db.execute(
                select(
                    PackingListItem.packing_list_id,
                    func.count(PackingListItem.id),
                    func.coalesce(func.sum(PackingListItem.total_quantity), 0),
                )
                .where(PackingListItem.packing_list_id.in_(ids))
                .group_by(PackingListItem.packing_list_id)
            ).all()
        }

    rows = []
    for packing_list in packing_lists:
        item_count, total_quantity = totals.get(packing_list.id, (0, 0))
        row = serialize_packing_list(packing_list)
        row.update({'item_count': item_count, 'total_quantity': total_quantity})
        rows.append(row)
    return rows


def get_packing_list_detail(db: Session, *, packing_list_id: int) -> dict:
    packing_list = _get_packing_list(db, packing_list_id)
    items = db.execute(
        select(PackingListItem, PurchaseOrder.po_number)
        .outerjoin(PurchaseOrder, PurchaseOrder.id == PackingListItem.purchase_order_id)
        .where(PackingListItem.packing_list_id == packing_list_id)
        .order_by(PackingListItem.id.asc())
    ).all()
    allocated = prorate_packing_list(db, packing_list_id=packing_list_id)

    arrivals_by_item: dict[int, list[KoreaArrival]] = defaultdict(list)
    item_ids = [item.id for item, _ in items]
    if item_ids:
        for arrival in db.execute(
            select(KoreaArrival)
            .where(KoreaArrival.packing_list_item_id.in_(item_ids))
            .order_by(KoreaArrival.arrival_date.asc(), KoreaArrival.id.asc())
        ).scalars():
            arrivals_by_item[arrival.packing_list_item_id].append(arrival)

    detail = serialize_packing_list(packing_list)
    detail['items'] = []
    for item, po_number in items:
        arrivals = arrivals_by_item.get(item.id, [])
        arrived = sum(arrival.quantity for arrival in arrivals)
        detail['items'].append(
            {
                'id': item.id,
                'purchase_order_id': item.purchase_order_id,
                'po_number': po_number,
                'product_name': item.product_name,
                'entry_quantity': item.entry_quantity,
                'box_count': item.box_count,
                'unit': item.unit.value,
                'total_quantity': item.total_quantity,
                'allocated_freight': allocated.get(item.id, Decimal('0')).quantize(MONEY, rounding=ROUND_HALF_UP),
                'arrived_quantity': arrived,
                'in_transit_quantity': max(item.total_quantity - arrived, 0),
                'arrivals': [serialize_arrival(arrival) for arrival in arrivals],
            }
        )
    detail['total_quantity'] = sum(item.total_quantity for item, _ in items)
    return detail


def create_packing_list(db: Session, *, values: dict, created_by: str | None) -> PackingList:
    _validate_packing_list_values(values)
    code = (values.get('code') or '').strip()
    if not code:
        raise ValidationError('Packing list code is required')
    if values.get('shipment_date') is None:
        raise ValidationError('Shipment date is required')
    values['code'] = code
    _ensure_unique_code_date(db, code=code, shipment_date=values['shipment_date'])

    packing_list = PackingList(created_by=created_by, updated_by=created_by)
    for key, value in values.items():
        if value is not None:
            setattr(packing_list, key, value)
    packing_list.calculated_weight = calculate_weight(packing_list.actual_weight, packing_list.weight_ratio)
    db.add(packing_list)
    db.flush()
    logger.info('Created packing list %s (%s)', packing_list.code, packing_list.shipment_date)
    return packing_list


def update_packing_list(
    db: Session,
    *,
    packing_list_id: int,
    values: dict,
    updated_by: str | None,
    recalc: RecalculationQueue,
) -> PackingList:
    _validate_packing_list_values(values)
    packing_list = _get_packing_list(db, packing_list_id)
    if 'code' in values:
        values['code'] = values['code'].strip()
    if {'code', 'shipment_date'} & values.keys():
        _ensure_unique_code_date(
            db,
            code=values.get('code', packing_list.code),
            shipment_date=values.get('shipment_date', packing_list.shipment_date),
            exclude_id=packing_list.id,
        )

    for key, value in values.items():
        setattr(packing_list, key, value)
    if {'actual_weight', 'weight_ratio'} & values.keys():
        packing_list.calculated_weight = calculate_weight(packing_list.actual_weight, packing_list.weight_ratio)
    packing_list.updated_by = updated_by
    packing_list.updated_at = _now()
    db.flush()

    if 'shipping_cost' in values:
        recalc.enqueue_for_packing_lists(db, packing_list_ids=[packing_list.id])
    return packing_list


def delete_packing_list(db: Session, *, packing_list_id: int, recalc: RecalculationQueue) -> None:
    packing_list = _get_packing_list(db, packing_list_id)
    # Collect the affected orders before the items cascade away.
    recalc.enqueue_for_packing_lists(db, packing_list_ids=[packing_list.id])
    db.delete(packing_list)
    db.flush()
    logger.info('Deleted packing list %s (%s)', packing_list.code, packing_list.shipment_date)


def _validate_item_values(values: dict) -> None:
    unknown = sorted(values.keys() - ITEM_FIELDS)
    if unknown:
        raise ValidationError(f'Unknown packing list item fields: {", ".join(unknown)}')
    for key in ('total_quantity', 'box_count'):
        if key in values:
            if values[key] is None:
                values[key] = 0
            if values[key] < 0:
                raise ValidationError(f'{key} cannot be negative')
    if 'unit' in values:
        try:
            values['unit'] = PackagingUnit(values['unit'] or PackagingUnit.BOX)
        except ValueError as exc:
            raise ValidationError('Packaging unit must be BOX or SACK') from exc


def _check_order_quantity(db: Session, *, purchase_order_id: int, quantity: int, exclude_item_id: int | None) -> PurchaseOrder:
    """Lock the order row and compare the packed total with the ordered quantity.

    Over-shipment is logged and accepted.
    """
    purchase_order = db.execute(
        select(PurchaseOrder).where(PurchaseOrder.id == purchase_order_id).with_for_update()
    ).scalar_one_or_none()
    if purchase_order is None:
        raise NotFoundError('Purchase order not found')

    query = select(func.coalesce(func.sum(PackingListItem.total_quantity), 0)).where(
        PackingListItem.purchase_order_id == purchase_order_id
    )
    if exclude_item_id is not None:
        query = query.where(PackingListItem.id != exclude_item_id)
    packed = int(db.execute(query).scalar_one() or 0) + quantity
    if packed > purchase_order.quantity:
        logger.warning(
            'Purchase order %s over-shipped: %s packed of %s ordered',
            purchase_order.po_number,
            packed,
            purchase_order.quantity,
        )
    return purchase_order


def create_item(
    db: Session,
    *,
    packing_list_id: int,
    values: dict,
    is_factory_to_warehouse: bool = False,
    recalc: RecalculationQueue,
) -> PackingListItem:
    _validate_item_values(values)
    packing_list = _get_packing_list(db, packing_list_id)
    purchase_order_id = values.get('purchase_order_id')
    quantity = int(values.get('total_quantity') or 0)
    if is_factory_to_warehouse and not purchase_order_id:
        raise ValidationError('Factory to warehouse items need a purchase order')

    purchase_order = None
    if purchase_order_id:
        purchase_order = _check_order_quantity(
            db, purchase_order_id=purchase_order_id, quantity=quantity, exclude_item_id=None
        )
    product_name = (values.get('product_name') or '').strip()
    if not product_name and purchase_order is not None:
        product_name = purchase_order.product_name
    if not product_name:
        raise ValidationError('Product name is required')

    item = PackingListItem(packing_list_id=packing_list.id)
    for key, value in values.items():
        if value is not None:
            setattr(item, key, value)
    item.product_name = product_name
    db.add(item)

    if is_factory_to_warehouse:
        shipped_count = db.execute(
            select(func.count(FactoryShipment.id)).where(FactoryShipment.purchase_order_id == purchase_order_id)
        ).scalar_one()
        db.add(
            FactoryShipment(
                purchase_order_id=purchase_order_id,
                shipment_date=packing_list.shipment_date,
                quantity=quantity,
                tracking_number=packing_list.code,
                receive_date=packing_list.warehouse_arrival_date or packing_list.shipment_date,
                display_order=int(shipped_count or 0),
            )
        )
    db.flush()

    recalc.enqueue_for_packing_lists(db, packing_list_ids=[packing_list.id])
    return item


def update_item(db: Session, *, item_id: int, values: dict, recalc: RecalculationQueue) -> PackingListItem:
    _validate_item_values(values)
    item = _get_item(db, item_id)
    previous_order_id = item.purchase_order_id

    new_order_id = values.get('purchase_order_id', previous_order_id)
    new_quantity = int(values.get('total_quantity', item.total_quantity) or 0)
    quantity_changed = new_quantity != item.total_quantity
    order_changed = new_order_id != previous_order_id
    if new_order_id and (quantity_changed or order_changed):
        _check_order_quantity(db, purchase_order_id=new_order_id, quantity=new_quantity, exclude_item_id=item.id)
    if 'product_name' in values and not (values['product_name'] or '').strip():
        raise ValidationError('Product name is required')

    for key, value in values.items():
        setattr(item, key, value)
    item.updated_at = _now()
    db.flush()

    # Quantity changes move freight between every order sharing the list.
    recalc.enqueue(previous_order_id)
    recalc.enqueue_for_packing_lists(db, packing_list_ids=[item.packing_list_id])
    return item


def delete_item(db: Session, *, item_id: int, recalc: RecalculationQueue) -> None:
    item = _get_item(db, item_id)
    packing_list_id = item.packing_list_id
    recalc.enqueue(item.purchase_order_id)
    db.delete(item)
    db.flush()
    recalc.enqueue_for_packing_lists(db, packing_list_ids=[packing_list_id])


def _get_arrival(db: Session, arrival_id: int) -> KoreaArrival:
    arrival = db.get(KoreaArrival, arrival_id)
    if arrival is None:
        raise NotFoundError('Arrival record not found')
    return arrival


def add_arrival(db: Session, *, item_id: int, arrival_date: date, quantity: int) -> KoreaArrival:
    item = _get_item(db, item_id)
    if arrival_date is None:
        raise ValidationError('Arrival date is required')
    if quantity <= 0:
        raise ValidationError('Arrival quantity must be positive')
    arrival = KoreaArrival(packing_list_item_id=item.id, arrival_date=arrival_date, quantity=quantity)
    db.add(arrival)
    db.flush()
    return arrival


def update_arrival(
    db: Session,
    *,
    arrival_id: int,
    arrival_date: date | None = None,
    quantity: int | None = None,
) -> KoreaArrival:
    arrival = _get_arrival(db, arrival_id)
    if quantity is not None:
        if quantity <= 0:
            raise ValidationError('Arrival quantity must be positive')
        arrival.quantity = quantity
    if arrival_date is not None:
        arrival.arrival_date = arrival_date
    arrival.updated_at = _now()
    db.flush()
    return arrival


def delete_arrival(db: Session, *, arrival_id: int) -> None:
    db.delete(_get_arrival(db, arrival_id))
    db.flush()


def update_wk_payment_date_by_code(db: Session, *, code: str, payment_date: date | None) -> int:
    """Record the freight payment date on every packing list sharing the code."""
    result = db.execute(
        update(PackingList)
        .where(PackingList.code == code)
        .values(wk_payment_date=payment_date, updated_at=_now())
        .execution_options(synchronize_session='fetch')
    )
    return result.rowcount or 0
