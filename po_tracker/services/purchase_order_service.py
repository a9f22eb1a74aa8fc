from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from po_tracker.auth import Capability, Principal, has_capability
from po_tracker.models import (
    CostItem,
    CostItemType,
    DeliveryStatus,
    FactoryShipment,
    OrderStatus,
    PaymentRequest,
    PaymentRequestStatus,
    PaymentSourceType,
    PaymentStatus,
    PurchaseOrder,
)
from po_tracker.services.cost_calculation_service import calculate_costs
from po_tracker.services.errors import AuthorizationError, NotFoundError, ValidationError
from po_tracker.services.freight_proration_service import freight_by_order, get_freight_allocation
from po_tracker.services.quantity_service import (
    derive_delivery_status,
    derive_factory_status,
    derive_work_status,
    get_quantity_summaries,
    get_quantity_summary,
)
from po_tracker.services.reconciliation_service import (
    COST_INPUT_FIELDS,
    RecalculationQueue,
    build_cost_input,
)

logger = logging.getLogger(__name__)

MONEY = Decimal('0.01')

EDITABLE_FIELDS = frozenset(
    {
        'product_name',
        'supplier_name',
        'main_image_url',
        'quantity',
        'unit_price',
        'back_margin',
        'commission_rate',
        'commission_type',
        'shipping_cost',
        'warehouse_shipping_cost',
        'advance_payment_rate',
        'advance_payment_date',
        'balance_payment_date',
        'is_confirmed',
        'order_status',
        'delivery_status',
        'order_date',
        'estimated_shipment_date',
        'work_start_date',
        'work_end_date',
    }
)
DERIVED_FIELDS = frozenset(
    {
        'order_unit_price',
        'expected_final_unit_price',
        'advance_payment_amount',
        'balance_payment_amount',
        'payment_status',
    }
)
COST_FIELDS = frozenset(
    {
        'quantity',
        'unit_price',
        'back_margin',
        'commission_rate',
        'commission_type',
        'shipping_cost',
        'warehouse_shipping_cost',
        'advance_payment_rate',
    }
)
REQUIRED_FIELDS = frozenset(
    {
        'product_name',
        'quantity',
        'unit_price',
        'commission_rate',
        'shipping_cost',
        'warehouse_shipping_cost',
        'advance_payment_rate',
        'is_confirmed',
        'order_status',
        'delivery_status',
    }
)
NON_NEGATIVE_FIELDS = ('quantity', 'unit_price', 'commission_rate', 'shipping_cost', 'warehouse_shipping_cost')


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(MONEY, rounding=ROUND_HALF_UP)


def derive_payment_status(advance_payment_date: date | None, balance_payment_date: date | None) -> PaymentStatus:
    if balance_payment_date:
        return PaymentStatus.PAID
    if advance_payment_date:
        return PaymentStatus.ADVANCE_PAID
    return PaymentStatus.UNPAID


def generate_po_number(db: Session) -> str:
    numbers = db.execute(select(PurchaseOrder.po_number).where(PurchaseOrder.po_number.like('PO-%'))).scalars().all()
    highest = 0
    for number in numbers:
        suffix = number[3:]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f'PO-{highest + 1:03d}'


def get_purchase_order(db: Session, *, purchase_order_id: int) -> PurchaseOrder:
    purchase_order = db.get(PurchaseOrder, purchase_order_id)
    if purchase_order is None:
        raise NotFoundError('Purchase order not found')
    return purchase_order


def _validate_values(values: dict) -> None:
    derived = sorted(DERIVED_FIELDS & values.keys())
    if derived:
        raise ValidationError(f'Derived fields cannot be edited: {", ".join(derived)}')
    unknown = sorted(values.keys() - EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f'Unknown purchase order fields: {", ".join(unknown)}')

    for key in REQUIRED_FIELDS & values.keys():
        if values[key] is None:
            raise ValidationError(f'{key} cannot be empty')
    if 'product_name' in values and not str(values['product_name']).strip():
        raise ValidationError('Product name is required')
    for key in NON_NEGATIVE_FIELDS:
        if values.get(key) is not None and values[key] < 0:
            raise ValidationError(f'{key} cannot be negative')
    rate = values.get('advance_payment_rate')
    if rate is not None and not 0 <= rate <= 100:
        raise ValidationError('Advance payment rate must be between 0 and 100')


def _sync_order_status(purchase_order: PurchaseOrder, values: dict) -> None:
    if 'is_confirmed' not in values or 'order_status' in values:
        return
    if purchase_order.order_status == OrderStatus.CANCELLED:
        return
    purchase_order.order_status = OrderStatus.CONFIRMED if purchase_order.is_confirmed else OrderStatus.PENDING


def create_purchase_order(
    db: Session,
    *,
    values: dict,
    created_by: str | None,
    recalc: RecalculationQueue,
) -> PurchaseOrder:
    _validate_values(values)
    if not values.get('product_name'):
        raise ValidationError('Product name is required')

    purchase_order = PurchaseOrder(po_number=generate_po_number(db), created_by=created_by, updated_by=created_by)
    for key, value in values.items():
        if value is not None:
            setattr(purchase_order, key, value)
    _sync_order_status(purchase_order, values)
    purchase_order.payment_status = derive_payment_status(
        purchase_order.advance_payment_date, purchase_order.balance_payment_date
    )
    db.add(purchase_order)
    db.flush()
    recalc.enqueue(purchase_order.id)
    logger.info('Created purchase order %s', purchase_order.po_number)
    return purchase_order


def update_purchase_order(
    db: Session,
    *,
    purchase_order_id: int,
    values: dict,
    principal: Principal | None,
    recalc: RecalculationQueue,
) -> PurchaseOrder:
    _validate_values(values)
    if COST_FIELDS & values.keys() and not has_capability(principal, Capability.EDIT_COST_FIELDS):
        raise AuthorizationError('Not allowed to edit cost fields')

    purchase_order = get_purchase_order(db, purchase_order_id=purchase_order_id)
    for key, value in values.items():
        setattr(purchase_order, key, value)
    _sync_order_status(purchase_order, values)
    if {'advance_payment_date', 'balance_payment_date'} & values.keys():
        purchase_order.payment_status = derive_payment_status(
            purchase_order.advance_payment_date, purchase_order.balance_payment_date
        )
    purchase_order.updated_by = principal.username if principal else None
    purchase_order.updated_at = _now()
    db.flush()

    if COST_INPUT_FIELDS & values.keys():
        recalc.enqueue(purchase_order.id)
    return purchase_order


def delete_purchase_order(db: Session, *, purchase_order_id: int) -> None:
    purchase_order = get_purchase_order(db, purchase_order_id=purchase_order_id)
    # Completed requests stay as payment history.
    db.execute(
        delete(PaymentRequest).where(
            PaymentRequest.source_type == PaymentSourceType.PURCHASE_ORDER,
            PaymentRequest.source_id == str(purchase_order.id),
            PaymentRequest.status == PaymentRequestStatus.REQUESTED,
        )
    )
    db.delete(purchase_order)
    db.flush()
    logger.info('Deleted purchase order %s', purchase_order.po_number)


def serialize_purchase_order(purchase_order: PurchaseOrder) -> dict:
    return {
        'id': purchase_order.id,
        'po_number': purchase_order.po_number,
        'product_name': purchase_order.product_name,
        'supplier_name': purchase_order.supplier_name,
        'main_image_url': purchase_order.main_image_url,
        'quantity': purchase_order.quantity,
        'unit_price': purchase_order.unit_price,
        'back_margin': purchase_order.back_margin,
        'order_unit_price': purchase_order.order_unit_price,
        'expected_final_unit_price': purchase_order.expected_final_unit_price,
        'commission_rate': purchase_order.commission_rate,
        'commission_type': purchase_order.commission_type,
        'shipping_cost': purchase_order.shipping_cost,
        'warehouse_shipping_cost': purchase_order.warehouse_shipping_cost,
        'advance_payment_rate': purchase_order.advance_payment_rate,
        'advance_payment_amount': purchase_order.advance_payment_amount,
        'advance_payment_date': purchase_order.advance_payment_date,
        'balance_payment_amount': purchase_order.balance_payment_amount,
        'balance_payment_date': purchase_order.balance_payment_date,
        'payment_status': purchase_order.payment_status.value,
        'is_confirmed': purchase_order.is_confirmed,
        'order_status': purchase_order.order_status.value,
        'delivery_status': purchase_order.delivery_status.value,
        'order_date': purchase_order.order_date,
        'estimated_shipment_date': purchase_order.estimated_shipment_date,
        'work_start_date': purchase_order.work_start_date,
        'work_end_date': purchase_order.work_end_date,
        'created_by': purchase_order.created_by,
        'updated_by': purchase_order.updated_by,
        'created_at': purchase_order.created_at,
        'updated_at': purchase_order.updated_at,
    }


def list_purchase_orders(
    db: Session,
    *,
    search: str | None = None,
    delivery_status: DeliveryStatus | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[dict]:
    query = select(PurchaseOrder)
    term = (search or '').strip()
    if term:
        pattern = f'%{term}%'
        query = query.where(
            or_(
                PurchaseOrder.po_number.ilike(pattern),
                PurchaseOrder.product_name.ilike(pattern),
                PurchaseOrder.supplier_name.ilike(pattern),
            )
        )
    if delivery_status is not None:
        query = query.where(PurchaseOrder.delivery_status == delivery_status)
    orders = db.execute(
        query.order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc()).limit(limit).offset(offset)
    ).scalars().all()

    ids = [po.id for po in orders]
    summaries = get_quantity_summaries(db, purchase_order_ids=ids)
    freight = freight_by_order(db, purchase_order_ids=ids)

    rows = []
    for po in orders:
        summary = summaries[po.id]
        allocated = freight.get(po.id, Decimal('0'))
        row = serialize_purchase_order(po)
        row.update(summary.as_dict())
        row.update(
            {
                'factory_status': derive_factory_status(summary).value,
                'delivery_status': derive_delivery_status(summary, po.delivery_status).value,
                'work_status': derive_work_status(po.work_start_date, po.work_end_date).value,
                'payment_status': derive_payment_status(po.advance_payment_date, po.balance_payment_date).value,
                'allocated_freight': _money(allocated),
                'unit_shipping_cost': _money(allocated / po.quantity) if po.quantity else None,
            }
        )
        rows.append(row)
    return rows


def get_purchase_order_detail(db: Session, *, purchase_order_id: int, principal: Principal | None) -> dict:
    """Full view of one order with every derived figure recomputed from source rows."""
    purchase_order = get_purchase_order(db, purchase_order_id=purchase_order_id)
    summary = get_quantity_summary(db, purchase_order_id=purchase_order_id)
    allocation = get_freight_allocation(db, purchase_order_id=purchase_order_id)
    breakdown = calculate_costs(build_cost_input(db, purchase_order, prorated_freight=allocation.total_freight))

    can_see_admin_items = has_capability(principal, Capability.MANAGE_ADMIN_COST_ITEMS)
    cost = breakdown.as_dict()
    if not can_see_admin_items:
        cost.pop('admin_only_cost_total')

    detail = serialize_purchase_order(purchase_order)
    detail.update(
        {
            'quantities': summary.as_dict(),
            'factory_status': derive_factory_status(summary).value,
            'delivery_status': derive_delivery_status(summary, purchase_order.delivery_status).value,
            'work_status': derive_work_status(purchase_order.work_start_date, purchase_order.work_end_date).value,
            'cost': cost,
            'freight': {
                'total_freight': _money(allocation.total_freight),
                'unit_shipping_cost': allocation.unit_shipping_cost,
                'shipped_quantity': allocation.shipped_quantity,
                'packing_lists': [
                    {
                        'packing_list_id': share.packing_list_id,
                        'code': share.code,
                        'shipping_cost': share.shipping_cost,
                        'list_total_quantity': share.list_total_quantity,
                        'order_quantity': share.order_quantity,
                        'allocated_freight': _money(share.allocated_freight),
                    }
                    for share in allocation.shares
                ],
            },
            'stored_expected_final_unit_price': purchase_order.expected_final_unit_price,
            'cost_items': [
                serialize_cost_item(item)
                for item in list_cost_items(db, purchase_order_id=purchase_order_id, principal=principal)
            ],
            'factory_shipments': [
                serialize_factory_shipment(entry)
                for entry in list_factory_shipments(db, purchase_order_id=purchase_order_id)
            ],
        }
    )
    return detail


def reorder_purchase_order(
    db: Session,
    *,
    source_purchase_order_id: int,
    quantity: int,
    unit_price: Decimal | None = None,
    order_date: date | None = None,
    estimated_shipment_date: date | None = None,
    created_by: str | None,
    recalc: RecalculationQueue,
) -> PurchaseOrder:
    source = get_purchase_order(db, purchase_order_id=source_purchase_order_id)
    if quantity <= 0:
        raise ValidationError('Reorder quantity must be positive')

    values = {
        'product_name': source.product_name,
        'supplier_name': source.supplier_name,
        'main_image_url': source.main_image_url,
        'quantity': quantity,
        'unit_price': unit_price if unit_price is not None else source.unit_price,
        'back_margin': source.back_margin,
        'commission_rate': source.commission_rate,
        'commission_type': source.commission_type,
        'shipping_cost': source.shipping_cost,
        'warehouse_shipping_cost': source.warehouse_shipping_cost,
        'advance_payment_rate': source.advance_payment_rate,
        'order_date': order_date or source.order_date,
        'estimated_shipment_date': estimated_shipment_date or source.estimated_shipment_date,
    }
    purchase_order = create_purchase_order(db, values=values, created_by=created_by, recalc=recalc)

    source_items = db.execute(
        select(CostItem)
        .where(CostItem.purchase_order_id == source.id)
        .order_by(CostItem.display_order.asc(), CostItem.id.asc())
    ).scalars().all()
    for item in source_items:
        db.add(
            CostItem(
                purchase_order_id=purchase_order.id,
                item_type=item.item_type,
                name=item.name,
                unit_price=item.unit_price,
                quantity=item.quantity,
                cost=item.cost,
                is_admin_only=item.is_admin_only,
                display_order=item.display_order,
            )
        )
    db.flush()
    logger.info('Reordered %s as %s', source.po_number, purchase_order.po_number)
    return purchase_order


def serialize_factory_shipment(entry: FactoryShipment) -> dict:
    return {
        'id': entry.id,
        'purchase_order_id': entry.purchase_order_id,
        'shipment_date': entry.shipment_date,
        'quantity': entry.quantity,
        'tracking_number': entry.tracking_number,
        'receive_date': entry.receive_date,
        'display_order': entry.display_order,
    }


def list_factory_shipments(db: Session, *, purchase_order_id: int) -> list[FactoryShipment]:
    return db.execute(
        select(FactoryShipment)
        .where(FactoryShipment.purchase_order_id == purchase_order_id)
        .order_by(FactoryShipment.display_order.asc(), FactoryShipment.id.asc())
    ).scalars().all()


def add_factory_shipment(
    db: Session,
    *,
    purchase_order_id: int,
    quantity: int,
    shipment_date: date | None = None,
    tracking_number: str | None = None,
    receive_date: date | None = None,
) -> FactoryShipment:
    get_purchase_order(db, purchase_order_id=purchase_order_id)
    if quantity <= 0:
        raise ValidationError('Shipment quantity must be positive')

    next_order = len(list_factory_shipments(db, purchase_order_id=purchase_order_id))
    entry = FactoryShipment(
        purchase_order_id=purchase_order_id,
        quantity=quantity,
        shipment_date=shipment_date,
        tracking_number=(tracking_number or '').strip() or None,
        receive_date=receive_date,
        display_order=next_order,
    )
    db.add(entry)
    db.flush()
    return entry


def _get_factory_shipment(db: Session, shipment_id: int) -> FactoryShipment:
    entry = db.get(FactoryShipment, shipment_id)
    if entry is None:
        raise NotFoundError('Factory shipment not found')
    return entry


def update_factory_shipment(db: Session, *, shipment_id: int, values: dict) -> FactoryShipment:
    entry = _get_factory_shipment(db, shipment_id)
    allowed = {'quantity', 'shipment_date', 'tracking_number', 'receive_date', 'display_order'}
    unknown = sorted(values.keys() - allowed)
    if unknown:
        raise ValidationError(f'Unknown factory shipment fields: {", ".join(unknown)}')
    if 'quantity' in values and (values['quantity'] is None or values['quantity'] <= 0):
        raise ValidationError('Shipment quantity must be positive')
    for key, value in values.items():
        setattr(entry, key, value)
    entry.updated_at = _now()
    db.flush()
    return entry


def delete_factory_shipment(db: Session, *, shipment_id: int) -> None:
    db.delete(_get_factory_shipment(db, shipment_id))
    db.flush()


def serialize_cost_item(item: CostItem) -> dict:
    return {
        'id': item.id,
        'item_type': item.item_type.value,
        'name': item.name,
        'unit_price': item.unit_price,
        'quantity': item.quantity,
        'cost': item.cost,
        'is_admin_only': item.is_admin_only,
        'display_order': item.display_order,
    }


def list_cost_items(db: Session, *, purchase_order_id: int, principal: Principal | None) -> list[CostItem]:
    query = select(CostItem).where(CostItem.purchase_order_id == purchase_order_id)
    if not has_capability(principal, Capability.MANAGE_ADMIN_COST_ITEMS):
        query = query.where(CostItem.is_admin_only.is_(False))
    return db.execute(query.order_by(CostItem.display_order.asc(), CostItem.id.asc())).scalars().all()


def _parse_cost_item(raw: dict, index: int) -> dict:
    try:
        item_type = CostItemType(raw.get('item_type'))
    except ValueError as exc:
        raise ValidationError(f'Cost item {index + 1}: item_type must be OPTION or LABOR') from exc
    name = (raw.get('name') or '').strip()
    if not name:
        raise ValidationError(f'Cost item {index + 1}: name is required')
    unit_price = Decimal(raw.get('unit_price') or 0)
    quantity = int(raw.get('quantity') or 0)
    if unit_price < 0 or quantity < 0:
        raise ValidationError(f'Cost item {index + 1}: unit price and quantity cannot be negative')
    return {
        'item_type': item_type,
        'name': name,
        'unit_price': unit_price,
        'quantity': quantity,
        'cost': _money(unit_price * quantity),
        'is_admin_only': bool(raw.get('is_admin_only')),
        'display_order': int(raw.get('display_order') if raw.get('display_order') is not None else index),
    }


def save_cost_items(
    db: Session,
    *,
    purchase_order_id: int,
    items: list[dict],
    principal: Principal | None,
    recalc: RecalculationQueue,
) -> list[CostItem]:
    """Replace the order's cost items with the submitted set.

    Callers only replace the categories they control: non-admin items need the
    cost editing capability, admin-only items the admin cost item capability.
    Stored items of the other category are kept as they are.
    """
    get_purchase_order(db, purchase_order_id=purchase_order_id)
    parsed = [_parse_cost_item(raw, index) for index, raw in enumerate(items)]

    can_edit = has_capability(principal, Capability.EDIT_COST_FIELDS)
    can_manage_admin = has_capability(principal, Capability.MANAGE_ADMIN_COST_ITEMS)
    if any(item['is_admin_only'] for item in parsed) and not can_manage_admin:
        raise AuthorizationError('Not allowed to save admin-only cost items')

    controlled = []
    if can_edit:
        controlled.append(False)
    if can_manage_admin:
        controlled.append(True)
    if not controlled:
        logger.info('Cost item save for purchase order %s changed nothing: caller lacks cost capabilities', purchase_order_id)
        return list_cost_items(db, purchase_order_id=purchase_order_id, principal=principal)

    db.execute(
        delete(CostItem).where(
            CostItem.purchase_order_id == purchase_order_id,
            CostItem.is_admin_only.in_(controlled),
        )
    )
    for item in parsed:
        if item['is_admin_only'] in controlled:
            db.add(CostItem(purchase_order_id=purchase_order_id, **item))
    db.flush()
    recalc.enqueue(purchase_order_id)
    return list_cost_items(db, purchase_order_id=purchase_order_id, principal=principal)
