from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from po_tracker.models import (
    PackingList,
    PaymentRequest,
    PaymentRequestStatus,
    PaymentSourceType,
    PaymentType,
    PurchaseOrder,
)
from po_tracker.services.errors import ConflictError, NotFoundError, ValidationError
from po_tracker.services.packing_list_service import update_wk_payment_date_by_code
from po_tracker.services.purchase_order_service import derive_payment_status
from po_tracker.services.reconciliation_service import calculate_purchase_order_costs

logger = logging.getLogger(__name__)

PAYMENT_TYPES_BY_SOURCE = {
    PaymentSourceType.PURCHASE_ORDER: {PaymentType.ADVANCE, PaymentType.BALANCE},
    PaymentSourceType.PACKING_LIST: {PaymentType.SHIPPING},
}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def generate_request_number(db: Session, *, today: date | None = None) -> str:
    year = (today or date.today()).year
    prefix = f'PR-{year}-'
    numbers = db.execute(
        select(PaymentRequest.request_number).where(PaymentRequest.request_number.like(f'{prefix}%'))
    ).scalars().all()
    highest = 0
    for number in numbers:
        suffix = number[len(prefix):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f'{prefix}{highest + 1:03d}'


def serialize_payment_request(request: PaymentRequest) -> dict:
    return {
        'id': request.id,
        'request_number': request.request_number,
        'source_type': request.source_type.value,
        'source_id': request.source_id,
        'payment_type': request.payment_type.value,
        'amount': request.amount,
        'status': request.status.value,
        'request_date': request.request_date,
        'payment_date': request.payment_date,
        'requested_by': request.requested_by,
        'completed_by': request.completed_by,
        'memo': request.memo,
        'created_at': request.created_at,
        'updated_at': request.updated_at,
    }


def list_payment_requests(
    db: Session,
    *,
    status: PaymentRequestStatus | None = None,
    source_type: PaymentSourceType | None = None,
    payment_type: PaymentType | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    search: str | None = None,
    limit: int = 200,
    offset: int = 0,
) -> list[PaymentRequest]:
    query = select(PaymentRequest)
    if status is not None:
        query = query.where(PaymentRequest.status == status)
    if source_type is not None:
        query = query.where(PaymentRequest.source_type == source_type)
    if payment_type is not None:
        query = query.where(PaymentRequest.payment_type == payment_type)
    if date_from is not None:
        query = query.where(PaymentRequest.request_date >= date_from)
    if date_to is not None:
        query = query.where(PaymentRequest.request_date <= date_to)
    term = (search or '').strip()
    if term:
        pattern = f'%{term}%'
        query = query.where(or_(PaymentRequest.request_number.ilike(pattern), PaymentRequest.source_id.ilike(pattern)))
    return db.execute(
        query.order_by(PaymentRequest.request_date.desc(), PaymentRequest.id.desc()).limit(limit).offset(offset)
    ).scalars().all()


def get_payment_request(db: Session, *, request_id: int) -> PaymentRequest:
    request = db.get(PaymentRequest, request_id)
    if request is None:
        raise NotFoundError('Payment request not found')
    return request


def _purchase_order_for_source(db: Session, source_id: str) -> PurchaseOrder:
    if not str(source_id).isdigit():
        raise ValidationError('Purchase order source id must be numeric')
    purchase_order = db.get(PurchaseOrder, int(source_id))
    if purchase_order is None:
        raise NotFoundError('Purchase order not found')
    return purchase_order


def source_amount(db: Session, *, source_type: PaymentSourceType, source_id: str, payment_type: PaymentType) -> Decimal:
    """Amount still payable on the source, rejecting sources already paid directly."""
    if payment_type not in PAYMENT_TYPES_BY_SOURCE[source_type]:
        raise ValidationError(f'{payment_type.value} payments cannot be requested for a {source_type.value} source')

    if source_type == PaymentSourceType.PURCHASE_ORDER:
        purchase_order = _purchase_order_for_source(db, source_id)
        breakdown = calculate_purchase_order_costs(db, purchase_order)
        if payment_type == PaymentType.ADVANCE:
            paid_on, amount = purchase_order.advance_payment_date, breakdown.advance_payment_amount
        else:
            paid_on, amount = purchase_order.balance_payment_date, breakdown.balance_payment_amount
        if paid_on:
            raise ConflictError(f'{payment_type.value} for {purchase_order.po_number} was already paid on {paid_on.isoformat()}')
        if amount <= 0:
            raise ValidationError(f'{purchase_order.po_number} has no {payment_type.value.lower()} amount to pay')
        return amount

    rows = db.execute(
        select(PackingList.shipping_cost, PackingList.wk_payment_date).where(PackingList.code == source_id)
    ).all()
    if not rows:
        raise NotFoundError('Packing list not found')
    paid_on = next((paid for _, paid in rows if paid), None)
    if paid_on:
        raise ConflictError(f'Freight for {source_id} was already paid on {paid_on.isoformat()}')
    amount = sum((Decimal(cost or 0) for cost, _ in rows), Decimal('0'))
    if amount <= 0:
        raise ValidationError(f'Packing list {source_id} has no freight cost to pay')
    return amount


def _open_request(
    db: Session, *, source_type: PaymentSourceType, source_id: str, payment_type: PaymentType
) -> PaymentRequest | None:
    return db.execute(
        select(PaymentRequest).where(
            PaymentRequest.source_type == source_type,
            PaymentRequest.source_id == source_id,
            PaymentRequest.payment_type == payment_type,
            PaymentRequest.status == PaymentRequestStatus.REQUESTED,
        )
    ).scalar_one_or_none()


def create_payment_request(
    db: Session,
    *,
    source_type: PaymentSourceType,
    source_id: str,
    payment_type: PaymentType,
    amount: Decimal | None = None,
    request_date: date | None = None,
    memo: str | None = None,
    requested_by: str | None,
) -> PaymentRequest:
    source_id = str(source_id).strip()
    if not source_id:
        raise ValidationError('Source id is required')
    if source_type == PaymentSourceType.PURCHASE_ORDER:
        # '01' and '1' name the same order; store the canonical id.
        source_id = str(_purchase_order_for_source(db, source_id).id)
    existing = _open_request(db, source_type=source_type, source_id=source_id, payment_type=payment_type)
    if existing is not None:
        raise ConflictError(f'Payment request {existing.request_number} is already open for this source')

    payable = source_amount(db, source_type=source_type, source_id=source_id, payment_type=payment_type)
    if amount is not None and amount <= 0:
        raise ValidationError('Amount must be positive')

    request_date = request_date or date.today()
    request = PaymentRequest(
        request_number=generate_request_number(db, today=request_date),
        source_type=source_type,
        source_id=source_id,
        payment_type=payment_type,
        amount=amount if amount is not None else payable,
        status=PaymentRequestStatus.REQUESTED,
        request_date=request_date,
        requested_by=requested_by,
        memo=memo,
    )
    db.add(request)
    try:
        db.flush()
    except IntegrityError as exc:
        # A concurrent request won the open-request index or the request number.
        db.rollback()
        raise ConflictError('A payment request for this source was created concurrently') from exc
    logger.info('Payment request %s created for %s %s', request.request_number, source_type.value, source_id)
    return request


def update_payment_request(
    db: Session,
    *,
    request_id: int,
    values: dict,
) -> PaymentRequest:
    request = get_payment_request(db, request_id=request_id)
    if request.status != PaymentRequestStatus.REQUESTED:
        raise ConflictError(f'Payment request {request.request_number} is completed and cannot be changed')
    unknown = sorted(values.keys() - {'amount', 'memo', 'request_date'})
    if unknown:
        raise ValidationError(f'Unknown payment request fields: {", ".join(unknown)}')
    if 'amount' in values and (values['amount'] is None or values['amount'] <= 0):
        raise ValidationError('Amount must be positive')
    if 'request_date' in values and values['request_date'] is None:
        raise ValidationError('Request date is required')

    for key, value in values.items():
        setattr(request, key, value)
    request.updated_at = _now()
    db.flush()
    return request


def _write_back(db: Session, request: PaymentRequest, payment_date: date) -> None:
    if request.source_type == PaymentSourceType.PACKING_LIST:
        updated = update_wk_payment_date_by_code(db, code=request.source_id, payment_date=payment_date)
        if not updated:
            logger.warning('Payment request %s completed but no packing list has code %s', request.request_number, request.source_id)
        return

    purchase_order = db.get(PurchaseOrder, int(request.source_id)) if request.source_id.isdigit() else None
    if purchase_order is None:
        logger.warning('Payment request %s completed but purchase order %s is gone', request.request_number, request.source_id)
        return
    if request.payment_type == PaymentType.ADVANCE:
        purchase_order.advance_payment_date = payment_date
    else:
        purchase_order.balance_payment_date = payment_date
    purchase_order.payment_status = derive_payment_status(
        purchase_order.advance_payment_date, purchase_order.balance_payment_date
    )
    purchase_order.updated_at = _now()


def _complete(db: Session, request: PaymentRequest, *, payment_date: date, completed_by: str | None) -> None:
    request.status = PaymentRequestStatus.COMPLETED
    request.payment_date = payment_date
    request.completed_by = completed_by
    request.updated_at = _now()
    _write_back(db, request, payment_date)


def complete_payment_request(
    db: Session,
    *,
    request_id: int,
    payment_date: date,
    completed_by: str | None,
) -> PaymentRequest:
    request = db.execute(
        select(PaymentRequest).where(PaymentRequest.id == request_id).with_for_update()
    ).scalar_one_or_none()
    if request is None:
        raise NotFoundError('Payment request not found')
    if request.status == PaymentRequestStatus.COMPLETED:
        raise ConflictError(f'Payment request {request.request_number} is already completed')
    if payment_date is None:
        raise ValidationError('Payment date is required')

    _complete(db, request, payment_date=payment_date, completed_by=completed_by)
    db.flush()
    logger.info('Payment request %s completed on %s', request.request_number, payment_date.isoformat())
    return request


def batch_complete_payment_requests(
    db: Session,
    *,
    request_ids: list[int],
    payment_date: date,
    completed_by: str | None,
) -> list[PaymentRequest]:
    """Complete every request or none of them."""
    ids = list(dict.fromkeys(request_ids))
    if not ids:
        raise ValidationError('Select at least one payment request')
    if payment_date is None:
        raise ValidationError('Payment date is required')

    requests = db.execute(
        select(PaymentRequest).where(PaymentRequest.id.in_(ids)).order_by(PaymentRequest.id.asc()).with_for_update()
    ).scalars().all()
    found = {request.id for request in requests}
    missing = [request_id for request_id in ids if request_id not in found]
    if missing:
        raise NotFoundError(f'Payment requests not found: {", ".join(str(request_id) for request_id in missing)}')
    completed = [request.request_number for request in requests if request.status == PaymentRequestStatus.COMPLETED]
    if completed:
        raise ConflictError(f'Payment requests already completed: {", ".join(completed)}')

    for request in requests:
        _complete(db, request, payment_date=payment_date, completed_by=completed_by)
    db.flush()
    logger.info('Completed %s payment requests on %s', len(requests), payment_date.isoformat())
    return requests


def delete_payment_request(db: Session, *, request_id: int) -> None:
    request = get_payment_request(db, request_id=request_id)
    if request.status != PaymentRequestStatus.REQUESTED:
        raise ConflictError(f'Payment request {request.request_number} is completed and cannot be deleted')
    db.delete(request)
    db.flush()
    logger.info('Payment request %s withdrawn', request.request_number)


def open_requests_by_source(
    db: Session, *, source_type: PaymentSourceType, source_ids: list[str]
) -> dict[str, dict[PaymentType, str]]:
    if not source_ids:
        return {}
    rows = db.execute(
        select(PaymentRequest.source_id, PaymentRequest.payment_type, PaymentRequest.request_number).where(
            PaymentRequest.source_type == source_type,
            PaymentRequest.source_id.in_(source_ids),
            PaymentRequest.status == PaymentRequestStatus.REQUESTED,
        )
    ).all()
    open_requests: dict[str, dict[PaymentType, str]] = {}
    for source_id, payment_type, request_number in rows:
        open_requests.setdefault(source_id, {})[payment_type] = request_number
    return open_requests

