from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from po_tracker.auth import Capability, Principal, get_current_principal, require_capability
from po_tracker.db import get_db
from po_tracker.models import PaymentRequestStatus, PaymentSourceType, PaymentType
from po_tracker.schemas import (
    BatchPaymentCompletion,
    PaymentCompletion,
    PaymentRequestCreate,
    PaymentRequestUpdate,
)
from po_tracker.services.payment_request_service import (
    batch_complete_payment_requests,
    complete_payment_request,
    create_payment_request,
    delete_payment_request,
    get_payment_request,
    list_payment_requests,
    serialize_payment_request,
    update_payment_request,
)

router = APIRouter(prefix='/api/payment-requests', tags=['payment-requests'])
payment_access = require_capability(Capability.MANAGE_PAYMENTS)


@router.get('')
def payment_requests_index(
    status: PaymentRequestStatus | None = None,
    source_type: PaymentSourceType | None = None,
    payment_type: PaymentType | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    search: str | None = None,
    limit: int = 200,
    offset: int = 0,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    requests = list_payment_requests(
        db,
        status=status,
        source_type=source_type,
        payment_type=payment_type,
        date_from=date_from,
        date_to=date_to,
        search=search,
        limit=limit,
        offset=offset,
    )
    return {'success': True, 'data': [serialize_payment_request(request) for request in requests]}


@router.post('', status_code=201)
def payment_request_create(
    payload: PaymentRequestCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    request = create_payment_request(db, requested_by=principal.username, **payload.model_dump())
    db.commit()
    return {'success': True, 'data': serialize_payment_request(request)}


@router.post('/batch-complete')
def payment_requests_batch_complete(
    payload: BatchPaymentCompletion,
    db: Session = Depends(get_db),
    principal: Principal = Depends(payment_access),
):
    requests = batch_complete_payment_requests(
        db,
        request_ids=payload.ids,
        payment_date=payload.payment_date,
        completed_by=principal.username,
    )
    db.commit()
    return {'success': True, 'data': [serialize_payment_request(request) for request in requests]}


@router.get('/{request_id}')
def payment_request_detail(
    request_id: int,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    return {'success': True, 'data': serialize_payment_request(get_payment_request(db, request_id=request_id))}


@router.put('/{request_id}')
def payment_request_update(
    request_id: int,
    payload: PaymentRequestUpdate,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    request = update_payment_request(db, request_id=request_id, values=payload.model_dump(exclude_unset=True))
    db.commit()
    return {'success': True, 'data': serialize_payment_request(request)}


@router.post('/{request_id}/complete')
def payment_request_complete(
    request_id: int,
    payload: PaymentCompletion,
    db: Session = Depends(get_db),
    principal: Principal = Depends(payment_access),
):
    request = complete_payment_request(
        db,
        request_id=request_id,
        payment_date=payload.payment_date,
        completed_by=principal.username,
    )
    db.commit()
    return {'success': True, 'data': serialize_payment_request(request)}


@router.delete('/{request_id}')
def payment_request_delete(
    request_id: int,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    delete_payment_request(db, request_id=request_id)
    db.commit()
    return {'success': True}
