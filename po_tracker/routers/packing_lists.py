from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session, sessionmaker

from po_tracker.auth import Principal, get_current_principal
from po_tracker.db import get_db, get_session_factory
from po_tracker.dependencies import get_recalculation_queue, schedule_recalculation
from po_tracker.schemas import (
    ArrivalCreate,
    ArrivalUpdate,
    PackingListCreate,
    PackingListItemCreate,
    PackingListItemUpdate,
    PackingListUpdate,
)
from po_tracker.services.packing_list_service import (
    add_arrival,
    create_item,
    create_packing_list,
    delete_arrival,
    delete_item,
    delete_packing_list,
    get_packing_list_detail,
    list_packing_lists,
    serialize_arrival,
    serialize_packing_list,
    update_arrival,
    update_item,
    update_packing_list,
)
from po_tracker.services.reconciliation_service import RecalculationQueue
from po_tracker.services.summary_service import packing_list_code_summary

router = APIRouter(prefix='/api/packing-lists', tags=['packing-lists'])


def _serialize_item(item) -> dict:
    return {
        'id': item.id,
        'packing_list_id': item.packing_list_id,
        'purchase_order_id': item.purchase_order_id,
        'product_name': item.product_name,
        'entry_quantity': item.entry_quantity,
        'box_count': item.box_count,
        'unit': item.unit.value,
        'total_quantity': item.total_quantity,
    }


@router.get('')
def packing_lists_index(
    code: str | None = None,
    limit: int = 100,
    offset: int = 0,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    return {'success': True, 'data': list_packing_lists(db, code=code, limit=limit, offset=offset)}


@router.post('', status_code=201)
def packing_list_create(
    payload: PackingListCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    packing_list = create_packing_list(db, values=payload.model_dump(), created_by=principal.username)
    db.commit()
    return {'success': True, 'data': serialize_packing_list(packing_list)}


@router.get('/codes/{code}/summary')
def packing_list_code_summary_view(
    code: str,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    return {'success': True, 'data': packing_list_code_summary(db, code=code)}


@router.get('/{packing_list_id}')
def packing_list_detail(
    packing_list_id: int,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    return {'success': True, 'data': get_packing_list_detail(db, packing_list_id=packing_list_id)}


@router.put('/{packing_list_id}')
def packing_list_update(
    packing_list_id: int,
    payload: PackingListUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    recalc: RecalculationQueue = Depends(get_recalculation_queue),
    principal: Principal = Depends(get_current_principal),
):
    packing_list = update_packing_list(
        db,
        packing_list_id=packing_list_id,
        values=payload.model_dump(exclude_unset=True),
        updated_by=principal.username,
        recalc=recalc,
    )
    db.commit()
    schedule_recalculation(background_tasks, recalc, session_factory)
    return {'success': True, 'data': serialize_packing_list(packing_list)}


@router.delete('/{packing_list_id}')
def packing_list_delete(
    packing_list_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    recalc: RecalculationQueue = Depends(get_recalculation_queue),
    _: Principal = Depends(get_current_principal),
):
    delete_packing_list(db, packing_list_id=packing_list_id, recalc=recalc)
    db.commit()
    schedule_recalculation(background_tasks, recalc, session_factory)
    return {'success': True}


@router.post('/{packing_list_id}/items', status_code=201)
def packing_list_item_create(
    packing_list_id: int,
    payload: PackingListItemCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    recalc: RecalculationQueue = Depends(get_recalculation_queue),
    _: Principal = Depends(get_current_principal),
):
    values = payload.model_dump(exclude={'is_factory_to_warehouse'})
    item = create_item(
        db,
        packing_list_id=packing_list_id,
        values=values,
        is_factory_to_warehouse=payload.is_factory_to_warehouse,
        recalc=recalc,
    )
    db.commit()
    schedule_recalculation(background_tasks, recalc, session_factory)
    return {'success': True, 'data': _serialize_item(item)}


@router.put('/items/{item_id}')
def packing_list_item_update(
    item_id: int,
    payload: PackingListItemUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    recalc: RecalculationQueue = Depends(get_recalculation_queue),
    _: Principal = Depends(get_current_principal),
):
    item = update_item(db, item_id=item_id, values=payload.model_dump(exclude_unset=True), recalc=recalc)
    db.commit()
    schedule_recalculation(background_tasks, recalc, session_factory)
    return {'success': True, 'data': _serialize_item(item)}


@router.delete('/items/{item_id}')
def packing_list_item_delete(
    item_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    recalc: RecalculationQueue = Depends(get_recalculation_queue),
    _: Principal = Depends(get_current_principal),
):
    delete_item(db, item_id=item_id, recalc=recalc)
    db.commit()
    schedule_recalculation(background_tasks, recalc, session_factory)
    return {'success': True}


@router.post('/items/{item_id}/arrivals', status_code=201)
def arrival_create(
    item_id: int,
    payload: ArrivalCreate,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    arrival = add_arrival(db, item_id=item_id, arrival_date=payload.arrival_date, quantity=payload.quantity)
    db.commit()
    return {'success': True, 'data': serialize_arrival(arrival)}


@router.put('/arrivals/{arrival_id}')
def arrival_update(
    arrival_id: int,
    payload: ArrivalUpdate,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    arrival = update_arrival(db, arrival_id=arrival_id, arrival_date=payload.arrival_date, quantity=payload.quantity)
    db.commit()
    return {'success': True, 'data': serialize_arrival(arrival)}


@router.delete('/arrivals/{arrival_id}')
def arrival_delete(
    arrival_id: int,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    delete_arrival(db, arrival_id=arrival_id)
    db.commit()
    return {'success': True}
