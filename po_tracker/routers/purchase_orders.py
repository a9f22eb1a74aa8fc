from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session, sessionmaker

from po_tracker.auth import Capability, Principal, get_current_principal, has_capability
from po_tracker.db import get_db, get_session_factory
from po_tracker.dependencies import get_recalculation_queue, schedule_recalculation
from po_tracker.models import DeliveryStatus
from po_tracker.schemas import (
    CostItemsSave,
    FactoryShipmentCreate,
    FactoryShipmentUpdate,
    PurchaseOrderCreate,
    PurchaseOrderUpdate,
    ReorderRequest,
)
from po_tracker.services.purchase_order_service import (
    add_factory_shipment,
    create_purchase_order,
    delete_factory_shipment,
    delete_purchase_order,
    get_purchase_order_detail,
    list_cost_items,
    list_factory_shipments,
    list_purchase_orders,
    reorder_purchase_order,
    save_cost_items,
    serialize_cost_item,
    serialize_factory_shipment,
    serialize_purchase_order,
    update_factory_shipment,
    update_purchase_order,
)
from po_tracker.services.reconciliation_service import RecalculationQueue
from po_tracker.services.summary_service import purchase_order_summary

router = APIRouter(prefix='/api/purchase-orders', tags=['purchase-orders'])


@router.get('')
def purchase_orders_index(
    search: str | None = None,
    delivery_status: DeliveryStatus | None = None,
    limit: int = 100,
    offset: int = 0,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    rows = list_purchase_orders(db, search=search, delivery_status=delivery_status, limit=limit, offset=offset)
    return {'success': True, 'data': rows}


@router.post('', status_code=201)
def purchase_order_create(
    payload: PurchaseOrderCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    recalc: RecalculationQueue = Depends(get_recalculation_queue),
    principal: Principal = Depends(get_current_principal),
):
    purchase_order = create_purchase_order(
        db,
        values=payload.model_dump(exclude_none=True),
        created_by=principal.username,
        recalc=recalc,
    )
    db.commit()
    schedule_recalculation(background_tasks, recalc, session_factory)
    return {'success': True, 'data': serialize_purchase_order(purchase_order)}


@router.get('/{purchase_order_id}')
def purchase_order_detail(
    purchase_order_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return {
        'success': True,
        'data': get_purchase_order_detail(db, purchase_order_id=purchase_order_id, principal=principal),
    }


@router.get('/{purchase_order_id}/summary')
def purchase_order_summary_view(
    purchase_order_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    summary = purchase_order_summary(
        db,
        purchase_order_id=purchase_order_id,
        include_admin_costs=has_capability(principal, Capability.MANAGE_ADMIN_COST_ITEMS),
    )
    return {'success': True, 'data': summary}


@router.put('/{purchase_order_id}')
def purchase_order_update(
    purchase_order_id: int,
    payload: PurchaseOrderUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    recalc: RecalculationQueue = Depends(get_recalculation_queue),
    principal: Principal = Depends(get_current_principal),
):
    purchase_order = update_purchase_order(
        db,
        purchase_order_id=purchase_order_id,
        values=payload.model_dump(exclude_unset=True),
        principal=principal,
        recalc=recalc,
    )
    db.commit()
    schedule_recalculation(background_tasks, recalc, session_factory)
    return {'success': True, 'data': serialize_purchase_order(purchase_order)}


@router.delete('/{purchase_order_id}')
def purchase_order_delete(
    purchase_order_id: int,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    delete_purchase_order(db, purchase_order_id=purchase_order_id)
    db.commit()
    return {'success': True}


@router.post('/{purchase_order_id}/reorder', status_code=201)
def purchase_order_reorder(
    purchase_order_id: int,
    payload: ReorderRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    recalc: RecalculationQueue = Depends(get_recalculation_queue),
    principal: Principal = Depends(get_current_principal),
):
    purchase_order = reorder_purchase_order(
        db,
        source_purchase_order_id=purchase_order_id,
        quantity=payload.quantity,
        unit_price=payload.unit_price,
        order_date=payload.order_date,
        estimated_shipment_date=payload.estimated_shipment_date,
        created_by=principal.username,
        recalc=recalc,
    )
    db.commit()
    schedule_recalculation(background_tasks, recalc, session_factory)
    return {'success': True, 'data': serialize_purchase_order(purchase_order)}


@router.get('/{purchase_order_id}/factory-shipments')
def factory_shipments_index(
    purchase_order_id: int,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    entries = list_factory_shipments(db, purchase_order_id=purchase_order_id)
    return {'success': True, 'data': [serialize_factory_shipment(entry) for entry in entries]}


@router.post('/{purchase_order_id}/factory-shipments', status_code=201)
def factory_shipment_create(
    purchase_order_id: int,
    payload: FactoryShipmentCreate,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    entry = add_factory_shipment(db, purchase_order_id=purchase_order_id, **payload.model_dump())
    db.commit()
    return {'success': True, 'data': serialize_factory_shipment(entry)}


@router.put('/factory-shipments/{shipment_id}')
def factory_shipment_update(
    shipment_id: int,
    payload: FactoryShipmentUpdate,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    entry = update_factory_shipment(db, shipment_id=shipment_id, values=payload.model_dump(exclude_unset=True))
    db.commit()
    return {'success': True, 'data': serialize_factory_shipment(entry)}


@router.delete('/factory-shipments/{shipment_id}')
def factory_shipment_delete(
    shipment_id: int,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    delete_factory_shipment(db, shipment_id=shipment_id)
    db.commit()
    return {'success': True}


@router.get('/{purchase_order_id}/cost-items')
def cost_items_index(
    purchase_order_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    items = list_cost_items(db, purchase_order_id=purchase_order_id, principal=principal)
    return {'success': True, 'data': [serialize_cost_item(item) for item in items]}


@router.put('/{purchase_order_id}/cost-items')
def cost_items_save(
    purchase_order_id: int,
    payload: CostItemsSave,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    recalc: RecalculationQueue = Depends(get_recalculation_queue),
    principal: Principal = Depends(get_current_principal),
):
    items = save_cost_items(
        db,
        purchase_order_id=purchase_order_id,
        items=[item.model_dump() for item in payload.items],
        principal=principal,
        recalc=recalc,
    )
    data = [serialize_cost_item(item) for item in items]
    db.commit()
    schedule_recalculation(background_tasks, recalc, session_factory)
    return {'success': True, 'data': data}
