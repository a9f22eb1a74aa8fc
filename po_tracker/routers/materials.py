from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from po_tracker.auth import Principal, get_current_principal
from po_tracker.db import get_db
from po_tracker.schemas import InventoryTransactionCreate, MaterialCreate, MaterialUpdate
from po_tracker.services.material_service import (
    apply_transaction,
    create_material,
    delete_material,
    get_material,
    get_stock_reconciliation,
    list_materials,
    list_transactions,
    serialize_material,
    serialize_transaction,
    update_material,
)

router = APIRouter(prefix='/api/materials', tags=['materials'])


@router.get('')
def materials_index(
    search: str | None = None,
    category: str | None = None,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    materials = list_materials(db, search=search, category=category)
    return {'success': True, 'data': [serialize_material(material) for material in materials]}


@router.post('', status_code=201)
def material_create(
    payload: MaterialCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    material = create_material(
        db,
        values=payload.model_dump(exclude={'initial_stock'}),
        initial_stock=payload.initial_stock,
        created_by=principal.username,
    )
    db.commit()
    return {'success': True, 'data': serialize_material(material)}


@router.get('/{material_id}')
def material_detail(
    material_id: int,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    return {'success': True, 'data': serialize_material(get_material(db, material_id=material_id))}


@router.put('/{material_id}')
def material_update(
    material_id: int,
    payload: MaterialUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    material = update_material(
        db,
        material_id=material_id,
        values=payload.model_dump(exclude_unset=True),
        updated_by=principal.username,
    )
    db.commit()
    return {'success': True, 'data': serialize_material(material)}


@router.delete('/{material_id}')
def material_delete(
    material_id: int,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    delete_material(db, material_id=material_id)
    db.commit()
    return {'success': True}


@router.get('/{material_id}/transactions')
def material_transactions_index(
    material_id: int,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    transactions = list_transactions(db, material_id=material_id)
    return {'success': True, 'data': [serialize_transaction(transaction) for transaction in transactions]}


@router.post('/{material_id}/transactions', status_code=201)
def material_transaction_create(
    material_id: int,
    payload: InventoryTransactionCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    transaction = apply_transaction(db, material_id=material_id, created_by=principal.username, **payload.model_dump())
    db.commit()
    return {'success': True, 'data': serialize_transaction(transaction)}


@router.get('/{material_id}/reconciliation')
def material_reconciliation(
    material_id: int,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    check = get_stock_reconciliation(db, material_id=material_id)
    return {
        'success': True,
        'data': {
            'material_id': check.material_id,
            'cached_stock': check.cached_stock,
            'ledger_stock': check.ledger_stock,
            'consistent': check.consistent,
        },
    }
