from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone

from sqlalchemy import Select, case, func, or_, select
from sqlalchemy.orm import Session

from po_tracker.models import InventoryTransactionType, Material, MaterialInventoryTransaction
from po_tracker.services.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MATERIAL_FIELDS = frozenset(
    {'product_name', 'product_name_chinese', 'category', 'type_count', 'link', 'price', 'purchase_complete'}
)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class StockReconciliation:
    material_id: int
    cached_stock: int
    ledger_stock: int

    @property
    def consistent(self) -> bool:
        return self.cached_stock == self.ledger_stock


def generate_material_code(db: Session) -> str:
    codes = db.execute(select(Material.code).where(Material.code.like('MAT%'))).scalars().all()
    highest = 0
    for code in codes:
        suffix = code[3:]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f'MAT{highest + 1:03d}'


def serialize_material(material: Material) -> dict:
    return {
        'id': material.id,
        'code': material.code,
        'product_name': material.product_name,
        'product_name_chinese': material.product_name_chinese,
        'category': material.category,
        'type_count': material.type_count,
        'link': material.link,
        'price': material.price,
        'purchase_complete': material.purchase_complete,
        'current_stock': material.current_stock,
        'created_by': material.created_by,
        'updated_by': material.updated_by,
        'created_at': material.created_at,
        'updated_at': material.updated_at,
    }


def serialize_transaction(transaction: MaterialInventoryTransaction) -> dict:
    return {
        'id': transaction.id,
        'material_id': transaction.material_id,
        'transaction_date': transaction.transaction_date,
        'transaction_type': transaction.transaction_type.value,
        'quantity': transaction.quantity,
        'related_order': transaction.related_order,
        'notes': transaction.notes,
        'created_by': transaction.created_by,
        'created_at': transaction.created_at,
    }


def get_material(db: Session, *, material_id: int) -> Material:
    material = db.get(Material, material_id)
    if material is None:
        raise NotFoundError('Material not found')
    return material


def list_materials(db: Session, *, search: str | None = None, category: str | None = None) -> list[Material]:
    query = select(Material)
    term = (search or '').strip()
    if term:
        pattern = f'%{term}%'
        query = query.where(
            or_(
                Material.code.ilike(pattern),
                Material.product_name.ilike(pattern),
                Material.product_name_chinese.ilike(pattern),
            )
        )
    if category:
        query = query.where(Material.category == category)
    return db.execute(query.order_by(Material.code.asc())).scalars().all()


def _validate_material_values(values: dict) -> None:
    if 'current_stock' in values:
        raise ValidationError('Stock changes go through inventory transactions')
    unknown = sorted(values.keys() - MATERIAL_FIELDS)
    if unknown:
        raise ValidationError(f'Unknown material fields: {", ".join(unknown)}')
    for key in ('product_name', 'category'):
        if key in values and not (values[key] or '').strip():
            raise ValidationError(f'{key} is required')
    if 'type_count' in values and (values['type_count'] is None or values['type_count'] < 1):
        raise ValidationError('type_count must be at least 1')
    if values.get('price') is not None and values['price'] < 0:
        raise ValidationError('Price cannot be negative')


def create_material(
    db: Session,
    *,
    values: dict,
    initial_stock: int = 0,
    created_by: str | None,
    transaction_date: date | None = None,
) -> Material:
    """Create a material; opening stock is booked as an IN transaction."""
    _validate_material_values(values)
    for key in ('product_name', 'category'):
        if not values.get(key):
            raise ValidationError(f'{key} is required')
    if initial_stock < 0:
        raise ValidationError('Initial stock cannot be negative')

    material = Material(code=generate_material_code(db), current_stock=initial_stock, created_by=created_by, updated_by=created_by)
    for key, value in values.items():
        if value is not None:
            setattr(material, key, value)
    db.add(material)
    db.flush()
    if initial_stock > 0:
        db.add(
            MaterialInventoryTransaction(
                material_id=material.id,
                transaction_date=transaction_date or date.today(),
                transaction_type=InventoryTransactionType.IN,
                quantity=initial_stock,
                notes='Opening stock',
                created_by=created_by,
            )
        )
        db.flush()
    logger.info('Created material %s with opening stock %s', material.code, initial_stock)
    return material


def update_material(db: Session, *, material_id: int, values: dict, updated_by: str | None) -> Material:
    _validate_material_values(values)
    material = get_material(db, material_id=material_id)
    for key, value in values.items():
        setattr(material, key, value)
    material.updated_by = updated_by
    material.updated_at = _now()
    db.flush()
    return material


def delete_material(db: Session, *, material_id: int) -> None:
    material = get_material(db, material_id=material_id)
    db.delete(material)
    db.flush()
    logger.info('Deleted material %s', material.code)


def list_transactions(db: Session, *, material_id: int) -> list[MaterialInventoryTransaction]:
    get_material(db, material_id=material_id)
    return db.execute(
        select(MaterialInventoryTransaction)
        .where(MaterialInventoryTransaction.material_id == material_id)
        .order_by(MaterialInventoryTransaction.transaction_date.desc(), MaterialInventoryTransaction.id.desc())
    ).scalars().all()


def locked_stock_query(material_id: int) -> Select:
    return select(Material.current_stock).where(Material.id == material_id).with_for_update()


def apply_transaction(
    db: Session,
    *,
    material_id: int,
    transaction_type: InventoryTransactionType,
    quantity: int,
    transaction_date: date,
    related_order: str | None = None,
    notes: str | None = None,
    created_by: str | None,
) -> MaterialInventoryTransaction:
    """Apply one stock movement.

    The material row is locked from the stock read until the caller commits,
    so concurrent outbound movements cannot both pass the non-negative check.
    Callers must commit right after this returns and must not have other
    pending work in the session, since that work shares the lock's
    transaction. A movement that would leave negative stock raises
    ``ConflictError`` before anything is written; the caller's rollback
    releases the lock.
    """
    if quantity is None or quantity <= 0:
        raise ValidationError('Quantity must be positive')
    if transaction_date is None:
        raise ValidationError('Transaction date is required')
    transaction_type = InventoryTransactionType(transaction_type)

    current_stock = db.execute(locked_stock_query(material_id)).scalar_one_or_none()
    if current_stock is None:
        raise NotFoundError('Material not found')

    delta = quantity if transaction_type == InventoryTransactionType.IN else -quantity
    new_stock = current_stock + delta
    if new_stock < 0:
        logger.info(
            'Rejected %s of %s for material %s: only %s in stock',
            transaction_type.value,
            quantity,
            material_id,
            current_stock,
        )
        raise ConflictError(f'Insufficient stock: {current_stock} available, {quantity} requested')

    transaction = MaterialInventoryTransaction(
        material_id=material_id,
        transaction_date=transaction_date,
        transaction_type=transaction_type,
        quantity=quantity,
        related_order=related_order,
        notes=notes,
        created_by=created_by,
    )
    db.add(transaction)
    material = db.get(Material, material_id)
    material.current_stock = new_stock
    material.updated_at = _now()
    db.flush()
    logger.info('Material %s stock %s -> %s', material.code, current_stock, new_stock)
    return transaction


def ledger_stock(db: Session, *, material_id: int) -> int:
    signed = case(
        (MaterialInventoryTransaction.transaction_type == InventoryTransactionType.IN, MaterialInventoryTransaction.quantity),
        else_=-MaterialInventoryTransaction.quantity,
    )
    total = db.execute(
        select(func.coalesce(func.sum(signed), 0)).where(MaterialInventoryTransaction.material_id == material_id)
    ).scalar_one()
    return int(total or 0)


def get_stock_reconciliation(db: Session, *, material_id: int) -> StockReconciliation:
    material = get_material(db, material_id=material_id)
    return StockReconciliation(
        material_id=material.id,
        cached_stock=material.current_stock,
        ledger_stock=ledger_stock(db, material_id=material.id),
    )
