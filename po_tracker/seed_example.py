from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from po_tracker.db import SessionLocal
from po_tracker.models import (
    CostItem,
    CostItemType,
    FactoryShipment,
    InventoryTransactionType,
    KoreaArrival,
    Material,
    PackingList,
    PackingListItem,
    PurchaseOrder,
)
from po_tracker.services.material_service import apply_transaction, create_material
from po_tracker.services.purchase_order_service import generate_po_number
from po_tracker.services.reconciliation_service import RecalculationQueue


def seed(session_factory: sessionmaker = SessionLocal) -> None:
    queue = RecalculationQueue()
    with session_factory() as db:
        order = db.execute(select(PurchaseOrder).where(PurchaseOrder.product_name == 'Demo Plush Keyring')).scalar_one_or_none()
        if not order:
            order = PurchaseOrder(
                po_number=generate_po_number(db),
                product_name='Demo Plush Keyring',
                supplier_name='Demo Factory',
                quantity=100,
                unit_price=Decimal('10.00'),
                back_margin=Decimal('2.00'),
                commission_rate=Decimal('5.00'),
                advance_payment_rate=Decimal('30.00'),
                order_date=date(2026, 2, 1),
                created_by='seed',
            )
            db.add(order)
            db.flush()
            db.add(
                CostItem(
                    purchase_order_id=order.id,
                    item_type=CostItemType.OPTION,
                    name='Gift box',
                    unit_price=Decimal('0.50'),
                    quantity=100,
                    cost=Decimal('50.00'),
                )
            )
            db.add(
                CostItem(
                    purchase_order_id=order.id,
                    item_type=CostItemType.LABOR,
                    name='Tagging',
                    unit_price=Decimal('0.20'),
                    quantity=100,
                    cost=Decimal('20.00'),
                    is_admin_only=True,
                )
            )
            db.add(FactoryShipment(purchase_order_id=order.id, shipment_date=date(2026, 3, 1), quantity=80))
        queue.enqueue(order.id)

        packing_list = db.execute(select(PackingList).where(PackingList.code == 'DEMO-01')).scalar_one_or_none()
        if not packing_list:
            packing_list = PackingList(
                code='DEMO-01',
                shipment_date=date(2026, 3, 5),
                actual_weight=Decimal('120.00'),
                weight_ratio=Decimal('10.00'),
                calculated_weight=Decimal('132.00'),
                shipping_cost=Decimal('1000.00'),
                created_by='seed',
            )
            db.add(packing_list)
            db.flush()
            item = PackingListItem(
                packing_list_id=packing_list.id,
                purchase_order_id=order.id,
                product_name=order.product_name,
                box_count=5,
                total_quantity=50,
            )
            db.add(item)
            db.add(
                PackingListItem(
                    packing_list_id=packing_list.id,
                    product_name='Warehouse transfer stock',
                    box_count=9,
                    total_quantity=450,
                )
            )
            db.flush()
            db.add(KoreaArrival(packing_list_item_id=item.id, arrival_date=date(2026, 3, 20), quantity=30))
        db.commit()

        material = db.execute(select(Material).where(Material.product_name == 'Demo poly bag')).scalar_one_or_none()
        if not material:
            material = create_material(
                db,
                values={'product_name': 'Demo poly bag', 'category': 'Packaging'},
                initial_stock=500,
                created_by='seed',
            )
            db.commit()
            apply_transaction(
                db,
                material_id=material.id,
                transaction_type=InventoryTransactionType.OUT,
                quantity=100,
                transaction_date=date(2026, 3, 1),
                related_order=order.po_number,
                created_by='seed',
            )
            db.commit()

    queue.drain(session_factory)


if __name__ == '__main__':
    seed()
    print('Seed complete')
