from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from db_helpers import make_session_factory
from po_tracker.auth import Capability, Principal, Role
from po_tracker.models import (
    CostItem,
    CostItemType,
    OrderStatus,
    PackingList,
    PackingListItem,
    PaymentRequest,
    PaymentRequestStatus,
    PaymentSourceType,
    PaymentStatus,
    PaymentType,
    PurchaseOrder,
)
from po_tracker.services.errors import AuthorizationError, NotFoundError, ValidationError
from po_tracker.services.purchase_order_service import (
    add_factory_shipment,
    create_purchase_order,
    delete_purchase_order,
    derive_payment_status,
    get_purchase_order_detail,
    list_cost_items,
    list_purchase_orders,
    reorder_purchase_order,
    save_cost_items,
    update_factory_shipment,
    update_purchase_order,
)
from po_tracker.services.reconciliation_service import RecalculationQueue

SUPER_ADMIN = Principal(id='1', username='owner', role=Role.SUPER_ADMIN)
ADMIN = Principal(id='2', username='manager', role=Role.ADMIN)
STAFF = Principal(id='3', username='clerk', role=Role.STAFF)

ORDER_VALUES = {
    'product_name': 'Keyring',
    'supplier_name': 'Demo Factory',
    'quantity': 100,
    'unit_price': Decimal('10.00'),
    'back_margin': Decimal('2.00'),
    'commission_rate': Decimal('5.00'),
    'advance_payment_rate': Decimal('30.00'),
    'order_date': date(2026, 2, 1),
}


class PurchaseOrderServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.recalc = RecalculationQueue()
        self.order = create_purchase_order(self.db, values=dict(ORDER_VALUES), created_by='owner', recalc=self.recalc)

    def tearDown(self) -> None:
        self.db.close()

    def test_numbers_are_sequential(self) -> None:
        second = create_purchase_order(self.db, values={'product_name': 'Badge'}, created_by='owner', recalc=self.recalc)
        self.assertEqual(self.order.po_number, 'PO-001')
        self.assertEqual(second.po_number, 'PO-002')
        self.assertEqual(self.recalc.pending, [self.order.id, second.id])

    def test_product_name_is_required(self) -> None:
        with self.assertRaises(ValidationError):
            create_purchase_order(self.db, values={'product_name': '  '}, created_by='owner', recalc=self.recalc)
        with self.assertRaises(ValidationError):
            create_purchase_order(self.db, values={'quantity': 5}, created_by='owner', recalc=self.recalc)

    def test_cost_fields_need_cost_capability(self) -> None:
        with self.assertRaises(AuthorizationError):
            update_purchase_order(
                self.db,
                purchase_order_id=self.order.id,
                values={'unit_price': Decimal('11.00')},
                principal=STAFF,
                recalc=self.recalc,
            )
        granted = Principal(id='4', username='buyer', role=Role.STAFF, grants=frozenset({Capability.EDIT_COST_FIELDS}))
        updated = update_purchase_order(
            self.db,
            purchase_order_id=self.order.id,
            values={'unit_price': Decimal('11.00')},
            principal=granted,
            recalc=self.recalc,
        )
        self.assertEqual(updated.unit_price, Decimal('11.00'))
        self.assertEqual(updated.updated_by, 'buyer')

    def test_staff_can_edit_non_cost_fields(self) -> None:
        recalc = RecalculationQueue()
        updated = update_purchase_order(
            self.db,
            purchase_order_id=self.order.id,
            values={'supplier_name': 'Other Factory', 'work_start_date': date(2026, 2, 10)},
            principal=STAFF,
            recalc=recalc,
        )
        self.assertEqual(updated.supplier_name, 'Other Factory')
        self.assertEqual(len(recalc), 0)

    def test_order_date_change_enqueues_recalculation(self) -> None:
        recalc = RecalculationQueue()
        update_purchase_order(
            self.db,
            purchase_order_id=self.order.id,
            values={'order_date': date(2025, 6, 1)},
            principal=STAFF,
            recalc=recalc,
        )
        self.assertEqual(recalc.pending, [self.order.id])

    def test_derived_fields_are_rejected(self) -> None:
        for field in ('expected_final_unit_price', 'order_unit_price', 'payment_status'):
            with self.assertRaises(ValidationError):
                update_purchase_order(
                    self.db,
                    purchase_order_id=self.order.id,
                    values={field: Decimal('1')},
                    principal=SUPER_ADMIN,
                    recalc=self.recalc,
                )

    def test_confirmation_flag_syncs_order_status(self) -> None:
        update_purchase_order(
            self.db, purchase_order_id=self.order.id, values={'is_confirmed': True}, principal=STAFF, recalc=self.recalc
        )
        self.assertEqual(self.order.order_status, OrderStatus.CONFIRMED)

        update_purchase_order(
            self.db,
            purchase_order_id=self.order.id,
            values={'order_status': OrderStatus.CANCELLED},
            principal=STAFF,
            recalc=self.recalc,
        )
        update_purchase_order(
            self.db, purchase_order_id=self.order.id, values={'is_confirmed': False}, principal=STAFF, recalc=self.recalc
        )
        self.assertEqual(self.order.order_status, OrderStatus.CANCELLED)

    def test_payment_dates_drive_payment_status(self) -> None:
        self.assertEqual(derive_payment_status(None, None), PaymentStatus.UNPAID)
        update_purchase_order(
            self.db,
            purchase_order_id=self.order.id,
            values={'advance_payment_date': date(2026, 2, 3)},
            principal=STAFF,
            recalc=self.recalc,
        )
        self.assertEqual(self.order.payment_status, PaymentStatus.ADVANCE_PAID)

    def test_unknown_order_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            update_purchase_order(self.db, purchase_order_id=999, values={}, principal=SUPER_ADMIN, recalc=self.recalc)

    def test_reorder_copies_terms_and_cost_items(self) -> None:
        save_cost_items(
            self.db,
            purchase_order_id=self.order.id,
            items=[
                {'item_type': 'OPTION', 'name': 'Gift box', 'unit_price': '0.50', 'quantity': 100},
                {'item_type': 'LABOR', 'name': 'Tagging', 'unit_price': '0.20', 'quantity': 100, 'is_admin_only': True},
            ],
            principal=SUPER_ADMIN,
            recalc=self.recalc,
        )

        copy = reorder_purchase_order(
            self.db,
            source_purchase_order_id=self.order.id,
            quantity=40,
            created_by='owner',
            recalc=self.recalc,
        )

        self.assertEqual(copy.po_number, 'PO-002')
        self.assertEqual(copy.quantity, 40)
        self.assertEqual(copy.unit_price, Decimal('10.00'))
        self.assertEqual(copy.commission_rate, Decimal('5.00'))
        items = list_cost_items(self.db, purchase_order_id=copy.id, principal=SUPER_ADMIN)
        self.assertEqual([(item.name, item.is_admin_only) for item in items], [('Gift box', False), ('Tagging', True)])

    def test_reorder_needs_positive_quantity(self) -> None:
        with self.assertRaises(ValidationError):
            reorder_purchase_order(
                self.db, source_purchase_order_id=self.order.id, quantity=0, created_by='owner', recalc=self.recalc
            )

    def test_factory_shipments_need_positive_quantity(self) -> None:
        with self.assertRaises(ValidationError):
            add_factory_shipment(self.db, purchase_order_id=self.order.id, quantity=0)
        entry = add_factory_shipment(self.db, purchase_order_id=self.order.id, quantity=30, tracking_number=' TRK-1 ')
        self.assertEqual(entry.tracking_number, 'TRK-1')
        with self.assertRaises(ValidationError):
            update_factory_shipment(self.db, shipment_id=entry.id, values={'quantity': -5})

    def test_delete_cascades_and_detaches_packing_list_items(self) -> None:
        save_cost_items(
            self.db,
            purchase_order_id=self.order.id,
            items=[{'item_type': 'OPTION', 'name': 'Gift box', 'unit_price': '0.50', 'quantity': 100}],
            principal=SUPER_ADMIN,
            recalc=self.recalc,
        )
        packing_list = PackingList(code='PL-1', shipment_date=date(2026, 3, 1))
        self.db.add(packing_list)
        self.db.flush()
        item = PackingListItem(
            packing_list_id=packing_list.id, purchase_order_id=self.order.id, product_name='Keyring', total_quantity=50
        )
        self.db.add(item)
        self.db.add_all(
            [
                PaymentRequest(
                    request_number='PR-2026-001',
                    source_type=PaymentSourceType.PURCHASE_ORDER,
                    source_id=str(self.order.id),
                    payment_type=PaymentType.ADVANCE,
                    amount=Decimal('300.00'),
                    request_date=date(2026, 2, 2),
                ),
                PaymentRequest(
                    request_number='PR-2026-002',
                    source_type=PaymentSourceType.PURCHASE_ORDER,
                    source_id=str(self.order.id),
                    payment_type=PaymentType.BALANCE,
                    amount=Decimal('960.00'),
                    status=PaymentRequestStatus.COMPLETED,
                    request_date=date(2026, 2, 2),
                ),
            ]
        )
        self.db.flush()

        delete_purchase_order(self.db, purchase_order_id=self.order.id)
        self.db.expire_all()

        self.assertIsNone(self.db.get(PurchaseOrder, self.order.id))
        self.assertEqual(self.db.query(CostItem).count(), 0)
        self.assertIsNone(self.db.get(PackingListItem, item.id).purchase_order_id)
        remaining = self.db.query(PaymentRequest).all()
        self.assertEqual([request.request_number for request in remaining], ['PR-2026-002'])


class CostItemTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.recalc = RecalculationQueue()
        self.order = create_purchase_order(self.db, values=dict(ORDER_VALUES), created_by='owner', recalc=self.recalc)
        save_cost_items(
            self.db,
            purchase_order_id=self.order.id,
            items=[
                {'item_type': 'OPTION', 'name': 'Gift box', 'unit_price': '0.50', 'quantity': 100},
                {'item_type': 'LABOR', 'name': 'Tagging', 'unit_price': '0.20', 'quantity': 100, 'is_admin_only': True},
            ],
            principal=SUPER_ADMIN,
            recalc=self.recalc,
        )

    def tearDown(self) -> None:
        self.db.close()

    def _names(self, principal: Principal) -> list[str]:
        return [item.name for item in list_cost_items(self.db, purchase_order_id=self.order.id, principal=principal)]

    def test_cost_is_unit_price_times_quantity(self) -> None:
        items = list_cost_items(self.db, purchase_order_id=self.order.id, principal=SUPER_ADMIN)
        self.assertEqual([item.cost for item in items], [Decimal('50.00'), Decimal('20.00')])
        self.assertEqual(items[0].item_type, CostItemType.OPTION)

    def test_admin_only_items_are_hidden_without_capability(self) -> None:
        self.assertEqual(self._names(SUPER_ADMIN), ['Gift box', 'Tagging'])
        self.assertEqual(self._names(ADMIN), ['Gift box'])

    def test_cost_editor_keeps_admin_items(self) -> None:
        editor = Principal(id='5', username='buyer', role=Role.STAFF, grants=frozenset({Capability.EDIT_COST_FIELDS}))
        save_cost_items(
            self.db,
            purchase_order_id=self.order.id,
            items=[{'item_type': 'OPTION', 'name': 'Sticker', 'unit_price': '0.10', 'quantity': 100}],
            principal=editor,
            recalc=self.recalc,
        )
        self.assertEqual(self._names(SUPER_ADMIN), ['Sticker', 'Tagging'])

    def test_admin_items_need_admin_capability(self) -> None:
        editor = Principal(id='5', username='buyer', role=Role.STAFF, grants=frozenset({Capability.EDIT_COST_FIELDS}))
        with self.assertRaises(AuthorizationError):
            save_cost_items(
                self.db,
                purchase_order_id=self.order.id,
                items=[{'item_type': 'LABOR', 'name': 'Secret', 'unit_price': '1', 'quantity': 1, 'is_admin_only': True}],
                principal=editor,
                recalc=self.recalc,
            )

    def test_caller_without_capabilities_changes_nothing(self) -> None:
        recalc = RecalculationQueue()
        with self.assertLogs('po_tracker.services.purchase_order_service', level='INFO'):
            save_cost_items(self.db, purchase_order_id=self.order.id, items=[], principal=STAFF, recalc=recalc)
        self.assertEqual(self._names(SUPER_ADMIN), ['Gift box', 'Tagging'])
        self.assertEqual(len(recalc), 0)

    def test_invalid_items_are_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            save_cost_items(
                self.db,
                purchase_order_id=self.order.id,
                items=[{'item_type': 'FREIGHT', 'name': 'Truck', 'unit_price': '1', 'quantity': 1}],
                principal=SUPER_ADMIN,
                recalc=self.recalc,
            )
        with self.assertRaises(ValidationError):
            save_cost_items(
                self.db,
                purchase_order_id=self.order.id,
                items=[{'item_type': 'OPTION', 'name': '', 'unit_price': '1', 'quantity': 1}],
                principal=SUPER_ADMIN,
                recalc=self.recalc,
            )

    def test_detail_recomputes_and_hides_admin_totals(self) -> None:
        detail = get_purchase_order_detail(self.db, purchase_order_id=self.order.id, principal=ADMIN)
        self.assertNotIn('admin_only_cost_total', detail['cost'])
        self.assertEqual([item['name'] for item in detail['cost_items']], ['Gift box'])
        # 1200 + 70 in items + 5% commission on 1250 eligible
        self.assertEqual(detail['cost']['final_payment_amount'], Decimal('1332.50'))

        full = get_purchase_order_detail(self.db, purchase_order_id=self.order.id, principal=SUPER_ADMIN)
        self.assertEqual(full['cost']['admin_only_cost_total'], Decimal('20.00'))

    def test_list_view_derives_statuses(self) -> None:
        add_factory_shipment(self.db, purchase_order_id=self.order.id, quantity=30)
        rows = list_purchase_orders(self.db, search='keyr')
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]['factory_status'], 'SHIPPING')
        self.assertEqual(rows[0]['unreceived_quantity'], 70)
        self.assertEqual(rows[0]['work_status'], 'WAITING')
        self.assertEqual(list_purchase_orders(self.db, search='nothing-like-this'), [])


if __name__ == '__main__':
    unittest.main()
