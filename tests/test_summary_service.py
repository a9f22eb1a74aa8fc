from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from db_helpers import make_session_factory
from po_tracker.models import CostItem, CostItemType, PackingList, PackingListItem, PaymentSourceType, PaymentType, PurchaseOrder
from po_tracker.services.errors import NotFoundError
from po_tracker.services.payment_request_service import create_payment_request
from po_tracker.services.summary_service import packing_list_code_summary, purchase_order_summary


class SummaryServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.order = PurchaseOrder(
            po_number='PO-001',
            product_name='Keyring',
            quantity=100,
            unit_price=Decimal('10.00'),
            back_margin=Decimal('2.00'),
            commission_rate=Decimal('5.00'),
            advance_payment_rate=Decimal('30.00'),
            order_date=date(2026, 2, 1),
        )
        self.db.add(self.order)
        self.db.flush()
        self.db.add(
            CostItem(
                purchase_order_id=self.order.id,
                item_type=CostItemType.LABOR,
                name='Tagging',
                cost=Decimal('20.00'),
                is_admin_only=True,
            )
        )
        packing_list = PackingList(code='PL-1', shipment_date=date(2026, 3, 1), shipping_cost=Decimal('1000'))
        self.db.add(packing_list)
        self.db.flush()
        self.db.add_all(
            [
                PackingListItem(packing_list_id=packing_list.id, purchase_order_id=self.order.id, product_name='Keyring', total_quantity=100),
                PackingListItem(packing_list_id=packing_list.id, product_name='Transfer stock', total_quantity=400),
            ]
        )
        self.db.flush()

    def tearDown(self) -> None:
        self.db.close()

    def test_order_summary_combines_quantities_costs_and_payments(self) -> None:
        request = create_payment_request(
            self.db,
            source_type=PaymentSourceType.PURCHASE_ORDER,
            source_id=str(self.order.id),
            payment_type=PaymentType.ADVANCE,
            request_date=date(2026, 2, 2),
            requested_by='clerk',
        )

        summary = purchase_order_summary(self.db, purchase_order_id=self.order.id)

        self.assertEqual(summary['quantities']['packing_shipped_quantity'], 100)
        self.assertEqual(summary['costs']['prorated_freight'], Decimal('200.00'))
        # 1260 + 20 admin labor + 200 freight over 100 units
        self.assertEqual(summary['costs']['expected_final_unit_price'], Decimal('14.8000'))
        self.assertNotIn('admin_only_cost_total', summary['costs'])
        self.assertEqual(summary['payments']['status'], 'UNPAID')
        self.assertEqual(summary['payments']['open_requests'], {'ADVANCE': request.request_number, 'BALANCE': None})

        full = purchase_order_summary(self.db, purchase_order_id=self.order.id, include_admin_costs=True)
        self.assertEqual(full['costs']['admin_only_cost_total'], Decimal('20.00'))

    def test_code_summary_totals_every_list_with_the_code(self) -> None:
        self.db.add(PackingList(code='PL-1', shipment_date=date(2026, 3, 9), shipping_cost=Decimal('500')))
        self.db.flush()

        summary = packing_list_code_summary(self.db, code='PL-1')

        self.assertEqual(summary['shipment_dates'], [date(2026, 3, 1), date(2026, 3, 9)])
        self.assertEqual(summary['total_shipping_cost'], Decimal('1500'))
        self.assertIsNone(summary['wk_payment_date'])
        self.assertIsNone(summary['open_shipping_request'])

    def test_unknown_sources_are_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            purchase_order_summary(self.db, purchase_order_id=999)
        with self.assertRaises(NotFoundError):
            packing_list_code_summary(self.db, code='PL-NONE')


if __name__ == '__main__':
    unittest.main()
