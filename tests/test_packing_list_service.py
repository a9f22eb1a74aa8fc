from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from db_helpers import make_session_factory
from po_tracker.models import FactoryShipment, PackingList, PackingListItem, PurchaseOrder
from po_tracker.services.errors import ConflictError, NotFoundError, ValidationError
from po_tracker.services.packing_list_service import (
    add_arrival,
    calculate_weight,
    create_item,
    create_packing_list,
    delete_item,
    delete_packing_list,
    get_packing_list_detail,
    list_packing_lists,
    update_item,
    update_packing_list,
    update_wk_payment_date_by_code,
)
from po_tracker.services.reconciliation_service import RecalculationQueue


class CalculateWeightTests(unittest.TestCase):
    def test_ratio_is_a_percent_surcharge(self) -> None:
        self.assertEqual(calculate_weight(Decimal('120'), Decimal('10')), Decimal('132.00'))
        self.assertEqual(calculate_weight(Decimal('33.33'), Decimal('15')), Decimal('38.33'))

    def test_missing_values(self) -> None:
        self.assertIsNone(calculate_weight(None, Decimal('10')))
        self.assertEqual(calculate_weight(Decimal('50'), None), Decimal('50.00'))


class PackingListServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.order = PurchaseOrder(po_number='PO-001', product_name='Keyring', quantity=100)
        self.other = PurchaseOrder(po_number='PO-002', product_name='Badge', quantity=40)
        self.db.add_all([self.order, self.other])
        self.db.flush()
        self.packing_list = create_packing_list(
            self.db,
            values={
                'code': ' PL-7 ',
                'shipment_date': date(2026, 3, 1),
                'actual_weight': Decimal('120'),
                'weight_ratio': Decimal('10'),
                'shipping_cost': Decimal('1000'),
            },
            created_by='clerk',
        )

    def tearDown(self) -> None:
        self.db.close()

    def _item(self, purchase_order_id: int | None, quantity: int, recalc: RecalculationQueue | None = None) -> PackingListItem:
        return create_item(
            self.db,
            packing_list_id=self.packing_list.id,
            values={'purchase_order_id': purchase_order_id, 'product_name': 'Goods', 'total_quantity': quantity},
            recalc=recalc or RecalculationQueue(),
        )

    def test_created_list_is_normalized(self) -> None:
        self.assertEqual(self.packing_list.code, 'PL-7')
        self.assertEqual(self.packing_list.calculated_weight, Decimal('132.00'))

    def test_code_and_date_must_be_unique(self) -> None:
        with self.assertRaises(ConflictError):
            create_packing_list(self.db, values={'code': 'PL-7', 'shipment_date': date(2026, 3, 1)}, created_by='clerk')
        second = create_packing_list(self.db, values={'code': 'PL-7', 'shipment_date': date(2026, 3, 8)}, created_by='clerk')
        with self.assertRaises(ConflictError):
            update_packing_list(
                self.db,
                packing_list_id=second.id,
                values={'shipment_date': date(2026, 3, 1)},
                updated_by='clerk',
                recalc=RecalculationQueue(),
            )

    def test_required_and_negative_values(self) -> None:
        with self.assertRaises(ValidationError):
            create_packing_list(self.db, values={'code': '', 'shipment_date': date(2026, 3, 1)}, created_by='clerk')
        with self.assertRaises(ValidationError):
            create_packing_list(
                self.db,
                values={'code': 'PL-8', 'shipment_date': date(2026, 3, 1), 'shipping_cost': Decimal('-1')},
                created_by='clerk',
            )

    def test_shipping_cost_change_enqueues_orders_on_the_list(self) -> None:
        self._item(self.order.id, 100)
        self._item(None, 400)
        recalc = RecalculationQueue()
        update_packing_list(
            self.db,
            packing_list_id=self.packing_list.id,
            values={'shipping_cost': Decimal('1500')},
            updated_by='clerk',
            recalc=recalc,
        )
        self.assertEqual(recalc.pending, [self.order.id])

        untouched = RecalculationQueue()
        update_packing_list(
            self.db,
            packing_list_id=self.packing_list.id,
            values={'logistics_company': 'Sea Line'},
            updated_by='clerk',
            recalc=untouched,
        )
        self.assertEqual(len(untouched), 0)

    def test_weight_is_recalculated_on_update(self) -> None:
        updated = update_packing_list(
            self.db,
            packing_list_id=self.packing_list.id,
            values={'weight_ratio': Decimal('20')},
            updated_by='clerk',
            recalc=RecalculationQueue(),
        )
        self.assertEqual(updated.calculated_weight, Decimal('144.00'))

    def test_item_defaults_to_order_product_name(self) -> None:
        item = create_item(
            self.db,
            packing_list_id=self.packing_list.id,
            values={'purchase_order_id': self.order.id, 'total_quantity': 10},
            recalc=RecalculationQueue(),
        )
        self.assertEqual(item.product_name, 'Keyring')
        with self.assertRaises(ValidationError):
            create_item(
                self.db,
                packing_list_id=self.packing_list.id,
                values={'total_quantity': 10},
                recalc=RecalculationQueue(),
            )

    def test_item_for_unknown_order_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            self._item(999, 10)

    def test_factory_to_warehouse_item_records_factory_shipment(self) -> None:
        create_item(
            self.db,
            packing_list_id=self.packing_list.id,
            values={'purchase_order_id': self.order.id, 'total_quantity': 60},
            is_factory_to_warehouse=True,
            recalc=RecalculationQueue(),
        )
        shipment = self.db.query(FactoryShipment).one()
        self.assertEqual(shipment.purchase_order_id, self.order.id)
        self.assertEqual(shipment.quantity, 60)
        self.assertEqual(shipment.tracking_number, 'PL-7')
        self.assertEqual(shipment.shipment_date, date(2026, 3, 1))
        self.assertEqual(shipment.receive_date, date(2026, 3, 1))

    def test_factory_to_warehouse_item_needs_an_order(self) -> None:
        with self.assertRaises(ValidationError):
            create_item(
                self.db,
                packing_list_id=self.packing_list.id,
                values={'product_name': 'Loose stock', 'total_quantity': 5},
                is_factory_to_warehouse=True,
                recalc=RecalculationQueue(),
            )

    def test_over_shipment_is_logged_and_accepted(self) -> None:
        self._item(self.order.id, 80)
        with self.assertLogs('po_tracker.services.packing_list_service', level='WARNING') as captured:
            item = self._item(self.order.id, 30)
        self.assertIsNotNone(item.id)
        self.assertIn('PO-001 over-shipped: 110 packed of 100 ordered', captured.output[0])

    def test_moving_an_item_enqueues_both_orders(self) -> None:
        item = self._item(self.order.id, 20)
        self._item(None, 80)
        recalc = RecalculationQueue()
        update_item(self.db, item_id=item.id, values={'purchase_order_id': self.other.id}, recalc=recalc)
        self.assertEqual(recalc.pending, [self.order.id, self.other.id])

    def test_item_changes_reach_every_order_on_the_list(self) -> None:
        first = self._item(self.order.id, 20)
        self._item(self.other.id, 20)
        recalc = RecalculationQueue()
        update_item(self.db, item_id=first.id, values={'total_quantity': 30}, recalc=recalc)
        self.assertEqual(sorted(recalc.pending), sorted([self.order.id, self.other.id]))

        recalc = RecalculationQueue()
        delete_item(self.db, item_id=first.id, recalc=recalc)
        self.assertEqual(sorted(recalc.pending), sorted([self.order.id, self.other.id]))

    def test_deleting_a_list_enqueues_its_orders(self) -> None:
        self._item(self.order.id, 20)
        self._item(self.other.id, 20)
        recalc = RecalculationQueue()
        delete_packing_list(self.db, packing_list_id=self.packing_list.id, recalc=recalc)
        self.assertEqual(sorted(recalc.pending), sorted([self.order.id, self.other.id]))
        self.assertIsNone(self.db.get(PackingList, self.packing_list.id))

    def test_detail_allocates_freight_per_item(self) -> None:
        item = self._item(self.order.id, 100)
        self._item(None, 400)
        add_arrival(self.db, item_id=item.id, arrival_date=date(2026, 3, 20), quantity=30)

        detail = get_packing_list_detail(self.db, packing_list_id=self.packing_list.id)
        first, second = detail['items']
        self.assertEqual(first['po_number'], 'PO-001')
        self.assertEqual(first['allocated_freight'], Decimal('200.00'))
        self.assertEqual(first['arrived_quantity'], 30)
        self.assertEqual(first['in_transit_quantity'], 70)
        self.assertIsNone(second['po_number'])
        self.assertEqual(second['allocated_freight'], Decimal('800.00'))
        self.assertEqual(detail['total_quantity'], 500)

        rows = list_packing_lists(self.db)
        self.assertEqual((rows[0]['item_count'], rows[0]['total_quantity']), (2, 500))

    def test_arrival_quantity_must_be_positive(self) -> None:
        item = self._item(self.order.id, 10)
        with self.assertRaises(ValidationError):
            add_arrival(self.db, item_id=item.id, arrival_date=date(2026, 3, 20), quantity=0)

    def test_freight_payment_date_is_written_to_every_list_with_the_code(self) -> None:
        create_packing_list(self.db, values={'code': 'PL-7', 'shipment_date': date(2026, 3, 9)}, created_by='clerk')
        create_packing_list(self.db, values={'code': 'PL-9', 'shipment_date': date(2026, 3, 9)}, created_by='clerk')

        updated = update_wk_payment_date_by_code(self.db, code='PL-7', payment_date=date(2026, 4, 1))

        self.assertEqual(updated, 2)
        self.db.expire_all()
        dates = {(pl.code, pl.wk_payment_date) for pl in self.db.query(PackingList)}
        self.assertEqual(
            dates,
            {('PL-7', date(2026, 4, 1)), ('PL-9', None)},
        )


if __name__ == '__main__':
    unittest.main()
