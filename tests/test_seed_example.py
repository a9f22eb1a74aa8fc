from __future__ import annotations

import unittest
from decimal import Decimal

from db_helpers import make_session_factory
from po_tracker.models import Material, PackingList, PurchaseOrder
from po_tracker.seed_example import seed


class SeedExampleTests(unittest.TestCase):
    def test_seed_builds_a_consistent_demo_dataset(self) -> None:
        session_factory = make_session_factory()
        seed(session_factory)
        # Seeding twice must not duplicate anything.
        seed(session_factory)

        with session_factory() as db:
            (order,) = db.query(PurchaseOrder).all()
            self.assertEqual(order.po_number, 'PO-001')
            self.assertEqual(order.expected_final_unit_price, Decimal('14.3250'))
            self.assertEqual(order.advance_payment_amount, Decimal('300.00'))
            self.assertEqual(db.query(PackingList).count(), 1)
            (material,) = db.query(Material).all()
            self.assertEqual(material.current_stock, 400)


if __name__ == '__main__':
    unittest.main()
