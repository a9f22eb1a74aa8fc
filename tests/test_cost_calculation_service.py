from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from po_tracker.models import CostItemType
from po_tracker.services.cost_calculation_service import (
    CostInput,
    CostItemInput,
    InclusiveCommissionRule,
    LegacyCommissionRule,
    build_commission_rules,
    calculate_costs,
    select_commission_rule,
)
from po_tracker.services.errors import ValidationError

RULES = build_commission_rules(date(2026, 1, 1))
AFTER_CUTOFF = date(2026, 2, 1)
BEFORE_CUTOFF = date(2025, 6, 1)


def _order(**overrides) -> CostInput:
    values = {
        'quantity': 100,
        'unit_price': Decimal('10'),
        'back_margin': Decimal('2'),
        'commission_rate': Decimal('5'),
        'order_date': AFTER_CUTOFF,
    }
    values.update(overrides)
    return CostInput(**values)


class CommissionRuleSelectionTests(unittest.TestCase):
    def test_cutoff_day_uses_inclusive_rule(self) -> None:
        self.assertIsInstance(select_commission_rule(date(2026, 1, 1), RULES), InclusiveCommissionRule)

    def test_day_before_cutoff_uses_legacy_rule(self) -> None:
        self.assertIsInstance(select_commission_rule(date(2025, 12, 31), RULES), LegacyCommissionRule)

    def test_missing_order_date_uses_current_rule(self) -> None:
        self.assertIsInstance(select_commission_rule(None, RULES), InclusiveCommissionRule)

    def test_later_rule_supersedes_earlier_ones(self) -> None:
        third = InclusiveCommissionRule(effective_from=date(2027, 1, 1), name='THIRD')
        rules = RULES + (third,)
        self.assertEqual(select_commission_rule(date(2027, 3, 1), rules).name, 'THIRD')
        self.assertEqual(select_commission_rule(date(2026, 3, 1), rules).name, 'INCLUSIVE')

    def test_no_rule_for_date_is_rejected(self) -> None:
        rules = (InclusiveCommissionRule(effective_from=date(2026, 1, 1)),)
        with self.assertRaises(ValidationError):
            select_commission_rule(date(2025, 1, 1), rules)


class CostCalculationTests(unittest.TestCase):
    def test_inclusive_rule_keeps_commission_separate(self) -> None:
        result = calculate_costs(_order(), rules=RULES)
        self.assertEqual(result.rule_name, 'INCLUSIVE')
        self.assertEqual(result.order_unit_price, Decimal('12.00'))
        self.assertEqual(result.base_cost, Decimal('1200.00'))
        self.assertEqual(result.commission, Decimal('60.00'))
        self.assertEqual(result.final_payment_amount, Decimal('1260.00'))
        self.assertEqual(result.expected_final_unit_price, Decimal('12.6000'))

    def test_legacy_rule_folds_commission_into_base(self) -> None:
        result = calculate_costs(_order(order_date=BEFORE_CUTOFF), rules=RULES)
        self.assertEqual(result.rule_name, 'LEGACY')
        self.assertTrue(result.commission_in_base)
        self.assertEqual(result.base_cost, Decimal('1260.00'))
        self.assertEqual(result.final_payment_amount, Decimal('1260.00'))

    def test_cost_items_only_carry_commission_under_inclusive_rule(self) -> None:
        items = (CostItemInput(item_type=CostItemType.OPTION, cost=Decimal('100')),)

        inclusive = calculate_costs(_order(cost_items=items), rules=RULES)
        self.assertEqual(inclusive.commission, Decimal('65.00'))  # (1200 + 100) * 5%
        self.assertEqual(inclusive.final_payment_amount, Decimal('1365.00'))

        legacy = calculate_costs(_order(order_date=BEFORE_CUTOFF, cost_items=items), rules=RULES)
        self.assertEqual(legacy.commission, Decimal('60.00'))
        self.assertEqual(legacy.final_payment_amount, Decimal('1360.00'))

    def test_admin_only_items_are_paid_but_excluded_from_commission_base(self) -> None:
        items = (
            CostItemInput(item_type=CostItemType.OPTION, cost=Decimal('100')),
            CostItemInput(item_type=CostItemType.LABOR, cost=Decimal('40'), is_admin_only=True),
        )
        result = calculate_costs(_order(cost_items=items), rules=RULES)
        self.assertEqual(result.commission, Decimal('65.00'))
        self.assertEqual(result.eligible_labor_cost, Decimal('0.00'))
        self.assertEqual(result.labor_cost_total, Decimal('40.00'))
        self.assertEqual(result.admin_only_cost_total, Decimal('40.00'))
        self.assertEqual(result.final_payment_amount, Decimal('1405.00'))

    def test_freight_and_prorated_freight(self) -> None:
        result = calculate_costs(
            _order(
                shipping_cost=Decimal('50'),
                warehouse_shipping_cost=Decimal('30'),
                prorated_freight=Decimal('300'),
            ),
            rules=RULES,
        )
        self.assertEqual(result.shipping_cost_total, Decimal('80.00'))
        self.assertEqual(result.final_payment_amount, Decimal('1340.00'))
        self.assertEqual(result.expected_final_unit_price, Decimal('16.4000'))

    def test_zero_quantity_leaves_unit_price_unset(self) -> None:
        result = calculate_costs(_order(quantity=0, shipping_cost=Decimal('25')), rules=RULES)
        self.assertIsNone(result.expected_final_unit_price)
        self.assertEqual(result.final_payment_amount, Decimal('25.00'))

    def test_missing_back_margin_counts_as_zero(self) -> None:
        result = calculate_costs(_order(back_margin=None), rules=RULES)
        self.assertEqual(result.order_unit_price, Decimal('10.00'))
        self.assertEqual(result.final_payment_amount, Decimal('1050.00'))

    def test_advance_and_balance_split(self) -> None:
        result = calculate_costs(_order(advance_payment_rate=Decimal('30')), rules=RULES)
        self.assertEqual(result.advance_payment_amount, Decimal('300.00'))  # unit price only, no margin
        self.assertEqual(result.balance_payment_amount, Decimal('960.00'))

    def test_recomputation_is_stable(self) -> None:
        cost_input = _order(prorated_freight=Decimal('333.33'))
        self.assertEqual(calculate_costs(cost_input, rules=RULES), calculate_costs(cost_input, rules=RULES))

    def test_unit_price_rounds_half_up(self) -> None:
        halfway = calculate_costs(
            _order(quantity=8, unit_price=Decimal('0'), back_margin=None, prorated_freight=Decimal('0.0004')),
            rules=RULES,
        )
        self.assertEqual(halfway.expected_final_unit_price, Decimal('0.0001'))

    def test_invalid_inputs_are_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            calculate_costs(_order(quantity=-1), rules=RULES)
        with self.assertRaises(ValidationError):
            calculate_costs(_order(back_margin=Decimal('-20')), rules=RULES)
        with self.assertRaises(ValidationError):
            calculate_costs(_order(advance_payment_rate=Decimal('120')), rules=RULES)
        with self.assertRaises(ValidationError):
            calculate_costs(
                _order(cost_items=(CostItemInput(item_type=CostItemType.OPTION, cost=Decimal('-1')),)),
                rules=RULES,
            )


if __name__ == '__main__':
    unittest.main()
