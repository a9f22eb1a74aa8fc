from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

from po_tracker.config import settings
from po_tracker.models import CostItemType
from po_tracker.services.errors import ValidationError


ZERO = Decimal('0')
HUNDRED = Decimal('100')
MONEY = Decimal('0.01')
UNIT_PRICE = Decimal('0.0001')


@dataclass(frozen=True)
class CostItemInput:
    item_type: CostItemType
    cost: Decimal
    is_admin_only: bool = False


@dataclass(frozen=True)
class CostInput:
    quantity: int
    unit_price: Decimal
    back_margin: Decimal | None = None
    commission_rate: Decimal = ZERO
    shipping_cost: Decimal = ZERO
    warehouse_shipping_cost: Decimal = ZERO
    advance_payment_rate: Decimal = ZERO
    order_date: date | None = None
    cost_items: tuple[CostItemInput, ...] = ()
    prorated_freight: Decimal = ZERO


@dataclass(frozen=True)
class CostBreakdown:
    rule_name: str
    order_unit_price: Decimal
    base_cost: Decimal
    commission: Decimal
    commission_in_base: bool
    option_cost_total: Decimal
    labor_cost_total: Decimal
    eligible_option_cost: Decimal
    eligible_labor_cost: Decimal
    admin_only_cost_total: Decimal
    shipping_cost_total: Decimal
    final_payment_amount: Decimal
    prorated_freight: Decimal
    expected_final_unit_price: Decimal | None
    advance_payment_amount: Decimal
    balance_payment_amount: Decimal

    def as_dict(self) -> dict:
        return {
            'rule_name': self.rule_name,
            'order_unit_price': self.order_unit_price,
            'base_cost': self.base_cost,
            'commission': self.commission,
            'commission_in_base': self.commission_in_base,
            'option_cost_total': self.option_cost_total,
            'labor_cost_total': self.labor_cost_total,
            'eligible_option_cost': self.eligible_option_cost,
            'eligible_labor_cost': self.eligible_labor_cost,
            'admin_only_cost_total': self.admin_only_cost_total,
            'shipping_cost_total': self.shipping_cost_total,
            'final_payment_amount': self.final_payment_amount,
            'prorated_freight': self.prorated_freight,
            'expected_final_unit_price': self.expected_final_unit_price,
            'advance_payment_amount': self.advance_payment_amount,
            'balance_payment_amount': self.balance_payment_amount,
        }


class CommissionRule(Protocol):
    name: str
    effective_from: date | None
    commission_in_base: bool

    def base_cost(self, order_total: Decimal, rate: Decimal) -> Decimal: ...

    def commission(self, order_total: Decimal, eligible_extras: Decimal, rate: Decimal) -> Decimal: ...


@dataclass(frozen=True)
class LegacyCommissionRule:
    """Commission folded into the base cost; ad-hoc cost items never carry commission."""

    effective_from: date | None = None
    name: str = 'LEGACY'
    commission_in_base: bool = True

    def base_cost(self, order_total: Decimal, rate: Decimal) -> Decimal:
        return order_total * (Decimal('1') + rate)

    def commission(self, order_total: Decimal, eligible_extras: Decimal, rate: Decimal) -> Decimal:
        return order_total * rate


@dataclass(frozen=True)
class InclusiveCommissionRule:
    """Commission charged separately on the order total plus commission-eligible cost items."""

    effective_from: date | None = None
    name: str = 'INCLUSIVE'
    commission_in_base: bool = False

    def base_cost(self, order_total: Decimal, rate: Decimal) -> Decimal:
        return order_total

    def commission(self, order_total: Decimal, eligible_extras: Decimal, rate: Decimal) -> Decimal:
        return (order_total + eligible_extras) * rate


def build_commission_rules(cutoff: date) -> tuple[CommissionRule, ...]:
    return (
        LegacyCommissionRule(),
        InclusiveCommissionRule(effective_from=cutoff),
    )


def select_commission_rule(order_date: date | None, rules: tuple[CommissionRule, ...]) -> CommissionRule:
    if not rules:
        raise ValidationError('At least one commission rule is required')
    dated = sorted((rule for rule in rules if rule.effective_from is not None), key=lambda rule: rule.effective_from)
    undated = [rule for rule in rules if rule.effective_from is None]

    # Orders without a date are priced under the rule currently in force.
    if order_date is None:
        return dated[-1] if dated else undated[0]

    chosen = undated[0] if undated else None
    for rule in dated:
        if order_date >= rule.effective_from:
            chosen = rule
    if chosen is None:
        raise ValidationError(f'No commission rule covers order date {order_date.isoformat()}')
    return chosen


def _money(value: Decimal) -> Decimal:
    return value.quantize(MONEY, rounding=ROUND_HALF_UP)


def _dec(value: Decimal | int | None) -> Decimal:
    if value is None:
        return ZERO
    return value if isinstance(value, Decimal) else Decimal(value)


def _validate_input(cost_input: CostInput) -> None:
    if cost_input.quantity < 0:
        raise ValidationError('Quantity cannot be negative')
    if _dec(cost_input.unit_price) < 0:
        raise ValidationError('Unit price cannot be negative')
    if _dec(cost_input.unit_price) + _dec(cost_input.back_margin) < 0:
        raise ValidationError('Order unit price cannot be negative')
    if _dec(cost_input.commission_rate) < 0:
        raise ValidationError('Commission rate cannot be negative')
    if not ZERO <= _dec(cost_input.advance_payment_rate) <= HUNDRED:
        raise ValidationError('Advance payment rate must be between 0 and 100')
    if _dec(cost_input.shipping_cost) < 0 or _dec(cost_input.warehouse_shipping_cost) < 0:
        raise ValidationError('Freight costs cannot be negative')
    if _dec(cost_input.prorated_freight) < 0:
        raise ValidationError('Prorated freight cannot be negative')
    if any(_dec(item.cost) < 0 for item in cost_input.cost_items):
        raise ValidationError('Cost item amounts cannot be negative')


def compute_cost_breakdown(cost_input: CostInput, rule: CommissionRule) -> CostBreakdown:
    _validate_input(cost_input)

    quantity = Decimal(cost_input.quantity)
    unit_price = _dec(cost_input.unit_price)
    order_unit_price = unit_price + _dec(cost_input.back_margin)
    order_total = order_unit_price * quantity
    rate = _dec(cost_input.commission_rate) / HUNDRED

    option_total = labor_total = eligible_option = eligible_labor = admin_only_total = ZERO
    for item in cost_input.cost_items:
        cost = _dec(item.cost)
        if item.item_type == CostItemType.OPTION:
            option_total += cost
            if not item.is_admin_only:
                eligible_option += cost
        else:
            labor_total += cost
            if not item.is_admin_only:
                eligible_labor += cost
        if item.is_admin_only:
            admin_only_total += cost

    base_cost = rule.base_cost(order_total, rate)
    commission = rule.commission(order_total, eligible_option + eligible_labor, rate)
    shipping_total = _dec(cost_input.shipping_cost) + _dec(cost_input.warehouse_shipping_cost)

    # Every cost item is paid in cash; admin-only items are only kept out of the commission base.
    final_payment = base_cost + shipping_total + option_total + labor_total
    if not rule.commission_in_base:
        final_payment += commission

    prorated = _dec(cost_input.prorated_freight)
    expected_unit_price = None
    if cost_input.quantity > 0:
        expected_unit_price = ((final_payment + prorated) / quantity).quantize(UNIT_PRICE, rounding=ROUND_HALF_UP)

    advance = unit_price * quantity * _dec(cost_input.advance_payment_rate) / HUNDRED
    return CostBreakdown(
        rule_name=rule.name,
        order_unit_price=_money(order_unit_price),
        base_cost=_money(base_cost),
        commission=_money(commission),
        commission_in_base=rule.commission_in_base,
        option_cost_total=_money(option_total),
        labor_cost_total=_money(labor_total),
        eligible_option_cost=_money(eligible_option),
        eligible_labor_cost=_money(eligible_labor),
        admin_only_cost_total=_money(admin_only_total),
        shipping_cost_total=_money(shipping_total),
        final_payment_amount=_money(final_payment),
        prorated_freight=_money(prorated),
        expected_final_unit_price=expected_unit_price,
        advance_payment_amount=_money(advance),
        balance_payment_amount=_money(final_payment - advance),
    )


def calculate_costs(cost_input: CostInput, *, rules: tuple[CommissionRule, ...] | None = None) -> CostBreakdown:
    if rules is None:
        rules = build_commission_rules(settings.commission_rule_cutoff)
    rule = select_commission_rule(cost_input.order_date, rules)
    return compute_cost_breakdown(cost_input, rule)
