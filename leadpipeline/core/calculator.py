"""
Deterministic money and quantity arithmetic.

Three entry points:

- calculate(): a single exact arithmetic operation, used by the Calculator tool
  so the model never does mental math.
- calculate_estimate(): planning ranges for materials and labor in euros.
- calculate_quote_totals(): legally relevant quote totals in integer cents
  with basis-point VAT.

Quote math runs on decimal.Decimal and rounds to whole cents with banker's
rounding (ROUND_HALF_EVEN). Whenever an aggregate amount (discount, VAT per
rate) must be split over lines, it is allocated with the largest-remainder
method so the per-line figures always add up to the aggregate exactly.
"""

import logging
import math
import re
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_EVEN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
from uuid import UUID

from leadpipeline.models import (
    CalculatorResult,
    CatalogProductDetails,
    DiscountType,
    EstimateItem,
    EstimateRange,
    PricingMode,
    QuoteItem,
    QuoteLine,
    QuoteTotals,
    VatBreakdownEntry,
)
from leadpipeline.utils.error_handling import ValidationFailedError

logger = logging.getLogger(__name__)

Number = Union[int, float, Decimal]

BPS_DENOMINATOR = 10000
DEFAULT_MAX_UNIT_PRICE = 50000.0

CALCULATOR_OPERATIONS = (
    "add",
    "subtract",
    "multiply",
    "divide",
    "ceil_divide",
    "ceil",
    "floor",
    "round",
    "percentage",
)

_QUANTITY_PATTERN = re.compile(r"^([\d.,]+)")


def _to_decimal(value: Number) -> Decimal:
    # str() first so 15.99 stays 15.99 instead of its binary expansion
    return Decimal(str(value))


def _fmt(value: Decimal) -> str:
    normalized = value.normalize()
    if normalized == normalized.to_integral_value():
        return str(normalized.quantize(Decimal(1)))
    return format(normalized, "f")


# =============================================================================
# CALCULATOR
# =============================================================================

def calculate(operation: str, a: Number, b: Number = 0) -> CalculatorResult:
    """
    Evaluate one arithmetic operation exactly.

    Args:
        operation: One of add, subtract, multiply, divide, ceil_divide, ceil,
            floor, round, percentage
        a: First operand
        b: Second operand; for "round" the number of decimal places (0..10)

    Raises:
        ValidationFailedError: on non-finite operands, division by zero or an
            unknown operation
    """
    op = (operation or "").strip().lower()
    x = _to_decimal(a)
    y = _to_decimal(b)
    if not (x.is_finite() and y.is_finite()):
        raise ValidationFailedError(f"operands must be finite numbers (a={a}, b={b})")

    if op == "add":
        result = x + y
        expression = f"{_fmt(x)} + {_fmt(y)} = {_fmt(result)}"
    elif op == "subtract":
        result = x - y
        expression = f"{_fmt(x)} - {_fmt(y)} = {_fmt(result)}"
    elif op == "multiply":
        result = x * y
        expression = f"{_fmt(x)} × {_fmt(y)} = {_fmt(result)}"
    elif op == "divide":
        if y == 0:
            raise ValidationFailedError("division by zero")
        result = x / y
        expression = f"{_fmt(x)} ÷ {_fmt(y)} = {_fmt(result)}"
    elif op == "ceil_divide":
        if y == 0:
            raise ValidationFailedError("division by zero")
        result = (x / y).to_integral_value(rounding=ROUND_CEILING)
        expression = f"⌈{_fmt(x)} ÷ {_fmt(y)}⌉ = {_fmt(result)}"
    elif op == "ceil":
        result = x.to_integral_value(rounding=ROUND_CEILING)
        expression = f"⌈{_fmt(x)}⌉ = {_fmt(result)}"
    elif op == "floor":
        result = x.to_integral_value(rounding=ROUND_FLOOR)
        expression = f"⌊{_fmt(x)}⌋ = {_fmt(result)}"
    elif op == "round":
        places = min(max(int(y), 0), 10)
        result = x.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
        expression = f"round({_fmt(x)}, {places}) = {_fmt(result)}"
    elif op == "percentage":
        result = x * y / 100
        expression = f"{_fmt(x)} × {_fmt(y)}% = {_fmt(result)}"
    else:
        raise ValidationFailedError(
            f"unknown operation {operation!r}; use {', '.join(CALCULATOR_OPERATIONS)}"
        )

    return CalculatorResult(result=float(result), expression=expression)


# =============================================================================
# ESTIMATE RANGES
# =============================================================================

def _non_negative(value: Optional[float]) -> float:
    if value is None or value < 0:
        return 0.0
    return float(value)


def calculate_estimate(
    material_items: Iterable[EstimateItem],
    labor_hours_low: float = 0.0,
    labor_hours_high: float = 0.0,
    hourly_rate_low: float = 0.0,
    hourly_rate_high: float = 0.0,
    extra_costs: float = 0.0,
    max_unit_price: float = DEFAULT_MAX_UNIT_PRICE,
) -> EstimateRange:
    """
    Compute material subtotal, labor range and total range in euros.

    No currency rounding is applied; this is a planning estimate.

    Raises:
        ValidationFailedError: on non-finite inputs, or if a unit price exceeds
            max_unit_price, which almost always means cents were passed where
            euros were expected
    """
    items = list(material_items)
    inputs = [labor_hours_low, labor_hours_high, hourly_rate_low, hourly_rate_high, extra_costs]
    inputs += [value for item in items for value in (item.unit_price, item.quantity)]
    if not all(math.isfinite(value) for value in inputs if value is not None):
        raise ValidationFailedError("estimate inputs must be finite numbers")
    for item in items:
        if item.unit_price > max_unit_price:
            raise ValidationFailedError(
                f"unit_price too large ({item.unit_price:.2f}). CalculateEstimate expects euros, not cents"
            )

    material_subtotal = 0.0
    for item in items:
        if item.unit_price <= 0 or item.quantity <= 0:
            continue
        material_subtotal += item.unit_price * item.quantity

    labor_low = _non_negative(labor_hours_low) * _non_negative(hourly_rate_low)
    labor_high = _non_negative(labor_hours_high) * _non_negative(hourly_rate_high)
    if labor_high < labor_low:
        labor_low, labor_high = labor_high, labor_low

    extra = _non_negative(extra_costs)

    return EstimateRange(
        material_subtotal=material_subtotal,
        labor_subtotal_low=labor_low,
        labor_subtotal_high=labor_high,
        total_low=material_subtotal + labor_low + extra,
        total_high=material_subtotal + labor_high + extra,
        applied_extra_costs=extra,
    )


# =============================================================================
# QUOTE TOTALS
# =============================================================================

def parse_quantity(text: Optional[str]) -> Decimal:
    """
    Parse a quantity string such as "3", "2,5" or "12 m2".

    The leading numeric token is used and a comma is treated as the decimal
    separator. Invalid, zero or negative quantities become 1.
    """
    match = _QUANTITY_PATTERN.match((text or "").strip())
    if not match:
        return Decimal(1)
    try:
        quantity = Decimal(match.group(1).replace(",", "."))
    except InvalidOperation:
        return Decimal(1)
    if not quantity.is_finite() or quantity <= 0:
        return Decimal(1)
    return quantity


def round_cents(value: Decimal) -> int:
    """Round a decimal amount to whole cents with banker's rounding."""
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_EVEN))


def allocate_largest_remainder(amount: int, weights: Sequence[int]) -> List[int]:
    """
    Split a non-negative integer amount proportionally to weights.

    Each share is floored; the leftover cents go to the largest fractional
    remainders, earliest index first on ties. The shares always sum to amount
    when any weight is positive.
    """
    total = sum(weights)
    if amount <= 0 or total <= 0:
        return [0] * len(weights)

    numerators = [amount * max(weight, 0) for weight in weights]
    shares = [n // total for n in numerators]
    remainders = [n % total for n in numerators]

    leftover = amount - sum(shares)
    order = sorted(range(len(weights)), key=lambda i: (-remainders[i], i))
    for index in order[:leftover]:
        shares[index] += 1
    return shares


def _resolve_discount(subtotal: int, discount_type: str, discount_value: Number) -> int:
    value = _to_decimal(discount_value or 0)

    if str(discount_type) == DiscountType.PERCENTAGE.value:
        if value < 0 or value > BPS_DENOMINATOR:
            raise ValidationFailedError(
                f"percentage discount must be between 0 and {BPS_DENOMINATOR} basis points (got {_fmt(value)})"
            )
        return round_cents(Decimal(subtotal) * value / BPS_DENOMINATOR)

    if str(discount_type) == DiscountType.FIXED.value:
        if value < 0:
            raise ValidationFailedError(f"fixed discount cannot be negative (got {_fmt(value)})")
        return min(round_cents(value), subtotal)

    raise ValidationFailedError(f"unknown discount type {discount_type!r}")


def _largest_index(indexes: Sequence[int], amounts: Sequence[int]) -> int:
    best = indexes[0]
    for index in indexes[1:]:
        if amounts[index] > amounts[best]:
            best = index
    return best


def _back_out_inclusive(gross: List[int], rates: List[int], included: List[bool]) -> Tuple[List[int], Dict[int, int]]:
    """
    Convert tax-inclusive line amounts to net amounts.

    Each line is backed out and rounded on its own, then the VAT of every
    rate is reconciled to the aggregate back-out of that rate. Any one-cent
    difference is assigned to the largest line of the rate.
    """
    net = list(gross)
    vat_by_rate: Dict[int, int] = {}

    by_rate: Dict[int, List[int]] = {}
    for index, is_included in enumerate(included):
        if is_included:
            by_rate.setdefault(rates[index], []).append(index)

    for rate, indexes in by_rate.items():
        divisor = Decimal(BPS_DENOMINATOR + rate)
        for index in indexes:
            net[index] = round_cents(Decimal(gross[index]) * BPS_DENOMINATOR / divisor)

        gross_total = sum(gross[i] for i in indexes)
        expected_vat = round_cents(Decimal(gross_total) * rate / divisor)
        line_vat = sum(gross[i] - net[i] for i in indexes)

        difference = expected_vat - line_vat
        if difference:
            net[_largest_index(indexes, gross)] -= difference
        vat_by_rate[rate] = expected_vat

    return net, vat_by_rate


def calculate_quote_totals(
    items: Sequence[QuoteItem],
    pricing_mode: str = PricingMode.EXCLUSIVE.value,
    discount_type: str = DiscountType.PERCENTAGE.value,
    discount_value: Number = 0,
) -> QuoteTotals:
    """
    Compute quote lines and totals in integer cents.

    Only included items count: non-optional items, and optional items that are
    selected. The discount is taken off the pre-tax subtotal and allocated to
    the included lines; VAT is computed per distinct rate on the discounted
    amounts. For inclusive pricing the given unit prices contain VAT and the
    net amounts are backed out first.

    Guarantees subtotal - discount + vat_total == total, and that the
    line totals sum to total.

    Raises:
        ValidationFailedError: for an out-of-range or negative discount
    """
    inclusive = str(pricing_mode) == PricingMode.INCLUSIVE.value
    count = len(items)

    included = [item.included for item in items]
    rates = [int(item.tax_rate_bps) for item in items]
    gross = [
        round_cents(Decimal(item.unit_price_cents) * parse_quantity(item.quantity)) if included[i] else 0
        for i, item in enumerate(items)
    ]

    inclusive_vat: Dict[int, int] = {}
    if inclusive:
        net, inclusive_vat = _back_out_inclusive(gross, rates, included)
    else:
        net = list(gross)

    subtotal = sum(net)
    discount = _resolve_discount(subtotal, discount_type, discount_value)
    line_discounts = allocate_largest_remainder(discount, net)
    taxable = [net[i] - line_discounts[i] for i in range(count)]

    line_vat = [0] * count
    vat_by_rate: Dict[int, int] = {}
    rate_indexes: Dict[int, List[int]] = {}
    for index in range(count):
        if included[index]:
            rate_indexes.setdefault(rates[index], []).append(index)

    for rate, indexes in rate_indexes.items():
        if inclusive and discount == 0:
            rate_vat = inclusive_vat[rate]
            for index in indexes:
                line_vat[index] = gross[index] - net[index]
        else:
            taxable_total = sum(taxable[i] for i in indexes)
            rate_vat = round_cents(Decimal(taxable_total) * rate / BPS_DENOMINATOR)
            shares = allocate_largest_remainder(rate_vat, [taxable[i] for i in indexes])
            for index, share in zip(indexes, shares):
                line_vat[index] = share
        vat_by_rate[rate] = rate_vat

    lines = [
        QuoteLine(
            description=item.description,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
            tax_rate_bps=rates[i],
            included=included[i],
            line_subtotal_cents=net[i],
            discount_cents=line_discounts[i],
            vat_cents=line_vat[i],
            line_total_cents=taxable[i] + line_vat[i],
        )
        for i, item in enumerate(items)
    ]

    vat_total = sum(vat_by_rate.values())
    return QuoteTotals(
        lines=lines,
        subtotal_cents=subtotal,
        discount_amount_cents=discount,
        vat_breakdown=[
            VatBreakdownEntry(rate_bps=rate, amount_cents=amount)
            for rate, amount in sorted(vat_by_rate.items())
        ],
        vat_total_cents=vat_total,
        total_cents=subtotal - discount + vat_total,
    )


# =============================================================================
# CATALOG PRICES
# =============================================================================

def apply_catalog_prices(
    items: Sequence[QuoteItem],
    details_by_id: Mapping[UUID, CatalogProductDetails],
) -> Tuple[List[QuoteItem], int, int, List[UUID]]:
    """
    Replace model-estimated prices with catalog-authoritative ones.

    Returns:
        (items, adjusted_price_count, adjusted_vat_count, unresolved_ids).
        The VAT rate is only taken from the catalog when it is positive.
    """
    adjusted_prices = 0
    adjusted_vat = 0
    unresolved: List[UUID] = []
    result: List[QuoteItem] = []

    for item in items:
        if item.catalog_product_id is None:
            result.append(item)
            continue

        details = details_by_id.get(item.catalog_product_id)
        if details is None:
            unresolved.append(item.catalog_product_id)
            result.append(item)
            continue

        updates = {}
        if item.unit_price_cents != details.unit_price_cents:
            updates["unit_price_cents"] = details.unit_price_cents
            adjusted_prices += 1
        if details.vat_rate_bps > 0 and item.tax_rate_bps != details.vat_rate_bps:
            updates["tax_rate_bps"] = details.vat_rate_bps
            adjusted_vat += 1

        result.append(item.model_copy(update=updates) if updates else item)

    if adjusted_prices or adjusted_vat:
        logger.info(
            f"[CALCULATOR] Applied catalog pricing: {adjusted_prices} price(s), {adjusted_vat} VAT rate(s) adjusted"
        )
    return result, adjusted_prices, adjusted_vat, unresolved
