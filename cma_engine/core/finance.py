"""
Fixed-point money helpers.

Every monetary value the engine derives (price bands, price per square foot,
value changes, mortgage figures) goes through `Decimal` so that a 15% band
around $500,000 is exactly $425,000-$575,000 rather than a float neighbour.
"""

from dataclasses import dataclass, asdict
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

CENT = Decimal("0.01")
DOLLAR = Decimal("1")
THOUSAND = Decimal("1E3")
HUNDRED = Decimal("100")

# Defaults used by the mortgage breakdown (annual percentages)
DEFAULT_PMI_RATE = Decimal("0.5")
DEFAULT_CLOSING_COST_RATE = Decimal("3")
PMI_DOWN_PAYMENT_THRESHOLD = Decimal("20")


def to_decimal(value) -> Decimal:
    """Convert int/float/str/Decimal to Decimal; floats go through str() to avoid binary noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, AttributeError) as exc:
        raise ValueError(f"not a decimal value: {value!r}") from exc


def money(value) -> Decimal:
    """Round to cents, half-up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def whole_dollars(value) -> Decimal:
    return to_decimal(value).quantize(DOLLAR, rounding=ROUND_HALF_UP)


def round_to_thousand(value) -> Decimal:
    return to_decimal(value).quantize(THOUSAND, rounding=ROUND_HALF_UP)


def apply_percent(value, pct) -> Decimal:
    """value * (1 + pct/100); pct may be negative."""
    return to_decimal(value) * (1 + to_decimal(pct) / HUNDRED)


def percent_band(value, pct) -> tuple[Decimal, Decimal]:
    """Symmetric +/- pct band around value: (value*(1-pct), value*(1+pct))."""
    base = to_decimal(value)
    p = to_decimal(pct)
    return apply_percent(base, -p), apply_percent(base, p)


def percent_change(old, new, places: int = 2) -> Optional[Decimal]:
    """Percentage change from old to new, None when old is zero."""
    old_d = to_decimal(old)
    if old_d == 0:
        return None
    change = (to_decimal(new) - old_d) / old_d * HUNDRED
    return change.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def price_per_area(price, area) -> Optional[Decimal]:
    if price is None or area is None:
        return None
    area_d = to_decimal(area)
    if area_d <= 0:
        return None
    return money(to_decimal(price) / area_d)


def monthly_payment(principal, annual_rate_pct, years: int) -> Decimal:
    """Standard amortised payment; zero rate falls back to straight-line repayment."""
    p = to_decimal(principal)
    n = int(years) * 12
    if p <= 0 or n <= 0:
        return Decimal("0.00")
    r = to_decimal(annual_rate_pct) / HUNDRED / 12
    if r == 0:
        return money(p / n)
    growth = (1 + r) ** n
    return money(p * r * growth / (growth - 1))


def amortization_schedule(principal, annual_rate_pct, years: int) -> list[dict]:
    """Month-by-month split of the fixed payment into interest and principal."""
    balance = to_decimal(principal)
    payment = monthly_payment(principal, annual_rate_pct, years)
    r = to_decimal(annual_rate_pct) / HUNDRED / 12
    rows = []
    for month in range(1, int(years) * 12 + 1):
        interest = money(balance * r)
        principal_part = payment - interest
        # Final payment absorbs rounding drift
        if principal_part > balance:
            principal_part = balance
        balance = max(Decimal("0.00"), balance - principal_part)
        rows.append({
            "month": month,
            "payment": payment,
            "principal": money(principal_part),
            "interest": interest,
            "balance": money(balance),
        })
    return rows


@dataclass
class MortgageBreakdown:
    price: Decimal
    down_payment: Decimal
    loan_amount: Decimal
    principal_and_interest: Decimal
    pmi: Decimal
    property_tax: Decimal
    insurance: Decimal
    hoa: Decimal
    total_monthly: Decimal
    total_interest: Decimal
    total_paid: Decimal
    closing_costs: Decimal
    cash_needed: Decimal

    def to_dict(self) -> dict:
        return {k: float(v) for k, v in asdict(self).items()}


def mortgage_breakdown(
    price,
    down_payment_pct,
    annual_rate_pct,
    years: int = 30,
    property_tax_monthly=0,
    insurance_monthly=0,
    hoa_monthly=0,
    pmi_rate_pct=DEFAULT_PMI_RATE,
    closing_cost_pct=DEFAULT_CLOSING_COST_RATE,
) -> MortgageBreakdown:
    price_d = to_decimal(price)
    down_pct = to_decimal(down_payment_pct)
    down = money(price_d * down_pct / HUNDRED)
    loan = money(price_d - down)
    payment = monthly_payment(loan, annual_rate_pct, years)
    n = int(years) * 12

    pmi = Decimal("0.00")
    if down_pct < PMI_DOWN_PAYMENT_THRESHOLD and loan > 0:
        pmi = money(loan * to_decimal(pmi_rate_pct) / HUNDRED / 12)

    tax = money(property_tax_monthly)
    insurance = money(insurance_monthly)
    hoa = money(hoa_monthly)
    total_paid = money(payment * n)
    closing = money(price_d * to_decimal(closing_cost_pct) / HUNDRED)

    return MortgageBreakdown(
        price=money(price_d),
        down_payment=down,
        loan_amount=loan,
        principal_and_interest=payment,
        pmi=pmi,
        property_tax=tax,
        insurance=insurance,
        hoa=hoa,
        total_monthly=payment + pmi + tax + insurance + hoa,
        total_interest=money(total_paid - loan) if loan > 0 else Decimal("0.00"),
        total_paid=total_paid,
        closing_costs=closing,
        cash_needed=down + closing,
    )
