from fastapi import APIRouter, Depends, Query

from ..schemas import MortgageRequest
from ..core.finance import amortization_schedule, mortgage_breakdown
from ..core.security import rate_limit

router = APIRouter()

@router.post("/finance/mortgage")
def post_mortgage(
    body: MortgageRequest,
    schedule: bool = Query(default=False),
    _lim = Depends(rate_limit),
):
    breakdown = mortgage_breakdown(
        body.price,
        body.down_payment_pct,
        body.annual_rate_pct,
        years=body.years,
        property_tax_monthly=body.property_tax_monthly,
        insurance_monthly=body.insurance_monthly,
        hoa_monthly=body.hoa_monthly,
        pmi_rate_pct=body.pmi_rate_pct,
        closing_cost_pct=body.closing_cost_pct,
    )
    out = breakdown.to_dict()
    if schedule:
        # Yearly rows keep the payload small; month 12, 24, ...
        rows = amortization_schedule(breakdown.loan_amount, body.annual_rate_pct, body.years)
        out["schedule"] = [
            {k: (float(v) if k != "month" else v) for k, v in row.items()}
            for row in rows if row["month"] % 12 == 0
        ]
    return out
