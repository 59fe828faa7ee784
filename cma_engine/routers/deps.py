from ..services.valuation_service import ComparableValuationService, get_valuation_service

def service_dep() -> ComparableValuationService:
    # Built once per process; tests swap it through app.dependency_overrides
    return get_valuation_service()
