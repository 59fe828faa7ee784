import time
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Define metrics (names follow Prometheus conventions)
REQ_COUNT = Counter("http_requests_total", "Total HTTP requests", ["path","method","code"])
REQ_LATENCY = Histogram("http_request_duration_seconds", "Request latency", ["path","method"])

# Engine metrics
CACHE_LOOKUPS = Counter("cma_cache_lookups_total", "Result cache lookups", ["namespace", "outcome"])
VALUATIONS = Counter("cma_valuations_total", "Valuations computed (cache misses)")
VALUATION_LATENCY = Histogram("cma_valuation_duration_seconds", "Valuation compute latency")
MARKET_DEGRADED = Counter("cma_market_context_degraded_total", "Market context replaced by Unknown", ["reason"])
PERSISTENCE_FAILURES = Counter("cma_persistence_failures_total", "Session/history write failures", ["store"])

class PromMiddleware(BaseHTTPMiddleware):
    """
    Measures latency and counts requests.
    """
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response: Response = await call_next(request)
        elapsed = time.perf_counter() - start

        # Route template keeps label cardinality bounded (ids/slugs in paths)
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)
        method = request.method
        code = str(response.status_code)

        REQ_COUNT.labels(path=path, method=method, code=code).inc()
        REQ_LATENCY.labels(path=path, method=method).observe(elapsed)
        return response

async def metrics_endpoint(request: Request):
    """
    GET /v1/metrics, scraped by Prometheus.
    """
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
