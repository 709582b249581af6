# binalloc/obs/metrics.py
import time

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

http_requests_total = Counter("http_requests_total", "HTTP requests", ["method", "path", "code"])
http_request_duration = Histogram(
    "http_request_duration_seconds", "HTTP request duration seconds", ["method", "path"]
)

# 上架：每个落地的分配行 +1（按分配类型）；放不下的剩余量累计
putaway_lines_total = Counter("binalloc_putaway_lines_total", "Put-away allocation lines", ["allocation_type"])
putaway_unallocated_qty_total = Counter("binalloc_putaway_unallocated_qty_total", "Put-away qty left unallocated")

# 拣货：按终态计数；一致性故障单独计数（应恒为 0）
pick_total = Counter("binalloc_pick_total", "Pick coordinations", ["state"])
engine_faults_total = Counter("binalloc_engine_faults_total", "Engine consistency faults", ["error_code"])
hold_timeouts_total = Counter("binalloc_hold_timeouts_total", "Bin hold acquisition timeouts")

# 撤销：按原操作类型 / 结果计数
rollback_total = Counter("binalloc_rollback_total", "History rollbacks", ["operation_type", "outcome"])


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        # 用路由模板做 label，避免 warehouse_id / code 撑爆基数
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)
        http_requests_total.labels(request.method, path, str(response.status_code)).inc()
        http_request_duration.labels(request.method, path).observe(elapsed)
        return response


def metrics_response() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
