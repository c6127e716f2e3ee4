"""
API endpoints package.

Contains FastAPI routers for all service endpoints:
- GET/POST / - Trigger one relay run
- /metrics - Prometheus metrics
- /healthz, /readyz - Health checks
"""
from .healthz import router as healthz_router
from .metrics import router as metrics_router
from .run import router as run_router

__all__ = ["healthz_router", "metrics_router", "run_router"]
