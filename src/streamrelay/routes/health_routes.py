"""
Health check endpoint.
"""

import time
from datetime import datetime

from starlette.requests import Request
from starlette.responses import JSONResponse

from streamrelay.relay.models import HealthResponse

start_time = time.time()


async def health_check(request: Request) -> JSONResponse:
    """
    Basic health check endpoint.

    Returns 200 while the service is running.
    """
    resp = HealthResponse(
        status="healthy",
        timestamp=datetime.now().isoformat(),
        uptime_seconds=int(time.time() - start_time),
        sessions=len(request.app.state.registry),
    )
    return JSONResponse(resp.to_json())
