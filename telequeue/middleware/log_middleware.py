import time
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from telequeue.core.logger import logger

class LogMiddleware(BaseHTTPMiddleware):
    """Access line per REST call; websocket traffic is logged by the coordinator."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        response = await call_next(request)

        process_time = time.time() - start_time
        # Set by get_current_identity once the bearer token checks out
        identity = getattr(request.state, "identity", None)
        caller = f"{identity.role}:{identity.user_id}" if identity else "anonymous"

        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"[{caller}] in {process_time:.4f}s"
        )

        return response
