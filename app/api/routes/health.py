from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Health check endpoint.

    Returns a simple status response to verify the API is operational.
    Used by load balancers and monitoring systems to determine service health.
    The store backend is reported so operators can spot a misconfigured
    deployment running on the per-process store.

    Returns:
        dict: "status" set to "ok" and the active "store" backend name.
    """

    service = request.app.state.rate_limit_service
    return {"status": "ok", "store": service.store.backend_name}
