"""Organization scoping middleware using ContextVar.

Reads the current organization from the X-Org-ID request header (or falls
back to subdomain detection). The org id is stored in a ContextVar so that
dependencies and handlers can call get_current_org() without threading it
through every signature.
"""

from contextvars import ContextVar
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

DEFAULT_ORG = "default"

# ---------------------------------------------------------------------------
# Context variable — per-request organization
# ---------------------------------------------------------------------------

_current_org: ContextVar[str] = ContextVar("current_org", default=DEFAULT_ORG)


def get_current_org() -> str:
    """Return the organization id for the current request::

        org_id = get_current_org()
        tasks = store.tasks(org_id)
    """
    return _current_org.get()


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

class OrgMiddleware(BaseHTTPMiddleware):
    """Resolve the organization for each request.

    Priority:
    1. X-Org-ID header
    2. First subdomain segment (acme.taskflow.app → "acme")
    3. "default"
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        org_id = request.headers.get("X-Org-ID", "").strip()

        if not org_id:
            host = request.headers.get("host", "").split(":")[0]
            parts = host.split(".")
            if len(parts) > 2:
                org_id = parts[0]

        token = _current_org.set(org_id or DEFAULT_ORG)
        try:
            return await call_next(request)
        finally:
            _current_org.reset(token)
