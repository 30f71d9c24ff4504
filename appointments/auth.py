"""Admin bearer-token dependency.

Guest actions are authorized by action tokens (see ``appointments.tokens``).
The operator endpoints, configuring a host's booking page and triggering a
reminder run, use the admin key instead:

  ADMIN_API_KEY set + valid token   → allow
  ADMIN_API_KEY set + wrong/missing → 401 Unauthorized
  ADMIN_API_KEY empty + DEBUG=true  → allow (local dev)
  ADMIN_API_KEY empty + DEBUG=false → 403 Forbidden
"""

from __future__ import annotations

import hmac
import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from appointments.config import settings

log = logging.getLogger("appointments.auth")

_bearer_scheme = HTTPBearer(auto_error=False)


async def require_admin_token(
    request: Request = None,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> None:
    """Reject operator requests that do not carry the admin key."""
    key = settings.admin_api_key
    where = f"{request.method} {request.url.path}" if request is not None else "admin call"

    if not key:
        if settings.debug:
            return
        log.warning("Refused %s: ADMIN_API_KEY is not configured", where)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin API key not configured. Set ADMIN_API_KEY in .env.",
        )

    if credentials is None or not hmac.compare_digest(credentials.credentials, key):
        log.warning("Rejected %s with missing or wrong admin token", where)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin token.",
            headers={"WWW-Authenticate": "Bearer"},
        )
