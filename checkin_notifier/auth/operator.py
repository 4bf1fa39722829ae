"""
operator.py
-----------
Purpose:
    Shared-secret bearer checks for operator and scheduler endpoints.

Notes:
    - Admin routes compare against ADMIN_TOKEN, the cron trigger against CRON_SECRET.
    - An unset secret disables the endpoint (503) instead of leaving it open.
"""

import hmac

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from checkin_notifier.config import settings

_security = HTTPBearer(auto_error=False)


def verify_bearer(credentials: HTTPAuthorizationCredentials | None, expected: str | None) -> None:
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Endpoint authentication is not configured",
        )

    if credentials is None or not hmac.compare_digest(
        credentials.credentials.encode(), expected.encode()
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


def operator_dependency(
    credentials: HTTPAuthorizationCredentials | None = Depends(_security),
) -> None:
    verify_bearer(credentials, settings.ADMIN_TOKEN)


def cron_dependency(
    credentials: HTTPAuthorizationCredentials | None = Depends(_security),
) -> None:
    verify_bearer(credentials, settings.CRON_SECRET)
