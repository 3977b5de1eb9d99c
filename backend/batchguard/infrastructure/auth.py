"""
Authentication for the batchguard API.

Three credentials guard the scheduler endpoints:

- ``x-cron-secret`` header: cron and guardian calls, and any forced daily
  trigger. Validated against the ``app_settings.cron_secret`` row, falling
  back to the configured secret while the row is absent.
- Bearer service-role key: operator calls (manual recovery, secret sync).
- Bearer API token: read-only dashboard calls (status).

All checks run before any scheduler state is read.
"""

import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import structlog

from batchguard.db.repositories.app_settings import CRON_SECRET_KEY, AppSettingsRepository
from batchguard.infrastructure.config import get_settings
from batchguard.infrastructure.exceptions import ConfigurationError, UnauthorizedForcedCallError

logger = structlog.get_logger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


def _check_token(token: str, expected: str) -> bool:
    return secrets.compare_digest(token.encode(), expected.encode())


async def _expected_cron_secret() -> str:
    stored = await AppSettingsRepository().get_value(CRON_SECRET_KEY)
    expected = stored or get_settings().cron_secret
    if not expected:
        raise ConfigurationError("cron_secret")
    return expected


async def verify_cron_secret(provided: Optional[str], request: Optional[Request] = None) -> None:
    """Raise UnauthorizedForcedCallError unless ``provided`` matches the shared secret."""
    if not provided:
        logger.warning("cron_secret_missing", path=request.url.path if request else None)
        raise UnauthorizedForcedCallError("Missing cron secret")

    expected = await _expected_cron_secret()
    if not _check_token(provided, expected):
        logger.warning("cron_secret_rejected", path=request.url.path if request else None)
        raise UnauthorizedForcedCallError("Invalid cron secret")


async def require_cron_secret(
    request: Request,
    x_cron_secret: Optional[str] = Header(default=None, alias="x-cron-secret"),
) -> None:
    """
    FastAPI dependency for cron/guardian endpoints.

    Usage:
        @router.post("/execution-monitor", dependencies=[Depends(require_cron_secret)])
    """
    await verify_cron_secret(x_cron_secret, request)


def _require_bearer(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials],
    expected: Optional[str],
    setting: str,
) -> str:
    if not expected:
        raise ConfigurationError(setting)

    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not _check_token(credentials.credentials, expected):
        logger.warning("auth_rejected", path=request.url.path, method=request.method)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return credentials.credentials


async def require_service_role(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
) -> str:
    """Operator-level Bearer authentication (service-role key)."""
    return _require_bearer(request, credentials, get_settings().service_role_key, "service_role_key")


async def require_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
) -> str:
    """Dashboard Bearer authentication (API token)."""
    return _require_bearer(request, credentials, get_settings().api_token, "api_token")
