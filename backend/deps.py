"""
Shared FastAPI dependencies.

Centralizes gateway adapters (built once from the immutable gateway configs),
the trusted upstream identity headers, the admin / cron guards and pagination,
so routers import from a single place. Tests swap adapters through
app.dependency_overrides.
"""

from __future__ import annotations

import hmac
from functools import lru_cache
from typing import TypedDict

from fastapi import Header, Query

from config import settings
from domain.errors import PermissionDeniedError, UnauthorizedError
from services.gateways.sepay import SePayAdapter, SePayApiClient
from services.gateways.vnpay import VNPayAdapter


class Pagination(TypedDict):
    limit: int
    offset: int


def pagination_params(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0, le=100_000),
) -> Pagination:
    return {"limit": limit, "offset": offset}


# ── Gateways ────────────────────────────────────────────────────────

@lru_cache
def get_vnpay_adapter() -> VNPayAdapter:
    return VNPayAdapter(settings.vnpay_config())


@lru_cache
def get_sepay_adapter() -> SePayAdapter:
    return SePayAdapter(settings.sepay_config())


@lru_cache
def get_sepay_api_client() -> SePayApiClient:
    return SePayApiClient(settings.sepay_config())


# ── Identity / guards ───────────────────────────────────────────────

def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """
    Customer identity, set by the authenticating proxy in front of this service.
    """
    if not x_user_id or not x_user_id.strip():
        raise UnauthorizedError("X-User-Id header required")
    return x_user_id.strip()


def require_admin(x_admin_token: str | None = Header(default=None)) -> str:
    """Require the shared admin token. Admin routes are off when none is configured."""
    if not settings.admin_api_token:
        raise PermissionDeniedError("Admin API is disabled (ADMIN_API_TOKEN not set)")
    if not x_admin_token or not hmac.compare_digest(
        x_admin_token.encode("utf-8"), settings.admin_api_token.encode("utf-8")
    ):
        raise UnauthorizedError("Invalid admin token")
    return "admin"


def require_cron_secret(authorization: str | None = Header(default=None)) -> None:
    """Require `Authorization: Bearer <CRON_SECRET>` when a cron secret is configured."""
    if not settings.cron_secret:
        return
    expected = f"Bearer {settings.cron_secret}"
    if not authorization or not hmac.compare_digest(
        authorization.encode("utf-8"), expected.encode("utf-8")
    ):
        raise UnauthorizedError("Invalid cron secret")
