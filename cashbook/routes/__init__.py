"""
Consolidated routes module.

Usage:
    from cashbook.routes import register_all_routes
    register_all_routes(app, api_prefix=settings.API_V1_PREFIX)
"""
from typing import List, Tuple
from fastapi import APIRouter

from cashbook.routes.accounts import router as account_router
from cashbook.routes.flows import router as flow_router
from cashbook.routes.transfers import router as transfer_router
from cashbook.routes.loans import router as loan_router
from cashbook.routes.maintenance import router as maintenance_router

# Each tuple: (router, prefix, tags)
ROUTER_CONFIGS: List[Tuple[APIRouter, str, List[str]]] = [
    (account_router, "/accounts", ["Accounts"]),
    (flow_router, "/flows", ["Flows"]),
    (transfer_router, "/transfers", ["Transfers"]),
    (loan_router, "/loans", ["Loans"]),
    (maintenance_router, "/maintenance", ["Maintenance"]),
]


def register_all_routes(app, api_prefix: str = "/api") -> None:
    """Register all routers with the FastAPI app under the API prefix."""
    for router, prefix, tags in ROUTER_CONFIGS:
        app.include_router(router, prefix=f"{api_prefix}{prefix}", tags=tags)


__all__ = [
    "account_router",
    "flow_router",
    "transfer_router",
    "loan_router",
    "maintenance_router",
    "ROUTER_CONFIGS",
    "register_all_routes",
]
