"""
API v1 Router

Org-scoped endpoints are prefixed with /orgs/{orgId}.
"""

from fastapi import APIRouter
from . import api_keys, invitations, public
from .organizations import router_global as orgs_global_router
from .organizations import router_scoped as orgs_scoped_router

router = APIRouter()

# Organization routes (non-org-scoped: list, create, context)
router.include_router(orgs_global_router)

# Organization routes (org-scoped: details, members, invitations)
router.include_router(orgs_scoped_router, prefix="/orgs/{orgId}")

router.include_router(api_keys.router, prefix="/orgs/{orgId}/api-keys", tags=["API Keys"])
router.include_router(invitations.router, prefix="/invitations", tags=["Invitations"])
router.include_router(public.router, prefix="/public", tags=["Public API"])


@router.get("/", tags=["API"])
async def api_root():
    """API root — returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/orgs",
            "/context",
            "/orgs/{orgId}/members",
            "/orgs/{orgId}/invitations",
            "/orgs/{orgId}/api-keys",
            "/invitations/{token}",
            "/public/organization",
        ],
    }
