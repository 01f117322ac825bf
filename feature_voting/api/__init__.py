"""API routes for Feature Voting."""

from fastapi import APIRouter

from .auth import router as auth_router
from .features import router as features_router
from .members import router as members_router
from .products import router as products_router
from .roles import router as roles_router
from .sessions import router as sessions_router
from .users import router as users_router
from .votes import router as votes_router

# Main API router
api_router = APIRouter()

api_router.include_router(auth_router)
api_router.include_router(products_router)

# Session routes first; feature and vote routes are nested under /sessions/{id}
api_router.include_router(sessions_router)
api_router.include_router(features_router)
api_router.include_router(votes_router)

# Users, role grants and product membership
api_router.include_router(users_router)
api_router.include_router(roles_router)
api_router.include_router(members_router)

__all__ = ["api_router"]
