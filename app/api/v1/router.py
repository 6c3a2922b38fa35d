from fastapi import APIRouter

from app.api.v1.health import router as health_router
from app.api.v1.contracts import router as contracts_router
from app.api.v1.public_contracts import router as public_contracts_router

v1_router = APIRouter()

# ------------------------------------------------------------------
# SYSTEM
# ------------------------------------------------------------------
v1_router.include_router(health_router, tags=["health"])

# ------------------------------------------------------------------
# CONTRACTS (authenticated)
# ------------------------------------------------------------------
v1_router.include_router(contracts_router, tags=["contracts"])

# ------------------------------------------------------------------
# PUBLIC (share / sign token holders)
# ------------------------------------------------------------------
v1_router.include_router(public_contracts_router, tags=["public-contracts"])
