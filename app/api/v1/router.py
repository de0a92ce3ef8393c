from fastapi import APIRouter

from app.api.v1.health import router as health_router
from app.api.v1.contracts import router as contracts_router
from app.api.v1.contract_legal import router as contract_legal_router


v1_router = APIRouter()

# ------------------------------------------------------------------
# SYSTEM / CORE
# ------------------------------------------------------------------
v1_router.include_router(health_router, tags=["health"])

# ------------------------------------------------------------------
# CONTRACTS / LIFECYCLE / LEGAL
# ------------------------------------------------------------------
v1_router.include_router(contracts_router, tags=["contracts"])
v1_router.include_router(contract_legal_router, tags=["contracts-legal"])
