from fastapi import APIRouter

from app.api.v1.health import router as health_router
from app.api.v1.auth import router as auth_router
from app.api.v1.branches import router as branches_router
from app.api.v1.contracts import router as contracts_router
from app.api.v1.signing import router as signing_router
from app.api.v1.payments import router as payments_router
from app.api.v1.notifications import router as notifications_router
from app.api.v1.audit import router as audit_router
from app.api.v1.export import router as export_router


v1_router = APIRouter()

# ------------------------------------------------------------------
# SYSTEM / CORE
# ------------------------------------------------------------------
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(auth_router, tags=["auth"])
v1_router.include_router(audit_router, tags=["audit"])
v1_router.include_router(branches_router, tags=["branches"])

# ------------------------------------------------------------------
# CONTRACTS / SIGNATURES
# ------------------------------------------------------------------
v1_router.include_router(contracts_router, tags=["contracts"])
v1_router.include_router(signing_router, tags=["signing"])

# ------------------------------------------------------------------
# PAYMENTS / NOTIFICATIONS
# ------------------------------------------------------------------
v1_router.include_router(payments_router, tags=["payments"])
v1_router.include_router(notifications_router, tags=["notifications"])

# ------------------------------------------------------------------
# ADMIN
# ------------------------------------------------------------------
v1_router.include_router(export_router, tags=["export"])
