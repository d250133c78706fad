#app/api/v1/auth.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.core.auth_deps import get_current_principal
from app.core.security import create_access_token, principal_claims
from app.db.session import get_db
from app.policies.rbac import Principal
from app.schemas.auth import LoginRequest, MeResponse, TokenResponse
from app.services.audit_service import RequestMeta
from app.services.auth_service import authenticate, record_logout

router = APIRouter(prefix="/auth")


@router.post("/login", response_model=TokenResponse)
async def login(req: LoginRequest, request: Request, db: Session = Depends(get_db)):
    principal = authenticate(db, req.email, req.password, meta=RequestMeta.from_request(request))
    if not principal:
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    token = create_access_token(
        subject=str(principal.user_id),
        claims=principal_claims(
            user_id=principal.user_id,
            role=principal.role.value,
            branch_id=principal.branch_id,
            email=principal.email,
        ),
    )
    return TokenResponse(access_token=token)


@router.post("/logout")
async def logout(
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    # tokens are stateless; logout is recorded for the audit trail only
    record_logout(db, principal, meta=RequestMeta.from_request(request))
    return {"status": "logged out"}


@router.get("/me", response_model=MeResponse)
def get_me(principal: Principal = Depends(get_current_principal)):
    return {
        "userId": principal.user_id,
        "email": principal.email,
        "role": principal.role.value,
        "branchId": principal.branch_id,
    }
