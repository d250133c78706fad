#app/core/auth_deps.py
from __future__ import annotations

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from app.core.security import decode_token
from app.models.enums import UserRole
from app.policies.rbac import Principal

bearer = HTTPBearer(auto_error=True)


def get_current_principal(
    request: Request,
    creds: HTTPAuthorizationCredentials = Depends(bearer),
) -> Principal:
    """
    Canonical authentication dependency.

    Guarantees:
    - JWT is valid
    - user_id and role are present
    - role is a valid UserRole
    - non-admin tokens carry a branch
    """

    try:
        payload = decode_token(creds.credentials)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token.")

    user_id = payload.get("user_id")
    role = payload.get("role")
    branch_id = payload.get("branch_id")
    email = payload.get("email") or ""

    if user_id is None or not role:
        raise HTTPException(status_code=401, detail="Token missing required claims.")

    try:
        role_enum = UserRole(role)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid role in token.")

    # admins act across branches; everyone else is pinned to one
    if role_enum != UserRole.admin and branch_id is None:
        raise HTTPException(status_code=401, detail="Token missing branch claim.")

    principal = Principal(
        user_id=int(user_id),
        role=role_enum,
        branch_id=int(branch_id) if branch_id is not None else None,
        email=str(email),
    )

    # Make principal available to downstream middleware / handlers
    request.state.principal = principal

    return principal
