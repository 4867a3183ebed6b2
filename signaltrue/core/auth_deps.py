#signaltrue/core/auth_deps.py
from __future__ import annotations

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from signaltrue.core.security import decode_token
from signaltrue.models.enums import MemberRole
from signaltrue.policies.rbac import Principal

bearer = HTTPBearer(auto_error=True)


def get_current_principal(
    request: Request,
    creds: HTTPAuthorizationCredentials = Depends(bearer),
) -> Principal:
    """
    Canonical authentication dependency.

    Guarantees:
    - JWT is valid
    - sub, org_id and role are present
    - role is a valid MemberRole
    """

    try:
        payload = decode_token(creds.credentials)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid or expired token.")

    user_id = payload.get("sub")
    organization_id = payload.get("org_id")
    role = payload.get("role")
    display_name = payload.get("display_name") or "Unknown"

    if not user_id or not organization_id or not role:
        raise HTTPException(status_code=401, detail="Token missing required claims.")

    try:
        role_enum = MemberRole(role)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid role in token.")

    principal = Principal(
        user_id=str(user_id),
        organization_id=str(organization_id),
        role=role_enum,
        display_name=str(display_name),
    )

    # Make principal available to downstream middleware / handlers
    request.state.principal = principal

    return principal
