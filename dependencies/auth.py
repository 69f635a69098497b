from fastapi import Depends, HTTPException, status, Request
from jose import JWTError
from core.security import decode_access_token
from models import UserRole


async def get_current_user(request: Request) -> dict:
    """Get current authenticated user from HttpOnly cookie or Authorization header"""
    token = request.cookies.get("access_token")

    # Fallback to Authorization header (for mobile/API clients)
    if not token:
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.split(" ")[1]

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
    )

    if not token:
        raise credentials_exception

    try:
        payload = decode_access_token(token)
    except JWTError:
        raise credentials_exception

    user_id = payload.get("sub")
    if user_id is None:
        raise credentials_exception

    role = payload.get("role", UserRole.PATIENT.value)
    if role not in {r.value for r in UserRole}:
        raise credentials_exception

    return {"id": user_id, "role": role}


def require_roles(*roles: UserRole):
    """Dependency factory: the caller must hold one of the given roles."""
    allowed = {UserRole(r).value for r in roles}

    async def dependency(current_user: dict = Depends(get_current_user)) -> dict:
        if current_user.get("role") not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{' or '.join(sorted(allowed)).title()} access required",
            )
        return current_user

    return dependency


get_current_admin = require_roles(UserRole.ADMIN)
get_current_staff = require_roles(UserRole.DOCTOR, UserRole.ADMIN)
