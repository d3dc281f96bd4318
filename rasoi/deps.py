from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt
from sqlalchemy.orm import Session
from rasoi.db import get_db
from rasoi.models.core import User, Rider, UserRole
from rasoi.util.security import Principal, decode_token

auth_scheme = HTTPBearer(auto_error=False)

def require_auth(creds: HTTPAuthorizationCredentials | None = Depends(auth_scheme)) -> Principal:
    if not creds:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        return decode_token(creds.credentials)
    except (jwt.PyJWTError, KeyError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

def allowed(principal: Principal, roles: tuple[UserRole, ...]) -> bool:
    """Role policy: is this caller's role claim one of `roles`?"""
    return principal.role in roles

def require_role(*roles: UserRole):
    def _dep(principal: Principal = Depends(require_auth)) -> Principal:
        if not allowed(principal, roles):
            raise HTTPException(status_code=403, detail=f"Requires role: {', '.join(r.value for r in roles)}")
        return principal
    return _dep

def current_user(principal: Principal = Depends(require_auth), db: Session = Depends(get_db)) -> User:
    user = db.get(User, principal.sub)
    if not user or not user.active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account disabled")
    return user

def current_rider(principal: Principal = Depends(require_role(UserRole.RIDER)), db: Session = Depends(get_db)) -> Rider:
    rider = db.get(Rider, principal.sub)
    if not rider or not rider.active:
        raise HTTPException(status_code=403, detail="Not an active rider")
    return rider
