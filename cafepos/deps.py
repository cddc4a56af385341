from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt
from cafepos.context import RequestContext
from cafepos.util.security import decode_token

auth_scheme = HTTPBearer(auto_error=False)

def require_claims(creds: HTTPAuthorizationCredentials | None = Depends(auth_scheme)) -> dict:
    if not creds:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        data = decode_token(creds.credentials)
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    if not data.get("sub") or not data.get("branch"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return data

def require_context(request: Request, claims: dict = Depends(require_claims)) -> RequestContext:
    """Acting user, branch and request id, handed explicitly to the services."""
    req_id = getattr(request.state, "request_id", None)
    if req_id:
        return RequestContext(user_id=claims["sub"], branch_id=claims["branch"], request_id=req_id[:36])
    return RequestContext(user_id=claims["sub"], branch_id=claims["branch"])
