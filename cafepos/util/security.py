import jwt
from datetime import datetime, timedelta, timezone
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from cafepos.config import settings

ph = PasswordHasher()

def hash_pw(p: str) -> str:
    return ph.hash(p)

def verify_pw(hashv: str | None, p: str) -> bool:
    if not hashv or not p:
        return False
    try:
        return ph.verify(hashv, p)
    except (VerificationError, InvalidHashError):
        return False

def create_token(sub: str, branch_id: str) -> str:
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=settings.JWT_EXP_MIN)
    payload = {"sub": sub, "branch": branch_id, "iss": settings.JWT_ISS,
               "iat": int(now.timestamp()), "exp": int(exp.timestamp())}
    return jwt.encode(payload, settings.APP_SECRET, algorithm="HS256")

def decode_token(token: str) -> dict:
    return jwt.decode(token, settings.APP_SECRET, algorithms=["HS256"], issuer=settings.JWT_ISS)

# ── Confirmation tokens (ask, then commit) ──────────────────────────────────
def create_action_token(action: str, claims: dict, ttl_sec: int | None = None) -> str:
    now = datetime.now(timezone.utc)
    ttl = ttl_sec if ttl_sec is not None else settings.CONFIRM_TOKEN_TTL_SEC
    payload = {**claims, "act": action, "iss": settings.JWT_ISS,
               "iat": int(now.timestamp()), "exp": int((now + timedelta(seconds=ttl)).timestamp())}
    return jwt.encode(payload, settings.APP_SECRET, algorithm="HS256")

def read_action_token(token: str, action: str) -> dict:
    """Decode a confirmation token; raises jwt.InvalidTokenError on any problem."""
    data = jwt.decode(token, settings.APP_SECRET, algorithms=["HS256"], issuer=settings.JWT_ISS)
    if data.get("act") != action:
        raise jwt.InvalidTokenError("token issued for a different action")
    return data
