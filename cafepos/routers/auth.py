from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from cafepos.schemas.common import Token
from cafepos.util.security import create_token, verify_pw
from cafepos.util.logging import get_logger
from cafepos.models.core import User
from cafepos.db import get_db

router = APIRouter(prefix="/auth", tags=["auth"])
logger = get_logger(__name__)

@router.post("/login", response_model=Token)
def login(mobile: str, password: str, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.mobile == mobile, User.active.is_(True)).first()
    if not user or not verify_pw(user.pass_hash, password):
        logger.warning("Login rejected", mobile_suffix=mobile[-4:])
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return Token(access_token=create_token(user.id, user.branch_id), branch_id=user.branch_id)
