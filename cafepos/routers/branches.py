from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from cafepos.context import RequestContext
from cafepos.db import get_db
from cafepos.deps import require_context
from cafepos.errors import NotFoundError
from cafepos.models.core import Branch
from cafepos.schemas.tables import TaxProfile
from cafepos.services.billing import to_decimal
from cafepos.util.audit import log_audit

router = APIRouter(prefix="/branches", tags=["branches"])

def _branch(db: Session, ctx: RequestContext, branch_id: str) -> Branch:
    b = db.get(Branch, branch_id)
    # staff only ever see their own branch
    if not b or b.id != ctx.branch_id:
        raise NotFoundError("branch", branch_id)
    return b

def _profile(b: Branch) -> dict:
    return {"cgst_rate": float(b.cgst_rate or 0), "sgst_rate": float(b.sgst_rate or 0), "gstin": b.gstin}

@router.get("/{branch_id}/tax-profile")
def get_tax_profile(branch_id: str, db: Session = Depends(get_db),
                    ctx: RequestContext = Depends(require_context)):
    return _profile(_branch(db, ctx, branch_id))

@router.put("/{branch_id}/tax-profile")
def update_tax_profile(branch_id: str, body: TaxProfile, db: Session = Depends(get_db),
                       ctx: RequestContext = Depends(require_context)):
    """New rates apply to orders opened or saved from now on; existing snapshots are left alone."""
    b = _branch(db, ctx, branch_id)
    before = _profile(b)
    b.cgst_rate = to_decimal(body.cgst_rate)
    b.sgst_rate = to_decimal(body.sgst_rate)
    b.gstin = body.gstin
    log_audit(db, ctx, "branch", b.id, "TAX_PROFILE", before=before, after=body.model_dump())
    db.commit()
    return _profile(b)
