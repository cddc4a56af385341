from decimal import Decimal
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from cafepos.db import get_db
from cafepos.config import settings
from cafepos.util.security import hash_pw
from cafepos.models.core import Branch, User, DiningTable, TableStatus, Coupon, DiscountType

router = APIRouter(prefix="/admin", tags=["admin"])

@router.post("/dev-bootstrap")
def dev_bootstrap(db: Session = Depends(get_db)):
    if settings.APP_ENV != "dev":
        raise HTTPException(403, detail="Not allowed")

    # Branch with the default tax profile
    b = db.query(Branch).filter(Branch.code == "MAIN").first()
    if not b:
        b = Branch(
            name="Main Branch",
            code="MAIN",
            phone="1800123456",
            gstin="27ABCDE1234F2Z5",
            address="123 Food Street, Mumbai",
            cgst_rate=settings.DEFAULT_CGST_RATE,
            sgst_rate=settings.DEFAULT_SGST_RATE,
        )
        db.add(b); db.flush()

    # Admin user (password for login, PIN for cancellations)
    u = db.query(User).filter(User.mobile == "9999999999").first()
    if not u:
        u = User(
            branch_id=b.id,
            name="Admin",
            mobile="9999999999",
            pass_hash=hash_pw("admin"),
            pin_hash=hash_pw("1234"),
            active=True,
        )
        db.add(u); db.flush()

    # A few tables
    existing = {t.table_no for t in db.query(DiningTable).filter(DiningTable.branch_id == b.id).all()}
    for no in range(1, 5):
        if no not in existing:
            db.add(DiningTable(branch_id=b.id, table_no=no, capacity=4, location="indoor",
                               status=TableStatus.AVAILABLE))

    # Demo coupon: 10% off, capped at 50, on bills of 200+
    if not db.query(Coupon).filter(Coupon.code == "WELCOME10").first():
        db.add(Coupon(
            code="WELCOME10",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=Decimal("10"),
            max_discount_amount=Decimal("50"),
            min_order_amount=Decimal("200"),
            usage_count=0,
            is_active=True,
        ))

    db.commit()
    return {
        "branch_id": b.id,
        "admin_mobile": u.mobile,
        "admin_password": "admin",
        "admin_pin": "1234",
        "coupon_code": "WELCOME10",
    }
