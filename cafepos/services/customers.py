"""Returning-customer helpers. Everything here is best effort."""

from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cafepos.models.core import Customer
from cafepos.services.billing import to_decimal
from cafepos.util.logging import get_logger

logger = get_logger(__name__)

POINT_EVERY = Decimal("100")  # 1 loyalty point per ₹100 spent


def lookup_name(db: Session, phone: str | None) -> str | None:
    """Name on file for a phone number, or None. Lookup failures never block the caller."""
    if not phone:
        return None
    try:
        c = db.query(Customer).filter(Customer.phone == phone).first()
        return c.name if c else None
    except SQLAlchemyError as e:
        logger.warning("Customer lookup failed", phone_suffix=phone[-4:], error=str(e))
        return None


def record_visit(db: Session, phone: str | None, name: str | None, tax_id: str | None, amount) -> None:
    """Update visit/spend/loyalty stats after an order has been paid and committed."""
    if not phone:
        return
    try:
        c = db.query(Customer).filter(Customer.phone == phone).first()
        if not c:
            c = Customer(phone=phone, name=name, tax_id=tax_id, visits=0, total_spent=0, loyalty_points=0)
            db.add(c)
        elif name and not c.name:
            c.name = name
        spent = to_decimal(amount)
        c.visits = (c.visits or 0) + 1
        c.total_spent = to_decimal(c.total_spent) + spent
        c.loyalty_points = (c.loyalty_points or 0) + int(spent // POINT_EVERY)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("Customer stats update skipped", phone_suffix=phone[-4:], error=str(e))
