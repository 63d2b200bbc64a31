"""
Organizer-scoped discount coupons.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)

from boxoffice.db.base import Base, TimestampMixin, UTCDateTime, new_id

DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED = "fixed"


class Coupon(Base, TimestampMixin):
    __tablename__ = "coupons"

    id = Column(String(36), primary_key=True, default=new_id)
    organizer_id = Column(String(64), nullable=False, index=True)
    code = Column(String(50), nullable=False)
    discount_type = Column(String(20), nullable=False)
    discount_value = Column(Numeric(12, 2), nullable=False)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=True)
    max_uses = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0)
    min_purchase_amount = Column(Numeric(12, 2), nullable=True)
    valid_from = Column(UTCDateTime(), nullable=True)
    valid_until = Column(UTCDateTime(), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("organizer_id", "code", name="uq_coupon_organizer_code"),
        CheckConstraint(
            "discount_type IN ('percentage', 'fixed')",
            name="check_coupon_discount_type",
        ),
        CheckConstraint("discount_value >= 0", name="check_coupon_value_non_negative"),
        CheckConstraint("used_count >= 0", name="check_coupon_used_non_negative"),
        CheckConstraint(
            "max_uses IS NULL OR used_count <= max_uses",
            name="check_coupon_used_lte_max",
        ),
    )

    def __repr__(self) -> str:
        return f"<Coupon(code={self.code}, type={self.discount_type}, used={self.used_count}/{self.max_uses})>"
