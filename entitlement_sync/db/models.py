"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from entitlement_sync.models.domain import EntitlementRecord

# Records without a product are still stored; they use this key.
NO_PRODUCT_KEY = ""


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class EntitlementRecordRow(Base):
    """
    ORM model for entitlement_records table.

    Holds exactly the last reconciled entitlement list of each user, one row
    per product.
    """

    __tablename__ = "entitlement_records"

    # Primary Key
    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    product: Mapped[str] = mapped_column(String(255), primary_key=True)

    purchase_token: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Remote fields
    is_entitlement_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    will_renew: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_consumed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_account_hold: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_grace_period: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_paused: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_prepaid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Local fields
    sub_already_owned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_local_purchase: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Preserves list order across replace-all
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (CheckConstraint("quantity >= 0", name="ck_quantity_non_negative"),)

    @classmethod
    def from_record(cls, user_id: str, position: int, record: EntitlementRecord) -> "EntitlementRecordRow":
        """Build a row from a domain record."""
        return cls(
            user_id=user_id,
            product=record.product if record.product is not None else NO_PRODUCT_KEY,
            purchase_token=record.purchase_token,
            is_entitlement_active=record.is_entitlement_active,
            is_acknowledged=record.is_acknowledged,
            will_renew=record.will_renew,
            is_consumed=record.is_consumed,
            is_account_hold=record.is_account_hold,
            is_grace_period=record.is_grace_period,
            is_paused=record.is_paused,
            is_prepaid=record.is_prepaid,
            quantity=record.quantity,
            sub_already_owned=record.sub_already_owned,
            is_local_purchase=record.is_local_purchase,
            position=position,
            updated_at=utc_now(),
        )

    def to_record(self) -> EntitlementRecord:
        """Convert to the immutable domain record."""
        return EntitlementRecord(
            product=self.product if self.product != NO_PRODUCT_KEY else None,
            purchase_token=self.purchase_token,
            is_entitlement_active=self.is_entitlement_active,
            is_acknowledged=self.is_acknowledged,
            will_renew=self.will_renew,
            is_consumed=self.is_consumed,
            is_account_hold=self.is_account_hold,
            is_grace_period=self.is_grace_period,
            is_paused=self.is_paused,
            sub_already_owned=self.sub_already_owned,
            is_local_purchase=self.is_local_purchase,
            is_prepaid=self.is_prepaid,
            quantity=self.quantity,
        )
