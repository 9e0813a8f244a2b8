from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import CheckConstraint, DateTime, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base


class TokenStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite drops tzinfo, so store naive everywhere)."""
    return datetime.now(UTC).replace(tzinfo=None)


class TrackedToken(Base):
    """Token under observation by the lifecycle monitor.

    price is the reference price captured at enrollment and is never
    updated afterwards; polls write current_price instead.
    """

    __tablename__ = "tokens"

    address: Mapped[str] = mapped_column(String(64), primary_key=True)
    discovered_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    price: Mapped[Decimal] = mapped_column(Numeric)
    current_price: Mapped[Decimal | None] = mapped_column(Numeric)
    last_checked_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    status: Mapped[str] = mapped_column(String(10), default=TokenStatus.ACTIVE.value)
    bought_at: Mapped[datetime | None] = mapped_column(DateTime)
    source: Mapped[str | None] = mapped_column(String(20))

    # Best-effort enrichment
    name: Mapped[str] = mapped_column(String(255), default="Unknown")
    total_supply: Mapped[Decimal] = mapped_column(Numeric, default=Decimal("0"))
    market_cap: Mapped[Decimal | None] = mapped_column(Numeric)

    __table_args__ = (
        CheckConstraint("status IN ('active', 'inactive')", name="ck_tokens_status"),
        Index("idx_tokens_status", "status"),
        Index("idx_tokens_last_checked", "last_checked_at"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == TokenStatus.ACTIVE.value

    def price_change_pct(self, current: Decimal) -> Decimal:
        """Percent change of current vs the reference price."""
        return (current - self.price) / self.price * Decimal("100")
