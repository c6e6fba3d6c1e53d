from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class Vendor(Base):
    __tablename__ = "vendors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, index=True)
    store_name: Mapped[str] = mapped_column(String, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    products = relationship("Product", back_populates="vendor")


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    vendor_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    promo_price_cents: Mapped[int | None] = mapped_column(Integer)
    stock: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=0, nullable=False)
    unit_of_measure: Mapped[str | None] = mapped_column(String(32))
    conversion_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 3))
    quantity_control: Mapped[str] = mapped_column(String(16), default="livre", nullable=False)
    images: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped["DateTime"] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    vendor = relationship("Vendor", back_populates="products")

    @property
    def effective_price_cents(self) -> int:
        if self.promo_price_cents:
            return int(self.promo_price_cents)
        return int(self.price_cents or 0)
