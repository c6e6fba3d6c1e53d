from sqlalchemy import Boolean, CHAR, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db import Base


class ZipCache(Base):
    __tablename__ = "zip_cache"

    cep: Mapped[str] = mapped_column(CHAR(8), primary_key=True)
    logradouro: Mapped[str | None] = mapped_column(Text)
    bairro: Mapped[str | None] = mapped_column(Text)
    localidade: Mapped[str | None] = mapped_column(Text)
    uf: Mapped[str | None] = mapped_column(String(2))
    ibge: Mapped[str | None] = mapped_column(String(7))
    zona_entrega: Mapped[str | None] = mapped_column(String(16))
    cached_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class DeliveryZone(Base):
    __tablename__ = "delivery_zones"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    zone_type: Mapped[str] = mapped_column(String(16), nullable=False)
    zone_name: Mapped[str] = mapped_column(String, nullable=False)
    ibge_code: Mapped[str | None] = mapped_column(String(7), index=True)
    delivery_time: Mapped[str] = mapped_column(Text, nullable=False)


class VendorProductRestriction(Base):
    __tablename__ = "vendor_product_restrictions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    vendor_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    zone_type: Mapped[str] = mapped_column(String(16), nullable=False)
    zone_value: Mapped[str] = mapped_column(Text, nullable=False)
    restriction_type: Mapped[str] = mapped_column(String(24), nullable=False)
    restriction_message: Mapped[str] = mapped_column(Text, default="", nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
