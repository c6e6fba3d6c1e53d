"""Cria as tabelas e um conjunto pequeno de dados de demonstração.

Uso: python -m scripts.seed [--vendor-user-id ID]
"""
import argparse
import uuid
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app import models
from app.db import Base, SessionLocal, engine
from app.security import create_access_token


def uid() -> str:
    return str(uuid.uuid4())


def get_or_create_vendor(db: Session, user_id: str, store_name: str) -> models.Vendor:
    vendor = db.scalar(select(models.Vendor).where(models.Vendor.user_id == user_id))
    if vendor:
        vendor.store_name = store_name
        return vendor
    vendor = models.Vendor(id=uid(), user_id=user_id, store_name=store_name)
    db.add(vendor)
    db.flush()
    return vendor


def get_or_create_product(
    db: Session,
    vendor_id: str,
    name: str,
    price_cents: int,
    stock: Decimal,
    unit_of_measure: str = "unidade",
    conversion_value: Decimal | None = None,
    quantity_control: str = "livre",
    promo_price_cents: int | None = None,
    images: str | None = None,
) -> models.Product:
    product = db.scalar(
        select(models.Product).where(
            models.Product.vendor_id == vendor_id,
            models.Product.name == name,
        )
    )
    if product is None:
        product = models.Product(id=uid(), vendor_id=vendor_id, name=name, price_cents=price_cents)
        db.add(product)
    product.price_cents = price_cents
    product.promo_price_cents = promo_price_cents
    product.stock = stock
    product.unit_of_measure = unit_of_measure
    product.conversion_value = conversion_value
    product.quantity_control = quantity_control
    product.images = images
    db.flush()
    return product


def ensure_coupon(db: Session, code: str, name: str, discount_type: models.DiscountType, value: int) -> models.Coupon:
    coupon = db.scalar(select(models.Coupon).where(models.Coupon.code == code))
    if coupon:
        coupon.active = True
        return coupon
    coupon = models.Coupon(
        id=uid(),
        code=code,
        name=name,
        discount_type=discount_type,
        discount_value=value,
        min_order_cents=5000,
    )
    db.add(coupon)
    db.flush()
    return coupon


def ensure_delivery_zones(db: Session) -> None:
    if db.scalar(select(models.DeliveryZone).limit(1)):
        return
    db.add_all([
        models.DeliveryZone(zone_type="local", zone_name="Capelinha", ibge_code="3112307",
                            delivery_time="entrega em até 2 dias úteis"),
        models.DeliveryZone(zone_type="regional", zone_name="Região de Capelinha", ibge_code=None,
                            delivery_time="entrega em até 5 dias úteis"),
        models.DeliveryZone(zone_type="outras", zone_name="Demais cidades", ibge_code=None,
                            delivery_time="frete a combinar (informado após o fechamento do pedido)"),
    ])


def main() -> None:
    parser = argparse.ArgumentParser(description="Cria as tabelas e dados de demonstração do ConstruPRO.")
    parser.add_argument("--vendor-user-id", default="demo-vendor-user")
    args = parser.parse_args()

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        vendor = get_or_create_vendor(db, args.vendor_user_id, "Depósito Capelinha")
        cimento = get_or_create_product(db, vendor.id, "Cimento CP-II 50kg", 3990, Decimal("120"), "saco")
        get_or_create_product(
            db, vendor.id, "Piso cerâmico 60x60", 5490, Decimal("84"), "m²",
            conversion_value=Decimal("2.16"), quantity_control="multiplo",
        )
        get_or_create_product(db, vendor.id, "Vergalhão 10mm", 4290, Decimal("35.5"), "barra")
        get_or_create_product(
            db, vendor.id, "Tinta acrílica 18L", 32990, Decimal("12"), "lata",
            promo_price_cents=29990, images='["https://cdn.construpro.com.br/tinta-18l.jpg"]',
        )
        coupon = ensure_coupon(db, "BEMVINDO10", "Boas-vindas", models.DiscountType.percentage, 10)
        ensure_coupon(db, "CIMENTO5", "R$ 5 no cimento", models.DiscountType.fixed, 500)
        db.flush()
        cimento_coupon = db.scalar(select(models.Coupon).where(models.Coupon.code == "CIMENTO5"))
        if not db.get(models.CouponProduct, (cimento_coupon.id, cimento.id)):
            db.add(models.CouponProduct(coupon_id=cimento_coupon.id, product_id=cimento.id))
        ensure_delivery_zones(db)
        db.commit()
        print(f"Seed ok vendor={vendor.id} coupon={coupon.code}")
        print(f"Vendor token: {create_access_token({'sub': args.vendor_user_id})}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
