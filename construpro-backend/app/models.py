from app.domain.core.enums import (
    AdjustmentType,
    CartStage,
    CepErrorKind,
    CepSource,
    Confidence,
    DiscountType,
    OrderStatus,
    PaymentMethod,
    PointsKind,
    QuantityControl,
    RestrictionType,
    ZoneType,
)
from app.domain.address.models import DeliveryZone, VendorProductRestriction, ZipCache
from app.domain.cart.models import Cart, CartItem
from app.domain.catalog.models import Product, Vendor
from app.domain.coupon.models import Coupon, CouponProduct, CouponUsage
from app.domain.order.models import Order, OrderItem
from app.domain.points.models import PointsBalance, PointTransaction

__all__ = [
    "AdjustmentType",
    "CartStage",
    "CepErrorKind",
    "CepSource",
    "Confidence",
    "DiscountType",
    "OrderStatus",
    "PaymentMethod",
    "PointsKind",
    "QuantityControl",
    "RestrictionType",
    "ZoneType",
    "Vendor",
    "Product",
    "Cart",
    "CartItem",
    "Coupon",
    "CouponProduct",
    "CouponUsage",
    "Order",
    "OrderItem",
    "ZipCache",
    "DeliveryZone",
    "VendorProductRestriction",
    "PointTransaction",
    "PointsBalance",
]
