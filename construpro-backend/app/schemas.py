from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from app.domain.core.enums import AdjustmentType, CepSource, Confidence

PaymentMethodIn = Literal["credit", "debit", "pix", "money"]


# Cart


class CartItemIn(BaseModel):
    product_id: str
    quantity: Decimal = Decimal("1")


class CartItemUpdateIn(BaseModel):
    quantity: Decimal


class CartItemOut(BaseModel):
    id: str
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    quantity: Decimal
    unit_price_cents: int
    line_total_cents: int
    unit_of_measure: Optional[str] = None
    conversion_value: Optional[Decimal] = None
    quantity_control: Optional[str] = None
    step: Decimal
    max_quantity: Optional[Decimal] = None


class AppliedCouponOut(BaseModel):
    code: str
    discount_cents: int
    eligible_products: List[str] = Field(default_factory=list)


class CartOut(BaseModel):
    id: str
    stage: str
    version: int
    items: List[CartItemOut] = Field(default_factory=list)
    applied_coupon: Optional[AppliedCouponOut] = None
    subtotal_cents: int
    discount_cents: int
    total_cents: int


# Stock validation


class InvalidItemOut(BaseModel):
    item_id: str
    product_id: Optional[str] = None
    requested_quantity: Decimal
    available_stock: Decimal
    product_name: str

    class Config:
        from_attributes = True


class AdjustedItemOut(BaseModel):
    item_id: str
    product_id: str
    old_quantity: Decimal
    new_quantity: Decimal
    product_name: str

    class Config:
        from_attributes = True


class StockValidationOut(BaseModel):
    is_valid: bool
    invalid_items: List[InvalidItemOut] = Field(default_factory=list)
    adjusted_items: List[AdjustedItemOut] = Field(default_factory=list)
    cart_version: Optional[int] = None

    class Config:
        from_attributes = True


class AdjustmentIn(BaseModel):
    item_id: str
    new_quantity: Decimal


class RemediationIn(BaseModel):
    action: Literal["remove", "adjust", "continue", "auto_fix"]
    item_ids: List[str] = Field(default_factory=list)
    adjustments: List[AdjustmentIn] = Field(default_factory=list)


class StockWarningOut(BaseModel):
    kind: Literal["removed", "limited"]
    item_id: str
    product_id: Optional[str] = None
    product_name: str
    message: str
    requested_quantity: Optional[Decimal] = None
    available_stock: Optional[Decimal] = None

    class Config:
        from_attributes = True


class RevalidateOut(BaseModel):
    is_valid: bool
    removed_item_ids: List[str] = Field(default_factory=list)
    warnings: List[StockWarningOut] = Field(default_factory=list)
    cart: CartOut


# Coupon


class CouponApplyIn(BaseModel):
    code: str = Field(min_length=1, max_length=64)


class CouponApplyOut(BaseModel):
    skipped: bool = False
    discount_cents: int = 0
    message: str = ""
    cart: Optional[CartOut] = None


# Checkout


class CheckoutIn(BaseModel):
    payment_method: PaymentMethodIn
    shipping_cep: Optional[str] = None
    shipping_address: Optional[str] = None


class CheckoutOut(BaseModel):
    order_id: str
    subtotal_cents: int
    discount_cents: int
    total_cents: int
    points_earned: int
    coupon_code: Optional[str] = None

    class Config:
        from_attributes = True


# CEP


class CepOut(BaseModel):
    cep: str
    logradouro: str = ""
    bairro: str = ""
    localidade: str = ""
    uf: str = ""
    ibge: Optional[str] = None
    zona_entrega: Optional[str] = None
    prazo_entrega: Optional[str] = None
    source: CepSource
    confidence: Confidence
    discrepancy: bool = False
    sources: Dict[str, Any] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)

    class Config:
        from_attributes = True


class CepDiagnosticOut(BaseModel):
    cep: str
    is_valid_format: bool
    provider_status: Dict[str, str] = Field(default_factory=dict)
    provider_details: Dict[str, Optional[str]] = Field(default_factory=dict)
    suggested_ceps: List[str] = Field(default_factory=list)
    diagnostic_message: str
    discrepancy: bool = False
    best_result: Optional[CepOut] = None

    class Config:
        from_attributes = True


class CepVerificationOut(BaseModel):
    cep: str
    viacep: Optional[Dict[str, Any]] = None
    brasilapi: Optional[Dict[str, Any]] = None
    discrepancy: bool
    needs_correction: bool
    correct_city: Optional[str] = None
    recommended: Optional[CepOut] = None
    cached: Optional[CepOut] = None
    warnings: List[str] = Field(default_factory=list)

    class Config:
        from_attributes = True


class CepSuggestionsOut(BaseModel):
    cep: str
    suggestions: List[str]


class CepWarmIn(BaseModel):
    ceps: Optional[List[str]] = None


class CepWarmOut(BaseModel):
    warmed: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)

    class Config:
        from_attributes = True


# Delivery


class RestrictionCheckIn(BaseModel):
    vendor_id: str
    product_id: str
    customer_cep: str


class RestrictionCheckOut(BaseModel):
    has_restriction: bool
    restriction_type: str = ""
    restriction_message: str = ""
    delivery_available: bool

    class Config:
        from_attributes = True


# Points


class PointsAdjustmentIn(BaseModel):
    customer_id: str
    adjustment_type: AdjustmentType
    value: int
    reason: str
    # reenvio de uma tentativa que falhou
    idempotency_key: Optional[str] = None


class PointsAdjustmentOut(BaseModel):
    skipped: bool = False
    created: bool = False
    id: Optional[str] = None
    user_id: Optional[str] = None
    vendor_id: Optional[str] = None
    points: int = 0
    reason: Optional[str] = None
    idempotency_key: Optional[str] = None
    created_at: Optional[datetime] = None
    balance: Optional[int] = None


# Catalog images


class ImageParseIn(BaseModel):
    images: Any = None


class ImageParseOut(BaseModel):
    urls: List[str]
    errors: List[str]
    original_format: str
    is_valid: bool
    needs_correction: bool
    corrected: Optional[str] = None


class ImageCheckIn(BaseModel):
    urls: List[str] = Field(min_length=1, max_length=20)


class ImageCheckOut(BaseModel):
    url: str
    state: str
    attempts: int
    status_code: Optional[int] = None
    error: Optional[str] = None
    ok: bool


class ProductImagesOut(BaseModel):
    product_id: str
    changed: bool
    images: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
