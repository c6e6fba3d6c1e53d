import enum


class OrderStatus(enum.Enum):
    received = "received"
    confirmed = "confirmed"
    shipped = "shipped"
    delivered = "delivered"
    canceled = "canceled"


class PaymentMethod(enum.Enum):
    credit = "credit"
    debit = "debit"
    pix = "pix"
    money = "money"


class CartStage(enum.Enum):
    cart = "cart"
    checkout = "checkout"


class QuantityControl(enum.Enum):
    livre = "livre"
    multiplo = "multiplo"


class DiscountType(enum.Enum):
    percentage = "percentage"
    fixed = "fixed"


class PointsKind(enum.Enum):
    compra = "compra"
    ajuste = "ajuste"


class AdjustmentType(enum.Enum):
    adicao = "adicao"
    remocao = "remocao"


class CepSource(enum.Enum):
    local_cache = "local_cache"
    persisted_cache = "persisted_cache"
    viacep = "viacep"
    brasilapi = "brasilapi"
    fallback = "fallback"


class Confidence(enum.Enum):
    high = "high"
    medium = "medium"
    low = "low"


class CepErrorKind(enum.Enum):
    validation = "validation"
    not_found = "not_found"
    network = "network"
    timeout = "timeout"
    api_error = "api_error"


class ZoneType(enum.Enum):
    cep_range = "cep_range"
    cep_specific = "cep_specific"
    ibge = "ibge"
    cidade = "cidade"


class RestrictionType(enum.Enum):
    not_delivered = "not_delivered"
    freight_on_demand = "freight_on_demand"
    higher_fee = "higher_fee"
