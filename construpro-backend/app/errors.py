"""Exception taxonomy shared by services and routers.

Stock problems are never raised: they travel as ``StockValidationResult``.
Everything else that a caller must act on is a ``ConstruProError`` carrying
the ``can_retry`` / ``suggest_manual`` flags the client uses to offer a next
step (retry, manual entry, remove item or contact support).
"""
from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from app.domain.core.enums import CepErrorKind


CEP_ERROR_FLAGS: dict[CepErrorKind, tuple[bool, bool]] = {
    # kind: (can_retry, suggest_manual)
    CepErrorKind.validation: (False, False),
    CepErrorKind.not_found: (True, True),
    CepErrorKind.network: (True, True),
    CepErrorKind.timeout: (True, True),
    CepErrorKind.api_error: (True, True),
}

CEP_ERROR_MESSAGES: dict[CepErrorKind, str] = {
    CepErrorKind.validation: "CEP deve ter 8 dígitos",
    CepErrorKind.not_found: "CEP não encontrado em nenhuma base de dados oficial. Confirme se digitou corretamente.",
    CepErrorKind.network: "Problema de conectividade. Verifique sua internet e tente novamente.",
    CepErrorKind.timeout: "Busca demorou muito para responder. APIs podem estar sobrecarregadas.",
    CepErrorKind.api_error: "Serviços de CEP temporariamente indisponíveis. Tente novamente em alguns minutos.",
}


class ConstruProError(Exception):
    kind: str = "error"
    status_code: int = 400
    can_retry: bool = False
    suggest_manual: bool = False
    default_message: str = "Erro inesperado"

    def __init__(self, message: str | None = None, *, details: Any = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind,
            "message": self.message,
            "details": self.details,
            "can_retry": self.can_retry,
            "suggest_manual": self.suggest_manual,
        }


class ValidationError(ConstruProError):
    kind = CepErrorKind.validation.value
    status_code = 400
    default_message = "Dados inválidos"


class NotFoundError(ConstruProError):
    kind = CepErrorKind.not_found.value
    status_code = 404
    can_retry = True
    suggest_manual = True
    default_message = "Recurso não encontrado"


class TransientError(ConstruProError):
    can_retry = True
    suggest_manual = True
    status_code = 503


class NetworkError(TransientError):
    kind = CepErrorKind.network.value
    status_code = 503
    default_message = CEP_ERROR_MESSAGES[CepErrorKind.network]


class UpstreamTimeoutError(TransientError):
    kind = CepErrorKind.timeout.value
    status_code = 504
    default_message = CEP_ERROR_MESSAGES[CepErrorKind.timeout]


class UpstreamServiceError(ConstruProError):
    kind = CepErrorKind.api_error.value
    status_code = 502
    can_retry = True
    suggest_manual = True
    default_message = "Serviço externo indisponível. Tente novamente em instantes."


class FunctionNotDeployedError(UpstreamServiceError):
    kind = "function_not_deployed"
    can_retry = False
    suggest_manual = False

    def __init__(self, function_name: str, *, details: Any = None) -> None:
        self.function_name = function_name
        super().__init__(
            f"A função '{function_name}' não está implantada no servidor. Contate o suporte.",
            details=details,
        )


class CouponRejected(ConstruProError):
    """The validation function answered ``valid=false``; its message is shown as is."""

    kind = "coupon_rejected"
    status_code = 409
    default_message = "Cupom inválido"


class CepLookupError(ConstruProError):
    """Terminal non-success state of a CEP lookup."""

    def __init__(self, kind: CepErrorKind, message: str | None = None, *, details: Any = None) -> None:
        self.cep_kind = kind
        self.kind = kind.value
        self.can_retry, self.suggest_manual = CEP_ERROR_FLAGS[kind]
        self.status_code = _CEP_STATUS[kind]
        super().__init__(message or CEP_ERROR_MESSAGES[kind], details=details)


_CEP_STATUS = {
    CepErrorKind.validation: 400,
    CepErrorKind.not_found: 404,
    CepErrorKind.network: 503,
    CepErrorKind.timeout: 504,
    CepErrorKind.api_error: 502,
}


def cep_error(kind: CepErrorKind, message: str | None = None, details: Any = None) -> CepLookupError:
    return CepLookupError(kind, message, details=details)


async def construpro_error_handler(request: Request, exc: ConstruProError) -> JSONResponse:
    request.state.error_kind = exc.kind
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})
