from __future__ import annotations

import logging
import uuid

from sqlalchemy import func, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import models
from app.db import settings
from app.domain.core.enums import AdjustmentType, PointsKind
from app.errors import ValidationError

logger = logging.getLogger(__name__)


def _gen_id() -> str:
    return str(uuid.uuid4())


def purchase_points(total_cents: int) -> int:
    # 1 ponto por real inteiro
    return max(0, int(total_cents) // 100)


class PointsService:
    """Append-only ledger plus the cached balance row.

    The balance is reconciled by the stored procedure named in
    ``POINTS_RECONCILE_FUNCTION``; without one it is recomputed from the ledger.
    """

    def __init__(self, db: Session, reconcile_function: str | None = None) -> None:
        self.db = db
        self.reconcile_function = (
            reconcile_function if reconcile_function is not None else settings.points_reconcile_function
        )

    def _existing(self, idempotency_key: str) -> models.PointTransaction | None:
        return (
            self.db.query(models.PointTransaction)
            .filter(models.PointTransaction.idempotency_key == idempotency_key)
            .first()
        )

    def append_transaction(
        self,
        *,
        user_id: str,
        kind: PointsKind,
        points: int,
        idempotency_key: str,
        vendor_id: str | None = None,
        order_id: str | None = None,
        reason: str | None = None,
    ) -> tuple[models.PointTransaction, bool]:
        """Return ``(row, created)``; a repeated key yields the row already stored."""
        existing = self._existing(idempotency_key)
        if existing:
            return existing, False
        row = models.PointTransaction(
            id=_gen_id(),
            user_id=user_id,
            vendor_id=vendor_id,
            order_id=order_id,
            kind=kind.value,
            points=int(points),
            reason=reason,
            idempotency_key=idempotency_key,
        )
        self.db.add(row)
        self.db.flush()
        return row, True

    def reconcile_balance(self, user_id: str) -> None:
        if self.reconcile_function:
            # nome validado em Settings como identificador simples
            self.db.execute(text(f"SELECT {self.reconcile_function}(:user_id)"), {"user_id": user_id})
            return
        total = (
            self.db.query(func.coalesce(func.sum(models.PointTransaction.points), 0))
            .filter(models.PointTransaction.user_id == user_id)
            .scalar()
        )
        balance = self.db.get(models.PointsBalance, user_id)
        if balance is None:
            balance = models.PointsBalance(user_id=user_id, balance=int(total or 0))
            self.db.add(balance)
        else:
            balance.balance = int(total or 0)
        self.db.flush()

    def balance(self, user_id: str) -> int:
        row = self.db.get(models.PointsBalance, user_id)
        return int(row.balance) if row else 0

    def earn_for_order(self, user_id: str, order_id: str, total_cents: int, vendor_id: str | None = None) -> int:
        points = purchase_points(total_cents)
        if points <= 0:
            return 0
        self.append_transaction(
            user_id=user_id,
            kind=PointsKind.compra,
            points=points,
            idempotency_key=f"order:{order_id}",
            vendor_id=vendor_id,
            order_id=order_id,
            reason="Pontos da compra",
        )
        self.reconcile_balance(user_id)
        return points

    def create_adjustment(
        self,
        *,
        vendor_id: str,
        customer_id: str,
        adjustment_type: AdjustmentType,
        value: int,
        reason: str,
        idempotency_key: str,
    ) -> tuple[models.PointTransaction, bool]:
        if int(value) <= 0:
            raise ValidationError("O valor do ajuste deve ser maior que zero")
        if not (reason or "").strip():
            raise ValidationError("Informe o motivo do ajuste")
        points = -abs(int(value)) if adjustment_type == AdjustmentType.remocao else abs(int(value))
        try:
            row, created = self.append_transaction(
                user_id=customer_id,
                kind=PointsKind.ajuste,
                points=points,
                idempotency_key=idempotency_key,
                vendor_id=vendor_id,
                reason=reason.strip(),
            )
            if created:
                self.reconcile_balance(customer_id)
            self.db.commit()
        except IntegrityError:
            # corrida com outra requisicao usando a mesma chave
            self.db.rollback()
            existing = self._existing(idempotency_key)
            if existing is None:
                raise
            return existing, False
        self.db.refresh(row)
        if created:
            logger.info(
                "Point adjustment vendor=%s customer=%s points=%s key=%s",
                vendor_id,
                customer_id,
                points,
                idempotency_key,
            )
        return row, created
