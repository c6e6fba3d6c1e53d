# tests/test_points.py
import pytest

from app import models
from app.domain.core.enums import AdjustmentType
from app.errors import ValidationError
from app.services.points import PointsService, purchase_points


def test_one_point_per_whole_real():
    assert purchase_points(12999) == 129
    assert purchase_points(99) == 0


def test_removal_is_stored_negative_and_balance_reconciled(db, vendor):
    points = PointsService(db)
    points.create_adjustment(
        vendor_id=vendor.id, customer_id="c1", adjustment_type=AdjustmentType.adicao,
        value=100, reason="Bônus de inauguração", idempotency_key="k1",
    )
    row, created = points.create_adjustment(
        vendor_id=vendor.id, customer_id="c1", adjustment_type=AdjustmentType.remocao,
        value=30, reason="Estorno", idempotency_key="k2",
    )
    assert created
    assert row.points == -30
    assert points.balance("c1") == 70


def test_duplicate_key_returns_existing_row(db, vendor):
    points = PointsService(db)
    first, created = points.create_adjustment(
        vendor_id=vendor.id, customer_id="c1", adjustment_type=AdjustmentType.adicao,
        value=10, reason="Ajuste", idempotency_key="same",
    )
    again, created_again = points.create_adjustment(
        vendor_id=vendor.id, customer_id="c1", adjustment_type=AdjustmentType.adicao,
        value=10, reason="Ajuste", idempotency_key="same",
    )
    assert created and not created_again
    assert again.id == first.id
    assert db.query(models.PointTransaction).count() == 1
    assert points.balance("c1") == 10


@pytest.mark.parametrize("value,reason", [(0, "motivo"), (-5, "motivo"), (10, "   ")])
def test_invalid_adjustments_are_rejected(db, vendor, value, reason):
    with pytest.raises(ValidationError):
        PointsService(db).create_adjustment(
            vendor_id=vendor.id, customer_id="c1", adjustment_type=AdjustmentType.adicao,
            value=value, reason=reason, idempotency_key="k",
        )


def test_order_points_are_idempotent_per_order(db):
    points = PointsService(db)
    assert points.earn_for_order("c1", "o1", 25090) == 250
    points.earn_for_order("c1", "o1", 25090)
    db.commit()
    assert points.balance("c1") == 250
