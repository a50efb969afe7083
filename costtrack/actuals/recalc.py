# costtrack/actuals/recalc.py

"""Variance recalculation for actual-cost records.

Every write that introduces or edits an ``ActualCost`` goes through this
module: the parent estimate item is read, the derived fields are computed and
the record is written inside one ``CostStore.transaction()``. Nothing else
assigns ``total_actual``, ``variance_amount`` or ``variance_percentage``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from costtrack.errors import (
    DanglingReferenceError,
    DomainError,
    NotFoundError,
    ValidationError,
)
from costtrack.models import ActualCost, EstimateItem
from costtrack.numbers import money, percent, quantity, ratio_percent, to_decimal

UPDATABLE_FIELDS = ('actual_unit_price', 'actual_quantity', 'date_recorded', 'notes')


@dataclass(frozen=True)
class VarianceFigures:
    total_actual: Decimal
    variance_amount: Decimal
    variance_percentage: Decimal


def _decimal(value, field):
    try:
        return to_decimal(value, field)
    except ValueError as e:
        raise ValidationError(str(e)) from None


def compute_variance(
    estimated_quantity,
    estimated_unit_price,
    estimated_total,
    actual_unit_price,
    actual_quantity=None,
) -> VarianceFigures:
    """Derive an actual cost's totals from its estimate line.

    ``estimated_total`` may be ``None``, in which case it is taken as
    ``estimated_quantity * estimated_unit_price``. Rounding happens once, on
    the returned figures.
    """
    est_qty = _decimal(estimated_quantity, 'estimated_quantity')
    est_price = _decimal(estimated_unit_price, 'estimated_unit_price')
    est_total = _decimal(estimated_total, 'estimated_total')
    price = _decimal(actual_unit_price, 'actual_unit_price')
    qty = _decimal(actual_quantity, 'actual_quantity')

    if price is None:
        raise ValidationError('actual_unit_price is required')
    if price < 0:
        raise DomainError('actual_unit_price cannot be negative')
    if qty is not None and qty < 0:
        raise DomainError('actual_quantity cannot be negative')
    if est_qty is None:
        raise ValidationError('estimated_quantity is required')
    if est_total is None:
        est_total = est_qty * (est_price or Decimal('0'))

    effective_quantity = qty if qty is not None else est_qty
    total_actual = effective_quantity * price
    variance_amount = total_actual - est_total
    variance_percentage = ratio_percent(variance_amount, est_total)

    return VarianceFigures(
        total_actual=money(total_actual),
        variance_amount=money(variance_amount),
        variance_percentage=percent(variance_percentage),
    )


def apply_variance(record: ActualCost, item: EstimateItem) -> ActualCost:
    figures = compute_variance(
        item.quantity,
        item.unit_price,
        item.total_estimated,
        record.actual_unit_price,
        record.actual_quantity,
    )
    record.total_actual = figures.total_actual
    record.variance_amount = figures.variance_amount
    record.variance_percentage = figures.variance_percentage
    return record


def _price_input(value) -> Decimal:
    price = _decimal(value, 'actual_unit_price')
    if price is None:
        raise ValidationError('actual_unit_price is required')
    if price < 0:
        raise DomainError('actual_unit_price cannot be negative')
    return money(price)


def _quantity_input(value) -> Decimal | None:
    qty = _decimal(value, 'actual_quantity')
    if qty is None:
        return None
    if qty < 0:
        raise DomainError('actual_quantity cannot be negative')
    return quantity(qty)


def _locked_item(store, item_id) -> EstimateItem:
    item = store.get_estimate_item(item_id, for_update=True)
    if item is None:
        raise DanglingReferenceError(f'Estimate item {item_id} does not exist')
    return item


def record_actual_cost(
    store,
    item_id: int,
    actual_unit_price,
    actual_quantity=None,
    date_recorded: date | None = None,
    notes: str | None = None,
    recorded_by: int | None = None,
) -> ActualCost:
    """Insert a new actual cost with its derived fields populated."""
    price = _price_input(actual_unit_price)
    qty = _quantity_input(actual_quantity)

    with store.transaction():
        item = _locked_item(store, item_id)
        record = ActualCost(
            item_id=item.id,
            actual_unit_price=price,
            actual_quantity=qty,
            date_recorded=date_recorded or date.today(),
            notes=notes,
            recorded_by=recorded_by,
        )
        apply_variance(record, item)
        store.upsert_actual_cost(record)
        logging.info(
            "actual recorded id=%s item=%s total=%s variance=%s%%",
            record.id, item.id, record.total_actual, record.variance_percentage,
        )
    return record


def update_actual_cost(store, actual_id: int, **changes) -> ActualCost:
    """Apply a correction; derived fields follow any price/quantity change.

    Passing ``actual_quantity=None`` clears the override so the item's
    estimated quantity is used again.
    """
    unknown = sorted(set(changes) - set(UPDATABLE_FIELDS))
    if unknown:
        raise ValidationError(f"Cannot update field(s): {', '.join(unknown)}")
    if not changes:
        raise ValidationError('No valid fields to update')

    with store.transaction():
        record = store.get_actual_cost(actual_id)
        if record is None:
            raise NotFoundError(f'Actual cost {actual_id} not found')
        item = _locked_item(store, record.item_id)

        recompute = False
        if 'actual_unit_price' in changes:
            record.actual_unit_price = _price_input(changes['actual_unit_price'])
            recompute = True
        if 'actual_quantity' in changes:
            record.actual_quantity = _quantity_input(changes['actual_quantity'])
            recompute = True
        if 'date_recorded' in changes:
            if changes['date_recorded'] is None:
                raise ValidationError('date_recorded cannot be cleared')
            record.date_recorded = changes['date_recorded']
        if 'notes' in changes:
            record.notes = changes['notes']

        if recompute:
            apply_variance(record, item)
        store.upsert_actual_cost(record)
        logging.info("actual updated id=%s recomputed=%s", record.id, recompute)
    return record


def delete_actual_cost(store, actual_id: int) -> None:
    with store.transaction():
        record = store.get_actual_cost(actual_id)
        if record is None:
            raise NotFoundError(f'Actual cost {actual_id} not found')
        store.delete(record)
        logging.info("actual deleted id=%s item=%s", actual_id, record.item_id)


def recalculate_actuals(store, item_id: int | None = None) -> int:
    """Re-derive stored figures against the current estimate lines.

    Limited to one item when ``item_id`` is given. Returns the number of
    records rewritten.
    """
    with store.transaction():
        if item_id is not None:
            _locked_item(store, item_id)
        records = store.get_actual_costs(item_id=item_id)
        for record in records:
            apply_variance(record, record.item)
        store.flush()
    logging.info("recalculated %s actual cost(s) item=%s", len(records), item_id)
    return len(records)


def recalculate_item_actuals(store, item_id: int) -> int:
    return recalculate_actuals(store, item_id=item_id)
