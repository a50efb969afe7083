# costtrack/estimates/items.py

"""Estimate line editing.

Item totals are never stored: ``EstimateItem.total_estimated`` and
``Estimate.total_estimated`` are recomputed from quantity and unit price on
every read, so no write here has a total to keep in step.
"""

from __future__ import annotations

import logging

from flask import current_app, has_app_context

from costtrack.actuals.recalc import recalculate_item_actuals
from costtrack.errors import (
    ConflictError,
    DanglingReferenceError,
    DomainError,
    NotFoundError,
    ValidationError,
)
from costtrack.models import EstimateItem
from costtrack.numbers import ZERO, money, quantity, to_decimal

ITEM_FIELDS = ('description', 'category_id', 'quantity', 'unit', 'unit_price', 'notes')


def _number(value, field, scale):
    try:
        number = to_decimal(value, field)
    except ValueError as e:
        raise ValidationError(str(e)) from None
    if number is None:
        raise ValidationError(f'{field} is required')
    if number < 0:
        raise DomainError(f'{field} cannot be negative')
    return scale(number)


def _text(value, field):
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f'{field} is required')
    return value.strip()


def _check_category(store, category_id):
    if category_id is None or store.get_category(category_id) is None:
        raise DanglingReferenceError(f'Category {category_id} does not exist')


def _editable_estimate(store, estimate_id):
    est = store.get_estimate(estimate_id)
    if est is None:
        raise DanglingReferenceError(f'Estimate {estimate_id} does not exist')
    if est.status == 'archived':
        raise ConflictError(f'Estimate {estimate_id} is archived')
    return est


def _build_item(store, est, data: dict) -> EstimateItem:
    category_id = data.get('category_id')
    _check_category(store, category_id)
    return EstimateItem(
        estimate    = est,
        category_id = category_id,
        description = _text(data.get('description'), 'description'),
        quantity    = _number(data.get('quantity', 1), 'quantity', quantity),
        unit        = _text(data.get('unit'), 'unit'),
        unit_price  = _number(data.get('unit_price'), 'unit_price', money),
        notes       = data.get('notes') or None,
    )


def add_estimate_item(store, estimate_id: int, **data) -> EstimateItem:
    with store.transaction():
        est = _editable_estimate(store, estimate_id)
        it = _build_item(store, est, data)
        store.add(it)
        store.flush()
        logging.info("item added id=%s estimate=%s", it.id, estimate_id)
    return it


def add_estimate_items(store, estimate_id: int, items: list[dict]) -> list[EstimateItem]:
    """Add several lines at once; one bad line rejects the whole batch."""
    if not items:
        raise ValidationError('items must be a non-empty list')
    with store.transaction():
        est = _editable_estimate(store, estimate_id)
        created = []
        for data in items:
            it = _build_item(store, est, data)
            store.add(it)
            created.append(it)
        store.flush()
        logging.info("%s item(s) added to estimate=%s", len(created), estimate_id)
    return created


def update_estimate_item(store, item_id: int, recompute_actuals: bool | None = None,
                         **changes) -> EstimateItem:
    """Edit an estimate line.

    Recorded actual costs keep the variance they were recorded with unless
    ``recompute_actuals`` is true (default: the app's
    ``RECOMPUTE_ACTUALS_ON_ITEM_EDIT`` setting), in which case they are
    re-derived in the same transaction.
    """
    unknown = sorted(set(changes) - set(ITEM_FIELDS))
    if unknown:
        raise ValidationError(f"Cannot update field(s): {', '.join(unknown)}")
    if not changes:
        raise ValidationError('No valid fields to update')
    if recompute_actuals is None:
        recompute_actuals = bool(
            has_app_context() and current_app.config.get('RECOMPUTE_ACTUALS_ON_ITEM_EDIT')
        )

    with store.transaction():
        it = store.get_estimate_item(item_id, for_update=True)
        if it is None:
            raise NotFoundError(f'Estimate item {item_id} not found')
        if it.estimate.status == 'archived':
            raise ConflictError(f'Estimate {it.estimate_id} is archived')

        if 'category_id' in changes:
            _check_category(store, changes['category_id'])
            it.category_id = changes['category_id']
        if 'description' in changes:
            it.description = _text(changes['description'], 'description')
        if 'unit' in changes:
            it.unit = _text(changes['unit'], 'unit')
        if 'notes' in changes:
            it.notes = changes['notes'] or None
        priced = False
        if 'quantity' in changes:
            it.quantity = _number(changes['quantity'], 'quantity', quantity)
            priced = True
        if 'unit_price' in changes:
            it.unit_price = _number(changes['unit_price'], 'unit_price', money)
            priced = True
        store.flush()

        if priced and recompute_actuals and it.actuals:
            recalculate_item_actuals(store, it.id)
    return it


def delete_estimate_item(store, item_id: int) -> None:
    with store.transaction():
        it = store.get_estimate_item(item_id)
        if it is None:
            raise NotFoundError(f'Estimate item {item_id} not found')
        if it.actuals:
            raise ConflictError(
                f'Estimate item {item_id} has recorded actual costs; delete them first'
            )
        store.delete(it)
        logging.info("item deleted id=%s estimate=%s", item_id, it.estimate_id)


def items_by_category(store, estimate_id: int) -> list[dict]:
    """Group an estimate's lines under every category, in sort order.

    Categories without lines are kept with an empty list and a zero total.
    """
    est = store.get_estimate(estimate_id)
    if est is None:
        raise NotFoundError(f'Estimate {estimate_id} not found')
    grouped = []
    for cat in store.get_categories():
        lines = [it for it in est.items if it.category_id == cat.id]
        grouped.append({
            'category': cat,
            'items': lines,
            'item_count': len(lines),
            'category_total': sum((it.total_estimated for it in lines), ZERO),
        })
    return grouped
