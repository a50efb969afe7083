# costtrack/estimates/versioning.py

"""Estimate lifecycle: creation, revision copies and retirement."""

from __future__ import annotations

import logging

from costtrack.errors import (
    ConflictError,
    DanglingReferenceError,
    NotFoundError,
    ValidationError,
)
from costtrack.models import ESTIMATE_STATUSES, Estimate, EstimateItem
from costtrack.store import VarianceFilter

ESTIMATE_FIELDS = ('title', 'description', 'status')


def _normalise_title(title) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValidationError('title is required')
    return title.strip()


def ensure_title_available(store, site_id: int, title: str, exclude_id: int | None = None) -> None:
    """Raise ``ConflictError`` if a live estimate on the site uses ``title``.

    Archived estimates do not hold on to their titles.
    """
    wanted = title.strip().lower()
    for est in store.get_estimates(VarianceFilter(site_id=site_id)):
        if est.id == exclude_id or est.status == 'archived':
            continue
        if (est.title or '').strip().lower() == wanted:
            raise ConflictError(
                f"An active estimate titled '{title}' already exists on site {site_id}"
            )


def create_estimate(store, site_id: int, title: str, description: str | None = None,
                    status: str = 'draft', created_by: int | None = None) -> Estimate:
    title = _normalise_title(title)
    if status not in ESTIMATE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(ESTIMATE_STATUSES)}")
    with store.transaction():
        if store.get_site(site_id) is None:
            raise DanglingReferenceError(f'Site {site_id} does not exist')
        ensure_title_available(store, site_id, title)
        est = Estimate(
            site_id=site_id,
            title=title,
            description=description,
            status=status,
            version=1,
            created_by=created_by,
        )
        store.add(est)
        store.flush()
        logging.info("estimate created id=%s site=%s", est.id, site_id)
    return est


def update_estimate(store, estimate_id: int, **changes) -> Estimate:
    unknown = sorted(set(changes) - set(ESTIMATE_FIELDS))
    if unknown:
        raise ValidationError(f"Cannot update field(s): {', '.join(unknown)}")
    if not changes:
        raise ValidationError('No valid fields to update')

    with store.transaction():
        est = store.get_estimate(estimate_id)
        if est is None:
            raise NotFoundError(f'Estimate {estimate_id} not found')
        if 'title' in changes:
            title = _normalise_title(changes['title'])
            ensure_title_available(store, est.site_id, title, exclude_id=est.id)
            est.title = title
        if 'description' in changes:
            est.description = changes['description']
        if 'status' in changes:
            status = changes['status']
            if status not in ESTIMATE_STATUSES:
                raise ValidationError(f"status must be one of: {', '.join(ESTIMATE_STATUSES)}")
            if est.status == 'archived' and status != 'archived':
                # reviving may collide with a title reused after archival
                ensure_title_available(store, est.site_id, est.title, exclude_id=est.id)
            est.status = status
        store.flush()
    return est


def retire_estimate(store, estimate_id: int) -> str:
    """Delete an estimate, or archive it once actual costs reference it.

    Returns ``'archived'`` or ``'deleted'``.
    """
    with store.transaction():
        est = store.get_estimate(estimate_id)
        if est is None:
            raise NotFoundError(f'Estimate {estimate_id} not found')
        if est.has_actuals:
            logging.warning("estimate %s has actual costs, archiving instead of deleting", estimate_id)
            est.status = 'archived'
            outcome = 'archived'
        else:
            store.delete(est)
            outcome = 'deleted'
        store.flush()
    logging.info("estimate %s %s", estimate_id, outcome)
    return outcome


def clone_items(source: Estimate, target: Estimate) -> list[EstimateItem]:
    """
    Produce un-saved copies of ``source``'s lines attached to ``target``.
    Actual costs stay with the source lines.
    """
    clones = []
    for it in source.items:
        clones.append(EstimateItem(
            estimate    = target,
            category_id = it.category_id,
            description = it.description,
            quantity    = it.quantity,
            unit        = it.unit,
            unit_price  = it.unit_price,
            notes       = it.notes,
        ))
    return clones


def duplicate_estimate(store, estimate_id: int, new_title: str | None = None,
                       created_by: int | None = None) -> Estimate:
    """Copy an estimate and its item tree into a new draft revision.

    The copy lives on the same site with ``version = source.version + 1``
    and carries no actual costs. Either every item is copied or nothing is
    written.
    """
    with store.transaction():
        source = store.get_estimate(estimate_id)
        if source is None:
            raise NotFoundError(f'Estimate {estimate_id} not found')
        title = _normalise_title(new_title) if new_title is not None else f'{source.title} (Copy)'
        ensure_title_available(store, source.site_id, title)

        copy = Estimate(
            site_id=source.site_id,
            title=title,
            description=source.description,
            version=(source.version or 1) + 1,
            status='draft',
            source_estimate_id=source.id,
            created_by=created_by,
        )
        store.add(copy)
        clones = clone_items(source, copy)
        for it in clones:
            store.add(it)
        store.flush()
        logging.info(
            "estimate duplicated source=%s copy=%s version=%s items=%s",
            source.id, copy.id, copy.version, len(clones),
        )
    return copy
