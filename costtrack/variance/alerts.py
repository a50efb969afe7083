# costtrack/variance/alerts.py

"""Variance ranking and threshold alerts.

Nothing here is stored: every call ranks the item variances produced by the
aggregation engine for the current record set.
"""

from __future__ import annotations

from typing import Iterable

from flask import current_app, has_app_context

from costtrack.errors import ValidationError
from costtrack.numbers import as_str, money, percent, ratio_percent, to_decimal
from costtrack.store import VarianceFilter
from costtrack.variance.aggregation import ItemVariance, by_site, item_variances

DIRECTIONS = ('both', 'over', 'under')


def _setting(name, fallback):
    if has_app_context():
        return current_app.config.get(name, fallback)
    return fallback


def _tiebreak(v: ItemVariance):
    return (-v.variance_amount, v.item_id)


def rank_variances(variances: Iterable[ItemVariance], limit: int | None = None,
                   direction: str = 'both') -> list[ItemVariance]:
    """Order item variances for display.

    ``both`` ranks by absolute percentage, ``over`` keeps positive
    percentages (largest first) and ``under`` keeps negative ones (most
    negative first). Ties fall back to amount descending, then item id.
    Items without recorded actuals never rank.
    """
    if direction not in DIRECTIONS:
        raise ValidationError(f"direction must be one of: {', '.join(DIRECTIONS)}")
    if limit is not None and limit < 0:
        raise ValidationError('limit cannot be negative')

    rows = [v for v in variances if v.has_actual]
    if direction == 'over':
        rows = [v for v in rows if v.variance_percentage > 0]
        rows.sort(key=lambda v: (-v.variance_percentage,) + _tiebreak(v))
    elif direction == 'under':
        rows = [v for v in rows if v.variance_percentage < 0]
        rows.sort(key=lambda v: (v.variance_percentage,) + _tiebreak(v))
    else:
        rows.sort(key=lambda v: (-abs(v.variance_percentage),) + _tiebreak(v))
    return rows if limit is None else rows[:limit]


def top_variances(store, filt: VarianceFilter | None = None, limit: int | None = None,
                  direction: str = 'both') -> list[ItemVariance]:
    if limit is None:
        limit = int(_setting('TOP_VARIANCES_LIMIT', 10))
    return rank_variances(item_variances(store, filt), limit, direction)


def _direction(v: ItemVariance) -> str:
    return 'over' if v.variance_percentage > 0 else 'under'


def variance_alert(v: ItemVariance) -> dict:
    return {**v.to_dict(), 'variance_direction': _direction(v)}


def budget_alerts(store, filt: VarianceFilter | None = None) -> list[dict]:
    """Sites whose recorded spend has passed their budget ceiling."""
    sites = {s.id: s for s in store.get_sites(filt)}
    out = []
    for row in by_site(store, filt):
        site = sites[row.key]
        if site.budget_limit is None:
            continue
        budget = money(site.budget_limit)
        if row.total_actual <= budget:
            continue
        over = row.total_actual - budget
        out.append({
            'site_id': site.id,
            'site_name': site.name,
            'budget_limit': budget,
            'total_actual': row.total_actual,
            'over_budget_amount': money(over),
            'over_budget_percentage': percent(ratio_percent(over, budget)),
        })
    out.sort(key=lambda a: (-a['over_budget_percentage'], a['site_id']))
    return out


def serialize_budget_alert(alert: dict) -> dict:
    return {k: as_str(v) if k not in ('site_id', 'site_name') else v for k, v in alert.items()}


def alerts(store, threshold=None, filt: VarianceFilter | None = None,
           include_under_budget: bool | None = None) -> dict:
    """Items past the variance threshold and sites past their budget.

    By default only over-budget items alert (``percentage > threshold``);
    with ``include_under_budget`` the absolute percentage is compared
    instead.
    """
    if threshold is None:
        threshold = _setting('VARIANCE_ALERT_THRESHOLD', 20)
    if include_under_budget is None:
        include_under_budget = bool(_setting('ALERT_INCLUDE_UNDER_BUDGET', False))
    try:
        limit = to_decimal(threshold, 'threshold')
    except ValueError as e:
        raise ValidationError(str(e)) from None
    if limit < 0:
        raise ValidationError('threshold cannot be negative')

    ranked = rank_variances(item_variances(store, filt), None, 'both')
    if include_under_budget:
        flagged = [v for v in ranked if abs(v.variance_percentage) > limit]
    else:
        flagged = [v for v in ranked if v.variance_percentage > limit]

    return {
        'threshold': percent(limit),
        'variance_alerts': flagged,
        'budget_alerts': budget_alerts(store, filt),
    }
