# costtrack/variance/aggregation.py

"""Variance rollups over estimate items and their recorded actual costs.

Every function here reads the current record set through a ``CostStore``
and returns freshly computed values; nothing is cached or persisted. Rows are
always read in id order and summed as ``Decimal``, so two calls over the same
records produce equal output.

Group percentages are ratios of the summed figures, never averages of the
per-item percentages.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Iterator

from costtrack.models import VARIANCE_STATUSES
from costtrack.numbers import ZERO, as_str, money, percent, quantity, ratio_percent
from costtrack.store import VarianceFilter


def variance_status(has_actual: bool, variance_percentage: Decimal) -> str:
    if not has_actual:
        return 'no_actual'
    if variance_percentage > 0:
        return 'over_budget'
    if variance_percentage < 0:
        return 'under_budget'
    return 'on_budget'


@dataclass(frozen=True)
class ItemVariance:
    """One estimate line against the actual costs recorded for it."""

    item_id: int
    estimate_id: int
    site_id: int
    category_id: int
    description: str
    unit: str
    category_name: str | None
    estimate_title: str
    site_name: str
    category_sort_order: int
    estimated_quantity: Decimal
    estimated_unit_price: Decimal
    total_estimated: Decimal
    total_actual: Decimal
    variance_amount: Decimal
    variance_percentage: Decimal
    actual_count: int
    last_recorded: date | None

    @property
    def has_actual(self) -> bool:
        return self.actual_count > 0

    @property
    def variance_status(self) -> str:
        return variance_status(self.has_actual, self.variance_percentage)

    def to_dict(self) -> dict:
        return {
            'item_id': self.item_id,
            'estimate_id': self.estimate_id,
            'site_id': self.site_id,
            'category_id': self.category_id,
            'item_description': self.description,
            'unit': self.unit,
            'category_name': self.category_name,
            'estimate_title': self.estimate_title,
            'site_name': self.site_name,
            'estimated_quantity': as_str(self.estimated_quantity),
            'estimated_unit_price': as_str(self.estimated_unit_price),
            'total_estimated': as_str(self.total_estimated),
            'total_actual': as_str(self.total_actual),
            'variance_amount': as_str(self.variance_amount),
            'variance_percentage': as_str(self.variance_percentage),
            'variance_status': self.variance_status,
            'actual_count': self.actual_count,
            'last_recorded': self.last_recorded.isoformat() if self.last_recorded else None,
        }


@dataclass(frozen=True)
class Rollup:
    key: int | None
    label: str
    total_estimated: Decimal
    total_actual: Decimal
    variance_amount: Decimal
    variance_percentage: Decimal
    item_count: int
    items_with_actuals: int
    over_budget_count: int
    under_budget_count: int
    on_budget_count: int

    def to_dict(self) -> dict:
        return {
            'key': self.key,
            'label': self.label,
            'total_estimated': as_str(self.total_estimated),
            'total_actual': as_str(self.total_actual),
            'variance_amount': as_str(self.variance_amount),
            'variance_percentage': as_str(self.variance_percentage),
            'item_count': self.item_count,
            'items_with_actuals': self.items_with_actuals,
            'over_budget_count': self.over_budget_count,
            'under_budget_count': self.under_budget_count,
            'on_budget_count': self.on_budget_count,
        }


@dataclass
class _Accumulator:
    estimated: Decimal = ZERO
    actual: Decimal = ZERO
    items: int = 0
    with_actuals: int = 0
    statuses: dict = field(default_factory=dict)

    def add(self, line: '_Line') -> None:
        self.estimated += line.estimated
        self.actual += line.actual
        self.items += 1
        if line.actual_count:
            self.with_actuals += 1
        status = line.view.variance_status
        self.statuses[status] = self.statuses.get(status, 0) + 1

    def finish(self, key, label) -> Rollup:
        variance = self.actual - self.estimated
        return Rollup(
            key=key,
            label=label,
            total_estimated=money(self.estimated),
            total_actual=money(self.actual),
            variance_amount=money(variance),
            variance_percentage=percent(ratio_percent(variance, self.estimated)),
            item_count=self.items,
            items_with_actuals=self.with_actuals,
            over_budget_count=self.statuses.get('over_budget', 0),
            under_budget_count=self.statuses.get('under_budget', 0),
            on_budget_count=self.statuses.get('on_budget', 0),
        )


@dataclass(frozen=True)
class _Line:
    """Exact (unrounded) figures for one item plus its rounded view."""

    item: object
    estimated: Decimal
    actual: Decimal
    actual_count: int
    view: ItemVariance


def _build_line(item, actuals) -> _Line:
    estimated = item.total_estimated
    actual = sum((a.total_actual for a in actuals), ZERO)
    count = len(actuals)
    if count:
        variance = actual - estimated
        pct = ratio_percent(variance, estimated)
    else:
        variance = ZERO
        pct = ZERO
    est = item.estimate
    cat = item.category
    view = ItemVariance(
        item_id=item.id,
        estimate_id=est.id,
        site_id=est.site_id,
        category_id=item.category_id,
        description=item.description,
        unit=item.unit,
        category_name=cat.name if cat else None,
        estimate_title=est.title,
        site_name=est.site.name if est.site else '',
        category_sort_order=cat.sort_order if cat else 0,
        estimated_quantity=quantity(item.quantity),
        estimated_unit_price=money(item.unit_price),
        total_estimated=money(estimated),
        total_actual=money(actual),
        variance_amount=money(variance),
        variance_percentage=percent(pct),
        actual_count=count,
        last_recorded=max((a.date_recorded for a in actuals), default=None),
    )
    return _Line(item=item, estimated=estimated, actual=actual, actual_count=count, view=view)


def _lines(store, filt: VarianceFilter) -> list[_Line]:
    items = store.get_estimate_items(filt)
    by_item: dict[int, list] = {}
    for a in store.get_actual_costs(filt):
        by_item.setdefault(a.item_id, []).append(a)
    return [_build_line(it, by_item.get(it.id, [])) for it in items]


def _group(lines: Iterable[_Line], keys: 'OrderedDict[int, str]', key_of) -> list[Rollup]:
    accs = OrderedDict((k, _Accumulator()) for k in keys)
    for line in lines:
        k = key_of(line.item)
        if k in accs:
            accs[k].add(line)
    return [acc.finish(k, keys[k]) for k, acc in accs.items()]


def item_variances(store, filt: VarianceFilter | None = None) -> list[ItemVariance]:
    """Flat per-item variance list, in item id order."""
    return [line.view for line in _lines(store, filt or VarianceFilter())]


def by_category(store, filt: VarianceFilter | None = None) -> list[Rollup]:
    """One rollup per category in sort order; empty categories give zero rows."""
    filt = filt or VarianceFilter()
    keys = OrderedDict((c.id, c.name) for c in store.get_categories(filt.category_id))
    return _group(_lines(store, filt), keys, lambda it: it.category_id)


def by_site(store, filt: VarianceFilter | None = None) -> list[Rollup]:
    filt = filt or VarianceFilter()
    keys = OrderedDict((s.id, s.name) for s in store.get_sites(filt))
    return _group(_lines(store, filt), keys, lambda it: it.estimate.site_id)


def by_estimate(store, filt: VarianceFilter | None = None) -> list[Rollup]:
    filt = filt or VarianceFilter()
    keys = OrderedDict((e.id, e.title) for e in store.get_estimates(filt))
    return _group(_lines(store, filt), keys, lambda it: it.estimate_id)


def overall(store, filt: VarianceFilter | None = None, label: str = 'Total') -> Rollup:
    acc = _Accumulator()
    for line in _lines(store, filt or VarianceFilter()):
        acc.add(line)
    return acc.finish(None, label)


def summarize(views: Iterable[ItemVariance], key=None, label: str = 'Total') -> Rollup:
    """Rollup over already-built item views.

    Works from the rounded per-item figures, so use it only where the rows
    being totalled are the ones on display.
    """
    estimated = actual = ZERO
    counts = dict.fromkeys(VARIANCE_STATUSES, 0)
    items = with_actuals = 0
    for v in views:
        items += 1
        estimated += v.total_estimated
        actual += v.total_actual
        if v.has_actual:
            with_actuals += 1
        counts[v.variance_status] += 1
    variance = actual - estimated
    return Rollup(
        key=key,
        label=label,
        total_estimated=money(estimated),
        total_actual=money(actual),
        variance_amount=money(variance),
        variance_percentage=percent(ratio_percent(variance, estimated)),
        item_count=items,
        items_with_actuals=with_actuals,
        over_budget_count=counts['over_budget'],
        under_budget_count=counts['under_budget'],
        on_budget_count=counts['on_budget'],
    )


# Trends ------------------------------------------------------------------

def daily_trends(store, filt: VarianceFilter | None = None) -> Iterator[dict]:
    """Yield one point per calendar day that has recorded actual costs.

    An item's estimate is booked on the day of its first actual cost inside
    the window, so the running estimate never counts a line twice.
    """
    filt = filt or VarianceFilter()
    actuals = sorted(store.get_actual_costs(filt), key=lambda a: (a.date_recorded, a.id))
    seen_items: set[int] = set()
    days: 'OrderedDict[date, list]' = OrderedDict()
    for a in actuals:
        days.setdefault(a.date_recorded, []).append(a)

    for day, rows in days.items():
        estimated = ZERO
        for a in rows:
            if a.item_id not in seen_items:
                seen_items.add(a.item_id)
                estimated += a.item.total_estimated
        actual = sum((a.total_actual for a in rows), ZERO)
        yield {
            'date': day,
            'actuals_recorded': len(rows),
            'total_estimated_delta': estimated,
            'total_actual_delta': actual,
            'variance_delta': actual - estimated,
        }


def cumulative_trends(daily: Iterable[dict]) -> Iterator[dict]:
    """Running totals over a daily series, in the order given."""
    est = act = ZERO
    for point in daily:
        est += point['total_estimated_delta']
        act += point['total_actual_delta']
        variance = act - est
        yield {
            **point,
            'cumulative_estimated': est,
            'cumulative_actual': act,
            'cumulative_variance': variance,
            'cumulative_variance_percentage': ratio_percent(variance, est),
        }


def _trend_point(point: dict) -> dict:
    out = {'date': point['date'].isoformat(), 'actuals_recorded': point['actuals_recorded']}
    for k, v in point.items():
        if k in out:
            continue
        out[k] = as_str(percent(v) if k.endswith('percentage') else money(v))
    return out


def trends(store, filt: VarianceFilter | None = None) -> dict:
    """Both trend series, materialised and rounded for output."""
    daily = list(daily_trends(store, filt))
    return {
        'daily_trends': [_trend_point(p) for p in daily],
        'cumulative_trends': [_trend_point(p) for p in cumulative_trends(daily)],
    }
