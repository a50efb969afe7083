# costtrack/reports/assembler.py

"""Table-ready report payloads.

A payload is plain data: ordered column definitions, ordered rows keyed by
column, a totals row and any supplementary sections. Renderers only ever see
``ReportPayload.to_dict()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal

from flask import current_app, has_app_context

from costtrack.errors import NotFoundError
from costtrack.numbers import ZERO, as_str, money, percent, quantity, ratio_percent
from costtrack.store import VarianceFilter
from costtrack.variance.aggregation import (
    by_category,
    by_estimate,
    item_variances,
    overall,
    summarize,
)
from costtrack.variance.alerts import alerts, serialize_budget_alert, variance_alert


def _col(key, label, align='left'):
    return {'key': key, 'label': label, 'align': align}


def _plain(value):
    if isinstance(value, Decimal):
        return as_str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


@dataclass
class ReportPayload:
    title: str
    kind: str
    generated_at: datetime
    meta: dict = field(default_factory=dict)
    columns: list = field(default_factory=list)
    rows: list = field(default_factory=list)
    totals: dict = field(default_factory=dict)
    sections: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'title': self.title,
            'kind': self.kind,
            'generated_at': self.generated_at.isoformat(),
            'meta': {k: _plain(v) for k, v in self.meta.items()},
            'columns': list(self.columns),
            'rows': [{k: _plain(v) for k, v in row.items()} for row in self.rows],
            'totals': {k: _plain(v) for k, v in self.totals.items()},
            'sections': [{
                'title': s['title'],
                'columns': list(s['columns']),
                'rows': [{k: _plain(v) for k, v in row.items()} for row in s['rows']],
            } for s in self.sections],
        }


def _settings() -> dict:
    cfg = current_app.config if has_app_context() else {}
    return {
        'company': cfg.get('REPORT_COMPANY_NAME', 'Construction Cost Tracker'),
        'currency': cfg.get('REPORT_CURRENCY', 'GHS'),
    }


def _site_meta(site) -> dict:
    return {
        'site_id': site.id,
        'site_name': site.name,
        'location': site.location or 'N/A',
        'site_status': site.status,
        'start_date': site.start_date,
        'budget_limit': money(site.budget_limit) if site.budget_limit is not None else None,
    }


def _budget_meta(budget, spent) -> dict:
    """Budget usage lines shown under a report's summary."""
    if budget is None:
        return {}
    usage = percent(ratio_percent(spent, budget))
    meta = {'budget_usage_percentage': usage}
    if spent > budget:
        meta['budget_status'] = 'over_budget'
        meta['amount_over_budget'] = money(spent - budget)
    else:
        meta['budget_status'] = 'within_budget'
        meta['remaining_budget'] = money(budget - spent)
    return meta


def _category_section(store, filt, currency) -> dict:
    rows = [r for r in by_category(store, filt) if r.item_count]
    return {
        'title': 'Variance by Category',
        'columns': [
            _col('label', 'Category'),
            _col('item_count', 'Items', 'right'),
            _col('total_estimated', f'Estimated ({currency})', 'right'),
            _col('total_actual', f'Actual ({currency})', 'right'),
            _col('variance_amount', f'Variance ({currency})', 'right'),
            _col('variance_percentage', 'Variance %', 'right'),
        ],
        'rows': [{
            'label': r.label,
            'item_count': r.item_count,
            'total_estimated': r.total_estimated,
            'total_actual': r.total_actual,
            'variance_amount': r.variance_amount,
            'variance_percentage': r.variance_percentage,
        } for r in rows],
    }


def build_estimate_report(store, estimate_id: int, now: datetime | None = None) -> ReportPayload:
    """Estimate line items grouped by category order."""
    est = store.get_estimate(estimate_id)
    if est is None:
        raise NotFoundError(f'Estimate {estimate_id} not found')
    settings = _settings()
    currency = settings['currency']

    items = sorted(est.items, key=lambda it: (it.category.sort_order if it.category else 0, it.id))
    total = sum((it.total_estimated for it in items), ZERO)
    rows = [{
        'description': it.description,
        'category_name': it.category.name if it.category else None,
        'quantity': quantity(it.quantity),
        'unit': it.unit,
        'unit_price': money(it.unit_price),
        'total_estimated': money(it.total_estimated),
    } for it in items]

    meta = {
        'company': settings['company'],
        'currency': currency,
        'estimate_id': est.id,
        'estimate_title': est.title,
        'version': est.version,
        'estimate_status': est.status,
        **_site_meta(est.site),
        'total_items': len(items),
        'total_estimated': money(total),
        'average_cost_per_item': money(total / len(items)) if items else money(ZERO),
    }
    if est.site.budget_limit is not None:
        meta.update(_budget_meta(money(est.site.budget_limit), money(total)))

    return ReportPayload(
        title=f'Estimate Report - {est.title}',
        kind='estimate',
        generated_at=now or datetime.now(timezone.utc),
        meta=meta,
        columns=[
            _col('description', 'Description'),
            _col('category_name', 'Category'),
            _col('quantity', 'Quantity', 'right'),
            _col('unit', 'Unit', 'center'),
            _col('unit_price', f'Unit Price ({currency})', 'right'),
            _col('total_estimated', f'Total Amount ({currency})', 'right'),
        ],
        rows=rows,
        totals={'description': 'Total', 'total_estimated': money(total)},
        sections=[_category_section(store, VarianceFilter(estimate_id=est.id), currency)],
    )


def build_variance_report(store, site_id: int, now: datetime | None = None) -> ReportPayload:
    """Every item on a site against its actual spend, largest variance first."""
    site = store.get_site(site_id)
    if site is None:
        raise NotFoundError(f'Site {site_id} not found')
    settings = _settings()
    currency = settings['currency']
    filt = VarianceFilter(site_id=site.id)

    views = item_variances(store, filt)
    views.sort(key=lambda v: (-abs(v.variance_percentage), v.category_sort_order, v.item_id))
    summary = summarize(views)
    rows = [{
        'estimate_title': v.estimate_title,
        'description': v.description,
        'category_name': v.category_name,
        'actual_count': v.actual_count,
        'total_estimated': v.total_estimated,
        'total_actual': v.total_actual,
        'variance_amount': v.variance_amount,
        'variance_percentage': v.variance_percentage,
        'variance_status': v.variance_status,
    } for v in views]

    meta = {
        'company': settings['company'],
        'currency': currency,
        **_site_meta(site),
        'total_items': summary.item_count,
        'actuals_recorded': sum(v.actual_count for v in views),
        'items_without_actuals': summary.item_count - summary.items_with_actuals,
        'over_budget_items': summary.over_budget_count,
        'under_budget_items': summary.under_budget_count,
        'on_budget_items': summary.on_budget_count,
        'total_estimated': summary.total_estimated,
        'total_actual': summary.total_actual,
        'total_variance': summary.variance_amount,
    }

    flagged = alerts(store, filt=filt)
    return ReportPayload(
        title=f'Variance Report - {site.name}',
        kind='variance',
        generated_at=now or datetime.now(timezone.utc),
        meta=meta,
        columns=[
            _col('estimate_title', 'Estimate'),
            _col('description', 'Item'),
            _col('category_name', 'Category'),
            _col('actual_count', 'Purchases', 'right'),
            _col('total_estimated', f'Estimated ({currency})', 'right'),
            _col('total_actual', f'Actual ({currency})', 'right'),
            _col('variance_amount', f'Variance ({currency})', 'right'),
            _col('variance_percentage', 'Variance %', 'right'),
            _col('variance_status', 'Status'),
        ],
        rows=rows,
        totals={
            'estimate_title': 'Total',
            'actual_count': meta['actuals_recorded'],
            'total_estimated': summary.total_estimated,
            'total_actual': summary.total_actual,
            'variance_amount': summary.variance_amount,
            'variance_percentage': summary.variance_percentage,
        },
        sections=[
            _category_section(store, filt, currency),
            {
                'title': 'Variance Alerts',
                'columns': [
                    _col('item_description', 'Item'),
                    _col('category_name', 'Category'),
                    _col('variance_amount', f'Variance ({currency})', 'right'),
                    _col('variance_percentage', 'Variance %', 'right'),
                    _col('variance_direction', 'Direction'),
                ],
                'rows': [{
                    k: variance_alert(v)[k]
                    for k in ('item_description', 'category_name', 'variance_amount',
                              'variance_percentage', 'variance_direction')
                } for v in flagged['variance_alerts']],
            },
            {
                'title': 'Budget Alert',
                'columns': [
                    _col('site_name', 'Site'),
                    _col('budget_limit', f'Budget ({currency})', 'right'),
                    _col('total_actual', f'Actual ({currency})', 'right'),
                    _col('over_budget_amount', f'Over Budget ({currency})', 'right'),
                    _col('over_budget_percentage', 'Over Budget %', 'right'),
                ],
                'rows': [
                    {k: v for k, v in serialize_budget_alert(a).items() if k != 'site_id'}
                    for a in flagged['budget_alerts']
                ],
            },
        ],
    )


def build_site_report(store, site_id: int, now: datetime | None = None) -> ReportPayload:
    """One row per estimate on the site, newest first."""
    site = store.get_site(site_id)
    if site is None:
        raise NotFoundError(f'Site {site_id} not found')
    settings = _settings()
    currency = settings['currency']
    filt = VarianceFilter(site_id=site.id)

    rollups = {r.key: r for r in by_estimate(store, filt)}
    estimates = sorted(
        site.estimates,
        key=lambda e: (e.created_at or datetime.min, e.id),
        reverse=True,
    )
    site_total = overall(store, filt)
    rows = []
    for est in estimates:
        r = rollups[est.id]
        rows.append({
            'title': est.title,
            'version': est.version,
            'status': est.status,
            'item_count': r.item_count,
            'total_estimated': r.total_estimated,
            'total_actual': r.total_actual,
            'variance_amount': r.variance_amount,
            'variance_percentage': r.variance_percentage,
            'created_at': est.created_at.date() if est.created_at else None,
        })

    meta = {
        'company': settings['company'],
        'currency': currency,
        **_site_meta(site),
        'estimate_count': len(estimates),
        'total_estimated_value': site_total.total_estimated,
        'total_actual_spent': site_total.total_actual,
    }
    if site.budget_limit is not None:
        meta.update(_budget_meta(money(site.budget_limit), site_total.total_actual))

    return ReportPayload(
        title=f'Site Report - {site.name}',
        kind='site',
        generated_at=now or datetime.now(timezone.utc),
        meta=meta,
        columns=[
            _col('title', 'Estimate'),
            _col('version', 'Version', 'right'),
            _col('status', 'Status'),
            _col('item_count', 'Items', 'right'),
            _col('total_estimated', f'Estimated ({currency})', 'right'),
            _col('total_actual', f'Actual ({currency})', 'right'),
            _col('variance_amount', f'Variance ({currency})', 'right'),
            _col('variance_percentage', 'Variance %', 'right'),
            _col('created_at', 'Created'),
        ],
        rows=rows,
        totals={
            'title': 'Total',
            'item_count': site_total.item_count,
            'total_estimated': site_total.total_estimated,
            'total_actual': site_total.total_actual,
            'variance_amount': site_total.variance_amount,
            'variance_percentage': site_total.variance_percentage,
        },
        sections=[_category_section(store, filt, currency)],
    )
