# costtrack/variance/routes.py

from datetime import date, timedelta

from flask import Blueprint, jsonify, request

from costtrack.store import CostStore
from costtrack.validation import (
    filter_from_args,
    parse_bool,
    parse_choice,
    parse_decimal,
    parse_int,
)
from costtrack.variance.aggregation import (
    by_category,
    by_estimate,
    by_site,
    item_variances,
    overall,
    trends,
)
from costtrack.variance.alerts import (
    DIRECTIONS,
    alerts,
    serialize_budget_alert,
    top_variances,
    variance_alert,
)

bp = Blueprint('variance', __name__)

SIGNIFICANT_DEFAULT = 10


@bp.route('/analysis', methods=['GET'])
def variance_analysis():
    """
    Per-item variance plus a summary over the filtered set.
    ?variance_threshold= marks items whose |percentage| reaches it.
    """
    store = CostStore()
    filt = filter_from_args(request.args)
    threshold = parse_decimal(request.args.get('variance_threshold'), 'variance_threshold')
    if threshold is None:
        threshold = SIGNIFICANT_DEFAULT

    views = item_variances(store, filt)
    significant = [v for v in views if v.has_actual and abs(v.variance_percentage) >= threshold]
    summary = overall(store, filt).to_dict()
    summary['significant_variances'] = len(significant)
    return jsonify(
        variance_analysis=[v.to_dict() for v in views],
        significant_variances=[v.to_dict() for v in significant],
        summary=summary,
    )


@bp.route('/by-site', methods=['GET'])
def variance_by_site():
    rows = by_site(CostStore(), filter_from_args(request.args))
    return jsonify(site_variances=[r.to_dict() for r in rows])


@bp.route('/by-category', methods=['GET'])
def variance_by_category():
    rows = by_category(CostStore(), filter_from_args(request.args))
    return jsonify(category_variances=[r.to_dict() for r in rows])


@bp.route('/by-estimate', methods=['GET'])
def variance_by_estimate():
    rows = by_estimate(CostStore(), filter_from_args(request.args))
    return jsonify(estimate_variances=[r.to_dict() for r in rows])


@bp.route('/trends', methods=['GET'])
def variance_trends():
    """
    Daily and cumulative series. ?days=N limits the window to the last N
    days unless date_from is given.
    """
    filt = filter_from_args(request.args)
    days = parse_int(request.args.get('days'), 'days', minimum=1)
    if days is not None and filt.date_from is None:
        filt = filt.merge(date_from=date.today() - timedelta(days=days))
    return jsonify(trends(CostStore(), filt))


@bp.route('/top', methods=['GET'])
def variance_top():
    direction = parse_choice(request.args.get('type'), 'type', DIRECTIONS) or 'both'
    limit = parse_int(request.args.get('limit'), 'limit')
    rows = top_variances(CostStore(), filter_from_args(request.args), limit, direction)
    return jsonify(top_variances=[r.to_dict() for r in rows], type=direction)


@bp.route('/alerts', methods=['GET'])
def variance_alerts():
    threshold = parse_decimal(request.args.get('threshold'), 'threshold')
    include_under = parse_bool(request.args.get('include_under_budget'), 'include_under_budget')
    result = alerts(
        CostStore(),
        threshold=threshold,
        filt=filter_from_args(request.args),
        include_under_budget=include_under,
    )
    return jsonify(
        threshold=str(result['threshold']),
        variance_alerts=[variance_alert(v) for v in result['variance_alerts']],
        budget_alerts=[serialize_budget_alert(a) for a in result['budget_alerts']],
    )
