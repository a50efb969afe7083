# costtrack/actuals/routes.py

from flask import Blueprint, jsonify, request

from costtrack.actuals.recalc import (
    delete_actual_cost,
    record_actual_cost,
    update_actual_cost,
)
from costtrack.actuals.utils import serialize_actual
from costtrack.errors import NotFoundError, ValidationError
from costtrack.numbers import as_str
from costtrack.store import CostStore
from costtrack.validation import (
    current_user_id,
    filter_from_args,
    json_body,
    parse_date,
    parse_decimal,
    parse_int,
    parse_text,
)
from costtrack.variance.aggregation import by_category, item_variances, summarize

bp = Blueprint('actuals', __name__)


@bp.route('/', methods=['GET'])
def list_actuals():
    """
    Actual costs, newest recording first.
    Filters: site_id, estimate_id, item_id, category_id, date_from, date_to.
    """
    store = CostStore()
    filt = filter_from_args(request.args)
    item_id = parse_int(request.args.get('item_id'), 'item_id')
    rows = store.get_actual_costs(filt, item_id=item_id)
    rows.sort(key=lambda a: (a.date_recorded, a.id), reverse=True)
    return jsonify(actuals=[serialize_actual(a) for a in rows])


@bp.route('/statistics', methods=['GET'])
def actual_statistics():
    """
    Spend summary over items that have recorded actual costs, the 10 most
    recent recordings and variance by category. Accepts the list filters.
    """
    store = CostStore()
    filt = filter_from_args(request.args)
    rows = store.get_actual_costs(filt)
    spent = summarize(v for v in item_variances(store, filt) if v.has_actual)
    stats = {
        'total_actuals': len(rows),
        'items_with_actuals': spent.items_with_actuals,
        'total_actual_cost': as_str(spent.total_actual),
        'total_estimated': as_str(spent.total_estimated),
        'total_variance': as_str(spent.variance_amount),
        'variance_percentage': as_str(spent.variance_percentage),
        'over_budget_count': spent.over_budget_count,
        'under_budget_count': spent.under_budget_count,
        'on_budget_count': spent.on_budget_count,
    }
    recent = sorted(rows, key=lambda a: (a.date_recorded, a.id), reverse=True)[:10]
    categories = [r for r in by_category(store, filt) if r.items_with_actuals]
    return jsonify(
        statistics=stats,
        recent_actuals=[serialize_actual(a) for a in recent],
        variance_by_category=[r.to_dict() for r in categories],
    )


@bp.route('/<int:actual_id>', methods=['GET'])
def get_actual(actual_id):
    record = CostStore().get_actual_cost(actual_id)
    if record is None:
        raise NotFoundError(f'Actual cost {actual_id} not found')
    return jsonify(actual=serialize_actual(record))


@bp.route('/', methods=['POST'])
def create_actual():
    data = json_body()
    record = record_actual_cost(
        CostStore(),
        item_id=parse_int(data.get('item_id'), 'item_id', required=True),
        actual_unit_price=parse_decimal(data.get('actual_unit_price'), 'actual_unit_price', required=True),
        actual_quantity=parse_decimal(data.get('actual_quantity'), 'actual_quantity'),
        date_recorded=parse_date(data.get('date_recorded'), 'date_recorded'),
        notes=parse_text(data.get('notes'), 'notes'),
        recorded_by=current_user_id(),
    )
    return jsonify(actual=serialize_actual(record)), 201


@bp.route('/<int:actual_id>', methods=['PATCH'])
def update_actual(actual_id):
    data = json_body()
    changes = {}
    if 'actual_unit_price' in data:
        changes['actual_unit_price'] = parse_decimal(
            data['actual_unit_price'], 'actual_unit_price', required=True)
    if 'actual_quantity' in data:
        changes['actual_quantity'] = parse_decimal(data['actual_quantity'], 'actual_quantity')
    if 'date_recorded' in data:
        changes['date_recorded'] = parse_date(data['date_recorded'], 'date_recorded')
    if 'notes' in data:
        changes['notes'] = parse_text(data['notes'], 'notes')
    if not changes:
        raise ValidationError('No valid fields to update')
    record = update_actual_cost(CostStore(), actual_id, **changes)
    return jsonify(actual=serialize_actual(record))


@bp.route('/<int:actual_id>', methods=['DELETE'])
def delete_actual(actual_id):
    delete_actual_cost(CostStore(), actual_id)
    return jsonify(success=True)
