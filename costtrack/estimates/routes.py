# costtrack/estimates/routes.py

from flask import Blueprint, jsonify, request

from costtrack.errors import NotFoundError, ValidationError
from costtrack.estimates.items import (
    ITEM_FIELDS,
    add_estimate_item,
    add_estimate_items,
    delete_estimate_item,
    items_by_category,
    update_estimate_item,
)
from costtrack.estimates.utils import (
    serialize_category,
    serialize_estimate,
    serialize_item,
)
from costtrack.estimates.versioning import (
    create_estimate,
    duplicate_estimate,
    retire_estimate,
    update_estimate,
)
from costtrack.models import ESTIMATE_STATUSES
from costtrack.numbers import ZERO, as_str, money
from costtrack.store import CostStore, VarianceFilter
from costtrack.validation import (
    current_user_id,
    json_body,
    parse_choice,
    parse_decimal,
    parse_int,
    parse_text,
)
from costtrack.variance.aggregation import overall

bp = Blueprint('estimates', __name__)


def _get_estimate(store, estimate_id):
    est = store.get_estimate(estimate_id)
    if est is None:
        raise NotFoundError(f'Estimate {estimate_id} not found')
    return est


def _item_payload(data: dict, partial: bool = False) -> dict:
    """Pick and shape-check item fields from a request body."""
    out = {}
    for field in ITEM_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if field == 'category_id':
            out[field] = parse_int(value, field, required=True)
        elif field in ('quantity', 'unit_price'):
            out[field] = parse_decimal(value, field, required=True)
        elif field == 'notes':
            out[field] = parse_text(value, field)
        else:
            out[field] = parse_text(value, field, required=True)
    if not partial:
        for field in ('description', 'category_id', 'unit', 'unit_price'):
            if field not in out:
                raise ValidationError(f'{field} is required')
    return out


@bp.route('/', methods=['GET'])
def list_estimates():
    store = CostStore()
    filt = VarianceFilter(site_id=parse_int(request.args.get('site_id'), 'site_id'))
    status = parse_choice(request.args.get('status'), 'status', ESTIMATE_STATUSES)
    ests = store.get_estimates(filt, status=status, search=request.args.get('search'))
    ests.sort(key=lambda e: e.id, reverse=True)
    return jsonify(estimates=[serialize_estimate(e) for e in ests])


@bp.route('/', methods=['POST'])
def create_estimate_endpoint():
    data = json_body()
    est = create_estimate(
        CostStore(),
        site_id=parse_int(data.get('site_id'), 'site_id', required=True),
        title=parse_text(data.get('title'), 'title', required=True, max_length=200),
        description=parse_text(data.get('description'), 'description'),
        status=parse_choice(data.get('status'), 'status', ESTIMATE_STATUSES) or 'draft',
        created_by=current_user_id(),
    )
    return jsonify(estimate=serialize_estimate(est)), 201


@bp.route('/statistics', methods=['GET'])
def estimate_statistics():
    """
    Counts per status, total and average estimate value, 5 newest estimates.
    """
    store = CostStore()
    ests = store.get_estimates()
    stats = {'total_estimates': len(ests)}
    for status in ESTIMATE_STATUSES:
        stats[f'{status}_estimates'] = sum(1 for e in ests if e.status == status)
    total = overall(store).total_estimated if ests else ZERO
    stats['total_estimated_value'] = as_str(money(total))
    stats['average_estimate_value'] = as_str(money(total / len(ests))) if ests else None
    recent = sorted(ests, key=lambda e: (e.created_at, e.id), reverse=True)[:5]
    return jsonify(statistics=stats, recent_estimates=[serialize_estimate(e) for e in recent])


@bp.route('/categories', methods=['GET'])
def list_categories():
    return jsonify(categories=[serialize_category(c) for c in CostStore().get_categories()])


@bp.route('/<int:estimate_id>', methods=['GET'])
def view_estimate(estimate_id):
    est = _get_estimate(CostStore(), estimate_id)
    return jsonify(estimate=serialize_estimate(est, with_items=True))


@bp.route('/<int:estimate_id>', methods=['PATCH'])
def edit_estimate(estimate_id):
    data = json_body()
    changes = {}
    if 'title' in data:
        changes['title'] = parse_text(data['title'], 'title', required=True, max_length=200)
    if 'description' in data:
        changes['description'] = parse_text(data['description'], 'description')
    if 'status' in data:
        changes['status'] = parse_choice(data['status'], 'status', ESTIMATE_STATUSES, required=True)
    est = update_estimate(CostStore(), estimate_id, **changes)
    return jsonify(estimate=serialize_estimate(est))


@bp.route('/<int:estimate_id>', methods=['DELETE'])
def delete_estimate(estimate_id):
    """
    Delete an estimate, or archive it when actual costs are attached.
    """
    outcome = retire_estimate(CostStore(), estimate_id)
    return jsonify(success=True, outcome=outcome)


@bp.route('/<int:estimate_id>/duplicate', methods=['POST'])
def duplicate_estimate_endpoint(estimate_id):
    data = request.get_json(silent=True) or {}
    est = duplicate_estimate(
        CostStore(),
        estimate_id,
        new_title=parse_text(data.get('title'), 'title', max_length=200),
        created_by=current_user_id(),
    )
    return jsonify(estimate=serialize_estimate(est, with_items=True)), 201


@bp.route('/<int:estimate_id>/items', methods=['GET'])
def list_items(estimate_id):
    est = _get_estimate(CostStore(), estimate_id)
    return jsonify(items=[serialize_item(it) for it in est.items])


@bp.route('/<int:estimate_id>/items', methods=['POST'])
def add_items(estimate_id):
    """
    Add one line, or a batch when the body is { items: [ {...}, … ] }.
    """
    data = json_body()
    store = CostStore()
    if 'items' in data:
        rows = data['items']
        if not isinstance(rows, list) or not rows:
            raise ValidationError('items must be a non-empty list')
        if not all(isinstance(r, dict) for r in rows):
            raise ValidationError('each item must be a JSON object')
        created = add_estimate_items(store, estimate_id, [_item_payload(r) for r in rows])
        return jsonify(items=[serialize_item(it) for it in created]), 201

    it = add_estimate_item(store, estimate_id, **_item_payload(data))
    return jsonify(item=serialize_item(it)), 201


@bp.route('/<int:estimate_id>/items/by-category', methods=['GET'])
def list_items_by_category(estimate_id):
    groups = items_by_category(CostStore(), estimate_id)
    return jsonify(categories=[{
        **serialize_category(g['category']),
        'item_count'     : g['item_count'],
        'category_total' : as_str(money(g['category_total'])),
        'items'          : [serialize_item(it) for it in g['items']],
    } for g in groups])


@bp.route('/items/<int:item_id>', methods=['PATCH'])
def edit_item(item_id):
    changes = _item_payload(json_body(), partial=True)
    if not changes:
        raise ValidationError('No valid fields to update')
    it = update_estimate_item(CostStore(), item_id, **changes)
    return jsonify(item=serialize_item(it))


@bp.route('/items/<int:item_id>', methods=['DELETE'])
def remove_item(item_id):
    delete_estimate_item(CostStore(), item_id)
    return jsonify(success=True)
