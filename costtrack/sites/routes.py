# costtrack/sites/routes.py

import logging

from flask import Blueprint, jsonify, request

from costtrack.errors import ConflictError, DomainError, NotFoundError, ValidationError
from costtrack.models import SITE_STATUSES, Site
from costtrack.numbers import ZERO, as_str, money
from costtrack.store import CostStore
from costtrack.validation import (
    current_user_id,
    json_body,
    parse_choice,
    parse_date,
    parse_decimal,
    parse_text,
)

bp = Blueprint('sites', __name__)


def serialize_site(s) -> dict:
    return {
        'id'             : s.id,
        'name'           : s.name,
        'location'       : s.location or '',
        'description'    : s.description or '',
        'status'         : s.status,
        'budget_limit'   : as_str(money(s.budget_limit)) if s.budget_limit is not None else None,
        'start_date'     : s.start_date.isoformat() if s.start_date else None,
        'end_date'       : s.end_date.isoformat() if s.end_date else None,
        'estimate_count' : len(s.estimates),
        'created_by'     : s.created_by,
        'created_at'     : s.created_at.isoformat() if s.created_at else None,
    }


def _budget(value):
    budget = parse_decimal(value, 'budget_limit')
    if budget is not None and budget < 0:
        raise DomainError('budget_limit cannot be negative')
    return money(budget) if budget is not None else None


def _apply_fields(site, data):
    if 'name' in data:
        site.name = parse_text(data['name'], 'name', required=True, max_length=200)
    if 'location' in data:
        site.location = parse_text(data['location'], 'location', max_length=255)
    if 'description' in data:
        site.description = parse_text(data['description'], 'description')
    if 'status' in data:
        site.status = parse_choice(data['status'], 'status', SITE_STATUSES, required=True)
    if 'budget_limit' in data:
        site.budget_limit = _budget(data['budget_limit'])
    if 'start_date' in data:
        site.start_date = parse_date(data['start_date'], 'start_date')
    if 'end_date' in data:
        site.end_date = parse_date(data['end_date'], 'end_date')
    if site.start_date and site.end_date and site.end_date < site.start_date:
        raise ValidationError('end_date must not be before start_date')


def _get_site(store, site_id):
    site = store.get_site(site_id)
    if site is None:
        raise NotFoundError(f'Site {site_id} not found')
    return site


@bp.route('/', methods=['GET'])
def list_sites():
    status = parse_choice(request.args.get('status'), 'status', SITE_STATUSES)
    sites = CostStore().get_sites(status=status, search=request.args.get('search'))
    return jsonify(sites=[serialize_site(s) for s in sites])


@bp.route('/', methods=['POST'])
def create_site():
    data = json_body()
    if 'name' not in data:
        raise ValidationError('name is required')
    store = CostStore()
    with store.transaction():
        site = Site(status='planning', created_by=current_user_id())
        _apply_fields(site, data)
        store.add(site)
        store.flush()
        logging.info("site created id=%s", site.id)
    return jsonify(site=serialize_site(site)), 201


@bp.route('/statistics', methods=['GET'])
def site_statistics():
    sites = CostStore().get_sites()
    budgets = [s.budget_limit for s in sites if s.budget_limit is not None]
    total_budget = sum(budgets, ZERO)
    stats = {'total_sites': len(sites)}
    for status in SITE_STATUSES:
        stats[f'{status}_sites'] = sum(1 for s in sites if s.status == status)
    stats['total_budget'] = as_str(money(total_budget))
    stats['average_budget'] = as_str(money(total_budget / len(budgets))) if budgets else None
    recent = sorted(sites, key=lambda s: (s.created_at, s.id), reverse=True)[:5]
    return jsonify(statistics=stats, recent_sites=[serialize_site(s) for s in recent])


@bp.route('/<int:site_id>', methods=['GET'])
def view_site(site_id):
    return jsonify(site=serialize_site(_get_site(CostStore(), site_id)))


@bp.route('/<int:site_id>', methods=['PATCH'])
def edit_site(site_id):
    data = json_body()
    store = CostStore()
    with store.transaction():
        site = _get_site(store, site_id)
        _apply_fields(site, data)
        store.flush()
    return jsonify(site=serialize_site(site))


@bp.route('/<int:site_id>', methods=['DELETE'])
def delete_site(site_id):
    store = CostStore()
    with store.transaction():
        site = _get_site(store, site_id)
        if site.estimates:
            raise ConflictError('Cannot delete site with existing estimates. Delete estimates first.')
        store.delete(site)
    logging.info("site deleted id=%s", site_id)
    return jsonify(success=True)
