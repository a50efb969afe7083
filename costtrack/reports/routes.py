# costtrack/reports/routes.py

import logging

from flask import Blueprint, jsonify, make_response, request

from costtrack.reports.assembler import (
    build_estimate_report,
    build_site_report,
    build_variance_report,
)
from costtrack.reports.csv_export import render_csv
from costtrack.store import CostStore
from costtrack.validation import parse_choice

bp = Blueprint('reports', __name__)

FORMATS = ('json', 'csv')


def _respond(payload):
    fmt = parse_choice(request.args.get('format'), 'format', FORMATS) or 'json'
    data = payload.to_dict()
    if fmt == 'json':
        return jsonify(report=data)

    body, filename = render_csv(data)
    logging.info("%s report rendered as %s", payload.kind, filename)
    resp = make_response(body)
    resp.headers["Content-Disposition"] = f'attachment; filename="{filename}"'
    resp.mimetype = "text/csv"
    return resp


@bp.route('/estimate/<int:estimate_id>', methods=['GET'])
def estimate_report(estimate_id):
    return _respond(build_estimate_report(CostStore(), estimate_id))


@bp.route('/variance/<int:site_id>', methods=['GET'])
def variance_report(site_id):
    return _respond(build_variance_report(CostStore(), site_id))


@bp.route('/site/<int:site_id>', methods=['GET'])
def site_report(site_id):
    return _respond(build_site_report(CostStore(), site_id))
