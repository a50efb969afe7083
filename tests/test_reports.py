import csv
import io
import os
import sys
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from costtrack import create_app, db
from costtrack.actuals.recalc import record_actual_cost
from costtrack.errors import NotFoundError
from costtrack.estimates.items import add_estimate_item
from costtrack.models import Category, Estimate, Site
from costtrack.reports.assembler import (
    build_estimate_report,
    build_site_report,
    build_variance_report,
)
from costtrack.reports.csv_export import render_csv, safe_filename
from costtrack.store import CostStore

NOW = datetime(2024, 4, 1, 12, 0, tzinfo=timezone.utc)


def setup_app():
    app = create_app('testing')
    with app.app_context():
        db.drop_all()
        db.create_all()
    return app


def seed(store):
    material = Category(name='Material', sort_order=1)
    labor = Category(name='Labor', sort_order=2)
    site = Site(name='North Yard', location='Tema', status='active', budget_limit=Decimal('20000'))
    est = Estimate(site=site, title='Foundation')
    db.session.add_all([material, labor, site, est])
    db.session.commit()
    masons = add_estimate_item(store, est.id, description='Masons', category_id=labor.id,
                               quantity=10, unit='day', unit_price=100)
    cement = add_estimate_item(store, est.id, description='Cement', category_id=material.id,
                               quantity=50, unit='bag', unit_price=300)
    record_actual_cost(store, cement.id, 320, date_recorded=date(2024, 3, 1))
    record_actual_cost(store, masons.id, 80, date_recorded=date(2024, 3, 2))
    return site, est


def test_estimate_report_rows_follow_category_order():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        site, est = seed(store)
        report = build_estimate_report(store, est.id, now=NOW).to_dict()
        assert report['kind'] == 'estimate'
        assert report['generated_at'] == '2024-04-01T12:00:00+00:00'
        assert [c['key'] for c in report['columns']] == [
            'description', 'category_name', 'quantity', 'unit', 'unit_price', 'total_estimated']
        assert report['columns'][4]['label'] == 'Unit Price (GHS)'
        assert [r['description'] for r in report['rows']] == ['Cement', 'Masons']
        assert report['rows'][0]['quantity'] == '50.000'
        assert report['totals'] == {'description': 'Total', 'total_estimated': '16000.00'}
        assert report['meta']['budget_usage_percentage'] == '80.00'
        assert report['meta']['remaining_budget'] == '4000.00'
        assert report['sections'][0]['title'] == 'Variance by Category'


def test_variance_report():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        site, _ = seed(store)
        report = build_variance_report(store, site.id, now=NOW).to_dict()
        assert [r['description'] for r in report['rows']] == ['Masons', 'Cement']
        assert report['rows'][0]['variance_percentage'] == '-20.00'
        assert report['totals']['total_actual'] == '16800.00'
        assert report['totals']['variance_amount'] == '800.00'
        assert report['meta']['over_budget_items'] == 1
        assert report['meta']['under_budget_items'] == 1
        titles = [s['title'] for s in report['sections']]
        assert titles == ['Variance by Category', 'Variance Alerts', 'Budget Alert']
        assert report['sections'][1]['rows'] == []
        assert report['sections'][2]['rows'] == []


def test_site_report_lists_estimates_newest_first():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        site, est = seed(store)
        later = Estimate(site_id=site.id, title='Roofing', created_at=datetime(2030, 1, 1))
        db.session.add(later)
        db.session.commit()
        report = build_site_report(store, site.id, now=NOW).to_dict()
        assert [r['title'] for r in report['rows']] == ['Roofing', 'Foundation']
        assert report['rows'][0]['total_estimated'] == '0.00'
        assert report['totals']['total_estimated'] == '16000.00'
        assert report['meta']['estimate_count'] == 2


def test_reports_for_missing_or_empty_entities():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        with pytest.raises(NotFoundError):
            build_estimate_report(store, 1)
        with pytest.raises(NotFoundError):
            build_variance_report(store, 1)
        with pytest.raises(NotFoundError):
            build_site_report(store, 1)

        site = Site(name='Empty Lot', status='planning')
        db.session.add(site)
        db.session.commit()
        report = build_variance_report(store, site.id, now=NOW).to_dict()
        assert report['rows'] == []
        assert report['totals']['total_estimated'] == '0.00'
        assert report['sections'][0]['rows'] == []


def test_render_csv_writes_totals_after_rows():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        _, est = seed(store)
        payload = build_estimate_report(store, est.id, now=NOW).to_dict()
        body, filename = render_csv(payload)
        assert filename == 'Estimate Report - Foundation.csv'
        lines = list(csv.reader(io.StringIO(body.decode('utf-8'))))
        header = lines.index(['Description', 'Category', 'Quantity', 'Unit',
                              'Unit Price (GHS)', 'Total Amount (GHS)'])
        assert lines[header + 1][0] == 'Cement'
        assert lines[header + 3] == ['Total', '', '', '', '', '16000.00']


def test_safe_filename():
    assert safe_filename('a<b>c:d"e/f\\g|h?i*j.csv') == 'a_b_c_d_e_f_g_h_i_j.csv'
