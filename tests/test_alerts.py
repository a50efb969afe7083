import os
import sys
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from costtrack import create_app, db
from costtrack.actuals.recalc import record_actual_cost
from costtrack.errors import ValidationError
from costtrack.estimates.items import add_estimate_item
from costtrack.models import Category, Estimate, Site
from costtrack.store import CostStore, VarianceFilter
from costtrack.variance.aggregation import item_variances
from costtrack.variance.alerts import alerts, rank_variances, top_variances


def setup_app():
    app = create_app('testing')
    with app.app_context():
        db.drop_all()
        db.create_all()
    return app


def seed(store, budget=None):
    """Four lines estimated at 100 each, spent at 6.67%, -10%, 20% and 3%."""
    cat = Category(name='Material', sort_order=1)
    site = Site(name='North Yard', status='active', budget_limit=budget)
    est = Estimate(site=site, title='Foundation')
    db.session.add_all([cat, site, est])
    db.session.commit()
    items = []
    for name, price in (('A', '106.67'), ('B', '90'), ('C', '120'), ('D', '103')):
        it = add_estimate_item(store, est.id, description=name, category_id=cat.id,
                               quantity=1, unit='pcs', unit_price=100)
        record_actual_cost(store, it.id, price)
        items.append(it)
    add_estimate_item(store, est.id, description='E', category_id=cat.id,
                      quantity=1, unit='pcs', unit_price=100)
    return site, items


def test_top_over_budget():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        seed(store)
        top = top_variances(store, limit=2, direction='over')
        assert [v.variance_percentage for v in top] == [Decimal('20.00'), Decimal('6.67')]


def test_top_under_and_both():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        seed(store)
        under = top_variances(store, direction='under')
        assert [v.description for v in under] == ['B']
        both = top_variances(store)
        assert [v.description for v in both] == ['C', 'B', 'A', 'D']


def test_ranking_limits_and_validation():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        seed(store)
        views = top_variances(store)
        assert rank_variances(views, 0) == []
        with pytest.raises(ValidationError):
            rank_variances(views, 1, 'sideways')
        with pytest.raises(ValidationError):
            rank_variances(views, -1)


def test_equal_percentages_rank_by_amount_then_item():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        cat = Category(name='Material', sort_order=1)
        site = Site(name='North Yard', status='active')
        est = Estimate(site=site, title='Foundation')
        db.session.add_all([cat, site, est])
        db.session.commit()
        for desc, price, spent in (('Sand', 100, 110), ('Gravel', 200, 220), ('Lime', 100, 110)):
            item = add_estimate_item(store, est.id, description=desc, category_id=cat.id,
                                     quantity=1, unit='trip', unit_price=price)
            record_actual_cost(store, item.id, spent)
        views = item_variances(store)
        assert {v.variance_percentage for v in views} == {Decimal('10.00')}

        ranked = rank_variances(views)
        assert [(v.description, v.variance_amount) for v in ranked] == [
            ('Gravel', Decimal('20.00')),
            ('Sand', Decimal('10.00')),
            ('Lime', Decimal('10.00')),
        ]
        assert ranked[1].item_id < ranked[2].item_id
        assert rank_variances(views, 2, 'over') == ranked[:2]
        assert rank_variances(list(reversed(views)), None, 'over') == ranked
        assert rank_variances(views, None, 'under') == []

def test_alerts_default_to_over_budget_only():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        seed(store)
        result = alerts(store, threshold=5)
        assert [v.description for v in result['variance_alerts']] == ['C', 'A']
        assert result['budget_alerts'] == []


def test_alerts_can_include_under_budget():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        seed(store)
        result = alerts(store, threshold=5, include_under_budget=True)
        assert [v.description for v in result['variance_alerts']] == ['C', 'B', 'A']


def test_alert_threshold_from_config(monkeypatch):
    app = setup_app()
    monkeypatch.setitem(app.config, 'VARIANCE_ALERT_THRESHOLD', 10)
    with app.app_context():
        store = CostStore(db.session)
        seed(store)
        result = alerts(store)
        assert [v.description for v in result['variance_alerts']] == ['C']
        with pytest.raises(ValidationError):
            alerts(store, threshold=-1)


def test_budget_alerts():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        site, _ = seed(store, budget=Decimal('400'))
        (alert,) = alerts(store, threshold=50)['budget_alerts']
        assert alert['site_id'] == site.id
        assert alert['total_actual'] == Decimal('419.67')
        assert alert['over_budget_amount'] == Decimal('19.67')
        assert alert['over_budget_percentage'] == Decimal('4.92')

        filt = VarianceFilter(site_id=site.id + 1)
        assert alerts(store, filt=filt)['budget_alerts'] == []
