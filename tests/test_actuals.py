import os
import sys
from datetime import date
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from costtrack import create_app, db
from costtrack.actuals.recalc import (
    delete_actual_cost,
    recalculate_actuals,
    recalculate_item_actuals,
    record_actual_cost,
    update_actual_cost,
)
from costtrack.errors import DanglingReferenceError, DomainError, NotFoundError, ValidationError
from costtrack.estimates.items import add_estimate_item, update_estimate_item
from costtrack.models import ActualCost, Category, Estimate, Site
from costtrack.store import CostStore


def setup_app():
    app = create_app('testing')
    with app.app_context():
        db.drop_all()
        db.create_all()
    return app


def make_item(store, qty=50, price=300):
    cat = Category(name='Material', sort_order=1)
    site = Site(name='North Yard', status='active')
    est = Estimate(site=site, title='Foundation')
    db.session.add_all([cat, site, est])
    db.session.commit()
    return add_estimate_item(store, est.id, description='Cement', category_id=cat.id,
                             quantity=qty, unit='bag', unit_price=price)


def test_record_populates_derived_fields():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        item = make_item(store)
        a = record_actual_cost(store, item.id, 320, date_recorded=date(2024, 3, 1))
        stored = db.session.get(ActualCost, a.id)
        assert stored.actual_quantity is None
        assert stored.total_actual == Decimal('16000.00')
        assert stored.variance_amount == Decimal('1000.00')
        assert stored.variance_percentage == Decimal('6.67')
        assert stored.date_recorded == date(2024, 3, 1)


def test_record_against_missing_item():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        with pytest.raises(DanglingReferenceError):
            record_actual_cost(store, 999, 10)
        assert ActualCost.query.count() == 0


def test_record_rejects_negative_price_and_writes_nothing():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        item = make_item(store)
        with pytest.raises(DomainError):
            record_actual_cost(store, item.id, -5)
        assert ActualCost.query.count() == 0


def test_update_recomputes_and_clears_quantity_override():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        item = make_item(store)
        a = record_actual_cost(store, item.id, 320, actual_quantity=40)
        assert a.total_actual == Decimal('12800.00')

        a = update_actual_cost(store, a.id, actual_unit_price=280)
        assert a.total_actual == Decimal('11200.00')
        assert a.variance_amount == Decimal('-3800.00')
        assert a.variance_percentage == Decimal('-25.33')

        a = update_actual_cost(store, a.id, actual_quantity=None)
        assert a.actual_quantity is None
        assert a.total_actual == Decimal('14000.00')


def test_update_notes_leaves_figures_alone():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        item = make_item(store)
        a = record_actual_cost(store, item.id, 320)
        a = update_actual_cost(store, a.id, notes='second supplier')
        assert a.notes == 'second supplier'
        assert a.total_actual == Decimal('16000.00')


def test_update_errors():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        item = make_item(store)
        a = record_actual_cost(store, item.id, 320)
        with pytest.raises(NotFoundError):
            update_actual_cost(store, 999, notes='x')
        with pytest.raises(ValidationError):
            update_actual_cost(store, a.id)
        with pytest.raises(ValidationError):
            update_actual_cost(store, a.id, total_actual=1)


def test_delete_actual():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        item = make_item(store)
        a = record_actual_cost(store, item.id, 320)
        delete_actual_cost(store, a.id)
        assert ActualCost.query.count() == 0
        with pytest.raises(NotFoundError):
            delete_actual_cost(store, a.id)


def test_item_edit_keeps_recorded_figures_by_default():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        item = make_item(store)
        a = record_actual_cost(store, item.id, 320)
        update_estimate_item(store, item.id, unit_price=320)
        stored = db.session.get(ActualCost, a.id)
        assert stored.variance_amount == Decimal('1000.00')


def test_item_edit_recomputes_when_enabled(monkeypatch):
    app = setup_app()
    monkeypatch.setitem(app.config, 'RECOMPUTE_ACTUALS_ON_ITEM_EDIT', True)
    with app.app_context():
        store = CostStore(db.session)
        item = make_item(store)
        a = record_actual_cost(store, item.id, 320)
        update_estimate_item(store, item.id, unit_price=320)
        stored = db.session.get(ActualCost, a.id)
        assert stored.variance_amount == Decimal('0.00')
        assert stored.variance_percentage == Decimal('0.00')


def test_recalculate_actuals_rederives_stale_rows():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        item = make_item(store)
        a = record_actual_cost(store, item.id, 320)
        update_estimate_item(store, item.id, quantity=40, recompute_actuals=False)
        assert recalculate_actuals(store, item_id=item.id) == 1
        stored = db.session.get(ActualCost, a.id)
        assert stored.total_actual == Decimal('12800.00')
        assert stored.variance_amount == Decimal('800.00')
        assert recalculate_item_actuals(store, item.id) == 1
        assert recalculate_actuals(store) == 1
        with pytest.raises(DanglingReferenceError):
            recalculate_actuals(store, item_id=999)
