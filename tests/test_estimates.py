import os
import sys
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from costtrack import create_app, db
from costtrack.actuals.recalc import record_actual_cost
from costtrack.errors import (
    ConflictError,
    DanglingReferenceError,
    DomainError,
    NotFoundError,
    ValidationError,
)
from costtrack.estimates import versioning
from costtrack.estimates.items import (
    add_estimate_item,
    add_estimate_items,
    delete_estimate_item,
    items_by_category,
    update_estimate_item,
)
from costtrack.estimates.versioning import (
    create_estimate,
    duplicate_estimate,
    retire_estimate,
    update_estimate,
)
from costtrack.models import Category, Estimate, EstimateItem, Site
from costtrack.store import CostStore


def setup_app():
    app = create_app('testing')
    with app.app_context():
        db.drop_all()
        db.create_all()
    return app


def seed():
    material = Category(name='Material', sort_order=1)
    labor = Category(name='Labor', sort_order=2)
    site = Site(name='North Yard', status='active')
    db.session.add_all([material, labor, site])
    db.session.commit()
    return site, material, labor


def test_totals_follow_items():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        site, material, labor = seed()
        est = create_estimate(store, site.id, 'Foundation')
        i1 = add_estimate_item(store, est.id, description='Cement', category_id=material.id,
                               quantity=50, unit='bag', unit_price=300)
        add_estimate_item(store, est.id, description='Masons', category_id=labor.id,
                          quantity='2.5', unit='day', unit_price='120.50')
        assert i1.total_estimated == Decimal('15000')
        assert est.total_estimated == Decimal('15301.25')

        # unrelated write elsewhere leaves the total untouched
        other = create_estimate(store, site.id, 'Roofing')
        add_estimate_item(store, other.id, description='Sheets', category_id=material.id,
                          quantity=10, unit='pcs', unit_price=80)
        assert est.total_estimated == Decimal('15301.25')

        update_estimate_item(store, i1.id, quantity=40)
        assert est.total_estimated == Decimal('12301.25')
        delete_estimate_item(store, i1.id)
        assert est.total_estimated == Decimal('301.25')


def test_item_validation():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        site, material, _ = seed()
        est = create_estimate(store, site.id, 'Foundation')
        with pytest.raises(DomainError):
            add_estimate_item(store, est.id, description='Cement', category_id=material.id,
                              quantity=-1, unit='bag', unit_price=300)
        with pytest.raises(DanglingReferenceError):
            add_estimate_item(store, est.id, description='Cement', category_id=999,
                              quantity=1, unit='bag', unit_price=300)
        with pytest.raises(DanglingReferenceError):
            add_estimate_item(store, 999, description='Cement', category_id=material.id,
                              quantity=1, unit='bag', unit_price=300)
        with pytest.raises(ValidationError):
            add_estimate_item(store, est.id, description='', category_id=material.id,
                              quantity=1, unit='bag', unit_price=300)
        assert EstimateItem.query.count() == 0


def test_bulk_add_is_all_or_nothing():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        site, material, _ = seed()
        est = create_estimate(store, site.id, 'Foundation')
        rows = [
            dict(description='Cement', category_id=material.id, quantity=5, unit='bag', unit_price=300),
            dict(description='Sand', category_id=material.id, quantity=-2, unit='trip', unit_price=900),
        ]
        with pytest.raises(DomainError):
            add_estimate_items(store, est.id, rows)
        assert EstimateItem.query.count() == 0

        rows[1]['quantity'] = 2
        created = add_estimate_items(store, est.id, rows)
        assert [it.description for it in created] == ['Cement', 'Sand']


def test_duplicate_round_trip():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        site, material, labor = seed()
        est = create_estimate(store, site.id, 'Foundation', description='Phase 1')
        a = add_estimate_item(store, est.id, description='Cement', category_id=material.id,
                              quantity=50, unit='bag', unit_price=300)
        add_estimate_item(store, est.id, description='Masons', category_id=labor.id,
                          quantity=4, unit='day', unit_price=150)
        record_actual_cost(store, a.id, 320)

        copy = duplicate_estimate(store, est.id, new_title='Foundation rev B')
        assert copy.id != est.id
        assert copy.site_id == est.site_id
        assert copy.version == 2
        assert copy.status == 'draft'
        assert copy.source_estimate_id == est.id
        assert copy.total_estimated == est.total_estimated

        def shape(e):
            return [(i.category_id, i.description, i.quantity, i.unit, i.unit_price) for i in e.items]

        assert shape(copy) == shape(est)
        assert {i.id for i in copy.items}.isdisjoint({i.id for i in est.items})
        assert all(not i.actuals for i in copy.items)


def test_duplicate_default_title_and_conflicts():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        site, _, _ = seed()
        est = create_estimate(store, site.id, 'Foundation')
        copy = duplicate_estimate(store, est.id)
        assert copy.title == 'Foundation (Copy)'
        with pytest.raises(ConflictError):
            duplicate_estimate(store, est.id, new_title='foundation')
        with pytest.raises(NotFoundError):
            duplicate_estimate(store, 999)
        assert Estimate.query.count() == 2


def test_duplicate_failing_mid_copy_writes_nothing(monkeypatch):
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        site, material, labor = seed()
        est = create_estimate(store, site.id, 'Foundation')
        add_estimate_item(store, est.id, description='Cement', category_id=material.id,
                          quantity=50, unit='bag', unit_price=300)
        add_estimate_item(store, est.id, description='Masons', category_id=labor.id,
                          quantity=4, unit='day', unit_price=150)

        real_clone = versioning.clone_items

        def broken_clone(source, target):
            clones = real_clone(source, target)
            clones[-1].unit = None
            return clones

        monkeypatch.setattr(versioning, 'clone_items', broken_clone)
        with pytest.raises(IntegrityError):
            duplicate_estimate(store, est.id, new_title='Foundation rev B')

        assert Estimate.query.count() == 1
        assert EstimateItem.query.count() == 2
        assert {i.estimate_id for i in EstimateItem.query} == {est.id}

        monkeypatch.undo()
        copy = duplicate_estimate(store, est.id, new_title='Foundation rev B')
        assert len(copy.items) == 2


def test_create_estimate_checks_site_and_title():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        site, _, _ = seed()
        create_estimate(store, site.id, 'Foundation')
        with pytest.raises(DanglingReferenceError):
            create_estimate(store, 999, 'Foundation')
        with pytest.raises(ConflictError):
            create_estimate(store, site.id, ' FOUNDATION ')


def test_retire_archives_when_actuals_exist():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        site, material, _ = seed()
        spent = create_estimate(store, site.id, 'Foundation')
        item = add_estimate_item(store, spent.id, description='Cement', category_id=material.id,
                                 quantity=1, unit='bag', unit_price=300)
        record_actual_cost(store, item.id, 310)
        unused = create_estimate(store, site.id, 'Roofing')

        assert retire_estimate(store, spent.id) == 'archived'
        assert db.session.get(Estimate, spent.id).status == 'archived'
        assert retire_estimate(store, unused.id) == 'deleted'
        assert db.session.get(Estimate, unused.id) is None

        with pytest.raises(ConflictError):
            add_estimate_item(store, spent.id, description='Sand', category_id=material.id,
                              quantity=1, unit='trip', unit_price=900)
        # archived title is free again
        create_estimate(store, site.id, 'Foundation')


def test_item_with_actuals_cannot_be_deleted():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        site, material, _ = seed()
        est = create_estimate(store, site.id, 'Foundation')
        item = add_estimate_item(store, est.id, description='Cement', category_id=material.id,
                                 quantity=1, unit='bag', unit_price=300)
        record_actual_cost(store, item.id, 310)
        with pytest.raises(ConflictError):
            delete_estimate_item(store, item.id)
        with pytest.raises(NotFoundError):
            delete_estimate_item(store, 999)


def test_update_estimate_fields():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        site, _, _ = seed()
        est = create_estimate(store, site.id, 'Foundation')
        create_estimate(store, site.id, 'Roofing')
        est = update_estimate(store, est.id, status='submitted', description='Phase 1')
        assert est.status == 'submitted'
        with pytest.raises(ConflictError):
            update_estimate(store, est.id, title='roofing')
        with pytest.raises(ValidationError):
            update_estimate(store, est.id, version=3)
        with pytest.raises(ValidationError):
            update_estimate(store, est.id, status='lost')


def test_items_by_category_lists_every_category():
    app = setup_app()
    with app.app_context():
        store = CostStore(db.session)
        site, material, labor = seed()
        est = create_estimate(store, site.id, 'Foundation')
        add_estimate_item(store, est.id, description='Cement', category_id=material.id,
                          quantity=2, unit='bag', unit_price=300)
        add_estimate_item(store, est.id, description='Sand', category_id=material.id,
                          quantity=1, unit='trip', unit_price=900)
        groups = items_by_category(store, est.id)
        assert [g['category'].name for g in groups] == ['Material', 'Labor']
        assert groups[0]['item_count'] == 2
        assert groups[0]['category_total'] == Decimal('1500')
        assert groups[1]['items'] == []
        assert groups[1]['category_total'] == Decimal('0')
