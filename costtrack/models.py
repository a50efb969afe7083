from datetime import date, datetime

from costtrack import db
from costtrack.numbers import ZERO

SITE_STATUSES = ('planning', 'active', 'on_hold', 'completed', 'cancelled')
ESTIMATE_STATUSES = ('draft', 'submitted', 'approved', 'rejected', 'archived')
VARIANCE_STATUSES = ('no_actual', 'over_budget', 'under_budget', 'on_budget')


class Category(db.Model):
    __tablename__ = 'category'
    id          = db.Column(db.Integer, primary_key=True)
    name        = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.Text)
    sort_order  = db.Column(db.Integer, nullable=False, default=0)


class Site(db.Model):
    __tablename__ = 'site'
    id           = db.Column(db.Integer, primary_key=True)
    name         = db.Column(db.String(200), nullable=False)
    location     = db.Column(db.String(255))
    description  = db.Column(db.Text)
    status       = db.Column(db.String(32), nullable=False, default='planning')
    budget_limit = db.Column(db.Numeric(15, 2), nullable=True)
    start_date   = db.Column(db.Date)
    end_date     = db.Column(db.Date)
    created_by   = db.Column(db.Integer)
    created_at   = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    estimates = db.relationship(
        'Estimate',
        back_populates='site',
        cascade='all, delete-orphan',
        order_by='Estimate.id',
    )


class Estimate(db.Model):
    __tablename__ = 'estimate'
    id                 = db.Column(db.Integer, primary_key=True)
    site_id            = db.Column(
                           db.Integer,
                           db.ForeignKey('site.id', ondelete='CASCADE'),
                           nullable=False,
                         )
    title              = db.Column(db.String(200), nullable=False)
    description        = db.Column(db.Text)
    version            = db.Column(db.Integer, nullable=False, default=1)
    status             = db.Column(db.String(32), nullable=False, default='draft')
    source_estimate_id = db.Column(db.Integer, db.ForeignKey('estimate.id', ondelete='SET NULL'))
    created_by         = db.Column(db.Integer)
    created_at         = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    site = db.relationship('Site', back_populates='estimates')
    items = db.relationship(
        'EstimateItem',
        back_populates='estimate',
        cascade='all, delete-orphan',
        order_by='EstimateItem.id',
    )

    @property
    def total_estimated(self):
        """Sum of the item totals, recomputed on every read.

        Nothing is cached on the row, so the figure cannot drift from the
        visible item list.
        """
        return sum((i.total_estimated for i in self.items), ZERO)

    @property
    def has_actuals(self):
        return any(i.actuals for i in self.items)


class EstimateItem(db.Model):
    __tablename__ = 'estimate_item'
    id          = db.Column(db.Integer, primary_key=True)
    estimate_id = db.Column(
                    db.Integer,
                    db.ForeignKey('estimate.id', ondelete='CASCADE'),
                    nullable=False,
                  )
    category_id = db.Column(db.Integer, db.ForeignKey('category.id'), nullable=False)
    description = db.Column(db.Text, nullable=False)
    quantity    = db.Column(db.Numeric(12, 3), nullable=False, default=1)
    unit        = db.Column(db.String(32), nullable=False)
    unit_price  = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    notes       = db.Column(db.Text)

    estimate = db.relationship('Estimate', back_populates='items')
    category = db.relationship('Category')
    actuals = db.relationship(
        'ActualCost',
        back_populates='item',
        cascade='all, delete-orphan',
        order_by='ActualCost.id',
    )

    @property
    def total_estimated(self):
        return (self.quantity or ZERO) * (self.unit_price or ZERO)


class ActualCost(db.Model):
    """A real-world cost recorded against one estimate item.

    ``total_actual``, ``variance_amount`` and ``variance_percentage`` are
    written only by :mod:`costtrack.actuals.recalc`, in the same transaction
    as the price/quantity they derive from.
    """
    __tablename__ = 'actual_cost'
    id                  = db.Column(db.Integer, primary_key=True)
    item_id             = db.Column(
                            db.Integer,
                            db.ForeignKey('estimate_item.id', ondelete='CASCADE'),
                            nullable=False,
                          )
    actual_unit_price   = db.Column(db.Numeric(12, 2), nullable=False)
    actual_quantity     = db.Column(db.Numeric(12, 3), nullable=True)
    date_recorded       = db.Column(db.Date, nullable=False, default=date.today)
    notes               = db.Column(db.Text)
    recorded_by         = db.Column(db.Integer)
    total_actual        = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    variance_amount     = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    variance_percentage = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    created_at          = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at          = db.Column(db.DateTime, nullable=False, default=datetime.utcnow,
                                    onupdate=datetime.utcnow)

    item = db.relationship('EstimateItem', back_populates='actuals')
