"""Persistence handle passed into every engine call.

The engines never reach for a global session; they receive a ``CostStore``
and ask it for rows and for a transaction boundary. Routes build one around
``db.session``; tests can build one around any SQLAlchemy session.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import date
from typing import Iterator, Optional

from costtrack import db
from costtrack.models import ActualCost, Category, Estimate, EstimateItem, Site


@dataclass(frozen=True)
class VarianceFilter:
    """Row filter shared by the aggregation, alerting and report engines.

    ``site_id``, ``estimate_id`` and ``category_id`` bound the item set;
    ``date_from``/``date_to`` (inclusive) bound actual costs by
    ``date_recorded``.
    """

    site_id: Optional[int] = None
    estimate_id: Optional[int] = None
    category_id: Optional[int] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    def merge(self, **overrides) -> 'VarianceFilter':
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


class CostStore:
    def __init__(self, session=None) -> None:
        self.session = session if session is not None else db.session
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator['CostStore']:
        """Run the block atomically; only the outermost block commits."""
        self._depth += 1
        try:
            yield self
            if self._depth == 1:
                self.session.commit()
        except Exception:
            if self._depth == 1:
                self.session.rollback()
            raise
        finally:
            self._depth -= 1

    def add(self, obj) -> None:
        self.session.add(obj)

    def delete(self, obj) -> None:
        self.session.delete(obj)

    def flush(self) -> None:
        self.session.flush()

    # Sites -----------------------------------------------------------------

    def get_site(self, site_id: int) -> Site | None:
        return self.session.get(Site, site_id)

    def get_sites(self, filt: VarianceFilter | None = None, status: str | None = None,
                  search: str | None = None) -> list[Site]:
        q = self.session.query(Site)
        if filt and filt.site_id is not None:
            q = q.filter(Site.id == filt.site_id)
        if filt and (filt.estimate_id is not None):
            q = q.join(Estimate).filter(Estimate.id == filt.estimate_id)
        if status:
            q = q.filter(Site.status == status)
        if search:
            term = f"%{search}%"
            q = q.filter(Site.name.ilike(term) | Site.location.ilike(term))
        return q.order_by(Site.id).all()

    # Estimates -------------------------------------------------------------

    def get_estimate(self, estimate_id: int) -> Estimate | None:
        return self.session.get(Estimate, estimate_id)

    def get_estimates(self, filt: VarianceFilter | None = None, status: str | None = None,
                      search: str | None = None) -> list[Estimate]:
        q = self.session.query(Estimate)
        if filt and filt.site_id is not None:
            q = q.filter(Estimate.site_id == filt.site_id)
        if filt and filt.estimate_id is not None:
            q = q.filter(Estimate.id == filt.estimate_id)
        if status:
            q = q.filter(Estimate.status == status)
        if search:
            term = f"%{search}%"
            q = q.filter(Estimate.title.ilike(term) | Estimate.description.ilike(term))
        return q.order_by(Estimate.id).all()

    # Items -----------------------------------------------------------------

    def get_estimate_item(self, item_id: int, for_update: bool = False) -> EstimateItem | None:
        if not for_update:
            return self.session.get(EstimateItem, item_id)
        return (
            self.session.query(EstimateItem)
            .filter(EstimateItem.id == item_id)
            .with_for_update()
            .one_or_none()
        )

    def get_estimate_items(self, filt: VarianceFilter | None = None) -> list[EstimateItem]:
        q = self.session.query(EstimateItem).join(Estimate)
        if filt:
            if filt.site_id is not None:
                q = q.filter(Estimate.site_id == filt.site_id)
            if filt.estimate_id is not None:
                q = q.filter(EstimateItem.estimate_id == filt.estimate_id)
            if filt.category_id is not None:
                q = q.filter(EstimateItem.category_id == filt.category_id)
        return q.order_by(EstimateItem.id).all()

    # Actual costs ----------------------------------------------------------

    def get_actual_cost(self, actual_id: int) -> ActualCost | None:
        return self.session.get(ActualCost, actual_id)

    def get_actual_costs(self, filt: VarianceFilter | None = None,
                         item_id: int | None = None) -> list[ActualCost]:
        q = self.session.query(ActualCost).join(EstimateItem).join(Estimate)
        if item_id is not None:
            q = q.filter(ActualCost.item_id == item_id)
        if filt:
            if filt.site_id is not None:
                q = q.filter(Estimate.site_id == filt.site_id)
            if filt.estimate_id is not None:
                q = q.filter(EstimateItem.estimate_id == filt.estimate_id)
            if filt.category_id is not None:
                q = q.filter(EstimateItem.category_id == filt.category_id)
            if filt.date_from is not None:
                q = q.filter(ActualCost.date_recorded >= filt.date_from)
            if filt.date_to is not None:
                q = q.filter(ActualCost.date_recorded <= filt.date_to)
        return q.order_by(ActualCost.id).all()

    def upsert_actual_cost(self, record: ActualCost) -> ActualCost:
        """Stage ``record`` and flush so it carries its id.

        Callers run this inside :meth:`transaction` after the derived
        fields are set.
        """
        if record.id is None:
            self.session.add(record)
        self.session.flush()
        return record

    # Categories ------------------------------------------------------------

    def get_category(self, category_id: int) -> Category | None:
        return self.session.get(Category, category_id)

    def get_categories(self, category_id: int | None = None) -> list[Category]:
        q = self.session.query(Category)
        if category_id is not None:
            q = q.filter(Category.id == category_id)
        return q.order_by(Category.sort_order, Category.id).all()
