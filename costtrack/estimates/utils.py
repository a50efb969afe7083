# costtrack/estimates/utils.py

"""Serialisation helpers for the estimates blueprint."""

from costtrack.numbers import as_str, money, quantity


def serialize_item(it) -> dict:
    return {
        'id'              : it.id,
        'estimate_id'     : it.estimate_id,
        'category_id'     : it.category_id,
        'category_name'   : it.category.name if it.category else None,
        'description'     : it.description,
        'quantity'        : as_str(quantity(it.quantity)),
        'unit'            : it.unit,
        'unit_price'      : as_str(money(it.unit_price)),
        'total_estimated' : as_str(money(it.total_estimated)),
        'notes'           : it.notes or '',
        'actual_count'    : len(it.actuals),
        'total_actual'    : as_str(money(sum(a.total_actual for a in it.actuals))),
    }


def serialize_estimate(est, with_items=False) -> dict:
    out = {
        'id'                 : est.id,
        'site_id'            : est.site_id,
        'site_name'          : est.site.name if est.site else None,
        'title'              : est.title,
        'description'        : est.description or '',
        'version'            : est.version,
        'status'             : est.status,
        'source_estimate_id' : est.source_estimate_id,
        'item_count'         : len(est.items),
        'total_estimated'    : as_str(money(est.total_estimated)),
        'created_by'         : est.created_by,
        'created_at'         : est.created_at.isoformat() if est.created_at else None,
    }
    if with_items:
        out['items'] = [serialize_item(it) for it in est.items]
    return out


def serialize_category(cat) -> dict:
    return {
        'id'          : cat.id,
        'name'        : cat.name,
        'description' : cat.description or '',
        'sort_order'  : cat.sort_order,
    }
