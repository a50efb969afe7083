# costtrack/actuals/utils.py

"""Serialisation helpers for the actuals blueprint."""

from costtrack.numbers import as_str, money, percent, quantity


def serialize_actual(a) -> dict:
    item = a.item
    estimate = item.estimate
    return {
        'id'                  : a.id,
        'item_id'             : a.item_id,
        'item_description'    : item.description,
        'item_unit'           : item.unit,
        'category_name'       : item.category.name if item.category else None,
        'estimate_id'         : estimate.id,
        'estimate_title'      : estimate.title,
        'site_id'             : estimate.site_id,
        'estimated_quantity'  : as_str(quantity(item.quantity)),
        'estimated_unit_price': as_str(money(item.unit_price)),
        'total_estimated'     : as_str(money(item.total_estimated)),
        'actual_unit_price'   : as_str(money(a.actual_unit_price)),
        'actual_quantity'     : as_str(quantity(a.actual_quantity)) if a.actual_quantity is not None else None,
        'total_actual'        : as_str(money(a.total_actual)),
        'variance_amount'     : as_str(money(a.variance_amount)),
        'variance_percentage' : as_str(percent(a.variance_percentage)),
        'date_recorded'       : a.date_recorded.isoformat() if a.date_recorded else None,
        'notes'               : a.notes,
        'recorded_by'         : a.recorded_by,
    }
