# costtrack/cli.py

import logging

import click
from flask.cli import with_appcontext

from costtrack.actuals.recalc import recalculate_actuals
from costtrack.models import Category
from costtrack.store import CostStore
from costtrack.variance.alerts import alerts

DEFAULT_CATEGORIES = [
    ('Material', 'Basic construction materials'),
    ('Labor', 'Worker payments and contractor fees'),
    ('Masonry', 'Brick work, concrete, foundations'),
    ('Steel Works', 'Reinforcement, structural steel'),
    ('Plumbing', 'Pipes, fixtures, installation'),
    ('Carpentry', 'Wood work, formwork, finishing'),
    ('Electrical Works', 'Wiring, fixtures, installations'),
    ('Air Conditioning Works', 'HVAC systems'),
    ('Utilities', 'Water, electricity connections'),
    ('Glass Glazing', 'Windows, glass installations'),
    ('Metal Works', 'Gates, railings, metal fixtures'),
    ('POP/Aesthetics Works', 'Finishing, decorative elements'),
]


def seed_categories(store) -> int:
    """Insert any default category that is missing. Returns how many were added."""
    existing = {c.name for c in store.get_categories()}
    added = 0
    with store.transaction():
        for order, (name, description) in enumerate(DEFAULT_CATEGORIES, start=1):
            if name in existing:
                continue
            store.add(Category(name=name, description=description, sort_order=order))
            added += 1
        store.flush()
    logging.info("seeded %s categories, %s already present", added, len(existing))
    return added


@click.group("costs")
def costs_cli() -> None:
    """Cost tracking maintenance commands."""


@costs_cli.command("seed-categories")
@with_appcontext
def seed_categories_command() -> None:
    added = seed_categories(CostStore())
    click.echo(f"{added} categories added")


@costs_cli.command("recalc")
@click.option("--item-id", type=int, default=None, help="Only recalculate this estimate item")
@with_appcontext
def recalc_command(item_id) -> None:
    count = recalculate_actuals(CostStore(), item_id=item_id)
    click.echo(f"{count} actual cost record(s) recalculated")


@costs_cli.command("alerts")
@click.option("--threshold", type=float, default=None, help="Variance percentage that triggers an alert")
@with_appcontext
def alerts_command(threshold) -> None:
    result = alerts(CostStore(), threshold=threshold)
    for v in result['variance_alerts']:
        click.echo(
            f"VARIANCE {v.site_name} / {v.estimate_title} / {v.description}: "
            f"{v.variance_percentage}% ({v.variance_amount})"
        )
    for a in result['budget_alerts']:
        click.echo(
            f"BUDGET {a['site_name']}: over by {a['over_budget_amount']} "
            f"({a['over_budget_percentage']}%)"
        )
    logging.info(
        "alerts threshold=%s variance=%s budget=%s",
        result['threshold'], len(result['variance_alerts']), len(result['budget_alerts']),
    )
    if not result['variance_alerts'] and not result['budget_alerts']:
        click.echo("No alerts")
