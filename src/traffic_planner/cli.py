"""
Command-line interface for the fleet traffic planner.

This module provides a CLI for inspecting scenario files and asking the
min-conflict planner for ways to admit or cancel a request.
"""

import json
import logging
import sys
from typing import Any, Dict, List, Optional

import click
import pandas as pd
from tabulate import tabulate

from .config import load_planner_config
from .errors import TrafficPlannerError
from .planner import MinConflictPlanner, MinConflictPlanSet
from .reservations import Bounded
from .scenario import Scenario, load_scenario
from .utils import format_datetime, format_duration, setup_logging

logger = logging.getLogger(__name__)


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2))


def _fail(action: str, error: Exception) -> None:
    logger.error(f"{action} failed: {error}")
    click.echo(f"Error: {error}", err=True)
    sys.exit(1)


def _describe_scenario(scenario: Scenario) -> Dict[str, Any]:
    requests = []
    for request in scenario.tracker:
        requests.append(
            {
                "request_id": request.request_id,
                "resources": sorted(request.resources),
                "earliest_start": format_datetime(request.start.lower_bound),
                "latest_start": format_datetime(request.start.upper_bound),
                "duration": (
                    format_duration(request.duration.total_seconds())
                    if request.duration is not None
                    else "unbounded"
                ),
                "reservations": scenario.tracker.reservations_for(request.request_id),
            }
        )
    return {
        "requests": requests,
        "schedule": scenario.state.to_dict(),
        "planner": scenario.config.to_dict(),
    }


def _schedule_rows(scenario: Scenario) -> List[Dict[str, Any]]:
    rows = []
    for reservation in scenario.state.all_reservations():
        finish = reservation.actual_finish_time
        rows.append(
            {
                "resource": reservation.resource,
                "reservation_id": reservation.reservation_id,
                "request_id": scenario.tracker.get_associated_reservation(
                    reservation.reservation_id
                ),
                "start_time": format_datetime(reservation.start_time),
                "finish_time": (
                    format_datetime(finish.instant)
                    if isinstance(finish, Bounded)
                    else "unbounded"
                ),
            }
        )
    return rows


def _collect(plan_set: MinConflictPlanSet, count: int) -> List[Dict[str, Any]]:
    candidates = []
    for rank, patch in enumerate(plan_set, start=1):
        written, removed = patch.changes()
        candidates.append(
            {
                "rank": rank,
                "written": [r.to_dict() for r in written],
                "removed": removed,
            }
        )
        if rank >= count:
            break
    return candidates


@click.group()
@click.option('--log-level', default='INFO',
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']),
              help='Set logging level')
@click.option('--log-file', type=click.Path(), help='Log file path')
def main(log_level: str, log_file: Optional[str]) -> None:
    """Fleet Traffic Planner - reserve shared resources with minimal disruption."""
    setup_logging(log_level, log_file)
    logger.debug("Starting traffic planner CLI")


@main.command()
@click.argument('scenario', type=click.Path(exists=True))
@click.option('--format', 'output_format', default='json',
              type=click.Choice(['json', 'table', 'csv']),
              help='Output format (table and csv list the schedule only)')
def show(scenario: str, output_format: str) -> None:
    """Print the requests and committed schedule of a scenario."""
    try:
        loaded = load_scenario(scenario)
    except TrafficPlannerError as e:
        _fail("Loading scenario", e)
        return

    if output_format == 'json':
        _echo_json(_describe_scenario(loaded))
        return

    rows = _schedule_rows(loaded)
    if output_format == 'table':
        if rows:
            click.echo(tabulate(rows, headers="keys", tablefmt="grid"))
        else:
            click.echo("Schedule is empty")
    else:
        columns = ["resource", "reservation_id", "request_id", "start_time", "finish_time"]
        click.echo(pd.DataFrame(rows, columns=columns).to_csv(index=False), nl=False)


@main.command()
@click.argument('scenario', type=click.Path(exists=True))
@click.argument('request_id')
@click.option('--count', default=3, type=click.IntRange(min=1),
              help='Number of candidates to print (default: 3)')
@click.option('--reservation-id', type=str,
              help='Id for the new reservation (default: generated)')
def plan(scenario: str, request_id: str, count: int, reservation_id: Optional[str]) -> None:
    """Find the best ways to admit REQUEST_ID into the scenario's schedule.

    Example:
    traffic-planner plan depot.yaml charge-7 --count 5
    """
    try:
        loaded = load_scenario(scenario)
        planner = MinConflictPlanner(loaded.tracker, loaded.config)
        planner.set_current_schedule(loaded.state)
        plan_set = planner.plan(request_id, reservation_id)
        candidates = _collect(plan_set, count)
    except TrafficPlannerError as e:
        _fail("Planning", e)
        return

    if not candidates:
        logger.warning(f"No feasible placement found for request {request_id}")
    _echo_json(
        {
            "mode": "plan",
            "request_id": request_id,
            "reservation_id": plan_set.reservation_id,
            "expansions": plan_set.expansions,
            "candidates": candidates,
        }
    )


@main.command()
@click.argument('scenario', type=click.Path(exists=True))
@click.argument('request_id')
@click.option('--count', default=3, type=click.IntRange(min=1),
              help='Number of candidates to print (default: 3)')
def cancel(scenario: str, request_id: str, count: int) -> None:
    """Find the best ways to retract REQUEST_ID and close the gaps it leaves."""
    try:
        loaded = load_scenario(scenario)
        planner = MinConflictPlanner(loaded.tracker, loaded.config)
        planner.set_current_schedule(loaded.state)
        plan_set = planner.cancel(request_id)
        candidates = _collect(plan_set, count)
    except TrafficPlannerError as e:
        _fail("Cancellation", e)
        return

    _echo_json(
        {
            "mode": "cancel",
            "request_id": request_id,
            "expansions": plan_set.expansions,
            "candidates": candidates,
        }
    )


@main.command('check-config')
@click.argument('path', type=click.Path(exists=True))
def check_config(path: str) -> None:
    """Validate a planner configuration file and print the effective settings."""
    try:
        config = load_planner_config(path)
    except TrafficPlannerError as e:
        _fail("Config check", e)
        return
    _echo_json(config.to_dict())


if __name__ == '__main__':
    main()
