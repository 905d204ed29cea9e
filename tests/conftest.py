"""
Pytest configuration for Phase Automation tests.

This module provides:
1. A fixed clock (NOW = 2025-01-01T00:00) injected into every component
2. Common fixtures for registry, collaborators, log and engine components
3. Order item helpers and test constants
"""

from datetime import datetime, timedelta
from typing import Optional

import pytest

from phase_automation.collaborators import (
    InMemoryBusinessTaskStore,
    InMemoryOrderBook,
    OrderItem,
)
from phase_automation.engine import PhaseAutomationEngine
from phase_automation.execution_log import ExecutionLog
from phase_automation.instantiator import TemplateInstantiator
from phase_automation.reconciler import AutomationReconciler
from phase_automation.registry import PhaseTemplateRegistry
from phase_automation.rule_engine import AutomationRuleEngine


# -----------------------------------------------------------------------------
# Test Constants
# -----------------------------------------------------------------------------
NOW = datetime(2025, 1, 1, 0, 0)

SHORT_TERM = "short_term"
ANNUAL_REQUEST = "annual_request"
SHORT_TERM_TEMPLATE = "tpl-short-term"
ANNUAL_REQUEST_TEMPLATE = "tpl-annual-request"


def fixed_clock() -> datetime:
    return NOW


def make_item(
    item_id: str,
    fp_day: Optional[datetime] = None,
    fp_year: Optional[datetime] = None,
    **kwargs,
) -> OrderItem:
    """Build an order item with fpDay / fpYear reference dates."""
    reference_dates = {}
    if fp_day is not None:
        reference_dates["fpDay"] = fp_day
    if fp_year is not None:
        reference_dates["fpYear"] = fp_year
    return OrderItem(item_id=item_id, reference_dates=reference_dates, **kwargs)


def days_from_now(days: float) -> datetime:
    return NOW + timedelta(days=days)


# -----------------------------------------------------------------------------
# Common Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def clock():
    """Fixed time source."""
    return fixed_clock


@pytest.fixture
def registry():
    """Registry loaded from the packaged built-in catalog."""
    return PhaseTemplateRegistry()


@pytest.fixture
def task_store(clock):
    return InMemoryBusinessTaskStore(clock=clock)


@pytest.fixture
def order_book():
    return InMemoryOrderBook()


@pytest.fixture
def execution_log(tmp_path, clock):
    """Execution log with its JSONL mirror in a temp directory."""
    return ExecutionLog(limit=50, audit_file=tmp_path / "executions.jsonl", clock=clock)


@pytest.fixture
def instantiator(registry, task_store, clock):
    return TemplateInstantiator(registry, task_store, clock=clock)


@pytest.fixture
def reconciler(registry, order_book, task_store, instantiator, execution_log, clock):
    return AutomationReconciler(
        registry, order_book, task_store, instantiator, execution_log, clock=clock
    )


@pytest.fixture
def rule_engine(registry, execution_log, clock):
    return AutomationRuleEngine(execution_log, template_lookup=registry.get_template, clock=clock)


@pytest.fixture
def engine(registry, order_book, task_store, execution_log, clock):
    return PhaseAutomationEngine(
        order_source=order_book,
        task_store=task_store,
        registry=registry,
        execution_log=execution_log,
        clock=clock,
    )


@pytest.fixture
def custom_phase_payload():
    """Payload for a custom phase with its embedded template."""
    return {
        "label": "Construction Notice",
        "summary": "Inform customers about upcoming construction work.",
        "timeline_reference": "fpDay",
        "window": {"unit": "days", "start": -60, "end": -14, "bucket": "week"},
        "template": {
            "title": "Send construction notice",
            "description": "Notify affected customers.",
            "assignment": {"type": "group", "name": "Customer Desk"},
            "tags": ["notice", "#construction", "notice"],
            "due_rule": {"anchor": "production_start", "offset_days": -14},
        },
        "conditions": [
            {"field": "itemType", "operator": "equals", "value": " freight "},
        ],
    }
