"""
Phase Automation Engine

Wires registry, execution log, instantiator, reconciler and rule engine
around host-provided collaborators and exposes the public operations.

Usage:
    engine = build_default_engine()
    engine.order_source.upsert_item(OrderItem("item-1", reference_dates={...}), "short_term")
    report = engine.reconcile_once()
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .collaborators import (
    BusinessTask,
    BusinessTaskStore,
    InMemoryBusinessTaskStore,
    InMemoryOrderBook,
    OrderItemSource,
    PhaseSnapshot,
)
from .execution_log import BusinessAutomationExecution, ExecutionLog
from .instantiator import TemplateInstantiator
from .models import (
    BusinessTemplateAutomation,
    PhaseTemplateDefinition,
    TemplateContext,
    validate_model,
)
from .reconciler import AutomationReconciler, ReconciliationReport
from .registry import PhaseTemplateRegistry
from .rule_engine import AutomationRuleEngine

logger = logging.getLogger("phase_automation")


class PhaseAutomationEngine:
    """
    Facade over the phase automation components.

    Components are exposed as attributes (registry, execution_log,
    instantiator, reconciler, rules) for callers needing the full API.
    """

    def __init__(
        self,
        order_source: OrderItemSource,
        task_store: BusinessTaskStore,
        registry: Optional[PhaseTemplateRegistry] = None,
        execution_log: Optional[ExecutionLog] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.order_source = order_source
        self.task_store = task_store
        self.registry = registry if registry is not None else PhaseTemplateRegistry()
        self.execution_log = execution_log if execution_log is not None else ExecutionLog(clock=clock)
        self.instantiator = TemplateInstantiator(self.registry, task_store, clock=clock)
        self.reconciler = AutomationReconciler(
            self.registry,
            order_source,
            task_store,
            self.instantiator,
            self.execution_log,
            clock=clock,
        )
        self.rules = AutomationRuleEngine(
            self.execution_log,
            template_lookup=self.registry.get_template,
            derived_rules=self.registry.phase_rules,
            clock=clock,
        )

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    def reconcile_once(self, snapshot: Optional[PhaseSnapshot] = None) -> ReconciliationReport:
        return self.reconciler.reconcile_once(snapshot)

    # -------------------------------------------------------------------------
    # Phase Definitions
    # -------------------------------------------------------------------------

    def list_phases(self) -> Sequence[PhaseTemplateDefinition]:
        return self.registry.list_all()

    def create_phase(self, payload: Any) -> str:
        return self.registry.create(payload)

    def update_phase_window(self, phase_id: str, window: Any, timeline_reference: Optional[str] = None):
        return self.registry.update_window(phase_id, window, timeline_reference)

    def update_phase_conditions(self, phase_id: str, conditions: Sequence[Any]):
        return self.registry.update_conditions(phase_id, conditions)

    def delete_phase(self, phase_id: str) -> None:
        self.registry.delete(phase_id)

    def set_phase_automation(self, phase_id: str, enabled: bool) -> None:
        self.registry.set_automation_enabled(phase_id, enabled)

    # -------------------------------------------------------------------------
    # Templates
    # -------------------------------------------------------------------------

    def instantiate(
        self,
        template_id: str,
        context: Optional[Union[TemplateContext, Dict[str, Any]]] = None,
    ) -> BusinessTask:
        return self.instantiator.instantiate(template_id, context)

    def create_from_template(
        self,
        template_id: str,
        context: Optional[Union[TemplateContext, Dict[str, Any]]] = None,
        rule_ids: Optional[Sequence[str]] = None,
    ) -> BusinessTask:
        """
        Manual "create from template" action.

        Instantiates the template, then triggers its active automation rules
        for the new task, phase-derived rules included. NotFoundError and ValidationError propagate.
        """
        context = validate_model(TemplateContext, context or {})
        task = self.instantiator.instantiate(template_id, context)
        self.rules.trigger_for_template(
            template_id,
            task.task_id,
            rule_ids=rule_ids,
            linked_item_ids=context.linked_item_ids,
        )
        return task

    # -------------------------------------------------------------------------
    # Automation Rules
    # -------------------------------------------------------------------------

    def automation_rules(self) -> List[BusinessTemplateAutomation]:
        """Manual rules followed by the phase-derived rule view."""
        return [*self.rules.list_rules(), *self.registry.phase_rules()]

    def executions(self) -> Sequence[BusinessAutomationExecution]:
        return self.execution_log.entries()


def build_default_engine(
    clock: Optional[Callable[[], datetime]] = None,
    audit_file: Optional[Path] = None,
) -> PhaseAutomationEngine:
    """
    Build an engine over the in-memory collaborators.

    The order book and task store are available as engine.order_source and
    engine.task_store.
    """
    engine = PhaseAutomationEngine(
        order_source=InMemoryOrderBook(),
        task_store=InMemoryBusinessTaskStore(clock=clock),
        execution_log=ExecutionLog(audit_file=audit_file, clock=clock),
        clock=clock,
    )
    logger.info(f"Phase automation engine ready ({len(engine.registry.list_all())} phases)")
    return engine
