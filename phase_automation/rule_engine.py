"""
Automation Rule Engine

Explicitly triggered, template-scoped automation rules plus a directed
dependency graph between templates.

This module provides:
1. Rule registry (one template -> many rules) with activate/deactivate
2. Dry-run simulation that never mutates state and never raises
3. Real execution for a freshly created task, with one audit entry per rule
4. Template dependency edges ("completing A cascades to B")

CONSTRAINTS:
- Rule and dependency collections are copy-on-write tuples
- The dependency graph is append-only; cycles are NOT detected
- simulate() is side-effect free
"""

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .errors import NotFoundError
from .execution_log import BusinessAutomationExecution, ExecutionLog
from .models import (
    AutomationRulePayload,
    BusinessTemplate,
    BusinessTemplateAutomation,
    ExecutionStatus,
    RunStatus,
    validate_model,
)

logger = logging.getLogger("rule_engine")


# -----------------------------------------------------------------------------
# Result Types (Frozen - Immutable)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class AutomationTestResult:
    """Outcome of a dry run."""
    success: bool
    message: str
    simulated_task_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "simulated_task_id": self.simulated_task_id,
        }


@dataclass(frozen=True)
class TemplateDependency:
    """Directed edge: completing from_template_id cascades to to_template_id."""
    from_template_id: str
    to_template_id: str
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_template_id": self.from_template_id,
            "to_template_id": self.to_template_id,
            "description": self.description,
        }


# -----------------------------------------------------------------------------
# Rule Engine
# -----------------------------------------------------------------------------
class AutomationRuleEngine:
    """Template-scoped automation rules and template dependencies."""

    def __init__(
        self,
        execution_log: ExecutionLog,
        template_lookup: Optional[Callable[[str], Optional[BusinessTemplate]]] = None,
        derived_rules: Optional[Callable[[], Sequence[BusinessTemplateAutomation]]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize engine.

        Args:
            execution_log: Shared audit log
            template_lookup: Resolves template ids; when given, rules for
                unknown templates are rejected
            derived_rules: Read-only rules owned elsewhere (phase rules);
                they are simulated and triggered like stored rules
            clock: Time source (optional, for testing)
        """
        self._execution_log = execution_log
        self._template_lookup = template_lookup
        self._derived_rules = derived_rules
        self._clock = clock or datetime.utcnow
        self._rules: Tuple[BusinessTemplateAutomation, ...] = ()
        self._dependencies: Tuple[TemplateDependency, ...] = ()
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------------

    def add_rule(self, payload: Union[AutomationRulePayload, Dict[str, Any]]) -> BusinessTemplateAutomation:
        """
        Register a new active rule.

        Raises:
            NotFoundError: template unknown (only with a template lookup)
            ValidationError: malformed payload
        """
        payload = validate_model(AutomationRulePayload, payload)
        self._require_template(payload.template_id)
        if payload.next_template_id:
            self._require_template(payload.next_template_id)

        rule = BusinessTemplateAutomation(
            id=f"rule-{uuid.uuid4().hex[:8]}",
            active=True,
            last_run_status=RunStatus.IDLE,
            **payload.model_dump(),
        )
        with self._lock:
            self._rules = self._rules + (rule,)

        logger.info(f"Added automation rule {rule.id} for template {rule.template_id}: {rule.title}")
        return rule

    def toggle(self, rule_id: str, active: bool) -> BusinessTemplateAutomation:
        """
        Activate or deactivate a rule.

        Raises:
            NotFoundError: unknown rule
        """
        with self._lock:
            rule = self._find(rule_id)
            if rule is None:
                raise NotFoundError("rule", rule_id)
            updated = rule.model_copy(update={"active": bool(active)})
            self._replace(updated)

        logger.info(f"Automation rule {rule_id} {'activated' if active else 'deactivated'}")
        return updated

    def get_rule(self, rule_id: str) -> Optional[BusinessTemplateAutomation]:
        return self._find(rule_id)

    def list_rules(self, template_id: Optional[str] = None) -> Tuple[BusinessTemplateAutomation, ...]:
        if template_id is None:
            return self._rules
        return tuple(rule for rule in self._rules if rule.template_id == template_id)

    def simulate(self, rule_id: str) -> AutomationTestResult:
        """
        Dry run a rule. Never mutates state, never raises.

        Returns:
            success=False for unknown rules; a synthetic task id when the
            rule is in test mode
        """
        rule = self._find(rule_id, include_derived=True)
        if rule is None:
            return AutomationTestResult(success=False, message=f"Rule '{rule_id}' not found")

        if rule.test_mode:
            simulated_id = f"sim-{uuid.uuid4().hex[:6]}"
            return AutomationTestResult(
                success=True,
                message=f"Test run of rule \"{rule.title}\" would create task {simulated_id}",
                simulated_task_id=simulated_id,
            )
        return AutomationTestResult(
            success=True,
            message=f"Rule \"{rule.title}\" is ready to run",
        )

    def trigger_for_template(
        self,
        template_id: str,
        task_id: str,
        rule_ids: Optional[Sequence[str]] = None,
        linked_item_ids: Optional[Sequence[str]] = None,
    ) -> List[BusinessAutomationExecution]:
        """
        Execute all active rules of a template for a created task.

        Args:
            template_id: Template the task was created from
            task_id: Created task id
            rule_ids: Optional allowlist (empty/None = all active rules)
            linked_item_ids: Items linked to the task, quoted in the audit message

        Returns:
            One execution entry per executed rule
        """
        allowed = set(rule_ids) if rule_ids else None
        rules = [
            rule for rule in self._candidates()
            if rule.template_id == template_id and rule.active
            and (allowed is None or rule.id in allowed)
        ]
        if not rules:
            logger.debug(f"No active automation rules for template {template_id}")
            return []

        now = self._clock()
        executions = []
        for rule in rules:
            executions.append(self._execution_log.append(
                rule.id,
                rule.template_id,
                ExecutionStatus.SUCCESS,
                compose_message(rule, task_id, linked_item_ids),
            ))
            with self._lock:
                current = self._find(rule.id)
                if current is not None:
                    self._replace(current.model_copy(
                        update={"last_run_status": RunStatus.SUCCESS, "last_run_at": now}
                    ))

        logger.info(f"Triggered {len(executions)} rule(s) for template {template_id} on task {task_id}")
        return executions

    # -------------------------------------------------------------------------
    # Dependencies
    # -------------------------------------------------------------------------

    def add_dependency(self, from_template_id: str, to_template_id: str, description: str = "") -> TemplateDependency:
        self._require_template(from_template_id)
        self._require_template(to_template_id)
        dependency = TemplateDependency(from_template_id, to_template_id, description)
        with self._lock:
            self._dependencies = self._dependencies + (dependency,)
        logger.info(f"Added template dependency {from_template_id} -> {to_template_id}")
        return dependency

    def dependents_of(self, template_id: str) -> List[TemplateDependency]:
        return [d for d in self._dependencies if d.from_template_id == template_id]

    def predecessors_of(self, template_id: str) -> List[TemplateDependency]:
        return [d for d in self._dependencies if d.to_template_id == template_id]

    def list_dependencies(self) -> Tuple[TemplateDependency, ...]:
        return self._dependencies

    def cascade_targets(self, template_id: str) -> List[str]:
        """Templates to chain after template_id (rule follow-ups, then dependency edges)."""
        targets = [
            rule.next_template_id for rule in self.list_rules(template_id)
            if rule.active and rule.next_template_id
        ]
        targets.extend(d.to_template_id for d in self.dependents_of(template_id))
        return list(dict.fromkeys(targets))

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _candidates(self) -> Tuple[BusinessTemplateAutomation, ...]:
        if self._derived_rules is None:
            return self._rules
        return self._rules + tuple(self._derived_rules())

    def _find(self, rule_id: str, include_derived: bool = False) -> Optional[BusinessTemplateAutomation]:
        rules = self._candidates() if include_derived else self._rules
        return next((rule for rule in rules if rule.id == rule_id), None)

    def _replace(self, updated: BusinessTemplateAutomation) -> None:
        self._rules = tuple(updated if rule.id == updated.id else rule for rule in self._rules)

    def _require_template(self, template_id: str) -> None:
        if self._template_lookup is not None and self._template_lookup(template_id) is None:
            raise NotFoundError("template", template_id)


def compose_message(
    rule: BusinessTemplateAutomation,
    task_id: str,
    linked_item_ids: Optional[Sequence[str]] = None,
) -> str:
    """Audit message: rule title, task id, linked items, webhook target."""
    parts = [f"Rule \"{rule.title}\" executed for task {task_id}"]
    if linked_item_ids:
        parts.append(f"Items: {', '.join(linked_item_ids)}")
    if rule.webhook is not None:
        parts.append(f"Webhook: {rule.webhook.method} {rule.webhook.url}")
    return " · ".join(parts)
