"""
Automation Reconciler

Observes the "item -> current phase" snapshot and, for every item whose
phase changed since the last pass, creates a business task from the phase
template or attaches the item to an existing task in the same bucket.

Per-item state machine: Unseen -> KnownPhase(p). A transition fires only
when the observed phase differs from the stored one and is not the
"unknown" sentinel (sentinel observations are ignored, never recorded).

Gate chain on a firing transition (any failure is a silent skip):
1. Definition exists for the phase
2. Automation is enabled for the definition
3. Item resolves via the order collaborator
4. Reference date exists for the definition's timeline reference
5. Reference date lies inside the window as of now
6. All conditions pass

HARD CONSTRAINTS:
- Each item is processed at most once per distinct phase change
- Passes never interleave (lock + same-thread re-entrancy guard)
- An exception while processing one item never aborts the pass; it is
  recorded as an `error` execution
- Window matching is evaluated only when a pass runs (no timer)
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from . import config
from .buckets import bucket_key
from .collaborators import BusinessTaskStore, OrderItemSource, PhaseSnapshot
from .conditions import passes
from .execution_log import ExecutionLog
from .instantiator import TemplateInstantiator
from .models import ExecutionStatus, PhaseTemplateDefinition, TemplateContext
from .registry import PhaseTemplateRegistry, phase_rule_id
from .window import is_within_window

logger = logging.getLogger("reconciler")

# Silent skip reasons
SKIP_NO_DEFINITION = "no_definition"
SKIP_DISABLED = "automation_disabled"
SKIP_ITEM_MISSING = "item_missing"
SKIP_NO_REFERENCE_DATE = "no_reference_date"
SKIP_OUT_OF_WINDOW = "out_of_window"
SKIP_CONDITIONS = "conditions_failed"
SKIP_ALREADY_LINKED = "already_linked"


# -----------------------------------------------------------------------------
# Report
# -----------------------------------------------------------------------------
@dataclass
class ReconciliationReport:
    """Outcome of one reconciliation pass."""
    processed: int = 0
    created_task_ids: List[str] = field(default_factory=list)
    linked: List[Dict[str, str]] = field(default_factory=list)
    skipped: Dict[str, int] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    def skip(self, reason: str) -> None:
        self.skipped[reason] = self.skipped.get(reason, 0) + 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "created_task_ids": list(self.created_task_ids),
            "linked": list(self.linked),
            "skipped": dict(self.skipped),
            "errors": list(self.errors),
        }


# -----------------------------------------------------------------------------
# Reconciler
# -----------------------------------------------------------------------------
class AutomationReconciler:
    """Phase-driven task creation and bucketing."""

    def __init__(
        self,
        registry: PhaseTemplateRegistry,
        order_source: OrderItemSource,
        task_store: BusinessTaskStore,
        instantiator: TemplateInstantiator,
        execution_log: ExecutionLog,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._registry = registry
        self._order_source = order_source
        self._task_store = task_store
        self._instantiator = instantiator
        self._execution_log = execution_log
        self._clock = clock or datetime.utcnow
        self._item_phases: Dict[str, str] = {}
        self._lock = threading.Lock()
        self._running_thread: Optional[int] = None

    def known_phase(self, item_id: str) -> Optional[str]:
        """Last phase recorded for an item (None = unseen)."""
        return self._item_phases.get(item_id)

    def reset_state(self) -> None:
        """Forget all recorded phases (cold start)."""
        with self._lock:
            self._item_phases = {}
        logger.info("Reconciler state reset")

    def reconcile_once(self, snapshot: Optional[PhaseSnapshot] = None) -> ReconciliationReport:
        """
        Run one reconciliation pass.

        Args:
            snapshot: Phase snapshot to reconcile (defaults to the order
                collaborator's current snapshot)

        Returns:
            ReconciliationReport of the pass (empty if the call was refused
            as a nested re-entry)
        """
        if self._running_thread == threading.get_ident():
            logger.warning("Nested reconcile_once call refused while a pass is running")
            return ReconciliationReport()

        with self._lock:
            self._running_thread = threading.get_ident()
            try:
                if snapshot is None:
                    snapshot = self._order_source.get_current_phase_snapshot()
                return self._run_pass(snapshot.phases)
            finally:
                self._running_thread = None

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_pass(self, phases: Mapping[str, str]) -> ReconciliationReport:
        report = ReconciliationReport()
        now = self._clock()

        for item_id, phase in phases.items():
            phase = getattr(phase, "value", phase)
            if phase == config.UNKNOWN_PHASE:
                continue
            if self._item_phases.get(item_id) == phase:
                continue
            self._item_phases[item_id] = phase
            report.processed += 1

            definition = None
            try:
                definition = self._registry.definition_for_phase(phase)
                self._handle_transition(item_id, phase, definition, now, report)
            except Exception as e:
                logger.exception(f"Automation failed for item {item_id} entering phase {phase}")
                report.errors.append(item_id)
                self._execution_log.append(
                    phase_rule_id(definition.id if definition else phase),
                    definition.template.id if definition else "",
                    ExecutionStatus.ERROR,
                    f"Automation for item {item_id} in phase {phase} failed: {e}",
                )

        if report.processed:
            logger.info(
                f"Reconciliation pass: {report.processed} transition(s), "
                f"{len(report.created_task_ids)} created, {len(report.linked)} linked, "
                f"{len(report.errors)} error(s)"
            )
        return report

    def _handle_transition(
        self,
        item_id: str,
        phase: str,
        definition: Optional[PhaseTemplateDefinition],
        now: datetime,
        report: ReconciliationReport,
    ) -> None:
        if definition is None:
            self._skip(report, SKIP_NO_DEFINITION, item_id, phase)
            return
        if not self._registry.is_automation_enabled(definition.id):
            self._skip(report, SKIP_DISABLED, item_id, phase)
            return

        item = self._order_source.get_item(item_id)
        if item is None:
            self._skip(report, SKIP_ITEM_MISSING, item_id, phase)
            return

        target_date = self._order_source.get_reference_date(item, definition.timeline_reference.value)
        if target_date is None:
            self._skip(report, SKIP_NO_REFERENCE_DATE, item_id, phase)
            return
        if not is_within_window(definition.window, target_date, now):
            self._skip(report, SKIP_OUT_OF_WINDOW, item_id, phase)
            return
        if not passes(definition.conditions, item, phase):
            self._skip(report, SKIP_CONDITIONS, item_id, phase)
            return

        template_id = definition.template.id
        key = bucket_key(definition, target_date, item, self._order_source.get_timetable_year(item))
        template_tag = self._registry.template_tag(template_id)
        bucket_tag = self._registry.phase_bucket_tag(definition.id, key)
        rule_id = phase_rule_id(definition.id)

        existing = self._task_store.find_tasks_by_tags([template_tag, bucket_tag])
        if existing is not None:
            if item_id in existing.linked_item_ids:
                self._skip(report, SKIP_ALREADY_LINKED, item_id, phase)
                return
            self._task_store.set_linked_items(existing.task_id, [*existing.linked_item_ids, item_id])
            report.linked.append({"item_id": item_id, "task_id": existing.task_id})
            self._execution_log.append(
                rule_id, template_id, ExecutionStatus.SUCCESS,
                f"Item {item_id} added to existing task {existing.task_id}",
            )
            logger.info(f"Linked item {item_id} to task {existing.task_id} (bucket {key})")
            return

        task = self._instantiator.instantiate(template_id, TemplateContext(
            target_date=target_date,
            linked_item_ids=[item_id],
            custom_title=f"{definition.template.title}{config.TITLE_SEPARATOR}{definition.label}",
            tags=[self._registry.phase_tag(definition.id), bucket_tag],
        ))
        report.created_task_ids.append(task.task_id)
        self._execution_log.append(
            rule_id, template_id, ExecutionStatus.SUCCESS,
            f"Created automatically from phase {definition.label} as task {task.task_id}",
        )

    def _skip(self, report: ReconciliationReport, reason: str, item_id: str, phase: str) -> None:
        report.skip(reason)
        logger.debug(f"Skipped item {item_id} in phase {phase}: {reason}")
