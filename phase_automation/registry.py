"""
Phase Template Registry

Canonical source of phase template definitions and business templates.

This module provides:
1. Immutable built-in phase definitions plus runtime custom definitions
2. Window, timeline-reference and condition overrides for built-ins
3. Per-phase automation toggles (default = definition.auto_create)
4. Business template CRUD and recommendations
5. Deterministic tag naming used for task deduplication

HARD CONSTRAINTS:
- Built-in definitions are never mutated; edits are layered as overrides
- Deleting a built-in is rejected with PermissionDeniedError
- Windows and conditions are validated before storage
- Copy-on-write: internal collections are replaced, never mutated in place
"""

import logging
import re
import threading
import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from . import config
from .catalog import load_builtin_definitions
from .errors import NotFoundError, PermissionDeniedError, ValidationError
from .models import (
    AutomationCondition,
    BusinessAssignment,
    BusinessTemplate,
    BusinessTemplateAutomation,
    CustomPhasePayload,
    DueAnchor,
    PhaseTemplateDefinition,
    PhaseWindowConfig,
    TemplatePayload,
    TimelineReference,
    parse_conditions,
    validate_model,
)

logger = logging.getLogger("phase_registry")

# -----------------------------------------------------------------------------
# Tag Naming
# -----------------------------------------------------------------------------
TEMPLATE_TAG_PREFIX = "template:"
PHASE_TAG_PREFIX = "phase:"
PHASE_BUCKET_TAG_PREFIX = "phase-bucket:"
PHASE_RULE_PREFIX = "phase-"

ANCHOR_LABELS: Dict[DueAnchor, str] = {
    DueAnchor.ORDER_CREATION: "order creation",
    DueAnchor.PRODUCTION_START: "production",
    DueAnchor.GO_LIVE: "go-live",
}

_SLUG_MAX_LENGTH = 48


def template_tag(template_id: str) -> str:
    return f"{TEMPLATE_TAG_PREFIX}{template_id}"


def phase_tag(phase_id: str) -> str:
    return f"{PHASE_TAG_PREFIX}{phase_id}"


def phase_bucket_tag(phase_id: str, bucket_key: str) -> str:
    return f"{PHASE_BUCKET_TAG_PREFIX}{phase_id}:{bucket_key}"


def parse_phase_bucket_tag(tag: str) -> Optional[Tuple[str, str]]:
    """
    Invert phase_bucket_tag.

    Phase ids never contain ':' (they are slugs), so the first ':' after the
    prefix separates phase id from bucket key. Bucket keys may contain ':'.

    Returns:
        (phase_id, bucket_key) or None if the tag is not a bucket tag
    """
    if not tag.startswith(PHASE_BUCKET_TAG_PREFIX):
        return None
    phase_id, sep, key = tag[len(PHASE_BUCKET_TAG_PREFIX):].partition(":")
    if not sep or not phase_id:
        return None
    return phase_id, key


def phase_rule_id(phase_id: str) -> str:
    """Rule id under which phase-driven executions are logged."""
    return f"{PHASE_RULE_PREFIX}{phase_id}"


def normalize_tags(tags: Sequence[str]) -> List[str]:
    """Trim, drop empties, prefix '#', deduplicate (order preserved)."""
    cleaned = []
    for tag in tags:
        tag = tag.strip()
        if not tag:
            continue
        cleaned.append(tag if tag.startswith("#") else f"#{tag}")
    return list(dict.fromkeys(cleaned))


def format_offset_label(anchor: Union[DueAnchor, str], offset_days: int) -> str:
    """Human-readable due rule label, e.g. '7 days before production'."""
    direction = "before" if offset_days < 0 else "after"
    return f"{abs(offset_days)} days {direction} {ANCHOR_LABELS[DueAnchor(anchor)]}"


def slugify(value: str) -> str:
    normalized = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")[:_SLUG_MAX_LENGTH]
    return normalized or f"phase-{uuid.uuid4().hex[:6]}"


def normalize_conditions(conditions: Sequence[Any]) -> List[AutomationCondition]:
    """
    Parse and clean conditions.

    Values are trimmed, conditions with an empty value are dropped, missing
    ids are generated.
    """
    raw = []
    for condition in conditions:
        data = condition.model_dump() if hasattr(condition, "model_dump") else dict(condition)
        data["value"] = str(data.get("value") or "").strip()
        if not data["value"]:
            continue
        if not data.get("id"):
            data.pop("id", None)
        raw.append(data)
    return parse_conditions(raw)


# -----------------------------------------------------------------------------
# Phase Template Registry
# -----------------------------------------------------------------------------
class PhaseTemplateRegistry:
    """
    Registry of phase template definitions and business templates.

    Provides:
    - Phase lookup (by id or by source phase) with overrides applied
    - Custom phase CRUD
    - Automation toggles
    - Template CRUD and recommendations
    - Tag naming for deduplication
    """

    def __init__(self, builtins: Optional[Sequence[PhaseTemplateDefinition]] = None):
        """
        Initialize registry.

        Args:
            builtins: Built-in definitions (defaults to the packaged catalog)
        """
        builtin_definitions = tuple(builtins) if builtins is not None else load_builtin_definitions()
        self._builtins: Tuple[PhaseTemplateDefinition, ...] = builtin_definitions
        self._builtin_ids = frozenset(definition.id for definition in builtin_definitions)
        self._custom: Tuple[PhaseTemplateDefinition, ...] = ()
        self._window_overrides: Mapping[str, Tuple[PhaseWindowConfig, Optional[TimelineReference]]] = {}
        self._condition_overrides: Mapping[str, Tuple[AutomationCondition, ...]] = {}
        self._automation: Mapping[str, bool] = {}
        self._templates: Tuple[BusinessTemplate, ...] = tuple(
            definition.template for definition in builtin_definitions
        )
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Tag Naming
    # -------------------------------------------------------------------------

    template_tag = staticmethod(template_tag)
    phase_tag = staticmethod(phase_tag)
    phase_bucket_tag = staticmethod(phase_bucket_tag)

    # -------------------------------------------------------------------------
    # Phase Lookup
    # -------------------------------------------------------------------------

    def get(self, phase_id: str) -> Optional[PhaseTemplateDefinition]:
        """Get a definition by id, overrides applied."""
        definition = self._find_raw(phase_id)
        if definition is None:
            return None
        return self._apply_overrides(definition)

    def definition_for_phase(self, phase: str) -> Optional[PhaseTemplateDefinition]:
        """
        Resolve the definition that automates an item phase.

        Matches source_phase first, then falls back to the definition id.
        """
        definitions = self._raw_definitions()
        for definition in definitions:
            if definition.source_phase is not None and definition.source_phase == phase:
                return self._apply_overrides(definition)
        for definition in definitions:
            if definition.id == phase:
                return self._apply_overrides(definition)
        return None

    def list_all(self) -> Tuple[PhaseTemplateDefinition, ...]:
        """All definitions: built-ins first (catalog order), custom appended."""
        return tuple(self._apply_overrides(d) for d in self._raw_definitions())

    def is_builtin(self, phase_id: str) -> bool:
        return phase_id in self._builtin_ids

    def conditions_for(self, phase_id: str) -> List[AutomationCondition]:
        definition = self.get(phase_id)
        return list(definition.conditions) if definition else []

    # -------------------------------------------------------------------------
    # Automation Toggles
    # -------------------------------------------------------------------------

    def is_automation_enabled(self, phase_id: str) -> bool:
        """Explicit toggle if set, else the definition's auto_create."""
        definition = self.get(phase_id) or self.definition_for_phase(phase_id)
        if definition is None:
            return False
        enabled = self._automation.get(definition.id)
        if enabled is not None:
            return enabled
        return definition.auto_create

    def set_automation_enabled(self, phase_id: str, enabled: bool) -> None:
        definition = self._require(phase_id)
        with self._lock:
            self._automation = {**self._automation, definition.id: bool(enabled)}
        logger.info(f"Phase automation {'enabled' if enabled else 'disabled'}: {definition.id}")

    def phase_rules(self) -> List[BusinessTemplateAutomation]:
        """Automation rule view derived from the phase definitions."""
        rules = []
        for definition in self.list_all():
            rules.append(BusinessTemplateAutomation(
                id=phase_rule_id(definition.id),
                template_id=definition.template.id,
                title=f"{definition.label} automation",
                trigger=f"{definition.label} reached",
                condition=definition.summary,
                lead_time_days=abs(definition.template.due_rule.offset_days),
                active=self.is_automation_enabled(definition.id),
            ))
        return rules

    # -------------------------------------------------------------------------
    # Custom Phase CRUD
    # -------------------------------------------------------------------------

    def create(self, payload: Union[CustomPhasePayload, Dict[str, Any]]) -> str:
        """
        Create a custom phase definition together with its template.

        Returns:
            The generated phase id (slug of the label, made unique)

        Raises:
            ValidationError: malformed payload, window or conditions
        """
        payload = validate_model(CustomPhasePayload, payload)
        conditions = normalize_conditions(payload.conditions)

        with self._lock:
            template = self.create_template(payload.template)
            phase_id = self._unique_phase_id(slugify(payload.label))
            definition = PhaseTemplateDefinition(
                id=phase_id,
                label=payload.label.strip(),
                summary=payload.summary.strip(),
                timeline_reference=payload.timeline_reference,
                auto_create=payload.auto_create,
                window=payload.window,
                template=template,
                source_phase=payload.source_phase,
                conditions=conditions,
            )
            self._custom = self._custom + (definition,)

        logger.info(f"Created custom phase: {phase_id} (template={template.id})")
        return phase_id

    def update_window(
        self,
        phase_id: str,
        window: Union[PhaseWindowConfig, Dict[str, Any]],
        timeline_reference: Optional[Union[TimelineReference, str]] = None,
    ) -> PhaseTemplateDefinition:
        """
        Replace a phase's window (and optionally its timeline reference).

        Built-ins receive an override; custom definitions are replaced.

        Raises:
            NotFoundError: unknown phase
            ValidationError: malformed window or reference
        """
        self._require(phase_id)
        window = validate_model(PhaseWindowConfig, window)
        reference = None
        if timeline_reference is not None:
            try:
                reference = TimelineReference(timeline_reference)
            except ValueError:
                raise ValidationError([f"Unknown timeline reference: {timeline_reference}"])

        with self._lock:
            if self.is_builtin(phase_id):
                self._window_overrides = {**self._window_overrides, phase_id: (window, reference)}
            else:
                self._replace_custom(phase_id, window=window, timeline_reference=reference)

        logger.info(f"Updated window for phase {phase_id}: {window.start}..{window.end} {window.unit.value}")
        return self.get(phase_id)

    def update_conditions(self, phase_id: str, conditions: Sequence[Any]) -> PhaseTemplateDefinition:
        """
        Replace a phase's conditions.

        Raises:
            NotFoundError: unknown phase
            ValidationError: unknown field or invalid operator
        """
        self._require(phase_id)
        normalized = tuple(normalize_conditions(conditions))

        with self._lock:
            if self.is_builtin(phase_id):
                self._condition_overrides = {**self._condition_overrides, phase_id: normalized}
            else:
                self._replace_custom(phase_id, conditions=list(normalized))

        logger.info(f"Updated {len(normalized)} condition(s) for phase {phase_id}")
        return self.get(phase_id)

    def delete(self, phase_id: str) -> None:
        """
        Delete a custom phase, its overrides, toggle and template.

        Raises:
            PermissionDeniedError: phase is built-in (registry left unchanged)
            NotFoundError: unknown phase
        """
        if self.is_builtin(phase_id):
            raise PermissionDeniedError(phase_id, "deleted")

        with self._lock:
            target = next((d for d in self._custom if d.id == phase_id), None)
            if target is None:
                raise NotFoundError("phase", phase_id)
            self._custom = tuple(d for d in self._custom if d.id != phase_id)
            self._window_overrides = _without(self._window_overrides, phase_id)
            self._condition_overrides = _without(self._condition_overrides, phase_id)
            self._automation = _without(self._automation, phase_id)
            self._templates = tuple(t for t in self._templates if t.id != target.template.id)

        logger.info(f"Deleted custom phase: {phase_id}")

    # -------------------------------------------------------------------------
    # Business Templates
    # -------------------------------------------------------------------------

    def get_template(self, template_id: str) -> Optional[BusinessTemplate]:
        return next((t for t in self._templates if t.id == template_id), None)

    def list_templates(self) -> Tuple[BusinessTemplate, ...]:
        return self._templates

    def create_template(self, payload: Union[TemplatePayload, Dict[str, Any]]) -> BusinessTemplate:
        """
        Create a business template. New templates are listed first.

        Tags are normalized to '#tag'; a missing due rule label is generated
        from anchor and offset.
        """
        payload = validate_model(TemplatePayload, payload)
        due_rule = payload.due_rule
        if not due_rule.label:
            due_rule = due_rule.model_copy(
                update={"label": format_offset_label(due_rule.anchor, due_rule.offset_days)}
            )

        template = BusinessTemplate(
            id=f"tpl-{uuid.uuid4().hex[:6]}",
            title=payload.title,
            description=payload.description,
            instructions=payload.instructions,
            tags=normalize_tags(payload.tags),
            category=payload.category,
            recommended_assignment=payload.assignment,
            due_rule=due_rule,
            default_lead_time_days=payload.default_lead_time_days,
            automation_hint=payload.automation_hint,
            steps=payload.steps,
            parameter_hints=payload.parameter_hints,
        )
        with self._lock:
            self._templates = (template,) + self._templates

        logger.info(f"Created template: {template.id} ({template.title})")
        return template

    def update_template(self, template_id: str, patch: Dict[str, Any]) -> bool:
        """
        Patch title, description, instructions, recommended assignment or tags.

        Returns:
            True if the template exists and was updated
        """
        with self._lock:
            current = self.get_template(template_id)
            if current is None:
                return False

            update: Dict[str, Any] = {}
            for key in ("title", "description", "instructions"):
                if patch.get(key) is not None:
                    update[key] = patch[key]
            if patch.get("recommended_assignment") is not None:
                assignment = patch["recommended_assignment"]
                if isinstance(assignment, BusinessAssignment):
                    assignment = assignment.model_dump()
                merged = {**current.recommended_assignment.model_dump(), **assignment}
                update["recommended_assignment"] = validate_model(BusinessAssignment, merged)
            if patch.get("tags") is not None:
                update["tags"] = normalize_tags(patch["tags"])

            updated = validate_model(BusinessTemplate, {**current.model_dump(), **update})
            self._templates = tuple(updated if t.id == template_id else t for t in self._templates)

        logger.info(f"Updated template: {template_id}")
        return True

    def recommend_templates(
        self,
        tags: Optional[Sequence[str]] = None,
        limit: int = config.RECOMMENDATION_LIMIT,
    ) -> List[BusinessTemplate]:
        """Templates sharing at least one tag with the context (first N if no tags)."""
        templates = self._templates
        if not tags:
            return list(templates[:limit])
        wanted = set(tags)
        return [t for t in templates if wanted.intersection(t.tags)][:limit]

    # -------------------------------------------------------------------------
    # Internal Helpers
    # -------------------------------------------------------------------------

    def _raw_definitions(self) -> Tuple[PhaseTemplateDefinition, ...]:
        return self._builtins + self._custom

    def _find_raw(self, phase_id: str) -> Optional[PhaseTemplateDefinition]:
        return next((d for d in self._raw_definitions() if d.id == phase_id), None)

    def _require(self, phase_id: str) -> PhaseTemplateDefinition:
        definition = self._find_raw(phase_id)
        if definition is None:
            raise NotFoundError("phase", phase_id)
        return definition

    def _apply_overrides(self, definition: PhaseTemplateDefinition) -> PhaseTemplateDefinition:
        update: Dict[str, Any] = {}

        window_override = self._window_overrides.get(definition.id)
        if window_override is not None:
            window, reference = window_override
            update["window"] = window
            if reference is not None:
                update["timeline_reference"] = reference

        conditions = self._condition_overrides.get(definition.id)
        if conditions is not None:
            update["conditions"] = list(conditions)

        template = self.get_template(definition.template.id)
        if template is not None and template is not definition.template:
            update["template"] = template

        return definition.model_copy(update=update) if update else definition

    def _replace_custom(self, phase_id: str, **changes: Any) -> None:
        if changes.get("timeline_reference") is None:
            changes.pop("timeline_reference", None)
        self._custom = tuple(
            d.model_copy(update=changes) if d.id == phase_id else d
            for d in self._custom
        )

    def _unique_phase_id(self, base_id: str) -> str:
        existing = {d.id for d in self._raw_definitions()}
        if base_id not in existing:
            return base_id
        counter = 1
        while f"{base_id}-{counter}" in existing:
            counter += 1
        return f"{base_id}-{counter}"


def _without(mapping: Mapping[str, Any], key: str) -> Dict[str, Any]:
    return {k: v for k, v in mapping.items() if k != key}
