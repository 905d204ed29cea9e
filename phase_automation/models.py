"""
Phase Automation Data Model

Structured configuration for phase templates, business templates, automation
conditions and automation rules.

Core Principles:
- Configuration models are immutable once built (frozen); updates produce
  new instances via model_copy
- Windows are validated before storage (finite integer bounds, known units)
- Conditions are a closed tagged union: each field carries only the
  operators that are valid for it
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------
class ItemPhase(str, Enum):
    """TTR scheduling phases of an order item."""
    CAPACITY_SUPPLY = "capacity_supply"
    ANNUAL_REQUEST = "annual_request"
    FINAL_OFFER = "final_offer"
    ROLLING_PLANNING = "rolling_planning"
    SHORT_TERM = "short_term"
    AD_HOC = "ad_hoc"
    UNKNOWN = "unknown"


class TimelineReference(str, Enum):
    """Named anchor dates an item's window offsets are measured from."""
    FP_YEAR = "fpYear"
    FP_DAY = "fpDay"
    OPERATIONAL_DAY = "operationalDay"
    ORDER_CREATION = "order_creation"
    PRODUCTION_START = "production_start"
    GO_LIVE = "go_live"


class WindowUnit(str, Enum):
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"


class BucketGranularity(str, Enum):
    """Time granularity used to group items into one shared task."""
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    YEAR = "year"


class DueAnchor(str, Enum):
    ORDER_CREATION = "order_creation"
    PRODUCTION_START = "production_start"
    GO_LIVE = "go_live"


class TemplateCategory(str, Enum):
    DEADLINE = "Frist"
    ORDER = "Bestellung"
    COMMUNICATION = "Kommunikation"
    CUSTOM = "Custom"


class AssignmentType(str, Enum):
    GROUP = "group"
    PERSON = "person"


class ExecutionStatus(str, Enum):
    """Status of one automation execution (audit log entry)."""
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class RunStatus(str, Enum):
    """Last run status of an automation rule."""
    IDLE = "idle"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


# -----------------------------------------------------------------------------
# Window
# -----------------------------------------------------------------------------
class PhaseWindowConfig(BaseModel):
    """
    Relative time window around a reference date.

    Offsets are signed: negative = before the anchor. Bounds authored in
    reverse order are swapped so that start <= end always holds.
    """
    model_config = ConfigDict(frozen=True)

    unit: WindowUnit = WindowUnit.DAYS
    start: int
    end: int
    bucket: BucketGranularity = BucketGranularity.DAY
    label: str = ""

    @model_validator(mode="before")
    @classmethod
    def _normalize_bounds(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        start, end = data.get("start"), data.get("end")
        try:
            # numeric strings are coerced later, compare them as numbers too
            reversed_bounds = float(start) > float(end)
        except (TypeError, ValueError):
            return data
        if reversed_bounds:
            data = {**data, "start": end, "end": start}
        return data


# -----------------------------------------------------------------------------
# Automation Conditions (tagged union on `field`)
# -----------------------------------------------------------------------------
def _condition_id() -> str:
    return f"cond-{uuid.uuid4().hex[:8]}"


class ItemTagCondition(BaseModel):
    """Item carries (or lacks) a tag, compared case-insensitively."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_condition_id)
    field: Literal["itemTag"] = "itemTag"
    operator: Literal["includes", "excludes"] = "includes"
    value: str


class ItemTypeCondition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_condition_id)
    field: Literal["itemType"] = "itemType"
    operator: Literal["equals", "notEquals"] = "equals"
    value: str


class TtrPhaseCondition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_condition_id)
    field: Literal["ttrPhase"] = "ttrPhase"
    operator: Literal["equals", "notEquals"] = "equals"
    value: str


class TimetablePhaseCondition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_condition_id)
    field: Literal["timetablePhase"] = "timetablePhase"
    operator: Literal["equals", "notEquals"] = "equals"
    value: str


AutomationCondition = Annotated[
    Union[ItemTagCondition, ItemTypeCondition, TtrPhaseCondition, TimetablePhaseCondition],
    Field(discriminator="field"),
]

_conditions_adapter = TypeAdapter(List[AutomationCondition])


def parse_conditions(raw: List[Any]) -> List[AutomationCondition]:
    """
    Parse condition payloads into typed conditions.

    Unknown fields and operators that are not valid for a field are rejected
    with ValidationError.
    """
    try:
        return _conditions_adapter.validate_python(list(raw))
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e


# -----------------------------------------------------------------------------
# Business Templates
# -----------------------------------------------------------------------------
class BusinessAssignment(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: AssignmentType = AssignmentType.GROUP
    name: str


class DueRule(BaseModel):
    """Due date rule: offset in calendar days from an anchor (negative = before)."""
    model_config = ConfigDict(frozen=True)

    anchor: DueAnchor
    offset_days: int
    label: str = ""


class TemplateStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str = ""
    due_rule: DueRule
    checklist: List[str] = Field(default_factory=list)


class BusinessTemplate(BaseModel):
    """Reusable blueprint for a business task."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str = ""
    instructions: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    category: TemplateCategory = TemplateCategory.CUSTOM
    recommended_assignment: BusinessAssignment
    due_rule: DueRule
    default_lead_time_days: int = 0
    automation_hint: Optional[str] = None
    steps: List[TemplateStep] = Field(default_factory=list)
    parameter_hints: List[str] = Field(default_factory=list)


class TemplatePayload(BaseModel):
    """Payload for creating a business template (id is generated)."""
    title: str
    description: str = ""
    instructions: Optional[str] = None
    assignment: BusinessAssignment
    tags: List[str] = Field(default_factory=list)
    due_rule: DueRule
    default_lead_time_days: int = 0
    category: TemplateCategory = TemplateCategory.CUSTOM
    automation_hint: Optional[str] = None
    steps: List[TemplateStep] = Field(default_factory=list)
    parameter_hints: List[str] = Field(default_factory=list)


class TemplateContext(BaseModel):
    """Context used when turning a template into a business task."""
    target_date: Optional[datetime] = None
    linked_item_ids: List[str] = Field(default_factory=list)
    note: Optional[str] = None
    custom_title: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# Phase Template Definitions
# -----------------------------------------------------------------------------
class PhaseTemplateDefinition(BaseModel):
    """
    Phase-driven automation definition.

    Binds a phase to a template, a time window relative to a timeline
    reference, and an AND-list of conditions.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    summary: str = ""
    timeline_reference: TimelineReference
    auto_create: bool = False
    window: PhaseWindowConfig
    template: BusinessTemplate
    source_phase: Optional[str] = None
    conditions: List[AutomationCondition] = Field(default_factory=list)


class CustomPhasePayload(BaseModel):
    """Payload for creating a custom phase definition at runtime."""
    label: str
    summary: str = ""
    timeline_reference: TimelineReference
    window: PhaseWindowConfig
    auto_create: bool = False
    template: TemplatePayload
    source_phase: Optional[str] = None
    conditions: List[Dict[str, Any]] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# Automation Rules
# -----------------------------------------------------------------------------
class WebhookConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    method: Literal["POST", "PUT", "PATCH"] = "POST"
    payload_template: Optional[str] = None


class AutomationRulePayload(BaseModel):
    """Payload for creating a manual automation rule (id is generated)."""
    template_id: str
    title: str
    trigger: str = ""
    condition: str = ""
    lead_time_days: int = 0
    next_run: Optional[datetime] = None
    next_template_id: Optional[str] = None
    webhook: Optional[WebhookConfig] = None
    test_mode: bool = False


class BusinessTemplateAutomation(BaseModel):
    """
    Template-scoped automation rule.

    Toggled active/inactive by users; last_run_status/last_run_at are
    replaced on every execution.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    template_id: str
    title: str
    trigger: str = ""
    condition: str = ""
    lead_time_days: int = 0
    next_run: Optional[datetime] = None
    active: bool = True
    next_template_id: Optional[str] = None
    webhook: Optional[WebhookConfig] = None
    test_mode: bool = False
    last_run_status: RunStatus = RunStatus.IDLE
    last_run_at: Optional[datetime] = None


def validate_model(model_cls, data: Any):
    """Build a pydantic model, translating failures into ValidationError."""
    if isinstance(data, model_cls):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump()
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e
