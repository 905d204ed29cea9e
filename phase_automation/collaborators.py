"""
Collaborator Interfaces

The engine only needs read access to "current phase per item" and
"reference date per item", and write access to "create task" and
"link items to task". These are expressed as Protocols so any host
repository can be plugged in.

In-memory reference implementations are provided for hosts without their
own storage and for tests:
- InMemoryOrderBook: order items, their current phases and reference dates
- InMemoryBusinessTaskStore: business tasks with an inverted tag index
"""

import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Set, Tuple

from .errors import NotFoundError
from .models import BusinessAssignment, TimelineReference

logger = logging.getLogger("collaborators")


# -----------------------------------------------------------------------------
# Entities
# -----------------------------------------------------------------------------
@dataclass
class OrderItem:
    """Order line item as seen by the engine (read-only)."""
    item_id: str
    type: str = ""
    tags: List[str] = field(default_factory=list)
    timetable_phase: Optional[str] = None
    timetable_year_label: Optional[str] = None
    reference_dates: Dict[str, datetime] = field(default_factory=dict)


@dataclass(frozen=True)
class PhaseSnapshot:
    """Current phase per item plus the timeline reference it was computed for."""
    phases: Mapping[str, str]
    reference: str = TimelineReference.FP_DAY.value


@dataclass
class BusinessTaskPayload:
    title: str
    description: str
    due_date: Optional[datetime]
    assignment: BusinessAssignment
    tags: List[str] = field(default_factory=list)
    linked_item_ids: List[str] = field(default_factory=list)


@dataclass
class BusinessTask:
    """Business task owned by the task collaborator."""
    task_id: str
    title: str
    description: str
    created_at: datetime
    assignment: BusinessAssignment
    due_date: Optional[datetime] = None
    status: str = "open"
    tags: Tuple[str, ...] = ()
    linked_item_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["tags"] = list(self.tags)
        data["assignment"] = self.assignment.model_dump(mode="json")
        data["created_at"] = self.created_at.isoformat()
        data["due_date"] = self.due_date.isoformat() if self.due_date else None
        return data


# -----------------------------------------------------------------------------
# Protocols
# -----------------------------------------------------------------------------
class OrderItemSource(Protocol):
    def get_current_phase_snapshot(self) -> PhaseSnapshot: ...

    def get_reference_date(self, item: OrderItem, timeline_reference: str) -> Optional[datetime]: ...

    def get_item(self, item_id: str) -> Optional[OrderItem]: ...

    def get_timetable_year(self, item: OrderItem) -> Optional[str]: ...


class BusinessTaskStore(Protocol):
    def find_tasks_by_tags(self, tags: List[str]) -> Optional[BusinessTask]: ...

    def create_task(self, payload: BusinessTaskPayload) -> BusinessTask: ...

    def set_linked_items(self, task_id: str, item_ids: List[str]) -> None: ...


# -----------------------------------------------------------------------------
# In-Memory Order Book
# -----------------------------------------------------------------------------
class InMemoryOrderBook:
    """
    Simple order-item repository.

    Holds items and their current TTR phase. The host mutates phases and
    then asks the engine to reconcile.
    """

    def __init__(
        self,
        items: Optional[Iterable[OrderItem]] = None,
        reference: str = TimelineReference.FP_DAY.value,
    ):
        self._items: Dict[str, OrderItem] = {}
        self._phases: Dict[str, str] = {}
        self._reference = _enum_value(reference)
        for item in items or []:
            self.upsert_item(item)

    def upsert_item(self, item: OrderItem, phase: Optional[str] = None) -> None:
        self._items[item.item_id] = item
        if phase is not None:
            self.set_phase(item.item_id, phase)

    def remove_item(self, item_id: str) -> None:
        self._items.pop(item_id, None)
        self._phases.pop(item_id, None)

    def set_phase(self, item_id: str, phase: str) -> None:
        if item_id not in self._items:
            raise NotFoundError("order item", item_id)
        self._phases[item_id] = _enum_value(phase)

    def set_reference(self, reference: str) -> None:
        self._reference = _enum_value(reference)

    def get_current_phase_snapshot(self) -> PhaseSnapshot:
        return PhaseSnapshot(phases=dict(self._phases), reference=self._reference)

    def get_reference_date(self, item: OrderItem, timeline_reference: str) -> Optional[datetime]:
        return item.reference_dates.get(_enum_value(timeline_reference))

    def get_item(self, item_id: str) -> Optional[OrderItem]:
        return self._items.get(item_id)

    def get_timetable_year(self, item: OrderItem) -> Optional[str]:
        return item.timetable_year_label


# -----------------------------------------------------------------------------
# In-Memory Business Task Store
# -----------------------------------------------------------------------------
class InMemoryBusinessTaskStore:
    """
    Business task storage with tag search.

    Tags are the source of truth for deduplication. An inverted index
    tag -> task ids is kept in step with every write, so searching for a tag
    pair does not scan all tasks.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or datetime.utcnow
        self._tasks: Dict[str, BusinessTask] = {}
        self._sequence: Dict[str, int] = {}
        self._tag_index: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def create_task(self, payload: BusinessTaskPayload) -> BusinessTask:
        task = BusinessTask(
            task_id=f"biz-{uuid.uuid4().hex[:8]}",
            title=payload.title,
            description=payload.description,
            created_at=self._clock(),
            assignment=payload.assignment,
            due_date=payload.due_date,
            tags=tuple(dict.fromkeys(payload.tags)),
            linked_item_ids=list(dict.fromkeys(payload.linked_item_ids)),
        )
        with self._lock:
            self._sequence[task.task_id] = len(self._sequence)
            self._tasks[task.task_id] = task
            for tag in task.tags:
                self._tag_index.setdefault(tag, set()).add(task.task_id)
        logger.info(f"Created business task {task.task_id}: {task.title}")
        return task

    def find_tasks_by_tags(self, tags: List[str]) -> Optional[BusinessTask]:
        """Return the oldest task carrying ALL given tags, or None."""
        if not tags:
            return None
        with self._lock:
            candidates: Optional[Set[str]] = None
            for tag in tags:
                ids = self._tag_index.get(tag, set())
                candidates = set(ids) if candidates is None else candidates & ids
                if not candidates:
                    return None
            task_id = min(candidates, key=self._sequence.__getitem__)
            return self._tasks[task_id]

    def set_linked_items(self, task_id: str, item_ids: List[str]) -> None:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise NotFoundError("business task", task_id)
            task.linked_item_ids = list(dict.fromkeys(item_ids))

    def get_task(self, task_id: str) -> Optional[BusinessTask]:
        return self._tasks.get(task_id)

    def list_tasks(self) -> List[BusinessTask]:
        return list(self._tasks.values())


def _enum_value(value: Any) -> str:
    return value.value if isinstance(value, Enum) else str(value)
