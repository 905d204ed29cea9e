"""
Template Instantiator

Turns a business template plus a context into a concrete business task and
hands it to the task collaborator.

Rules:
- due_date = (context.target_date or now) + due_rule.offset_days (calendar days)
- title = trimmed custom title if non-empty, else the template title
- description = template description plus a note block if a note is given
- tags = template tags + context tags + the template tag (deduplicated)

The template tag is always attached: the reconciler relies on it to find
tasks that were created from the same template.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Union

from .collaborators import BusinessTask, BusinessTaskPayload, BusinessTaskStore
from .errors import NotFoundError
from .models import TemplateContext, validate_model
from .registry import PhaseTemplateRegistry, template_tag

logger = logging.getLogger("template_instantiator")

NOTE_PREFIX = "\n\nNote: "


class TemplateInstantiator:
    """Creates business tasks from registry templates."""

    def __init__(
        self,
        registry: PhaseTemplateRegistry,
        task_store: BusinessTaskStore,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._registry = registry
        self._task_store = task_store
        self._clock = clock or datetime.utcnow

    def instantiate(
        self,
        template_id: str,
        context: Optional[Union[TemplateContext, Dict[str, Any]]] = None,
    ) -> BusinessTask:
        """
        Instantiate a template into a business task.

        Args:
            template_id: Registry template id
            context: Target date, linked items, note, custom title, extra tags

        Returns:
            The created task

        Raises:
            NotFoundError: unknown template
            ValidationError: malformed context
        """
        template = self._registry.get_template(template_id)
        if template is None:
            raise NotFoundError("template", template_id)
        context = validate_model(TemplateContext, context or {})

        anchor = context.target_date or self._clock()
        due_date = anchor + timedelta(days=template.due_rule.offset_days)

        custom_title = (context.custom_title or "").strip()
        description = template.description
        if context.note and context.note.strip():
            description = f"{description}{NOTE_PREFIX}{context.note.strip()}"

        tags = list(dict.fromkeys([*template.tags, *context.tags, template_tag(template.id)]))

        task = self._task_store.create_task(BusinessTaskPayload(
            title=custom_title or template.title,
            description=description,
            due_date=due_date,
            assignment=template.recommended_assignment,
            tags=tags,
            linked_item_ids=list(context.linked_item_ids),
        ))
        logger.info(f"Instantiated template {template_id} as task {task.task_id} (due {due_date.date()})")
        return task
