"""
Built-in Phase Catalog

Loads the immutable built-in phase template definitions from YAML.
"""

import logging
from pathlib import Path
from typing import Optional, Tuple

import yaml

from . import config
from .errors import ValidationError
from .models import PhaseTemplateDefinition, validate_model

logger = logging.getLogger("phase_catalog")


def load_builtin_definitions(path: Optional[Path] = None) -> Tuple[PhaseTemplateDefinition, ...]:
    """
    Load built-in phase definitions.

    Args:
        path: YAML catalog file (defaults to the packaged catalog)

    Returns:
        Definitions in catalog order

    Raises:
        ValidationError: malformed catalog or duplicate ids
    """
    catalog_file = Path(path) if path else config.CATALOG_FILE
    with open(catalog_file, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    raw_phases = data.get("phases") or []
    if not isinstance(raw_phases, list):
        raise ValidationError([f"{catalog_file}: 'phases' must be a list"])

    definitions = tuple(validate_model(PhaseTemplateDefinition, raw) for raw in raw_phases)

    seen = set()
    duplicates = []
    for definition in definitions:
        if definition.id in seen:
            duplicates.append(definition.id)
        seen.add(definition.id)
    if duplicates:
        raise ValidationError([f"Duplicate phase id: {phase_id}" for phase_id in duplicates])

    logger.info(f"Loaded {len(definitions)} built-in phase definitions from {catalog_file}")
    return definitions
