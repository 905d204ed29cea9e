"""
Phase Automation Configuration

Environment-driven settings. Every value has a default so the engine works
without any environment configured.
"""

import os
from pathlib import Path
from typing import Optional

# -----------------------------------------------------------------------------
# Execution Log
# -----------------------------------------------------------------------------
# Most recent N executions are retained, oldest evicted first
EXECUTION_LOG_LIMIT = int(os.getenv("PHASE_AUTOMATION_EXECUTION_LOG_LIMIT", "50"))

# Optional append-only JSONL mirror of the execution log
_audit_file = os.getenv("PHASE_AUTOMATION_AUDIT_FILE")
AUDIT_FILE: Optional[Path] = Path(_audit_file) if _audit_file else None

# -----------------------------------------------------------------------------
# Phase Catalog
# -----------------------------------------------------------------------------
CATALOG_FILE = Path(os.getenv(
    "PHASE_AUTOMATION_CATALOG_FILE",
    Path(__file__).parent / "data" / "phase_templates.yaml"
))

# -----------------------------------------------------------------------------
# Reconciler / Registry
# -----------------------------------------------------------------------------
# Phase value reported for items whose phase cannot be determined
UNKNOWN_PHASE = "unknown"

RECOMMENDATION_LIMIT = 5

# Separator between template title and phase label in automatic task titles
TITLE_SEPARATOR = " · "
