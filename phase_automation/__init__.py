"""
Phase Automation Module

Reconciliation engine that turns TTR phase transitions of transport order
line items into business tasks.

Core components:
- Phase Template Registry: built-in and custom phase definitions, window and
  condition overrides, automation toggles, business templates, tag naming
- Window Matcher: pure relative time-window test (inclusive bounds)
- Condition Evaluator: AND over typed conditions (itemTag, itemType,
  ttrPhase, timetablePhase)
- Bucket Key Generator: hour / day / week / timetable-year grouping keys
- Automation Reconciler: per-item phase state machine, create-or-attach
    * Each item processed at most once per distinct phase change
    * Deduplication purely through the (template tag, bucket tag) pair
    * Per-item failures recorded as `error` executions, never fatal
- Template Instantiator: template + context -> business task
- Automation Rule Engine: template-scoped rules, dry runs, triggers,
  template dependency graph
- Execution Log: bounded, newest-first audit log with optional JSONL mirror

Host integration goes through the collaborator Protocols
(OrderItemSource, BusinessTaskStore); in-memory implementations are
provided for hosts without their own storage.
"""

__version__ = "0.1.0"
