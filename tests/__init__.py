"""
Test Suite for Phase Automation

Tests are grouped per component:
- window / conditions / buckets - pure gate functions
- registry / catalog - phase definitions, templates, tag naming
- instantiator / reconciler - task creation and bucketing
- rule_engine / execution_log - manual rules and audit trail
- engine - facade wiring
"""
