"""
Built-in Catalog Tests

Proves:
1. The packaged catalog holds the six TTR phases with valid windows
2. Catalog files are validated (structure, duplicates, field values)
"""

import pytest

from phase_automation.catalog import load_builtin_definitions
from phase_automation.errors import ValidationError
from phase_automation.models import BucketGranularity, TimelineReference, WindowUnit


MINIMAL_PHASE = """
  - id: {phase_id}
    label: Test
    timeline_reference: fpDay
    auto_create: true
    window: {{unit: days, start: -3, end: 0}}
    template:
      id: tpl-{phase_id}
      title: Test template
      recommended_assignment: {{name: Desk}}
      due_rule: {{anchor: go_live, offset_days: 0}}
"""


def _write_catalog(tmp_path, body):
    path = tmp_path / "catalog.yaml"
    path.write_text(body)
    return path


class TestPackagedCatalog:

    def test_six_builtins(self):
        definitions = load_builtin_definitions()
        assert len(definitions) == 6
        assert all(d.auto_create for d in definitions)
        assert all(d.source_phase == d.id for d in definitions)

    def test_short_term_window(self):
        short_term = {d.id: d for d in load_builtin_definitions()}["short_term"]
        assert short_term.timeline_reference == TimelineReference.FP_DAY
        assert short_term.window.unit == WindowUnit.DAYS
        assert (short_term.window.start, short_term.window.end) == (-30, -7)
        assert short_term.window.bucket == BucketGranularity.DAY

    def test_windows_ordered(self):
        assert all(d.window.start <= d.window.end for d in load_builtin_definitions())

    def test_annual_request_due_rule(self):
        annual = {d.id: d for d in load_builtin_definitions()}["annual_request"]
        assert annual.template.id == "tpl-annual-request"
        assert annual.template.due_rule.offset_days == 30


class TestCatalogValidation:

    def test_custom_file(self, tmp_path):
        path = _write_catalog(tmp_path, "phases:" + MINIMAL_PHASE.format(phase_id="p1"))
        assert [d.id for d in load_builtin_definitions(path)] == ["p1"]

    def test_empty_file(self, tmp_path):
        assert load_builtin_definitions(_write_catalog(tmp_path, "")) == ()

    def test_phases_not_a_list(self, tmp_path):
        with pytest.raises(ValidationError):
            load_builtin_definitions(_write_catalog(tmp_path, "phases: {a: 1}"))

    def test_duplicate_ids(self, tmp_path):
        body = "phases:" + MINIMAL_PHASE.format(phase_id="p1") + MINIMAL_PHASE.format(phase_id="p1")
        with pytest.raises(ValidationError) as exc_info:
            load_builtin_definitions(_write_catalog(tmp_path, body))
        assert "p1" in exc_info.value.message

    def test_invalid_window(self, tmp_path):
        body = "phases:" + MINIMAL_PHASE.format(phase_id="p1").replace("unit: days", "unit: months")
        with pytest.raises(ValidationError):
            load_builtin_definitions(_write_catalog(tmp_path, body))
