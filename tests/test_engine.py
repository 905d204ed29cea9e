"""
Engine Facade Tests

Proves:
1. The default engine wires in-memory collaborators end to end
2. create_from_template instantiates and triggers the template's rules,
   manual and phase-derived
3. Registry and instantiator errors propagate to the caller
"""

from datetime import datetime

import pytest

from phase_automation.engine import build_default_engine
from phase_automation.errors import NotFoundError, PermissionDeniedError
from tests.conftest import SHORT_TERM, SHORT_TERM_TEMPLATE, days_from_now, fixed_clock, make_item


class TestDefaultEngine:

    def test_end_to_end(self, tmp_path):
        engine = build_default_engine(clock=fixed_clock, audit_file=tmp_path / "executions.jsonl")
        engine.order_source.upsert_item(make_item("item-1", fp_day=days_from_now(-10)), SHORT_TERM)
        engine.order_source.upsert_item(make_item("item-2", fp_day=days_from_now(-10)), SHORT_TERM)

        report = engine.reconcile_once()

        assert len(report.created_task_ids) == 1
        assert len(engine.task_store.list_tasks()) == 1
        assert len(engine.executions()) == 2
        assert (tmp_path / "executions.jsonl").exists()

    def test_phase_listing(self):
        engine = build_default_engine(clock=fixed_clock)
        assert len(engine.list_phases()) == 6


class TestCreateFromTemplate:

    def test_triggers_rules(self, engine):
        rule = engine.rules.add_rule({"template_id": SHORT_TERM_TEMPLATE, "title": "Notify desk"})

        task = engine.create_from_template(
            SHORT_TERM_TEMPLATE, {"linked_item_ids": ["i-1"], "note": "manual"}
        )

        entries = {e.rule_id: e for e in engine.executions()}
        assert set(entries) == {rule.id, f"phase-{SHORT_TERM}"}
        assert task.task_id in entries[rule.id].message
        assert "i-1" in entries[rule.id].message

    def test_triggers_phase_rule(self, engine):
        task = engine.create_from_template(SHORT_TERM_TEMPLATE, {"target_date": datetime(2025, 1, 1)})

        entries = engine.executions()
        assert [e.rule_id for e in entries] == [f"phase-{SHORT_TERM}"]
        assert entries[0].template_id == SHORT_TERM_TEMPLATE
        assert task.task_id in entries[0].message

    def test_disabled_phase_rule_skipped(self, engine):
        engine.set_phase_automation(SHORT_TERM, False)
        engine.create_from_template(SHORT_TERM_TEMPLATE)
        assert engine.executions() == ()

    def test_allowlist_excludes_phase_rule(self, engine):
        rule = engine.rules.add_rule({"template_id": SHORT_TERM_TEMPLATE, "title": "Notify desk"})
        engine.create_from_template(SHORT_TERM_TEMPLATE, rule_ids=[rule.id])
        assert [e.rule_id for e in engine.executions()] == [rule.id]

    def test_phase_rule_simulated(self, engine):
        result = engine.rules.simulate(f"phase-{SHORT_TERM}")
        assert result.success is True
        assert result.simulated_task_id is None

    def test_annual_request_due_date(self, engine):
        task = engine.create_from_template("tpl-annual-request", {"target_date": datetime(2025, 1, 1)})
        assert task.due_date == datetime(2025, 1, 31)

    def test_unknown_template_propagates(self, engine):
        with pytest.raises(NotFoundError):
            engine.create_from_template("tpl-nope")
        assert engine.executions() == ()


class TestRegistryOperations:

    def test_delete_builtin_propagates(self, engine):
        with pytest.raises(PermissionDeniedError):
            engine.delete_phase(SHORT_TERM)
        assert len(engine.list_phases()) == 6

    def test_custom_phase_lifecycle(self, engine, custom_phase_payload):
        phase_id = engine.create_phase(custom_phase_payload)
        engine.set_phase_automation(phase_id, True)
        engine.update_phase_window(phase_id, {"start": -20, "end": -5})
        engine.update_phase_conditions(phase_id, [])

        definition = engine.registry.get(phase_id)
        assert definition.window.start == -20
        assert definition.conditions == []

        engine.delete_phase(phase_id)
        assert engine.registry.get(phase_id) is None

    def test_automation_rules_view(self, engine):
        manual = engine.rules.add_rule({"template_id": SHORT_TERM_TEMPLATE, "title": "x"})
        rules = engine.automation_rules()
        assert rules[0] == manual
        assert {r.id for r in rules[1:]} == {f"phase-{d.id}" for d in engine.list_phases()}
