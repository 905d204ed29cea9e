"""
Automation Rule Engine Tests

Proves:
1. Rules are created active with idle run status
2. Toggling unknown rules raises NotFoundError
3. simulate() never raises and never mutates
4. trigger_for_template() logs one execution per active rule and updates
   last run status / timestamp
   (derived read-only rules are triggered and simulated, never stored)
5. The dependency graph is an append-only edge list without cycle checks
"""

import pytest

from phase_automation.errors import NotFoundError, ValidationError
from phase_automation.models import BusinessTemplateAutomation, RunStatus
from phase_automation.rule_engine import AutomationRuleEngine, compose_message
from tests.conftest import ANNUAL_REQUEST_TEMPLATE, NOW, SHORT_TERM_TEMPLATE


@pytest.fixture
def rule(rule_engine):
    return rule_engine.add_rule({
        "template_id": SHORT_TERM_TEMPLATE,
        "title": "Notify desk",
        "trigger": "task created",
    })


@pytest.fixture
def webhook_rule(rule_engine):
    return rule_engine.add_rule({
        "template_id": SHORT_TERM_TEMPLATE,
        "title": "Push to ops board",
        "webhook": {"url": "https://ops.example.test/hooks/ttr"},
        "test_mode": True,
    })


class TestRules:

    def test_add_rule_defaults(self, rule):
        assert rule.id.startswith("rule-")
        assert rule.active is True
        assert rule.last_run_status == RunStatus.IDLE
        assert rule.last_run_at is None

    def test_add_rule_unknown_template(self, rule_engine):
        with pytest.raises(NotFoundError):
            rule_engine.add_rule({"template_id": "tpl-nope", "title": "x"})

    def test_add_rule_malformed(self, rule_engine):
        with pytest.raises(ValidationError):
            rule_engine.add_rule({"template_id": SHORT_TERM_TEMPLATE})

    def test_add_rule_without_lookup(self, execution_log):
        engine = AutomationRuleEngine(execution_log)
        assert engine.add_rule({"template_id": "anything", "title": "x"}).template_id == "anything"

    def test_toggle(self, rule_engine, rule):
        assert rule_engine.toggle(rule.id, False).active is False
        assert rule_engine.get_rule(rule.id).active is False

    def test_toggle_unknown(self, rule_engine):
        with pytest.raises(NotFoundError):
            rule_engine.toggle("rule-nope", True)

    def test_list_rules_by_template(self, rule_engine, rule):
        other = rule_engine.add_rule({"template_id": ANNUAL_REQUEST_TEMPLATE, "title": "y"})
        assert rule_engine.list_rules(SHORT_TERM_TEMPLATE) == (rule,)
        assert rule_engine.list_rules() == (rule, other)


class TestSimulate:

    def test_unknown_rule(self, rule_engine):
        result = rule_engine.simulate("rule-nope")
        assert result.success is False
        assert result.simulated_task_id is None

    def test_generic_success(self, rule_engine, rule):
        result = rule_engine.simulate(rule.id)
        assert result.success is True
        assert result.simulated_task_id is None

    def test_test_mode_returns_synthetic_id(self, rule_engine, webhook_rule):
        result = rule_engine.simulate(webhook_rule.id)
        assert result.simulated_task_id.startswith("sim-")

    def test_no_side_effects(self, rule_engine, rule, execution_log):
        rule_engine.simulate(rule.id)
        assert len(execution_log) == 0
        assert rule_engine.get_rule(rule.id) == rule


class TestTrigger:

    def test_one_entry_per_active_rule(self, rule_engine, rule, webhook_rule, execution_log):
        executions = rule_engine.trigger_for_template(SHORT_TERM_TEMPLATE, "biz-1")
        assert {e.rule_id for e in executions} == {rule.id, webhook_rule.id}
        assert len(execution_log) == 2

    def test_inactive_rules_skipped(self, rule_engine, rule, webhook_rule):
        rule_engine.toggle(rule.id, False)
        executions = rule_engine.trigger_for_template(SHORT_TERM_TEMPLATE, "biz-1")
        assert [e.rule_id for e in executions] == [webhook_rule.id]

    def test_allowlist(self, rule_engine, rule, webhook_rule):
        executions = rule_engine.trigger_for_template(SHORT_TERM_TEMPLATE, "biz-1", rule_ids=[rule.id])
        assert [e.rule_id for e in executions] == [rule.id]

    def test_other_template_untouched(self, rule_engine, rule):
        assert rule_engine.trigger_for_template(ANNUAL_REQUEST_TEMPLATE, "biz-1") == []

    def test_message_contents(self, rule_engine, webhook_rule):
        execution = rule_engine.trigger_for_template(
            SHORT_TERM_TEMPLATE, "biz-7", linked_item_ids=["i-1", "i-2"]
        )[0]
        assert "Push to ops board" in execution.message
        assert "biz-7" in execution.message
        assert "i-1, i-2" in execution.message
        assert "https://ops.example.test/hooks/ttr" in execution.message

    def test_run_status_updated(self, rule_engine, rule):
        rule_engine.trigger_for_template(SHORT_TERM_TEMPLATE, "biz-1")
        updated = rule_engine.get_rule(rule.id)
        assert updated.last_run_status == RunStatus.SUCCESS
        assert updated.last_run_at == NOW

    def test_derived_rules_triggered(self, execution_log, registry, clock):
        derived = BusinessTemplateAutomation(
            id="phase-short_term", template_id=SHORT_TERM_TEMPLATE, title="Short-Term automation"
        )
        engine = AutomationRuleEngine(
            execution_log,
            template_lookup=registry.get_template,
            derived_rules=lambda: [derived],
            clock=clock,
        )
        manual = engine.add_rule({"template_id": SHORT_TERM_TEMPLATE, "title": "Notify desk"})

        executions = engine.trigger_for_template(SHORT_TERM_TEMPLATE, "biz-1")

        assert [e.rule_id for e in executions] == [manual.id, derived.id]
        assert engine.list_rules() == (engine.get_rule(manual.id),)
        assert engine.get_rule(derived.id) is None
        assert engine.simulate(derived.id).success is True

    def test_inactive_derived_rule_skipped(self, execution_log):
        derived = BusinessTemplateAutomation(
            id="phase-short_term", template_id=SHORT_TERM_TEMPLATE, title="x", active=False
        )
        engine = AutomationRuleEngine(execution_log, derived_rules=lambda: [derived])
        assert engine.trigger_for_template(SHORT_TERM_TEMPLATE, "biz-1") == []

    def test_compose_message_without_items(self, rule):
        assert compose_message(rule, "biz-1") == 'Rule "Notify desk" executed for task biz-1'


class TestDependencies:

    def test_edges(self, rule_engine):
        edge = rule_engine.add_dependency(ANNUAL_REQUEST_TEMPLATE, SHORT_TERM_TEMPLATE, "then short-term")
        assert rule_engine.dependents_of(ANNUAL_REQUEST_TEMPLATE) == [edge]
        assert rule_engine.predecessors_of(SHORT_TERM_TEMPLATE) == [edge]
        assert rule_engine.dependents_of(SHORT_TERM_TEMPLATE) == []

    def test_cycles_accepted(self, rule_engine):
        rule_engine.add_dependency(ANNUAL_REQUEST_TEMPLATE, SHORT_TERM_TEMPLATE)
        rule_engine.add_dependency(SHORT_TERM_TEMPLATE, ANNUAL_REQUEST_TEMPLATE)
        assert len(rule_engine.list_dependencies()) == 2

    def test_unknown_template_rejected(self, rule_engine):
        with pytest.raises(NotFoundError):
            rule_engine.add_dependency("tpl-nope", SHORT_TERM_TEMPLATE)

    def test_cascade_targets(self, rule_engine):
        rule_engine.add_rule({
            "template_id": ANNUAL_REQUEST_TEMPLATE,
            "title": "chain",
            "next_template_id": "tpl-final-offer",
        })
        rule_engine.add_dependency(ANNUAL_REQUEST_TEMPLATE, SHORT_TERM_TEMPLATE)
        rule_engine.add_dependency(ANNUAL_REQUEST_TEMPLATE, "tpl-final-offer")

        assert rule_engine.cascade_targets(ANNUAL_REQUEST_TEMPLATE) == ["tpl-final-offer", SHORT_TERM_TEMPLATE]
