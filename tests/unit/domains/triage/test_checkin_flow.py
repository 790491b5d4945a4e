"""Tests for the check-in conversation state machine."""

from __future__ import annotations

import pytest
import yaml

from conftest import FIXED_NOW

from cardiowatch.domains.triage.domain_logic.checkin_flow import (
    QUICK_ACTIONS,
    CheckInFlowEngine,
    FlowStateError,
    OptionId,
)
from cardiowatch.domains.triage.domain_logic.flow_loader import DEFAULT_FLOW_FILE, load_flow_file
from cardiowatch.domains.triage.domain_logic.models import FlowState, FlowType, TriageLevel

HAPPY_PATH = [
    "Continue check-in",
    "8 - Feeling good",
    "None of these",
    "Looks correct",
    "About the same",
    "Yes, all of them",
    "Nothing else",
]


def _advance_to(engine: CheckInFlowEngine, step_key: str) -> FlowState:
    """Walk the main flow along the happy path until ``step_key`` is current."""
    state = engine.start("pt-001").state
    for answer in HAPPY_PATH:
        if engine.current_step(state).key == step_key:
            return state
        engine.reply(state, answer)
    assert engine.current_step(state).key == step_key
    return state


class TestStart:
    def test_starts_at_greeting(self, flow_engine):
        turn = flow_engine.start("pt-001")
        assert turn.state.flow_type is FlowType.NORMAL
        assert turn.state.step_index == 0
        assert turn.prompt.key == "greeting"
        assert not turn.terminal
        assert not turn.advanced

    def test_greeting_recorded_with_options(self, flow_engine):
        state = flow_engine.start("pt-001").state
        assert len(state.message_history) == 1
        message = state.message_history[0]
        assert message.role == "agent"
        assert "Continue check-in" in message.options
        assert message.timestamp == FIXED_NOW


class TestLinearAdvance:
    def test_happy_path_reaches_green_summary(self, flow_engine):
        state = flow_engine.start("pt-001").state
        turn = None
        for answer in HAPPY_PATH:
            turn = flow_engine.reply(state, answer)
            assert turn.escalation is None
        assert turn.terminal
        assert turn.prompt.key == "final_summary"
        assert state.flow_type is FlowType.NORMAL
        assert state.step_index == len(flow_engine.steps(FlowType.NORMAL)) - 1

    def test_none_of_these_advances_without_escalation(self, flow_engine):
        state = _advance_to(flow_engine, "symptom_screen")
        index = state.step_index
        turn = flow_engine.select_option(state, "None of these")
        assert turn.escalation is None
        assert state.flow_type is FlowType.NORMAL
        assert state.step_index == index + 1
        assert turn.option_id == "none_of_these"

    def test_wellbeing_score_recorded(self, flow_engine):
        state = _advance_to(flow_engine, "wellbeing")
        flow_engine.reply(state, "4 - Not great")
        assert state.wellbeing_score == 4
        assert flow_engine.current_step(state).key == "symptom_screen"

    def test_option_by_id(self, flow_engine):
        state = flow_engine.start("pt-001").state
        turn = flow_engine.select_option(state, "continue_checkin")
        assert turn.advanced
        assert turn.prompt.key == "wellbeing"

    def test_history_records_patient_and_agent(self, flow_engine):
        state = flow_engine.start("pt-001").state
        flow_engine.reply(state, "Continue check-in")
        roles = [m.role for m in state.message_history]
        assert roles == ["agent", "patient", "agent"]
        assert state.message_history[1].content == "Continue check-in"


class TestSymptomEscalation:
    def test_chest_pain_switches_to_urgent_with_red(self, flow_engine):
        state = _advance_to(flow_engine, "symptom_screen")
        turn = flow_engine.select_option(state, "Chest pain or pressure")
        assert (state.flow_type, state.step_index) == (FlowType.URGENT, 0)
        assert turn.escalation.level is TriageLevel.RED
        assert turn.escalation.cause == "chest_pain"
        assert turn.escalation.cause_key == "symptom:chest_pain"
        assert turn.escalation.detected_at == FIXED_NOW
        assert turn.terminal

    @pytest.mark.parametrize("label, cause", [
        ("Shortness of breath at rest", "breathless_at_rest"),
        ("Fainting or near-fainting", "fainting"),
    ])
    def test_concern_symptoms_switch_with_amber(self, flow_engine, label, cause):
        state = _advance_to(flow_engine, "symptom_screen")
        turn = flow_engine.select_option(state, label)
        assert (state.flow_type, state.step_index) == (FlowType.CONCERN, 0)
        assert turn.escalation.level is TriageLevel.AMBER
        assert turn.escalation.cause == cause
        assert not turn.terminal

    def test_concern_flow_ends_in_amber_summary(self, flow_engine):
        state = _advance_to(flow_engine, "symptom_screen")
        flow_engine.reply(state, "Fainting or near-fainting")
        flow_engine.reply(state, "Since yesterday")
        turn = flow_engine.reply(state, "Moderate (4-6)")
        assert turn.prompt.key == "amber_summary"
        assert turn.terminal
        assert turn.escalation is None

    def test_branching_ignores_display_labels(self, tmp_path):
        document = yaml.safe_load(DEFAULT_FLOW_FILE.read_text())
        screen = next(s for s in document["flows"]["normal"] if s.get("key") == "symptom_screen")
        for option in screen["options"]:
            if option["id"] == "chest_pain":
                option["label"] = "My chest hurts"
        path = tmp_path / "relabelled.yaml"
        path.write_text(yaml.safe_dump(document))

        engine = CheckInFlowEngine(load_flow_file(path))
        state = _advance_to(engine, "symptom_screen")
        turn = engine.reply(state, "My chest hurts")
        assert state.flow_type is FlowType.URGENT
        assert turn.escalation.level is TriageLevel.RED


class TestQuickActions:
    @pytest.mark.parametrize("label, flow_type", [
        ("Request appointment", FlowType.APPOINTMENT),
        ("Request medicine", FlowType.REFILL),
        ("Side effects", FlowType.SIDE_EFFECT),
        ("Call clinician", FlowType.CALL),
        ("File a complaint", FlowType.COMPLAINT),
    ])
    def test_quick_action_from_greeting(self, flow_engine, label, flow_type):
        state = flow_engine.start("pt-001").state
        turn = flow_engine.reply(state, label)
        assert (state.flow_type, state.step_index) == (flow_type, 0)
        assert turn.escalation is None

    def test_ambulance_raises_red_escalation(self, flow_engine):
        state = flow_engine.start("pt-001").state
        turn = flow_engine.reply(state, "Request ambulance")
        assert state.flow_type is FlowType.AMBULANCE
        assert turn.escalation.level is TriageLevel.RED
        assert turn.escalation.cause == "request_ambulance"
        assert "Dr. Patel" in turn.prompt.content

    def test_quick_action_preempts_any_step(self, flow_engine):
        state = _advance_to(flow_engine, "activity")
        flow_engine.reply(state, "Call clinician")
        assert (state.flow_type, state.step_index) == (FlowType.CALL, 0)

    def test_quick_action_mid_dedicated_flow(self, flow_engine):
        state = flow_engine.start("pt-001").state
        flow_engine.reply(state, "Request medicine")
        flow_engine.reply(state, "Request appointment")
        assert (state.flow_type, state.step_index) == (FlowType.APPOINTMENT, 0)

    def test_continue_checkin_is_not_a_quick_action(self):
        assert OptionId.CONTINUE_CHECKIN not in QUICK_ACTIONS

    def test_dedicated_flow_runs_to_summary(self, flow_engine):
        state = flow_engine.start("pt-001").state
        flow_engine.reply(state, "Call clinician")
        flow_engine.reply(state, "Later today")
        turn = flow_engine.reply(state, "Continue check-in")
        assert turn.prompt.key == "final_summary"
        assert turn.terminal

    def test_quick_action_ignored_at_terminal_step(self, flow_engine):
        state = _advance_to(flow_engine, "symptom_screen")
        flow_engine.reply(state, "Chest pain or pressure")
        turn = flow_engine.reply(state, "Request ambulance")
        assert (state.flow_type, state.step_index) == (FlowType.URGENT, 0)
        assert turn.terminal
        assert turn.escalation is None
        assert turn.prompt is None


class TestMedicationStep:
    def test_refill_answer_switches_to_refill(self, flow_engine):
        state = _advance_to(flow_engine, "medications")
        flow_engine.reply(state, "Need a refill soon")
        assert (state.flow_type, state.step_index) == (FlowType.REFILL, 0)

    def test_side_effects_answer_switches_to_side_effect(self, flow_engine):
        state = _advance_to(flow_engine, "medications")
        flow_engine.reply(state, "Having side effects")
        assert (state.flow_type, state.step_index) == (FlowType.SIDE_EFFECT, 0)

    def test_missed_dose_advances(self, flow_engine):
        state = _advance_to(flow_engine, "medications")
        flow_engine.reply(state, "Missed one dose")
        assert flow_engine.current_step(state).key == "additional_help"


class TestSyncIssue:
    def test_sync_issue_acknowledged_and_advances(self, flow_engine, flow_definitions):
        state = _advance_to(flow_engine, "wearable_sync")
        turn = flow_engine.reply(state, "Report sync issue")
        assert state.sync_issue_reported
        assert turn.acknowledgement == flow_definitions.sync_issue_acknowledgement
        assert turn.escalation is None
        assert flow_engine.current_step(state).key == "activity"
        contents = [m.content for m in state.message_history[-2:]]
        assert contents[0] == flow_definitions.sync_issue_acknowledgement


class TestFreeText:
    def test_free_text_does_not_advance(self, flow_engine, flow_definitions):
        state = _advance_to(flow_engine, "wellbeing")
        before = (state.flow_type, state.step_index)
        turn = flow_engine.reply(state, "My ankles look a bit puffy")
        assert (state.flow_type, state.step_index) == before
        assert turn.acknowledgement == flow_definitions.free_text_acknowledgement
        assert turn.prompt.key == "wellbeing"
        assert not turn.advanced
        assert turn.escalation is None

    def test_free_text_recorded(self, flow_engine):
        state = flow_engine.start("pt-001").state
        flow_engine.free_text(state, "  hello  ")
        assert [m.role for m in state.message_history] == ["agent", "patient", "agent"]
        assert state.message_history[1].content == "hello"

    def test_free_text_at_terminal_step(self, flow_engine):
        state = _advance_to(flow_engine, "symptom_screen")
        flow_engine.reply(state, "Chest pain or pressure")
        turn = flow_engine.reply(state, "Yes, my wife is here")
        assert turn.terminal
        assert turn.prompt is None
        assert (state.flow_type, state.step_index) == (FlowType.URGENT, 0)

    def test_symptom_words_outside_screen_are_free_text(self, flow_engine):
        state = _advance_to(flow_engine, "activity")
        turn = flow_engine.reply(state, "Chest pain or pressure")
        assert state.flow_type is FlowType.NORMAL
        assert turn.escalation is None

    def test_empty_reply_rejected(self, flow_engine):
        state = flow_engine.start("pt-001").state
        with pytest.raises(ValueError):
            flow_engine.reply(state, "   ")


class TestInvalidState:
    def test_out_of_range_index(self, flow_engine):
        state = FlowState(patient_id="pt-001", flow_type=FlowType.URGENT, step_index=3)
        with pytest.raises(FlowStateError):
            flow_engine.current_step(state)

    def test_negative_index(self, flow_engine):
        state = FlowState(patient_id="pt-001", step_index=-1)
        with pytest.raises(FlowStateError):
            flow_engine.reply(state, "Continue check-in")

    def test_unknown_flow_type(self, flow_engine):
        state = FlowState(patient_id="pt-001")
        state.flow_type = "teleport"
        with pytest.raises(FlowStateError):
            flow_engine.current_step(state)


class TestReset:
    def test_reset_returns_to_greeting(self, flow_engine):
        state = _advance_to(flow_engine, "wearable_sync")
        flow_engine.reply(state, "Report sync issue")
        turn = flow_engine.reset(state)
        assert turn.state is state
        assert (state.flow_type, state.step_index) == (FlowType.NORMAL, 0)
        assert state.wellbeing_score is None
        assert not state.sync_issue_reported
        assert len(state.message_history) == 1

    def test_from_file_uses_packaged_definitions(self):
        engine = CheckInFlowEngine.from_file(clinician_name="Dr. Lee")
        assert "Dr. Lee" in engine.steps(FlowType.CALL)[0].content
