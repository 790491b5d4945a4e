"""Check-in flow engine: the conversational state machine.

State is ``(flow_type, step_index)`` held on a ``FlowState``. Branching is
driven by canonical ``OptionId`` values from the tables below, never by the
display labels, which live in the YAML flow definitions.

Transitions, in precedence order:

1. At the final step of a flow every option is a no-op.
2. Quick actions (ambulance, appointment, ...) jump to their dedicated flow.
3. On the symptom screen of the main flow, red-flag symptoms jump to the
   urgent or concern flow and raise a triage escalation.
4. On the medication step, refill / side-effect answers jump to their flow.
5. Anything else advances one step.

Free text never advances the flow; it is acknowledged and the current
prompt is repeated.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from cardiowatch.domains.triage.domain_logic.flow_loader import (
    FlowDefinitions,
    FlowOption,
    FlowStep,
    load_flow_file,
)
from cardiowatch.domains.triage.domain_logic.models import (
    ChatMessage,
    FlowEscalation,
    FlowState,
    FlowType,
    TriageLevel,
)

logger = logging.getLogger(__name__)


class FlowStateError(Exception):
    """Raised for an unknown flow type or out-of-range step index.

    These indicate a programming error in the caller; the engine never
    substitutes a plausible next step.
    """


class OptionId(str, Enum):
    """Option identifiers that change control flow."""

    REQUEST_AMBULANCE = "request_ambulance"
    REQUEST_APPOINTMENT = "request_appointment"
    REQUEST_MEDICINE = "request_medicine"
    SIDE_EFFECTS = "side_effects"
    CALL_CLINICIAN = "call_clinician"
    FILE_COMPLAINT = "file_complaint"
    CONTINUE_CHECKIN = "continue_checkin"
    CHEST_PAIN = "chest_pain"
    BREATHLESS_AT_REST = "breathless_at_rest"
    FAINTING = "fainting"
    NONE_OF_THESE = "none_of_these"
    REPORT_SYNC_ISSUE = "report_sync_issue"
    NEED_REFILL = "need_refill"
    HAVING_SIDE_EFFECTS = "having_side_effects"


@dataclass(frozen=True)
class Escalation:
    """Triage signal attached to a transition."""

    level: TriageLevel
    headline: str


# Step keys the engine branches on (see flows/checkin.yaml).
WELLBEING_STEP = "wellbeing"
SYMPTOM_SCREEN_STEP = "symptom_screen"
WEARABLE_SYNC_STEP = "wearable_sync"
MEDICATION_STEP = "medications"

QUICK_ACTIONS: dict[OptionId, FlowType] = {
    OptionId.REQUEST_AMBULANCE: FlowType.AMBULANCE,
    OptionId.REQUEST_APPOINTMENT: FlowType.APPOINTMENT,
    OptionId.REQUEST_MEDICINE: FlowType.REFILL,
    OptionId.SIDE_EFFECTS: FlowType.SIDE_EFFECT,
    OptionId.CALL_CLINICIAN: FlowType.CALL,
    OptionId.FILE_COMPLAINT: FlowType.COMPLAINT,
}

SYMPTOM_TRANSITIONS: dict[OptionId, FlowType] = {
    OptionId.CHEST_PAIN: FlowType.URGENT,
    OptionId.BREATHLESS_AT_REST: FlowType.CONCERN,
    OptionId.FAINTING: FlowType.CONCERN,
}

SYMPTOM_ESCALATIONS: dict[OptionId, Escalation] = {
    OptionId.CHEST_PAIN: Escalation(TriageLevel.RED, "Chest pain or pressure reported"),
    OptionId.BREATHLESS_AT_REST: Escalation(TriageLevel.AMBER, "Shortness of breath at rest reported"),
    OptionId.FAINTING: Escalation(TriageLevel.AMBER, "Fainting or near-fainting reported"),
}

MEDICATION_TRANSITIONS: dict[OptionId, FlowType] = {
    OptionId.NEED_REFILL: FlowType.REFILL,
    OptionId.HAVING_SIDE_EFFECTS: FlowType.SIDE_EFFECT,
}

# Quick actions that alert the care team on their own.
QUICK_ACTION_ESCALATIONS: dict[OptionId, Escalation] = {
    OptionId.REQUEST_AMBULANCE: Escalation(TriageLevel.RED, "Ambulance requested"),
}


def _as_control(option_id: str | None) -> OptionId | None:
    if option_id is None:
        return None
    try:
        return OptionId(option_id)
    except ValueError:
        return None


@dataclass
class FlowTurn:
    """Outcome of one patient reply."""

    state: FlowState
    prompt: FlowStep | None
    escalation: FlowEscalation | None = None
    acknowledgement: str | None = None
    option_id: str | None = None
    advanced: bool = False
    terminal: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.to_dict(),
            "prompt": self.prompt.to_dict() if self.prompt else None,
            "escalation": self.escalation.to_dict() if self.escalation else None,
            "acknowledgement": self.acknowledgement,
            "option_id": self.option_id,
            "advanced": self.advanced,
            "terminal": self.terminal,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CheckInFlowEngine:
    """Drives check-in conversations over a fixed set of flow definitions.

    The engine itself is stateless; each conversation's position lives on
    the ``FlowState`` passed in, which the engine mutates.

    Usage::

        engine = CheckInFlowEngine.from_file()
        turn = engine.start("pt-001")
        turn = engine.reply(turn.state, "Continue check-in")
    """

    def __init__(
        self,
        definitions: FlowDefinitions,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._defs = definitions
        self._clock = clock

        missing = [t.value for t in FlowType if not definitions.flows.get(t)]
        if missing:
            raise FlowStateError(f"Flow definitions missing flows: {missing}")
        if not any(s.key == SYMPTOM_SCREEN_STEP for s in definitions.flows[FlowType.NORMAL]):
            raise FlowStateError("Main flow has no symptom screening step")

        # Quick actions are recognized from any step, so index their labels globally.
        self._quick_action_options: dict[str, FlowOption] = {}
        for steps in definitions.flows.values():
            for step in steps:
                for option in step.options:
                    if _as_control(option.id) in QUICK_ACTIONS:
                        self._quick_action_options.setdefault(option.id, option)

    @classmethod
    def from_file(cls, path=None, *, clinician_name: str | None = None, **kwargs) -> CheckInFlowEngine:
        """Build an engine from a YAML file (packaged definitions by default)."""
        load_kwargs: dict[str, Any] = {}
        if clinician_name:
            load_kwargs["clinician_name"] = clinician_name
        definitions = load_flow_file(path, **load_kwargs) if path else load_flow_file(**load_kwargs)
        return cls(definitions, **kwargs)

    @property
    def definitions(self) -> FlowDefinitions:
        return self._defs

    # ------------------------------------------------------------------
    # State inspection
    # ------------------------------------------------------------------

    def steps(self, flow_type: FlowType | str) -> tuple[FlowStep, ...]:
        try:
            return self._defs.flows[FlowType(flow_type)]
        except (ValueError, KeyError) as exc:
            raise FlowStateError(f"Unknown flow type: {flow_type!r}") from exc

    def current_step(self, state: FlowState) -> FlowStep:
        """Return the step ``state`` points at.

        Raises:
            FlowStateError: If the flow type or step index is invalid.
        """
        steps = self.steps(state.flow_type)
        if not 0 <= state.step_index < len(steps):
            raise FlowStateError(
                f"Step {state.step_index} out of range for flow {state.flow_type!r} "
                f"({len(steps)} steps)"
            )
        return steps[state.step_index]

    def is_terminal(self, state: FlowState) -> bool:
        self.current_step(state)
        return state.step_index == len(self.steps(state.flow_type)) - 1

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start(self, patient_id: str) -> FlowTurn:
        """Open a new conversation at the first step of the main flow."""
        state = FlowState(patient_id=patient_id)
        return self._present(state)

    def reset(self, state: FlowState) -> FlowTurn:
        """Restart ``state`` from the beginning, discarding its history."""
        state.flow_type = FlowType.NORMAL
        state.step_index = 0
        state.message_history.clear()
        state.wellbeing_score = None
        state.sync_issue_reported = False
        logger.info("Check-in reset for patient %s", state.patient_id)
        return self._present(state)

    # ------------------------------------------------------------------
    # Replies
    # ------------------------------------------------------------------

    def reply(self, state: FlowState, text: str) -> FlowTurn:
        """Handle a patient message, treating recognized options as selections."""
        if not text or not text.strip():
            raise ValueError("Reply text must not be empty")
        step = self.current_step(state)
        if self._match_option(step, text) is not None:
            return self.select_option(state, text)
        return self.free_text(state, text)

    def select_option(self, state: FlowState, option: str) -> FlowTurn:
        """Apply a selected option (by id or label) to ``state``.

        Text that matches neither an offered option nor a quick action is
        handled as free text.
        """
        step = self.current_step(state)
        matched = self._match_option(step, option)
        if matched is None:
            return self.free_text(state, option)

        self._record(state, "patient", matched.label)
        control = _as_control(matched.id)

        if self.is_terminal(state):
            return FlowTurn(state=state, prompt=None, option_id=matched.id, terminal=True)

        if control in QUICK_ACTIONS:
            return self._switch(
                state, QUICK_ACTIONS[control], matched, QUICK_ACTION_ESCALATIONS.get(control)
            )

        if state.flow_type is FlowType.NORMAL and step.key == SYMPTOM_SCREEN_STEP:
            if control in SYMPTOM_TRANSITIONS:
                return self._switch(
                    state, SYMPTOM_TRANSITIONS[control], matched, SYMPTOM_ESCALATIONS[control]
                )

        if step.key == MEDICATION_STEP and control in MEDICATION_TRANSITIONS:
            return self._switch(state, MEDICATION_TRANSITIONS[control], matched)

        acknowledgement = None
        if step.key == WEARABLE_SYNC_STEP and control is OptionId.REPORT_SYNC_ISSUE:
            state.sync_issue_reported = True
            acknowledgement = self._defs.sync_issue_acknowledgement
            logger.info("Device sync issue reported by patient %s", state.patient_id)
        if step.key == WELLBEING_STEP and matched.value is not None:
            state.wellbeing_score = int(matched.value)

        state.step_index += 1
        return self._present(state, option_id=matched.id, acknowledgement=acknowledgement)

    def free_text(self, state: FlowState, text: str) -> FlowTurn:
        """Record free text, acknowledge it and repeat the current prompt."""
        if not text or not text.strip():
            raise ValueError("Reply text must not be empty")
        step = self.current_step(state)
        terminal = self.is_terminal(state)

        self._record(state, "patient", text.strip())
        acknowledgement = self._defs.free_text_acknowledgement
        self._record(state, "agent", acknowledgement)

        return FlowTurn(
            state=state,
            prompt=None if terminal else step,
            acknowledgement=acknowledgement,
            terminal=terminal,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _match_option(self, step: FlowStep, text: str) -> FlowOption | None:
        offered = step.find_option(text)
        if offered is not None:
            return offered
        return next(
            (o for o in self._quick_action_options.values() if o.matches(text)), None
        )

    def _switch(
        self,
        state: FlowState,
        flow_type: FlowType,
        option: FlowOption,
        escalation: Escalation | None = None,
    ) -> FlowTurn:
        previous = state.flow_type
        state.flow_type = flow_type
        state.step_index = 0

        signal = None
        if escalation is not None:
            signal = FlowEscalation(
                cause=option.id,
                level=escalation.level,
                flow_type=flow_type,
                headline=escalation.headline,
                description=(
                    f"Patient answered '{option.label}' during check-in; "
                    f"switched from {previous.value} to {flow_type.value} flow."
                ),
                detected_at=self._clock(),
            )
            logger.info(
                "Check-in escalation for patient %s: %s -> %s",
                state.patient_id, option.id, escalation.level.value,
            )
        return self._present(state, option_id=option.id, escalation=signal)

    def _present(
        self,
        state: FlowState,
        *,
        option_id: str | None = None,
        acknowledgement: str | None = None,
        escalation: FlowEscalation | None = None,
    ) -> FlowTurn:
        step = self.current_step(state)
        if acknowledgement:
            self._record(state, "agent", acknowledgement)
        self._record(state, "agent", step.content, step.option_labels)
        return FlowTurn(
            state=state,
            prompt=step,
            escalation=escalation,
            acknowledgement=acknowledgement,
            option_id=option_id,
            advanced=option_id is not None,
            terminal=self.is_terminal(state),
        )

    def _record(self, state: FlowState, role: str, content: str, options=None) -> None:
        state.message_history.append(ChatMessage(
            role=role,
            content=content,
            timestamp=self._clock(),
            options=list(options or []),
        ))
