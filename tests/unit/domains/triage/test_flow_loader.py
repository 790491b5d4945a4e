"""Tests for the check-in flow YAML loader."""

from __future__ import annotations

import pytest
import yaml

from cardiowatch.domains.triage.domain_logic.flow_loader import (
    DEFAULT_FLOW_FILE,
    FlowDefinitionError,
    load_flow_file,
)
from cardiowatch.domains.triage.domain_logic.models import FlowType


def _minimal_document() -> dict:
    return {
        "version": "0.0.1",
        "free_text_acknowledgement": "Noted.",
        "sync_issue_acknowledgement": "Sync issue logged.",
        "flows": {t.value: [{"content": f"{t.value} step"}] for t in FlowType},
    }


def _write(tmp_path, document) -> str:
    path = tmp_path / "flows.yaml"
    path.write_text(yaml.safe_dump(document))
    return str(path)


class TestPackagedDefinitions:
    def test_all_flow_types_present(self):
        defs = load_flow_file()
        assert set(defs.flows) == set(FlowType)
        assert defs.source == str(DEFAULT_FLOW_FILE)

    def test_clinician_name_rendered(self):
        defs = load_flow_file(clinician_name="Dr. Okafor")
        refill = defs.flows[FlowType.REFILL]
        assert "Dr. Okafor" in refill[0].content
        assert "{clinician_name}" not in refill[1].content

    def test_default_clinician_name(self):
        defs = load_flow_file()
        assert "Dr. X" in defs.flows[FlowType.CALL][0].content

    def test_main_flow_step_keys(self):
        defs = load_flow_file()
        keys = [s.key for s in defs.flows[FlowType.NORMAL]]
        assert keys == [
            "greeting", "wellbeing", "symptom_screen", "wearable_sync",
            "activity", "medications", "additional_help", "final_summary",
        ]

    def test_options_carry_ids_and_labels(self):
        greeting = load_flow_file().flows[FlowType.NORMAL][0]
        option = greeting.find_option("Continue check-in")
        assert option.id == "continue_checkin"
        assert greeting.find_option("continue_checkin") is option
        assert greeting.find_option("  CONTINUE CHECK-IN ") is option

    def test_wellbeing_options_have_values(self):
        wellbeing = load_flow_file().flows[FlowType.NORMAL][1]
        assert [o.value for o in wellbeing.options] == [8, 6, 4, 2]

    def test_urgent_flow_is_single_step_without_options(self):
        urgent = load_flow_file().flows[FlowType.URGENT]
        assert len(urgent) == 1
        assert urgent[0].options == ()

    def test_acknowledgements_loaded(self):
        defs = load_flow_file()
        assert defs.free_text_acknowledgement.startswith("Thank you for sharing")
        assert "sync issue" in defs.sync_issue_acknowledgement


class TestValidation:
    def test_minimal_document_loads(self, tmp_path):
        defs = load_flow_file(_write(tmp_path, _minimal_document()))
        assert defs.version == "0.0.1"
        assert defs.flows[FlowType.SIDE_EFFECT][0].content == "sideEffect step"

    def test_missing_flow_type(self, tmp_path):
        doc = _minimal_document()
        del doc["flows"]["ambulance"]
        with pytest.raises(FlowDefinitionError, match="missing flow types"):
            load_flow_file(_write(tmp_path, doc))

    def test_unknown_flow_type(self, tmp_path):
        doc = _minimal_document()
        doc["flows"]["teleport"] = [{"content": "?"}]
        with pytest.raises(FlowDefinitionError, match="unknown flow types"):
            load_flow_file(_write(tmp_path, doc))

    def test_empty_flow(self, tmp_path):
        doc = _minimal_document()
        doc["flows"]["call"] = []
        with pytest.raises(FlowDefinitionError, match="has no steps"):
            load_flow_file(_write(tmp_path, doc))

    def test_step_without_content(self, tmp_path):
        doc = _minimal_document()
        doc["flows"]["call"] = [{"key": "call_time"}]
        with pytest.raises(FlowDefinitionError, match="no content"):
            load_flow_file(_write(tmp_path, doc))

    def test_malformed_option(self, tmp_path):
        doc = _minimal_document()
        doc["flows"]["call"] = [{"content": "When?", "options": [{"label": "Now"}]}]
        with pytest.raises(FlowDefinitionError, match="malformed option"):
            load_flow_file(_write(tmp_path, doc))

    def test_duplicate_option_ids(self, tmp_path):
        doc = _minimal_document()
        doc["flows"]["call"] = [{
            "content": "When?",
            "options": [{"id": "now", "label": "Now"}, {"id": "now", "label": "Right now"}],
        }]
        with pytest.raises(FlowDefinitionError, match="repeats option id"):
            load_flow_file(_write(tmp_path, doc))

    def test_missing_flows_mapping(self, tmp_path):
        with pytest.raises(FlowDefinitionError, match="missing 'flows'"):
            load_flow_file(_write(tmp_path, {"version": "1"}))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FlowDefinitionError, match="Cannot read"):
            load_flow_file(tmp_path / "absent.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("flows: [unclosed")
        with pytest.raises(FlowDefinitionError, match="Invalid YAML"):
            load_flow_file(path)
