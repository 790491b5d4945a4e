"""Check-in flow loader: reads conversation display text from YAML."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from cardiowatch.domains.triage.domain_logic.models import FlowType

logger = logging.getLogger(__name__)

# Packaged definitions live under src/cardiowatch/domains/triage/flows/
DEFAULT_FLOW_FILE = Path(__file__).resolve().parent.parent / "flows" / "checkin.yaml"

DEFAULT_CLINICIAN_NAME = "Dr. X"


class FlowDefinitionError(Exception):
    """Raised when a flow definition file is missing or malformed."""


@dataclass(frozen=True)
class FlowOption:
    """A selectable answer: stable ``id`` plus patient-facing ``label``."""

    id: str
    label: str
    value: int | None = None

    def matches(self, text: str) -> bool:
        needle = text.strip().casefold()
        return needle == self.id.casefold() or needle == self.label.casefold()


@dataclass(frozen=True)
class FlowStep:
    """One agent prompt in a flow."""

    content: str
    options: tuple[FlowOption, ...] = ()
    key: str | None = None

    @property
    def option_labels(self) -> list[str]:
        return [o.label for o in self.options]

    def find_option(self, text: str) -> FlowOption | None:
        return next((o for o in self.options if o.matches(text)), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "content": self.content,
            "options": [{"id": o.id, "label": o.label} for o in self.options],
        }


@dataclass(frozen=True)
class FlowDefinitions:
    """All flows of the check-in plus the shared acknowledgement texts."""

    flows: dict[FlowType, tuple[FlowStep, ...]]
    free_text_acknowledgement: str
    sync_issue_acknowledgement: str
    version: str = ""
    source: str = field(default="", compare=False)


def load_flow_file(
    path: str | Path = DEFAULT_FLOW_FILE,
    *,
    clinician_name: str = DEFAULT_CLINICIAN_NAME,
) -> FlowDefinitions:
    """Parse a YAML flow file into ``FlowDefinitions``.

    Every ``FlowType`` must be defined and no unknown flow names are
    accepted, so the engine never has to guess a missing flow.

    Raises:
        FlowDefinitionError: If the file is unreadable or incomplete.
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data: dict[str, Any] = yaml.safe_load(f) or {}
    except OSError as exc:
        raise FlowDefinitionError(f"Cannot read flow definitions from {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise FlowDefinitionError(f"Invalid YAML in {path}: {exc}") from exc

    raw_flows = data.get("flows")
    if not isinstance(raw_flows, dict):
        raise FlowDefinitionError(f"{path}: missing 'flows' mapping")

    known = {t.value for t in FlowType}
    unknown = set(raw_flows) - known
    if unknown:
        raise FlowDefinitionError(f"{path}: unknown flow types {sorted(unknown)}")
    missing = known - set(raw_flows)
    if missing:
        raise FlowDefinitionError(f"{path}: missing flow types {sorted(missing)}")

    def render(text: str) -> str:
        return text.strip().replace("{clinician_name}", clinician_name)

    flows: dict[FlowType, tuple[FlowStep, ...]] = {}
    for name, raw_steps in raw_flows.items():
        if not raw_steps:
            raise FlowDefinitionError(f"{path}: flow {name!r} has no steps")
        flows[FlowType(name)] = tuple(
            _parse_step(step, name, index, render) for index, step in enumerate(raw_steps)
        )

    definitions = FlowDefinitions(
        flows=flows,
        free_text_acknowledgement=render(data.get("free_text_acknowledgement", "")),
        sync_issue_acknowledgement=render(data.get("sync_issue_acknowledgement", "")),
        version=str(data.get("version", "")),
        source=str(path),
    )
    logger.info(
        "Loaded %d check-in flows from %s (v%s)", len(flows), path, definitions.version
    )
    return definitions


def _parse_step(raw: Any, flow_name: str, index: int, render) -> FlowStep:
    if not isinstance(raw, dict) or not raw.get("content"):
        raise FlowDefinitionError(f"Flow {flow_name!r} step {index} has no content")

    options: list[FlowOption] = []
    seen: set[str] = set()
    for raw_option in raw.get("options") or []:
        try:
            option = FlowOption(
                id=str(raw_option["id"]),
                label=render(str(raw_option["label"])),
                value=raw_option.get("value"),
            )
        except (KeyError, TypeError) as exc:
            raise FlowDefinitionError(
                f"Flow {flow_name!r} step {index} has a malformed option: {raw_option!r}"
            ) from exc
        if option.id in seen:
            raise FlowDefinitionError(
                f"Flow {flow_name!r} step {index} repeats option id {option.id!r}"
            )
        seen.add(option.id)
        options.append(option)

    return FlowStep(content=render(raw["content"]), options=tuple(options), key=raw.get("key"))
