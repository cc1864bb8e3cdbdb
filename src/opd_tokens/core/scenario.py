"""
Scenario replay: drive a coordinator from a declarative booking script.

A scenario is a JSON object with a ``resources`` list and ordered ``steps``::

    {
      "resources": [{"id": "smith-0900", "capacity": 2, "label": "Dr. Smith"}],
      "steps": [
        {"op": "submit", "resource": "smith-0900", "category": "WALK_IN", "ref": "A"},
        {"op": "release", "ref": "A", "outcome": "FULFILLED"},
        {"op": "reallocate", "resource": "smith-0900"}
      ]
    }

``ref`` binds a human name to the token id assigned on submit so later
steps can release it. Engine errors propagate unchanged; malformed scripts
raise ScenarioError.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from opd_tokens.core.coordinator import AllocationCoordinator
from opd_tokens.core.errors import AllocationError, ErrorCode, ErrorType

logger = logging.getLogger(__name__)

__all__ = ["ScenarioError", "BUILTIN_SCENARIO", "load_scenario", "run_scenario"]


class ScenarioError(AllocationError):
    """A scenario script is malformed."""

    code = ErrorCode.VALIDATION_ERROR
    error_type = ErrorType.VALIDATION
    remediation = "Fix the scenario file; see opd_tokens.core.scenario for the format"

    def __init__(self, message: str, step: Optional[int] = None):
        prefix = f"step {step}: " if step is not None else ""
        super().__init__(prefix + message)
        self.step = step

    def details(self) -> Dict[str, Any]:
        return {"step": self.step}


def _patient(name: str, contact: str, uid: str) -> Dict[str, str]:
    return {"patient_name": name, "contact_number": contact, "user_id_number": uid}


# Two doctors' morning slots: a capacity-2 slot that fills, waitlists and
# takes an emergency, and a capacity-1 slot that backfills on cancellation.
BUILTIN_SCENARIO: Dict[str, Any] = {
    "resources": [
        {"id": "smith-0900", "capacity": 2, "label": "Dr. Smith (Cardiology) 09:00-10:00"},
        {"id": "jones-1000", "capacity": 1, "label": "Dr. Jones (Orthopedics) 10:00-11:00"},
    ],
    "steps": [
        {"op": "submit", "resource": "smith-0900", "category": "WALK_IN", "ref": "A",
         "metadata": _patient("Patient A", "555-0001", "ID001")},
        {"op": "submit", "resource": "smith-0900", "category": "ONLINE", "ref": "B",
         "metadata": _patient("Patient B", "555-0002", "ID002")},
        {"op": "submit", "resource": "smith-0900", "category": "WALK_IN", "ref": "C",
         "metadata": _patient("Patient C", "555-0003", "ID003")},
        {"op": "submit", "resource": "smith-0900", "category": "EMERGENCY", "ref": "D",
         "metadata": _patient("Patient D", "911-0000", "EMERG001")},
        {"op": "release", "ref": "B", "outcome": "CANCELLED"},
        {"op": "release", "ref": "D", "outcome": "FULFILLED"},
        {"op": "submit", "resource": "jones-1000", "category": "ONLINE", "ref": "J1",
         "metadata": _patient("Patient J1", "555-1001", "ID101")},
        {"op": "submit", "resource": "jones-1000", "category": "WALK_IN", "ref": "J2",
         "metadata": _patient("Patient J2", "555-1002", "ID102")},
        {"op": "release", "ref": "J1", "outcome": "CANCELLED"},
    ],
}


def load_scenario(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a scenario JSON file.

    Raises:
        ScenarioError: If the file is unreadable or not a JSON object
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ScenarioError(f"Cannot read scenario file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ScenarioError(f"Scenario file {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ScenarioError(f"Scenario file {path} must contain a JSON object")
    return data


def _require(step: Mapping[str, Any], key: str, index: int) -> Any:
    if key not in step:
        raise ScenarioError(f"missing {key!r}", step=index)
    return step[key]


def run_scenario(
    scenario: Mapping[str, Any],
    coordinator: Optional[AllocationCoordinator] = None,
) -> Dict[str, Any]:
    """Replay a scenario and report what happened.

    Args:
        scenario: Parsed scenario (see module docstring)
        coordinator: Coordinator to drive; a fresh in-memory one built from
            the global config when omitted. Its resource store must
            support ``add``.

    Returns:
        Dict with per-step results, token refs, a final snapshot of every
        resource and coordinator stats
    """
    coordinator = coordinator or AllocationCoordinator.from_config()
    store = coordinator.resources
    if not hasattr(store, "add"):
        raise ScenarioError("coordinator's resource store cannot register resources")

    resource_ids: List[Any] = []
    for entry in scenario.get("resources", []):
        if not isinstance(entry, Mapping) or "id" not in entry or "capacity" not in entry:
            raise ScenarioError(f"resource entries need 'id' and 'capacity': {entry!r}")
        try:
            store.add(entry["id"], entry["capacity"], label=entry.get("label"))
        except ValueError as e:
            raise ScenarioError(str(e)) from e
        resource_ids.append(entry["id"])

    refs: Dict[str, int] = {}
    results: List[Dict[str, Any]] = []
    for index, step in enumerate(scenario.get("steps", [])):
        if not isinstance(step, Mapping):
            raise ScenarioError("each step must be an object", step=index)
        op = _require(step, "op", index)

        if op == "submit":
            result = coordinator.submit(
                _require(step, "resource", index),
                _require(step, "category", index),
                step.get("metadata"),
            )
            if "ref" in step:
                refs[str(step["ref"])] = result.token_id
            outcome = result.to_dict()
        elif op == "release":
            if "ref" in step:
                ref = str(step["ref"])
                if ref not in refs:
                    raise ScenarioError(f"unknown ref {ref!r}", step=index)
                token_id = refs[ref]
            else:
                token_id = _require(step, "token_id", index)
            outcome = coordinator.release(
                token_id, _require(step, "outcome", index)
            ).to_dict()
        elif op == "reallocate":
            promoted = coordinator.reallocate(_require(step, "resource", index))
            outcome = {"promoted": promoted.to_dict() if promoted else None}
        else:
            raise ScenarioError(f"unknown op {op!r}", step=index)

        logger.debug(f"Scenario step {index} ({op}) applied")
        results.append({"step": index, "op": op, "ref": step.get("ref"), **outcome})

    return {
        "steps": results,
        "refs": refs,
        "resources": [coordinator.snapshot(rid) for rid in resource_ids],
        "stats": coordinator.stats.to_dict(),
    }
