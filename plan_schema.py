# plan_schema.py
"""Automation plan model: typed steps, ingestion of generator output, validation.

A plan arrives as JSON (usually straight from the plan generator, sometimes
wrapped in a Markdown fence). ``plan_from_dict`` turns it into one dataclass
per step kind so the interpreter only ever sees the fields a kind needs.
``validate_plan`` is the structural gate a controller runs before anything
touches the page.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field, replace
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from autofill_errors import PlanValidationError

NAVIGATE = "navigate"
TYPE = "type"
CLICK = "click"
SELECT = "select"
WAIT = "wait"
PAUSE_FOR_INPUT = "pause_for_input"

STEP_KINDS: Tuple[str, ...] = (NAVIGATE, TYPE, CLICK, SELECT, WAIT, PAUSE_FOR_INPUT)
KINDS_REQUIRING_TARGET = (TYPE, CLICK, SELECT, WAIT)
KINDS_REQUIRING_VALUE = (TYPE, SELECT)
DEFAULT_CONFIDENCE = 1.0


@dataclass(frozen=True)
class Step:
    description: str = ""
    confidence: float = DEFAULT_CONFIDENCE
    alternatives: Tuple[str, ...] = ()

    kind: ClassVar[str] = ""

    @property
    def target(self) -> Optional[str]:
        return None

    @property
    def value(self) -> Optional[str]:
        return None

    def retarget(self, target: str) -> "Step":
        # steps without a target re-run unchanged
        return self

    def label(self, index: int, total: int) -> str:
        return self.description or f"Step {index + 1}/{total}"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.kind,
            "description": self.description,
            "confidence": self.confidence,
            "alternatives": list(self.alternatives),
        }
        if self.target is not None:
            data["target"] = self.target
        if self.value is not None:
            data["value"] = self.value
        return data


@dataclass(frozen=True)
class NavigateStep(Step):
    url: str = ""

    kind: ClassVar[str] = NAVIGATE

    @property
    def value(self) -> Optional[str]:
        return self.url


@dataclass(frozen=True)
class _TargetedStep(Step):
    selector: str = ""

    @property
    def target(self) -> Optional[str]:
        return self.selector

    def retarget(self, target: str) -> "Step":
        return replace(self, selector=target)


@dataclass(frozen=True)
class TypeStep(_TargetedStep):
    text: str = ""

    kind: ClassVar[str] = TYPE

    @property
    def value(self) -> Optional[str]:
        return self.text


@dataclass(frozen=True)
class ClickStep(_TargetedStep):
    kind: ClassVar[str] = CLICK


@dataclass(frozen=True)
class SelectStep(_TargetedStep):
    option: str = ""

    kind: ClassVar[str] = SELECT

    @property
    def value(self) -> Optional[str]:
        return self.option


@dataclass(frozen=True)
class WaitStep(Step):
    """Either waits for ``selector`` to exist or sleeps ``duration_ms``."""

    selector: Optional[str] = None
    timeout_ms: Optional[int] = None
    duration_ms: Optional[int] = None

    kind: ClassVar[str] = WAIT

    @property
    def target(self) -> Optional[str]:
        return self.selector

    @property
    def value(self) -> Optional[str]:
        return None if self.duration_ms is None else str(self.duration_ms)

    def retarget(self, target: str) -> "Step":
        return replace(self, selector=target)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.timeout_ms is not None:
            data["timeout"] = self.timeout_ms
        return data


@dataclass(frozen=True)
class PauseForInputStep(Step):
    kind: ClassVar[str] = PAUSE_FOR_INPUT


@dataclass(frozen=True)
class UnknownStep(Step):
    """Keeps an unrecognised step around so validation can name it."""

    type_name: str = ""
    raw_target: Optional[str] = None
    raw_value: Optional[str] = None

    @property
    def target(self) -> Optional[str]:
        return self.raw_target

    @property
    def value(self) -> Optional[str]:
        return self.raw_value

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["type"] = self.type_name
        return data


@dataclass(frozen=True)
class Plan:
    steps: Tuple[Step, ...] = ()
    warnings: Tuple[str, ...] = ()
    captcha_likely: bool = False

    def __len__(self) -> int:
        return len(self.steps)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "steps": [step.to_dict() for step in self.steps],
            "warnings": list(self.warnings),
            "captchaLikely": self.captcha_likely,
        }


@dataclass
class PlanValidation:
    valid: bool
    errors: List[str] = field(default_factory=list)


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def _parse_ms(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return max(0, int(float(value)))
    except (TypeError, ValueError):
        return None


def _parse_confidence(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return DEFAULT_CONFIDENCE
    try:
        return float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE


def _parse_alternatives(value: Any) -> Tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(item) for item in value if item)


def step_from_dict(raw: Mapping[str, Any]) -> Step:
    """Build the typed step for one raw plan entry.

    ``target`` and the generator's older ``selector`` key are interchangeable.
    """
    kind = raw.get("type")
    target = _clean_text(raw.get("target", raw.get("selector")))
    value = _clean_text(raw.get("value"))
    common = {
        "description": str(raw.get("description") or ""),
        "confidence": _parse_confidence(raw.get("confidence")),
        "alternatives": _parse_alternatives(raw.get("alternatives")),
    }

    if kind == NAVIGATE:
        return NavigateStep(url=value or "", **common)
    if kind == TYPE:
        return TypeStep(selector=target or "", text=value or "", **common)
    if kind == CLICK:
        return ClickStep(selector=target or "", **common)
    if kind == SELECT:
        return SelectStep(selector=target or "", option=value or "", **common)
    if kind == WAIT:
        return WaitStep(
            selector=target or None,
            timeout_ms=_parse_ms(raw.get("timeout")),
            duration_ms=_parse_ms(raw.get("value")),
            **common,
        )
    if kind == PAUSE_FOR_INPUT:
        return PauseForInputStep(**common)
    return UnknownStep(type_name=str(kind), raw_target=target, raw_value=value, **common)


def plan_from_dict(data: Mapping[str, Any]) -> Plan:
    steps = data.get("steps")
    if not isinstance(steps, (list, tuple)):
        raise PlanValidationError(["Plan must have a steps array"])
    warnings = data.get("warnings") or []
    if isinstance(warnings, str):
        warnings = [warnings]
    return Plan(
        steps=tuple(step_from_dict(entry if isinstance(entry, Mapping) else {}) for entry in steps),
        warnings=tuple(str(w) for w in warnings),
        captcha_likely=bool(data.get("captchaLikely", data.get("captcha_likely", False))),
    )


def _extract_first_json_block(text: str) -> str:
    cleaned = re.sub(r"```(?:json)?|```", "", text, flags=re.IGNORECASE).strip()
    m = re.search(r"\{[\s\S]*\}", cleaned)
    return (m.group(0) if m else cleaned).strip()


def parse_plan_text(text: str) -> Plan:
    """Parse generator output (raw JSON or a fenced JSON block) into a plan."""
    block = _extract_first_json_block(text or "")
    try:
        data = json.loads(block)
    except json.JSONDecodeError as exc:
        raise PlanValidationError([f"Plan is not valid JSON: {exc.msg}"]) from exc
    if not isinstance(data, dict):
        raise PlanValidationError(["Plan must be a JSON object"])
    return plan_from_dict(data)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_plan(candidate: Union[Plan, Mapping[str, Any]]) -> PlanValidation:
    """Structural check of a plan. Pure: never mutates ``candidate``."""
    if isinstance(candidate, Plan):
        steps: Sequence[Any] = [step.to_dict() for step in candidate.steps]
    elif isinstance(candidate, Mapping):
        steps = candidate.get("steps")
        if not isinstance(steps, (list, tuple)):
            return PlanValidation(valid=False, errors=["Plan must have a steps array"])
    else:
        return PlanValidation(valid=False, errors=["Plan must have a steps array"])

    errors: List[str] = []
    if not steps:
        errors.append("Plan must have at least one step")

    for index, raw in enumerate(steps):
        if not isinstance(raw, Mapping):
            errors.append(f"Step {index}: step must be an object")
            continue
        kind = raw.get("type")
        if kind not in STEP_KINDS:
            errors.append(f'Step {index}: invalid type "{kind}"')
            continue
        target = raw.get("target", raw.get("selector"))
        value = raw.get("value")
        if kind in KINDS_REQUIRING_TARGET and _is_blank(target):
            # a timed wait carries its duration instead of a target
            if not (kind == WAIT and _parse_ms(value) is not None):
                errors.append(f'Step {index}: missing target for type "{kind}"')
        if kind in KINDS_REQUIRING_VALUE and _is_blank(value):
            errors.append(f'Step {index}: missing value for type "{kind}"')

    return PlanValidation(valid=not errors, errors=errors)
