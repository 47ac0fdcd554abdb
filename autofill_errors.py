# autofill_errors.py
from __future__ import annotations

from typing import Any, List, Optional


class AutofillError(Exception):
    """Base class for every error the engine raises on purpose."""


class PlanValidationError(AutofillError):
    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        summary = "; ".join(self.errors) or "Plan is invalid"
        super().__init__(f"Invalid automation plan: {summary}")


class RunAlreadyActive(AutofillError):
    def __init__(self, state: str):
        self.state = state
        super().__init__(f"Autofill is already running (state={state})")


class ElementNotFound(AutofillError):
    def __init__(self, target: str):
        self.target = target
        super().__init__(f"Element not found: {target}")


class StepTimeout(AutofillError):
    def __init__(self, target: str, timeout_ms: int):
        self.target = target
        self.timeout_ms = timeout_ms
        super().__init__(f"Timeout waiting for element: {target} ({timeout_ms}ms)")


class InterventionRequired(AutofillError):
    """A manual intervention was requested but never resolved in time."""

    def __init__(self, message: str, timeout_ms: Optional[int] = None):
        self.message = message
        self.timeout_ms = timeout_ms
        detail = f" within {timeout_ms}ms" if timeout_ms is not None else ""
        super().__init__(f"User intervention not completed{detail}: {message}")


class RunCancelled(AutofillError):
    def __init__(self, message: str = "Autofill cancelled"):
        super().__init__(message)


class UnhandledStepError(AutofillError):
    def __init__(self, step_index: int, step: Any, cause: Optional[BaseException] = None):
        self.step_index = step_index
        self.step = step
        self.cause = cause
        label = getattr(step, "description", "") or f"step {step_index + 1}"
        message = f"Failed to execute step: {label}"
        if cause is not None and str(cause):
            message += f" ({cause})"
        super().__init__(message)


class InvalidRunTransition(AutofillError):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Run cannot move from {current} to {target}")


class InvalidStatusTransition(AutofillError):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Submission cannot move from {current} to {target}")


class SubmissionNotFound(AutofillError):
    def __init__(self, submission_id: str):
        self.submission_id = submission_id
        super().__init__(f"Submission not found: {submission_id}")
