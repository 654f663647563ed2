"""
Ordered (action, compensation) steps with reverse-order rollback.

Each action's return value is handed to its compensation, so a step that
creates a row can delete exactly that row again. A step without a
compensation is only allowed last (nothing can fail after it).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable


logger = logging.getLogger(__name__)


class SagaFailed(Exception):
    """
    A step failed and compensations ran.

    step: name of the failing step
    cause: the exception it raised
    compensation_errors: (step name, exception) for compensations that
    themselves failed; empty when rollback was clean
    """

    def __init__(self, step: str, cause: BaseException, compensation_errors=None):
        super().__init__(f"Step '{step}' failed: {cause}")
        self.step = step
        self.cause = cause
        self.compensation_errors = list(compensation_errors or [])

    @property
    def rolled_back_cleanly(self) -> bool:
        return not self.compensation_errors


@dataclass
class SagaStep:
    name: str
    action: Callable[[], Any]
    compensation: Callable[[Any], None] | None = None


class Saga:
    def __init__(self, name: str):
        self.name = name
        self._steps: list[SagaStep] = []

    def step(self, name: str, action: Callable[[], Any], compensation: Callable[[Any], None] | None = None) -> "Saga":
        self._steps.append(SagaStep(name, action, compensation))
        return self

    def run(self) -> dict[str, Any]:
        """
        Execute every step. Returns {step name: action result}.

        On failure, compensates completed steps newest first and raises
        SagaFailed. A failing compensation is logged and the remaining
        compensations still run.
        """
        results: dict[str, Any] = {}
        completed: list[tuple[SagaStep, Any]] = []

        for step in self._steps:
            try:
                result = step.action()
            except Exception as exc:
                logger.warning("Saga %s: step %s failed, compensating", self.name, step.name)
                errors = self._compensate(completed)
                raise SagaFailed(step.name, exc, errors) from exc
            results[step.name] = result
            completed.append((step, result))

        return results

    def _compensate(self, completed: list[tuple[SagaStep, Any]]) -> list[tuple[str, BaseException]]:
        errors = []
        for step, result in reversed(completed):
            if step.compensation is None:
                continue
            try:
                step.compensation(result)
            except Exception as exc:
                logger.exception("Saga %s: compensation for %s failed", self.name, step.name)
                errors.append((step.name, exc))
        return errors
