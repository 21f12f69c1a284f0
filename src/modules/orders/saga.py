"""Saga primitives used by the order orchestrator.

A ``Saga`` runs ``SagaStep`` objects in order.  Each step's result is
stored in the shared context under the step name so later steps can use
it.  When a step raises, the compensations of the steps that already
completed run in reverse order and the original error is re-raised.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)

Action = Callable[[Dict[str, Any]], Any]
Compensation = Callable[[Dict[str, Any], BaseException], None]


@dataclass(frozen=True)
class SagaStep:
    name: str
    action: Action
    compensation: Optional[Compensation] = None


class Saga:
    def __init__(self, name: str, steps: List[SagaStep]) -> None:
        self.name = name
        self.steps = list(steps)

    def run(self, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        context = {} if context is None else context
        log = logger.bind(saga=self.name)
        completed: List[SagaStep] = []

        for step in self.steps:
            try:
                context[step.name] = step.action(context)
            except Exception as exc:
                log.warning("saga.step_failed", step=step.name, error=str(exc))
                self._compensate(completed, context, exc, log)
                raise
            completed.append(step)

        log.info("saga.completed", steps=len(completed))
        return context

    @staticmethod
    def _compensate(completed, context, error, log) -> None:
        for step in reversed(completed):
            if step.compensation is None:
                continue
            try:
                step.compensation(context, error)
            except Exception as comp_exc:
                log.error(
                    "saga.compensation_failed",
                    step=step.name,
                    error=str(comp_exc),
                )
            else:
                log.info("saga.compensated", step=step.name)
