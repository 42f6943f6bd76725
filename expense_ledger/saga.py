"""
Compensating Saga

The record store has no cross-record transaction. A flow that writes
several dependent records runs them as a Saga: an ordered list of stages,
each with an optional compensation that undoes it.

GUARANTEES:
- Stages run one at a time, in order, each awaited before the next
- When a stage raises, every COMPLETED stage is compensated in reverse order
- A failing compensation is logged and unwinding continues
- No retries - the caller re-runs the whole saga if it wants to

The context dict is shared by every action and compensation. The value an
action returns is stored under the stage name.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)

SagaAction = Callable[[dict[str, Any]], Awaitable[Any]]


@dataclass
class SagaStage:
    """One forward step and the step that undoes it."""

    name: str
    action: SagaAction
    compensation: Optional[SagaAction] = None


@dataclass
class CompensationFailure:
    stage: str
    error: str


class SagaFailedError(Exception):
    """
    A stage failed and the saga unwound.

    Attributes:
        saga: Saga name
        stage: Name of the stage that raised
        error: The original exception
        compensated: Stages whose compensation ran successfully (in run order)
        compensation_failures: Compensations that themselves raised
    """

    def __init__(
        self,
        saga: str,
        stage: str,
        error: Exception,
        compensated: Optional[list[str]] = None,
        compensation_failures: Optional[list[CompensationFailure]] = None,
    ):
        self.saga = saga
        self.stage = stage
        self.error = error
        self.compensated = compensated or []
        self.compensation_failures = compensation_failures or []
        super().__init__(f"Saga '{saga}' failed at stage '{stage}': {error}")

    @property
    def fully_compensated(self) -> bool:
        return not self.compensation_failures


@dataclass
class Saga:
    """Ordered stages executed with reverse-order compensation."""

    name: str
    stages: list[SagaStage] = field(default_factory=list)

    def add_stage(
        self,
        name: str,
        action: SagaAction,
        compensation: Optional[SagaAction] = None,
    ) -> "Saga":
        """Append a stage; returns self so stages can be chained."""
        if any(stage.name == name for stage in self.stages):
            raise ValueError(f"Duplicate stage name: {name}")
        self.stages.append(SagaStage(name, action, compensation))
        return self

    async def run(self, context: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """
        Execute every stage.

        Returns:
            The shared context

        Raises:
            SagaFailedError: After compensating the completed stages
        """
        context = {} if context is None else context
        completed: list[SagaStage] = []

        for stage in self.stages:
            try:
                result = await stage.action(context)
            except Exception as error:
                logger.warning(
                    "saga_stage_failed",
                    saga=self.name,
                    stage=stage.name,
                    error=str(error),
                )
                compensated, failures = await self._compensate(completed, context)
                raise SagaFailedError(
                    saga=self.name,
                    stage=stage.name,
                    error=error,
                    compensated=compensated,
                    compensation_failures=failures,
                ) from error

            context[stage.name] = result
            completed.append(stage)

        return context

    async def _compensate(
        self,
        completed: list[SagaStage],
        context: dict[str, Any],
    ) -> tuple[list[str], list[CompensationFailure]]:
        compensated: list[str] = []
        failures: list[CompensationFailure] = []

        for stage in reversed(completed):
            if stage.compensation is None:
                continue
            try:
                await stage.compensation(context)
            except Exception as error:
                logger.error(
                    "saga_compensation_failed",
                    saga=self.name,
                    stage=stage.name,
                    error=str(error),
                )
                failures.append(CompensationFailure(stage.name, str(error)))
                continue
            logger.info("saga_compensated", saga=self.name, stage=stage.name)
            compensated.append(stage.name)

        return compensated, failures
