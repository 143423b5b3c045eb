"""
Recipe-cost propagation -- the fire-and-forget boundary after a purchase.

Responsibility:
    After a purchase document has been committed, every touched material's
    new cost must reach the (external) recipe-cost recomputation.  This
    module adapts that collaborator and isolates its failures.

Architecture position:
    Services layer.  Called by RecalculationOrchestrator strictly after
    commit; never inside the ledger transaction.

Invariants enforced:
    - A failing trigger never raises into the caller.  Each failure is
      logged once as ``recipe_cost_propagation_failed`` carrying a
      PropagationFailureError, and the remaining materials are still
      notified.
    - Propagation never touches the session.

Failure modes:
    - None surfaced.  See the log stream.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import Executor, Future
from typing import Protocol, runtime_checkable
from uuid import UUID

from ledger_kernel.exceptions import PropagationFailureError
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.recipe_cost")


@runtime_checkable
class RecipeCostTrigger(Protocol):
    """Receives one notification per material whose purchase cost changed."""

    def notify(self, material_id: UUID) -> None: ...


class NullRecipeCostTrigger:
    """Trigger that does nothing (no recipe module wired in)."""

    def notify(self, material_id: UUID) -> None:
        return None


class CallbackRecipeCostTrigger:
    """Adapts a plain callable to RecipeCostTrigger."""

    def __init__(self, callback: Callable[[UUID], object]):
        self._callback = callback

    def notify(self, material_id: UUID) -> None:
        self._callback(material_id)


class RecipeCostPropagator:
    """
    Dispatches trigger notifications, inline or on an Executor.

    With an executor the call returns as soon as every notification is
    submitted; ``dispatch`` returns the futures so callers (tests) can wait.
    """

    def __init__(
        self,
        trigger: RecipeCostTrigger | None = None,
        executor: Executor | None = None,
    ):
        self.trigger = trigger or NullRecipeCostTrigger()
        self.executor = executor

    def dispatch(self, material_ids: Iterable[UUID]) -> list[Future]:
        futures: list[Future] = []
        for material_id in material_ids:
            if self.executor is not None:
                futures.append(self.executor.submit(self._notify_one, material_id))
            else:
                self._notify_one(material_id)
        return futures

    def _notify_one(self, material_id: UUID) -> bool:
        try:
            self.trigger.notify(material_id)
        except Exception as exc:
            failure = PropagationFailureError(material_id, "recipe_cost", str(exc))
            failure.__cause__ = exc
            logger.error(
                "recipe_cost_propagation_failed",
                extra={"material_id": str(material_id)},
                exc_info=(type(failure), failure, exc.__traceback__),
            )
            return False
        logger.debug("recipe_cost_notified", extra={"material_id": str(material_id)})
        return True
