"""
Resumable provisioning workflows

A workflow is a generator that yields a step kind (e.g. "instance") right
before each network-affecting action. The action only runs when the caller
resumes, which lets an interactive caller collect a wallet signature first.
"""

import logging
from typing import Any, Callable, Dict, Generator, Generic, Iterator, List, Optional, TypeVar

from .errors import AlephSDKError, wrap_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

StepGenerator = Generator[str, None, T]


class StepSequence(Generic[T]):
    """
    One in-flight workflow.

    Iterating yields the pending step kinds in order; when the workflow
    finishes, iteration stops and `result` holds the final entity.
    Sequences compose: inside another workflow, `value = yield from seq`
    forwards the child's steps and returns its result.

    Args:
        fn: Generator function implementing the workflow. It receives the
            remaining arguments plus a `results` keyword: a dict where it
            records partial results as steps complete.
    """

    def __init__(self, fn: Callable[..., StepGenerator], *args: Any, **kwargs: Any):
        self.results: Dict[str, Any] = {}
        self.completed: List[str] = []
        self.current: Optional[str] = None
        self.done = False
        self._result: Any = None
        self._name = getattr(fn, "__qualname__", "workflow")
        self._gen = fn(*args, results=self.results, **kwargs)

    def __iter__(self) -> Iterator[str]:
        return self

    def __next__(self) -> str:
        if self.done:
            raise StopIteration(self._result)

        if self.current is not None:
            self.completed.append(self.current)
            self.current = None

        try:
            step = next(self._gen)
        except StopIteration as stop:
            self.done = True
            self._result = stop.value
            logger.debug("%s finished after %s", self._name, self.completed)
            raise StopIteration(stop.value)
        except AlephSDKError:
            self.done = True
            raise
        except Exception as e:
            self.done = True
            raise wrap_error(e) from e

        self.current = step
        logger.debug("%s waiting on step %s", self._name, step)
        return step

    def resume(self) -> Optional[str]:
        """Run up to the next suspension point. Returns its kind, or None when finished."""
        try:
            return next(self)
        except StopIteration:
            return None

    def run(self) -> T:
        """Drive the workflow to completion, ignoring suspension points."""
        for _ in self:
            pass
        return self._result

    def close(self) -> None:
        """Abandon the workflow. Steps already executed are kept as they are."""
        self._gen.close()
        self.done = True

    @property
    def result(self) -> T:
        if not self.done:
            raise RuntimeError("workflow has not finished")
        return self._result


def drive(seq: "StepSequence[T]", on_step: Optional[Callable[[str], None]] = None) -> T:
    """Run a sequence, calling on_step(kind) before each step executes."""
    for step in seq:
        if on_step is not None:
            on_step(step)
    return seq.result

