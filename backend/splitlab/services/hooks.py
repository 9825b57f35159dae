"""Lifecycle hooks for experiment state changes.

The registry is a plain object handed to `ExperimentService`, not module
state: the application builds one at startup and each test can build its own.
"""
from collections import defaultdict
from typing import Callable, Dict, List

from splitlab.schemas.experiment import ExperimentRead

EXPERIMENT_STARTED = "experiment.started"
EXPERIMENT_PAUSED = "experiment.paused"
EXPERIMENT_COMPLETED = "experiment.completed"
EXPERIMENT_ARCHIVED = "experiment.archived"

LIFECYCLE_EVENTS = (
    EXPERIMENT_STARTED,
    EXPERIMENT_PAUSED,
    EXPERIMENT_COMPLETED,
    EXPERIMENT_ARCHIVED,
)

Hook = Callable[[ExperimentRead], None]


class HookRegistry:
    """Named handlers called after an experiment changes status."""

    def __init__(self):
        self._handlers: Dict[str, List[Hook]] = defaultdict(list)

    def register(self, event: str, handler: Hook) -> Hook:
        """
        Register a handler for a lifecycle event.

        Returns:
            The handler

        Raises:
            ValueError: If the event name is unknown
        """
        if event not in LIFECYCLE_EVENTS:
            raise ValueError(f"Unknown lifecycle event: {event}")
        self._handlers[event].append(handler)
        return handler

    def register_for(self, event: str) -> Callable[[Hook], Hook]:
        """
        Decorator form of `register`:

            @hooks.register_for(EXPERIMENT_COMPLETED)
            def notify(experiment): ...
        """
        def decorator(handler: Hook) -> Hook:
            return self.register(event, handler)
        return decorator

    def unregister(self, event: str, handler: Hook) -> None:
        if handler in self._handlers.get(event, []):
            self._handlers[event].remove(handler)

    def handlers(self, event: str) -> List[Hook]:
        return list(self._handlers.get(event, []))

    def dispatch(self, event: str, experiment: ExperimentRead) -> int:
        """
        Call every handler registered for an event, in registration order.

        Handler exceptions propagate; the state change that triggered the
        dispatch has already been stored.

        Returns:
            Number of handlers called
        """
        handlers = self.handlers(event)
        for handler in handlers:
            handler(experiment)
        return len(handlers)
