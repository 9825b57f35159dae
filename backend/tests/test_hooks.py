"""Tests for the lifecycle hook registry."""
import pytest

from splitlab.services.hooks import (
    EXPERIMENT_COMPLETED,
    EXPERIMENT_STARTED,
    HookRegistry,
)


def test_register_rejects_unknown_event():
    hooks = HookRegistry()

    with pytest.raises(ValueError):
        hooks.register("experiment.deleted", lambda e: None)


def test_dispatch_calls_handlers_in_order():
    hooks = HookRegistry()
    calls = []
    hooks.register(EXPERIMENT_STARTED, lambda e: calls.append(("first", e)))
    hooks.register(EXPERIMENT_STARTED, lambda e: calls.append(("second", e)))

    assert hooks.dispatch(EXPERIMENT_STARTED, "exp") == 2
    assert calls == [("first", "exp"), ("second", "exp")]
    assert hooks.dispatch(EXPERIMENT_COMPLETED, "exp") == 0


def test_register_for_decorator():
    hooks = HookRegistry()

    @hooks.register_for(EXPERIMENT_COMPLETED)
    def notify(experiment):
        pass

    assert hooks.handlers(EXPERIMENT_COMPLETED) == [notify]


def test_unregister_stops_dispatch():
    hooks = HookRegistry()
    calls = []

    def handler(experiment):
        calls.append(experiment)

    hooks.register(EXPERIMENT_STARTED, handler)
    hooks.unregister(EXPERIMENT_STARTED, handler)

    assert hooks.dispatch(EXPERIMENT_STARTED, "exp") == 0
    assert calls == []
    # Unknown handlers are ignored
    hooks.unregister(EXPERIMENT_COMPLETED, handler)
