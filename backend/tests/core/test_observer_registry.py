"""Listener Registry — verifies token-based registration and idempotent removal."""

from backbone.core.observer_registry import ListenerRegistry


def _noop(_):
    pass


def test_same_callable_registered_twice_gets_two_tokens():
    registry = ListenerRegistry()
    first = registry.add(_noop)
    second = registry.add(_noop)
    assert first != second
    assert len(registry) == 2


def test_removing_one_registration_keeps_the_other():
    registry = ListenerRegistry()
    first = registry.add(_noop)
    registry.add(_noop)
    assert registry.remove(first) is True
    assert registry.snapshot() == [_noop]


def test_remove_is_idempotent():
    registry = ListenerRegistry()
    token = registry.add(_noop)
    assert registry.remove(token) is True
    assert registry.remove(token) is False
    assert len(registry) == 0


def test_snapshot_preserves_order_and_is_a_copy():
    registry = ListenerRegistry()
    a, b = (lambda s: None), (lambda s: None)
    registry.add(a)
    registry.add(b)
    snap = registry.snapshot()
    registry.clear()
    assert snap == [a, b]
    assert registry.snapshot() == []
