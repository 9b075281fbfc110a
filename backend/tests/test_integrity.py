import pytest

from farms_cbt.services.integrity import (
    CONTEXT_MENU, DEVTOOLS_ACCESS, DEVTOOLS_RESIZE_HEURISTIC, SCREENSHOT_ATTEMPT,
    VISIBILITY_CHANGE, IntegrityMonitor, classify_key, exceeds_devtools_threshold
)


@pytest.fixture
def fired():
    return []


@pytest.fixture
def monitor(fired):
    m = IntegrityMonitor(fired.append, threshold=160)
    m.start()
    return m


@pytest.mark.parametrize("key,mods,expected", [
    ("PrintScreen", {}, SCREENSHOT_ATTEMPT),
    ("PrintScreen", {"alt": True}, SCREENSHOT_ATTEMPT),
    ("F12", {}, DEVTOOLS_ACCESS),
    ("I", {"ctrl": True, "shift": True}, DEVTOOLS_ACCESS),
    ("j", {"ctrl": True, "shift": True}, DEVTOOLS_ACCESS),
    ("C", {"ctrl": True, "shift": True}, DEVTOOLS_ACCESS),
    ("u", {"ctrl": True}, DEVTOOLS_ACCESS),
    ("U", {"ctrl": True}, DEVTOOLS_ACCESS),
])
def test_forbidden_keys(key, mods, expected):
    assert classify_key(key, **mods) == expected


@pytest.mark.parametrize("key,mods", [
    ("a", {}),
    ("I", {"ctrl": True}),
    ("C", {"ctrl": True}),
    ("u", {}),
    ("Enter", {"shift": True}),
])
def test_ordinary_keys(key, mods):
    assert classify_key(key, **mods) is None


def test_threshold_is_strictly_greater():
    assert not exceeds_devtools_threshold(1200, 900, 1040, 740, threshold=160)
    assert exceeds_devtools_threshold(1200, 900, 1200, 739, threshold=160)
    assert exceeds_devtools_threshold(1200, 900, 1039, 900, threshold=160)


def test_only_first_violation_fires(monitor, fired):
    assert monitor.visibility_changed(hidden=True) is True
    assert monitor.key_pressed("F12") is False
    assert monitor.context_menu() is False

    assert fired == [VISIBILITY_CHANGE]
    assert monitor.violation_triggered
    assert monitor.violation_reason == VISIBILITY_CHANGE


def test_becoming_visible_is_not_a_violation(monitor, fired):
    assert monitor.visibility_changed(hidden=False) is False
    assert fired == []


def test_ordinary_key_is_not_a_violation(monitor, fired):
    assert monitor.key_pressed("b") is False
    assert fired == []


def test_context_menu(monitor, fired):
    monitor.context_menu()
    assert fired == [CONTEXT_MENU]


def test_resize_heuristic(monitor, fired):
    assert monitor.window_dimensions(1280, 800, 1280, 780) is False
    assert monitor.window_dimensions(1280, 800, 900, 800) is True
    assert fired == [DEVTOOLS_RESIZE_HEURISTIC]


def test_inactive_monitor_ignores_signals(fired):
    m = IntegrityMonitor(fired.append)
    assert m.visibility_changed(hidden=True) is False

    m.start()
    m.stop()
    assert m.key_pressed("PrintScreen") is False
    assert fired == []
    assert not m.violation_triggered
