from monitor.positions.models import Direction, EventType, Strategy, StrategyStatus
from monitor.positions.rules import entry_reached, evaluate


def _long(**overrides):
    base = dict(
        id="s-long",
        symbol="BTCUSDT",
        direction=Direction.LONG,
        entry_min=95.0,
        entry_max=100.0,
        target_1=110.0,
        target_2=120.0,
        target_3=130.0,
        stop_loss=90.0,
        targets_hit=0,
        status=StrategyStatus.IN_POSITION,
    )
    base.update(overrides)
    return Strategy(**base)


def _short(**overrides):
    base = dict(
        id="s-short",
        symbol="ETHUSDT",
        direction=Direction.SHORT,
        entry_min=2000.0,
        entry_max=2020.0,
        target_1=1900.0,
        target_2=1800.0,
        target_3=1700.0,
        stop_loss=2100.0,
        targets_hit=0,
        status=StrategyStatus.IN_POSITION,
    )
    base.update(overrides)
    return Strategy(**base)


def test_long_jump_to_target_3_completes_with_single_event():
    r = evaluate(_long(), 131.0)
    assert r.status == StrategyStatus.COMPLETED
    assert r.targets_hit == 3
    assert r.event == EventType.TARGET_3


def test_long_target_within_epsilon():
    # 109.9 >= 110 * 0.999
    r = evaluate(_long(), 109.9)
    assert r.event == EventType.TARGET_1
    assert r.targets_hit == 1
    assert r.status == StrategyStatus.IN_POSITION


def test_target_not_repeated():
    r = evaluate(_long(targets_hit=1), 111.0)
    assert r.changed is False
    assert r.targets_hit == 1


def test_long_stop_loss():
    r = evaluate(_long(targets_hit=1), 89.5)
    assert r.status == StrategyStatus.STOPPED
    assert r.event == EventType.STOP_LOSS
    assert r.targets_hit == 1


def test_waiting_entry_outside_zone():
    r = evaluate(_long(status=StrategyStatus.WAITING_ENTRY), 101.0)
    assert r.changed is False
    assert r.status == StrategyStatus.WAITING_ENTRY


def test_long_entry_reached():
    r = evaluate(_long(status=StrategyStatus.WAITING_ENTRY), 99.5)
    assert r.event == EventType.ENTRY_REACHED
    assert r.status == StrategyStatus.IN_POSITION
    assert r.targets_hit == 0


def test_entry_then_stop_same_tick_reports_stop():
    r = evaluate(_long(status=StrategyStatus.WAITING_ENTRY), 89.0)
    assert r.event == EventType.STOP_LOSS
    assert r.status == StrategyStatus.STOPPED


def test_short_targets_and_stop():
    assert evaluate(_short(), 1895.0).event == EventType.TARGET_1
    assert evaluate(_short(), 1790.0).targets_hit == 2

    done = evaluate(_short(targets_hit=2), 1650.0)
    assert done.status == StrategyStatus.COMPLETED
    assert done.event == EventType.TARGET_3

    stopped = evaluate(_short(), 2099.0)  # 2100 * 0.999 = 2097.9
    assert stopped.event == EventType.STOP_LOSS


def test_short_entry_uses_bottom_of_zone():
    s = _short(status=StrategyStatus.WAITING_ENTRY)
    assert entry_reached(s, 1999.0) is False
    assert entry_reached(s, 2000.0) is True
    assert evaluate(s, 2005.0).event == EventType.ENTRY_REACHED


def test_missing_entry_bounds_treated_as_in_position():
    s = _long(status=StrategyStatus.WAITING_ENTRY, entry_min=None, entry_max=None)
    assert entry_reached(s, 100.0) is None
    r = evaluate(s, 112.0)
    assert r.event == EventType.TARGET_1
    assert r.status == StrategyStatus.IN_POSITION


def test_inactive_status_is_ignored():
    for status in (StrategyStatus.PAUSED, StrategyStatus.COMPLETED, StrategyStatus.STOPPED):
        r = evaluate(_long(status=status), 200.0)
        assert r.changed is False
        assert r.status == status


def test_entry_and_target_same_tick_reports_target():
    # zone top sits inside T1's tolerance band
    s = _long(status=StrategyStatus.WAITING_ENTRY, entry_max=110.0)
    r = evaluate(s, 109.95)
    assert r.event == EventType.TARGET_1
    assert r.status == StrategyStatus.IN_POSITION
    assert r.targets_hit == 1


def test_short_entry_and_target_same_tick():
    s = _short(status=StrategyStatus.WAITING_ENTRY, entry_min=1900.0)
    r = evaluate(s, 1901.0)
    assert r.event == EventType.TARGET_1
    assert r.targets_hit == 1


def test_target_beats_stop_on_same_tick():
    s = _long(target_1=100.0, stop_loss=100.05)
    r = evaluate(s, 100.0)
    assert r.event == EventType.TARGET_1
    assert r.status == StrategyStatus.IN_POSITION
