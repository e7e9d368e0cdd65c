import asyncio

from monitor.core.config import Settings
from monitor.persistence.config_store import MONITORED_PAIRS, SCANNER_STATUS, ConfigStore
from monitor.persistence.strategy_store import StrategyStore
from monitor.positions.models import Direction, Strategy, StrategyStatus
from monitor.runner.service import build_service, seed_config


def _settings(**overrides):
    base = dict(
        NOTIFY_URL="",
        ALERT_URL="",
        ANALYSIS_URL="",
        SEED_PAIRS="",
    )
    base.update(overrides)
    return Settings(**base)


def _tick(symbol, price, volume, ts):
    return {"symbol": symbol, "price": price, "quoteVolume": volume, "timestamp": ts}


def test_seed_only_when_key_absent(db):
    store = ConfigStore(db)
    seed_config(store, _settings(SEED_PAIRS="BTCUSDT,ETHUSDT"))
    assert store.get(MONITORED_PAIRS) == ["BTCUSDT", "ETHUSDT"]

    store.set(MONITORED_PAIRS, [])
    seed_config(store, _settings(SEED_PAIRS="SOLUSDT"))
    assert store.get(MONITORED_PAIRS) == []


def test_status_toggles_monitoring(db, clock):
    store = ConfigStore(db)
    store.set(SCANNER_STATUS, "running")
    store.set(MONITORED_PAIRS, ["BTCUSDT"])
    svc = build_service(_settings(), db=db, clock=clock)
    seen = []

    async def on_change(symbols):
        seen.append(list(symbols))

    svc.on_subscriptions_changed = on_change

    async def scenario():
        await svc.check_and_update_status()
        running = (svc.is_monitoring, list(svc.monitored_symbols))

        await svc.handle_message(_tick("BTCUSDT", 100.0, 1000.0, clock()))
        baselines = set(svc.detector.baselines.snapshot())

        store.set(SCANNER_STATUS, "stopped")
        await svc.check_and_update_status()
        return running, baselines

    running, baselines = asyncio.run(scenario())
    assert running == (True, ["BTCUSDT"])
    assert baselines == {"BTCUSDT"}
    assert svc.is_monitoring is False
    assert svc.detector.baselines.snapshot() == {}
    assert seen == [["BTCUSDT"], []]


def test_running_without_pairs_waits(db, clock):
    ConfigStore(db).set(SCANNER_STATUS, "running")
    svc = build_service(_settings(), db=db, clock=clock)

    asyncio.run(svc.check_and_update_status())
    assert svc.is_monitoring is False
    assert svc.monitored_symbols == []


def test_pairs_reload_picks_up_changes(db, clock):
    store = ConfigStore(db)
    store.set(SCANNER_STATUS, "running")
    store.set(MONITORED_PAIRS, ["BTCUSDT"])
    svc = build_service(_settings(), db=db, clock=clock)

    async def scenario():
        await svc.check_and_update_status()
        store.set(MONITORED_PAIRS, "ETHUSDT, SOLUSDT")
        await svc.check_and_update_pairs()
        pairs = list(svc.monitored_symbols)
        await svc.stop_monitoring()
        return pairs

    assert asyncio.run(scenario()) == ["ETHUSDT", "SOLUSDT"]


def test_unmonitored_symbol_skips_detection_but_tracks_positions(db, clock):
    store = ConfigStore(db)
    store.set(SCANNER_STATUS, "running")
    store.set(MONITORED_PAIRS, ["BTCUSDT"])
    StrategyStore(db).upsert_strategy(
        Strategy(
            id="eth-1",
            symbol="ETHUSDT",
            direction=Direction.LONG,
            entry_min=1900.0,
            entry_max=2000.0,
            target_1=2100.0,
            target_2=2200.0,
            target_3=2300.0,
            stop_loss=1800.0,
            status=StrategyStatus.IN_POSITION,
        )
    )
    svc = build_service(_settings(), db=db, clock=clock)

    async def scenario():
        await svc.check_and_update_status()
        await svc.positions.reload()
        result = await svc.handle_message(_tick("ETHUSDT", 2101.0, 1000.0, clock()))
        await svc.stop_monitoring()
        return result

    result = asyncio.run(scenario())
    assert result.triggers == []
    assert [e.event_type.value for e in result.events] == ["target_1"]
    assert "ETHUSDT" not in svc.detector.baselines.snapshot()
    assert svc.subscriptions() == ["ETHUSDT"]


def test_rejected_message_is_counted(db, clock):
    svc = build_service(_settings(), db=db, clock=clock)

    result = asyncio.run(svc.handle_message("not json"))
    assert result is None
    status = svc.status()
    assert status["stats"]["ticks_rejected"] == 1
    assert status["stats"]["ticks_processed"] == 0
    assert status["thresholds"] == {"volume_ratio": 1.2, "price_percent": 0.5}


def test_start_and_shutdown(db, clock):
    store = ConfigStore(db)
    store.set(SCANNER_STATUS, "running")
    store.set(MONITORED_PAIRS, ["BTCUSDT"])
    store.set("price_move_threshold", 0.01)
    svc = build_service(_settings(), db=db, clock=clock)

    async def scenario():
        await svc.start()
        snapshot = svc.status()
        await svc.shutdown()
        return snapshot

    snapshot = asyncio.run(scenario())
    assert snapshot["running"] is True
    assert snapshot["monitoring"] is True
    assert snapshot["thresholds"]["price_percent"] == 1.0
    assert svc.is_running is False
    assert svc.is_monitoring is False


def test_start_announces_strategy_symbols(db, clock):
    store = ConfigStore(db)
    store.set(SCANNER_STATUS, "running")
    store.set(MONITORED_PAIRS, ["BTCUSDT"])
    StrategyStore(db).upsert_strategy(
        Strategy(
            id="sol-1",
            symbol="SOLUSDT",
            direction=Direction.SHORT,
            entry_min=150.0,
            entry_max=152.0,
            target_1=140.0,
            target_2=130.0,
            target_3=120.0,
            stop_loss=160.0,
        )
    )
    svc = build_service(_settings(), db=db, clock=clock)
    seen = []

    async def on_change(symbols):
        seen.append(list(symbols))

    svc.on_subscriptions_changed = on_change

    async def scenario():
        await svc.start()
        announced = list(seen[-1])
        await svc.shutdown()
        return announced

    assert asyncio.run(scenario()) == ["BTCUSDT", "SOLUSDT"]
