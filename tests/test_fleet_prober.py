import asyncio
import json

import pytest

from app.config import Settings
from app.errors import StoreError, TargetNotFoundError
from app.models.status import FleetSnapshot, ProbeResult
from app.models.target import Target, TargetCreate, TargetUpdate
from app.services.fleet_prober import FleetProber, SnapshotCache
from app.services.target_store import JsonTargetStore


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class RecordingProbe:
    """Stand-in for probe_target: every odd id is online with id * 10 players."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.calls = []
        self.active = 0
        self.max_active = 0

    async def __call__(self, target: Target, **kwargs) -> ProbeResult:
        self.calls.append((target.id, kwargs))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.active -= 1

        common = dict(
            target_id=target.id,
            name=target.name,
            address=target.address,
            port=target.port,
            fingerprint="abcd1234",
        )
        if target.id % 2:
            return ProbeResult(**common, online=True, players_online=target.id * 10, players_max=100)
        return ProbeResult(**common, online=False, error="connect-error", error_detail="refused")


def _write_targets(path, count):
    path.write_text(
        json.dumps(
            [{"id": i, "name": f"server-{i}", "address": f"mc{i}.example", "port": 25565} for i in range(1, count + 1)]
        ),
        encoding="utf-8",
    )


def _make_prober(tmp_path, count=3, probe=None, clock=None, **settings_overrides):
    path = tmp_path / "servers.json"
    _write_targets(path, count)
    settings = Settings(servers_file=str(path), **settings_overrides)
    cache = SnapshotCache(settings.cache_ttl_ms / 1000.0, clock=clock or FakeClock())
    probe = probe or RecordingProbe()
    return FleetProber(JsonTargetStore(path), cache, settings, probe=probe), probe


def test_snapshot_aggregates_and_ranks_results(tmp_path):
    prober, probe = _make_prober(tmp_path, count=4)

    snapshot = asyncio.run(prober.probe_all())

    assert isinstance(snapshot, FleetSnapshot)
    assert snapshot.total == 4
    assert snapshot.online_count == 2
    assert snapshot.total_players == 10 + 30
    assert [r.target_id for r in snapshot.results] == [3, 1, 2, 4]
    assert {target_id for target_id, _ in probe.calls} == {1, 2, 3, 4}


def test_probe_receives_budget_from_settings(tmp_path):
    prober, probe = _make_prober(
        tmp_path, count=1, probe_timeout_ms=1500, probe_grace_ms=250, protocol_version=760
    )

    asyncio.run(prober.probe_all())

    _, kwargs = probe.calls[0]
    assert kwargs["timeout_ms"] == 1500
    assert kwargs["grace_ms"] == 250
    assert kwargs["protocol_version"] == 760


def test_cached_snapshot_is_returned_within_ttl(tmp_path):
    clock = FakeClock()
    prober, probe = _make_prober(tmp_path, clock=clock)

    async def scenario():
        first = await prober.probe_all(use_cache=True)
        clock.now += 29.0
        second = await prober.probe_all(use_cache=True)
        return first, second

    first, second = asyncio.run(scenario())

    assert second is first
    assert len(probe.calls) == 3


def test_expired_cache_triggers_new_probes(tmp_path):
    clock = FakeClock()
    prober, probe = _make_prober(tmp_path, clock=clock)

    async def scenario():
        first = await prober.probe_all()
        clock.now += 30.0
        second = await prober.probe_all()
        return first, second

    first, second = asyncio.run(scenario())

    assert second is not first
    assert len(probe.calls) == 6


def test_use_cache_false_bypasses_fresh_cache(tmp_path):
    prober, probe = _make_prober(tmp_path)

    async def scenario():
        await prober.probe_all()
        await prober.probe_all(use_cache=False)

    asyncio.run(scenario())
    assert len(probe.calls) == 6


def test_invalidate_forces_fresh_probes(tmp_path):
    prober, probe = _make_prober(tmp_path)

    async def scenario():
        first = await prober.probe_all()
        prober.invalidate()
        second = await prober.probe_all()
        return first, second

    first, second = asyncio.run(scenario())

    assert second is not first
    assert len(probe.calls) == 6


def test_one_failing_probe_does_not_abort_the_batch(tmp_path):
    recording = RecordingProbe()

    async def flaky_probe(target, **kwargs):
        if target.id == 2:
            raise RuntimeError("boom")
        return await recording(target, **kwargs)

    prober, _ = _make_prober(tmp_path, count=3, probe=flaky_probe)

    snapshot = asyncio.run(prober.probe_all())

    assert snapshot.total == 3
    broken = next(r for r in snapshot.results if r.target_id == 2)
    assert broken.online is False
    assert broken.error == "connect-error"
    assert broken.error_detail == "boom"


def test_concurrent_probes_are_bounded(tmp_path):
    probe = RecordingProbe(delay=0.02)
    prober, _ = _make_prober(tmp_path, count=6, probe=probe, max_concurrent_probes=2)

    asyncio.run(prober.probe_all())

    assert len(probe.calls) == 6
    assert probe.max_active == 2


def test_probes_run_in_parallel(tmp_path):
    probe = RecordingProbe(delay=0.02)
    prober, _ = _make_prober(tmp_path, count=5, probe=probe)

    asyncio.run(prober.probe_all())

    assert probe.max_active == 5


def test_overlapping_forced_refreshes_are_serialised(tmp_path):
    probe = RecordingProbe(delay=0.02)
    prober, _ = _make_prober(tmp_path, count=1, probe=probe)

    async def scenario():
        return await asyncio.gather(
            prober.probe_all(use_cache=False),
            prober.probe_all(use_cache=False),
        )

    first, second = asyncio.run(scenario())

    assert len(probe.calls) == 2
    assert probe.max_active == 1
    assert prober.cache.get() is second
    assert first is not second


def test_overlapping_cached_calls_share_one_refresh(tmp_path):
    probe = RecordingProbe(delay=0.02)
    prober, _ = _make_prober(tmp_path, count=2, probe=probe)

    async def scenario():
        return await asyncio.gather(prober.probe_all(), prober.probe_all())

    first, second = asyncio.run(scenario())

    assert first is second
    assert len(probe.calls) == 2


def test_invalidation_during_refresh_is_not_overwritten(tmp_path):
    holder = {}
    recording = RecordingProbe()

    async def probe_that_invalidates(target, **kwargs):
        holder["prober"].invalidate()
        return await recording(target, **kwargs)

    prober, _ = _make_prober(tmp_path, count=1, probe=probe_that_invalidates)
    holder["prober"] = prober

    snapshot = asyncio.run(prober.probe_all())

    assert snapshot.total == 1
    assert prober.cache.get() is None


def test_store_failure_propagates(tmp_path):
    prober, _ = _make_prober(tmp_path)
    (tmp_path / "servers.json").write_text("[{broken", encoding="utf-8")

    with pytest.raises(StoreError):
        asyncio.run(prober.probe_all())


def test_probe_one_and_unknown_id(tmp_path):
    prober, probe = _make_prober(tmp_path, count=2)

    result = asyncio.run(prober.probe_one(1))
    assert result.target_id == 1
    assert result.online is True

    with pytest.raises(TargetNotFoundError):
        asyncio.run(prober.probe_one(99))


def test_target_mutations_invalidate_cache(tmp_path):
    prober, probe = _make_prober(tmp_path, count=1)

    async def scenario():
        await prober.probe_all()
        added = await prober.add_target(TargetCreate(name="New", address="new.example"))
        assert prober.cache.get() is None

        after_add = await prober.probe_all()
        await prober.update_target(added.id, TargetUpdate(name="Renamed"))
        assert prober.cache.get() is None

        after_update = await prober.probe_all()
        await prober.delete_target(added.id)
        assert prober.cache.get() is None
        return after_add, after_update

    after_add, after_update = asyncio.run(scenario())

    assert after_add.total == 2
    assert "Renamed" in [r.name for r in after_update.results]


def test_snapshot_cache_in_isolation():
    clock = FakeClock()
    cache = SnapshotCache(10.0, clock=clock)
    snapshot = FleetSnapshot.from_results([])

    assert cache.get() is None
    assert cache.age() is None

    assert cache.put(snapshot) is True
    clock.now += 4.0
    assert cache.get() is snapshot
    assert cache.age() == pytest.approx(4.0)

    clock.now += 6.0
    assert cache.get() is None

    generation = cache.generation
    cache.invalidate()
    assert cache.put(snapshot, generation) is False
    assert cache.put(snapshot, cache.generation) is True
