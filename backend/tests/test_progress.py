import asyncio
import random

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from leadimport.services.progress import ProgressEstimator


def _estimator(scheduler, seed=7) -> ProgressEstimator:
    return ProgressEstimator(scheduler, tick_seconds=0.5, hold_seconds=0.8, rng=random.Random(seed))


def test_start_seeds_floor_and_schedules_tick(scheduler):
    progress = _estimator(scheduler)
    progress.start()

    assert progress.value == 5
    assert progress.running
    assert len(scheduler.named("import-progress-tick")) == 1


def test_ticks_never_decrease_and_stop_at_cap(scheduler):
    progress = _estimator(scheduler)
    progress.start()

    seen = [progress.value]
    for _ in range(60):
        asyncio.run(scheduler.fire("import-progress-tick"))
        seen.append(progress.value)

    assert seen == sorted(seen)
    assert max(seen) == 92
    assert all(b - a <= 9 for a, b in zip(seen, seen[1:]))


def test_first_steps_within_jitter_range(scheduler):
    progress = _estimator(scheduler, seed=1)
    progress.start()
    before = progress.value
    progress.advance()
    assert 3 <= progress.value - before <= 9


def test_finish_snaps_to_100_then_resets(scheduler):
    progress = _estimator(scheduler)
    progress.start()
    progress.advance()

    progress.finish()
    assert progress.percent == 100
    assert not progress.running
    assert len(scheduler.named("import-progress-reset")) == 1

    asyncio.run(scheduler.fire("import-progress-reset"))
    assert progress.value == 0
    assert scheduler.named("import-progress-reset") == []


def test_restart_during_hold_cancels_reset(scheduler):
    progress = _estimator(scheduler)
    progress.start()
    progress.finish()

    progress.start()
    assert scheduler.named("import-progress-reset") == []
    assert progress.value == 5
    assert progress.running


def test_cancel_clears_timers_and_value(scheduler):
    progress = _estimator(scheduler)
    progress.start()
    progress.advance()

    progress.cancel()
    assert progress.value == 0
    assert scheduler.jobs == {}


def test_dispose_releases_all_timers(scheduler):
    progress = _estimator(scheduler)
    progress.start()
    progress.finish()

    progress.dispose()
    assert scheduler.jobs == {}


def test_runs_on_asyncio_scheduler():
    async def run():
        scheduler = AsyncIOScheduler()
        scheduler.start()
        try:
            progress = ProgressEstimator(scheduler, tick_seconds=0.05, hold_seconds=0.1, rng=random.Random(5))
            progress.start()
            await asyncio.sleep(0.4)
            ticked = progress.value

            progress.finish()
            held = progress.percent
            await asyncio.sleep(0.5)

            # the one-shot reset already left the job store
            progress.dispose()
            return ticked, held, progress.value, scheduler.get_jobs()
        finally:
            scheduler.shutdown(wait=False)

    ticked, held, final, jobs = asyncio.run(run())

    assert 5 < ticked <= 92
    assert held == 100
    assert final == 0
    assert jobs == []
