import random

from leadimport.config import settings
from leadimport.services.timers import ScheduledTimer


class ProgressEstimator:
    """Cosmetic progress bar for an import whose real progress is opaque.

    While active the value creeps up by a random step per tick but never
    passes ``cap``; only ``finish()`` may show 100, after which the value is
    held briefly and then dropped back to 0. Nothing here feeds back into the
    pipeline state.
    """

    def __init__(
        self,
        scheduler,
        *,
        tick_seconds: float | None = None,
        hold_seconds: float | None = None,
        floor: float | None = None,
        cap: float | None = None,
        step: tuple[float, float] | None = None,
        rng: random.Random | None = None,
    ):
        self.floor = settings.PROGRESS_FLOOR if floor is None else floor
        self.cap = settings.PROGRESS_CAP if cap is None else cap
        self.step = step or (settings.PROGRESS_STEP_MIN, settings.PROGRESS_STEP_MAX)
        self._rng = rng or random.Random()
        self.value: float = 0.0
        self._tick_timer = ScheduledTimer(
            scheduler,
            self._tick,
            seconds=tick_seconds or settings.PROGRESS_TICK_SECONDS,
            name="import-progress-tick",
        )
        self._reset_timer = ScheduledTimer(
            scheduler,
            self._reset,
            seconds=hold_seconds or settings.PROGRESS_HOLD_SECONDS,
            name="import-progress-reset",
            repeat=False,
        )

    @property
    def percent(self) -> int:
        return int(self.value)

    @property
    def running(self) -> bool:
        return self._tick_timer.active

    def start(self) -> None:
        self._reset_timer.stop()
        if self.value >= 100:
            self.value = 0.0
        self.value = max(self.value, self.floor)
        self._tick_timer.start()

    def advance(self) -> float:
        if self.value < self.cap:
            self.value = min(self.value + self._rng.uniform(*self.step), self.cap)
        return self.value

    def finish(self) -> None:
        self._tick_timer.stop()
        self.value = 100.0
        self._reset_timer.start()

    def cancel(self) -> None:
        self._tick_timer.stop()
        self._reset_timer.stop()
        self.value = 0.0

    def dispose(self) -> None:
        self._tick_timer.stop()
        self._reset_timer.stop()

    async def _tick(self) -> None:
        self.advance()

    async def _reset(self) -> None:
        self.value = 0.0
