from __future__ import annotations
import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from ..core.timeutil import now_utc
from .errors import DeliveryError
from .interfaces import Notifier
from .models import AlertKind, Reading

logger = logging.getLogger(__name__)


@dataclass
class AlertState:
    flags: dict[AlertKind, bool] = field(default_factory=dict)
    last_fired_at: Optional[datetime] = None

    def clear(self) -> None:
        self.flags = {}
        self.last_fired_at = None


@dataclass(frozen=True)
class AlertCondition:
    kind: AlertKind
    field: str        # Reading attribute
    bound: float
    above: bool       # True: fire when value > bound, False: when value < bound
    subject: str
    body: str         # formatted with {value}

    def breached_by(self, reading: Reading) -> Optional[float]:
        value = getattr(reading, self.field)
        if value is None:
            return None
        hit = value > self.bound if self.above else value < self.bound
        return value if hit else None


@dataclass(frozen=True)
class Thresholds:
    high_temperature_c: float = 40.0
    heavy_rain_mm: float = 750.0
    low_pressure_hpa: float = 980.0


def default_conditions(thr: Thresholds = Thresholds()) -> list[AlertCondition]:
    return [
        AlertCondition(
            AlertKind.HIGH_TEMPERATURE, "temperature", thr.high_temperature_c, True,
            "Extreme Heat Alert",
            "ALERT: The temperature has reached {value}°C. It is dangerously hot out there, stay cool and stay safe.",
        ),
        AlertCondition(
            AlertKind.HEAVY_PRECIPITATION, "rainfall", thr.heavy_rain_mm, True,
            "Heavy Rainfall Alert",
            "RAIN ALERT: {value} mm of rainfall recorded. Stay indoors and keep dry.",
        ),
        AlertCondition(
            AlertKind.LOW_PRESSURE, "pressure", thr.low_pressure_hpa, False,
            "Low Pressure Alert",
            "WARNING: The atmospheric pressure has dropped to {value} hPa. A storm may be approaching.",
        ),
    ]


class AlertDispatcher:
    """
    Threshold alerts with a single cooldown clock shared by all conditions.

    Each condition has its own "fired" flag, but every firing moves the shared
    last_fired_at. All flags are cleared together once more than `cooldown`
    has elapsed since the most recent firing of any condition.
    """

    def __init__(
        self,
        notifier: Notifier,
        conditions: Optional[Iterable[AlertCondition]] = None,
        cooldown: timedelta = timedelta(seconds=60),
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._notifier = notifier
        self._conditions = list(conditions) if conditions is not None else default_conditions()
        self._cooldown = cooldown
        self._clock = clock
        self._lock = threading.Lock()
        self._pending: set[asyncio.Task] = set()
        self.state = AlertState()

    @property
    def conditions(self) -> list[AlertCondition]:
        return list(self._conditions)

    def _fire(self, reading: Reading, now: Optional[datetime]) -> list[tuple[AlertCondition, float]]:
        with self._lock:
            now = now or self._clock()
            st = self.state

            if st.last_fired_at is not None and (now - st.last_fired_at) > self._cooldown:
                logger.debug("Alert cooldown elapsed, clearing flags %s", sorted(k.value for k in st.flags))
                st.clear()

            fired: list[tuple[AlertCondition, float]] = []
            for cond in self._conditions:
                value = cond.breached_by(reading)
                if value is None or st.flags.get(cond.kind):
                    continue
                st.flags[cond.kind] = True
                st.last_fired_at = now
                fired.append((cond, value))
            return fired

    def evaluate(self, reading: Reading, now: Optional[datetime] = None) -> set[AlertKind]:
        """
        Update alert state for one reading and notify once per fired condition.

        Each notification runs in its own task on the running loop, so a slow
        or failing notifier never holds up the caller. Returns the fired kinds.
        """
        fired = self._fire(reading, now)
        for cond, value in fired:
            logger.info("Alert fired: %s value=%s bound=%s", cond.kind.value, value, cond.bound)
            task = asyncio.create_task(self._deliver(cond, value), name=f"alert_{cond.kind.value}")
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return {cond.kind for cond, _ in fired}

    async def _deliver(self, cond: AlertCondition, value: float) -> None:
        try:
            await self._notifier.notify(cond.subject, cond.body.format(value=value))
        except DeliveryError as e:
            logger.warning("Alert %s not delivered: %s", cond.kind.value, e)
        except Exception:
            logger.warning("Alert %s delivery crashed", cond.kind.value, exc_info=True)

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
