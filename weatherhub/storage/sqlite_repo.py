from __future__ import annotations
import aiosqlite
import sqlite3
from datetime import datetime
from typing import List, Optional

from ..domain.errors import StorageError
from ..domain.models import Reading

_COLUMNS = (
    "ts_utc,rain_analog,rain_digital,light_value,light_percentage,"
    "light_reading,temperature,pressure,rainfall"
)


class SQLiteRepository:
    def __init__(self, path: str) -> None:
        self._path = path

    async def init(self) -> None:
        async with aiosqlite.connect(self._path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS readings (
                    ts_utc TEXT NOT NULL,
                    rain_analog INTEGER,
                    rain_digital INTEGER,
                    light_value REAL,
                    light_percentage REAL,
                    light_reading TEXT,
                    temperature REAL,
                    pressure REAL,
                    rainfall REAL
                )
                """
            )
            await db.execute("CREATE INDEX IF NOT EXISTS idx_readings_ts ON readings(ts_utc)")
            await db.commit()

    async def store(self, r: Reading) -> None:
        if r.timestamp is None:
            raise StorageError("Refusing to store an unstamped reading")
        try:
            async with aiosqlite.connect(self._path) as db:
                await db.execute(
                    f"INSERT INTO readings({_COLUMNS}) VALUES (?,?,?,?,?,?,?,?,?)",
                    (
                        r.timestamp.isoformat(),
                        r.rain_analog,
                        r.rain_digital,
                        r.light_value,
                        r.light_percentage,
                        r.light_reading,
                        r.temperature,
                        r.pressure,
                        r.rainfall,
                    ),
                )
                await db.commit()
        except (sqlite3.Error, OverflowError) as e:
            raise StorageError(f"Failed to store reading: {e}") from e

    async def query_readings(
        self,
        start_ts: Optional[str] = None,
        end_ts: Optional[str] = None,
        limit: int = 50,
    ) -> List[Reading]:
        """Newest first."""
        async with aiosqlite.connect(self._path) as db:
            cur = await db.execute(
                f"""
                SELECT {_COLUMNS}
                FROM readings
                WHERE (? IS NULL OR ts_utc >= ?) AND (? IS NULL OR ts_utc <= ?)
                ORDER BY ts_utc DESC
                LIMIT ?
                """,
                (start_ts, start_ts, end_ts, end_ts, limit),
            )
            rows = await cur.fetchall()
        out: list[Reading] = []
        for ts, ra, rd, lv, lp, lr, temp, pres, rain in rows:
            out.append(
                Reading(
                    rain_analog=ra,
                    rain_digital=rd,
                    light_value=lv,
                    light_percentage=lp,
                    light_reading=lr,
                    temperature=temp,
                    pressure=pres,
                    rainfall=rain,
                    timestamp=datetime.fromisoformat(ts),
                )
            )
        return out
