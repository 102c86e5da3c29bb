from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List
from zoneinfo import ZoneInfo


def _split_csv(env_val: str) -> List[str]:
    return [x.strip() for x in (env_val or "").split(",") if x.strip()]


# ── Storage ──────────────────────────────────────────────────────────────────
DATA_DIR = Path(os.environ.get("SEATCOUNTER_DATA_DIR", "") or Path(__file__).resolve().parent / "data")
DATA_DIR.mkdir(parents=True, exist_ok=True)
DATABASE_URL = os.environ.get(
    "SEATCOUNTER_DATABASE_URL",
    f"sqlite:///{(DATA_DIR / 'seatcounter.db').as_posix()}",
)

# ── Pricing ──────────────────────────────────────────────────────────────────
PRICING_FILE = Path(os.environ.get("SEATCOUNTER_PRICING_FILE", "") or DATA_DIR / "pricing.json")

# Holiday classification compares calendar days in this zone.
TZ_NAME = os.environ.get("SEATCOUNTER_TZ", "Asia/Taipei")
LOCAL_TZ = ZoneInfo(TZ_NAME)

# Tables whose name contains one of these markers are billed as private rooms.
ROOM_MARKERS = _split_csv(os.environ.get("SEATCOUNTER_ROOM_MARKERS", "包廂,Room"))

# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.environ.get("SEATCOUNTER_LOG_LEVEL", "INFO").upper()


def is_room_table(table_name: str) -> bool:
    name = table_name or ""
    return any(marker in name for marker in ROOM_MARKERS)


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
