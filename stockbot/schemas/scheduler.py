from datetime import date, datetime

from pydantic import BaseModel

IDLE = "IDLE"
DAILY_REPORT_DUE = "DAILY_REPORT_DUE"
REALTIME_SWEEP_DUE = "REALTIME_SWEEP_DUE"


class SchedulerStatus(BaseModel):
    state: str = IDLE
    running: bool = False
    timezone: str
    last_processed_date: date | None = None
    last_tick_at: datetime | None = None
    last_transition: str | None = None
    daily_reports: int = 0
    realtime_sweeps: int = 0
    skipped_cycles: int = 0
    alerts_sent: int = 0
    send_failures: int = 0
    tick_errors: int = 0
