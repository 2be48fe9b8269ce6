"""
scheduler.py

Monthly affiliate payout scheduler.

- A daemon thread wakes every PAYOUT_SCHEDULER_POLL_SECONDS.
- On days 28-31, once the local hour reaches PAYOUT_HOUR, it fires once for
  that day. The batch only runs when tomorrow is the 1st.
- trigger_now() skips the calendar check; the batch's own run lock keeps
  scheduled and manual runs from overlapping.
"""

from datetime import datetime, date, timedelta
import threading
from typing import Optional

from dateutil import tz

from .logger import payouts_logger as logger
from .tasks import process_monthly_payouts, trigger_manual_payout, is_payout_running

FIRE_DAYS = (28, 29, 30, 31)


def is_last_day_of_month(day: date) -> bool:
    return (day + timedelta(days=1)).day == 1


def should_fire(now: datetime, payout_hour: int, last_fired: Optional[date]) -> bool:
    """True for the first tick on a fire day at or after the payout hour."""
    if now.day not in FIRE_DAYS or now.hour < payout_hour:
        return False
    return last_fired != now.date()


class PayoutScheduler:
    def __init__(self, app, rail=None):
        self.app = app
        self.rail = rail
        self.timezone = tz.gettz(app.config.get('PAYOUT_TIMEZONE', 'Europe/London'))
        self.payout_hour = int(app.config.get('PAYOUT_HOUR', 2))
        self.poll_seconds = max(1, int(app.config.get('PAYOUT_SCHEDULER_POLL_SECONDS', 60)))
        self.last_fired: Optional[date] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def now(self) -> datetime:
        return datetime.now(self.timezone)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run_loop, name='payout-scheduler', daemon=True)
        self._thread.start()
        logger.info("Monthly payout scheduler started")

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=5)
        logger.info("Monthly payout scheduler stopped")

    def status(self) -> dict:
        return {
            'scheduled': bool(self._thread and self._thread.is_alive()),
            'state': 'running' if is_payout_running() else 'idle',
            'timezone': self.app.config.get('PAYOUT_TIMEZONE'),
            'payout_hour': self.payout_hour,
            'last_fired': self.last_fired.isoformat() if self.last_fired else None,
        }

    def tick(self, now: Optional[datetime] = None):
        """
        One scheduler step. Returns the batch result when a payout ran,
        otherwise None.
        """
        now = now or self.now()
        if not should_fire(now, self.payout_hour, self.last_fired):
            return None

        self.last_fired = now.date()
        if not is_last_day_of_month(now.date()):
            logger.info(f"{now.date()} is not the last day of the month, skipping payout")
            return None

        logger.info("Starting monthly affiliate payout process...")
        with self.app.app_context():
            return process_monthly_payouts(rail=self.rail)

    def trigger_now(self) -> bool:
        with self.app.app_context():
            return trigger_manual_payout(rail=self.rail)

    def _run_loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("Monthly payout job failed")
            self._stop.wait(self.poll_seconds)


def start_payout_scheduler(app, rail=None) -> PayoutScheduler:
    """Start the payout thread for a long-running web process and register it on the app."""
    scheduler = app.extensions.get('payout_scheduler')
    if scheduler is None:
        scheduler = PayoutScheduler(app, rail=rail)
        app.extensions['payout_scheduler'] = scheduler
    scheduler.start()
    return scheduler
