"""
Campaign Scheduler
==================
Background loop that advances active campaigns one step per cycle.

Each cycle takes up to max_concurrent_campaigns active campaigns (store
order), picks each one's next task, and runs exactly one execution step for
it. Campaigns are processed sequentially; a failure in one is logged and the
cycle moves on.
"""

import logging
import threading
from typing import List, Optional

from .controller import DeterministicController
from .models import CampaignStatus
from .notifications import LogNotifier, NotificationSink

log = logging.getLogger("outreach.scheduler")


class CampaignScheduler:

    def __init__(
        self,
        controller: DeterministicController,
        polling_interval: float = 60.0,
        max_concurrent_campaigns: int = 1,
        notifier: Optional[NotificationSink] = None,
    ):
        self.controller = controller
        self.polling_interval = polling_interval
        self.max_concurrent_campaigns = max(1, max_concurrent_campaigns)
        self.notifier = notifier or LogNotifier()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, daemon=True, name="outreach-scheduler"
        )
        self._thread.start()
        log.info(f"Scheduler started (every {self.polling_interval}s, "
                 f"max {self.max_concurrent_campaigns} campaigns per cycle)")

    def stop(self, timeout: float = 5.0):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        log.info("Scheduler stopped")

    def run_cycle(self) -> List[str]:
        """Run one polling cycle. Returns the ids of campaigns that had a step executed."""
        store = self.controller.store
        campaigns = store.campaigns.get_by_status(CampaignStatus.ACTIVE)
        advanced = []

        for campaign in campaigns[:self.max_concurrent_campaigns]:
            if self._stop.is_set():
                log.info("Cycle cancelled")
                break
            try:
                state = self.controller.reload_state(campaign.id)
                task = self.controller.select_next_task(state)
                if task is None:
                    log.debug(f"Campaign {campaign.id}: no runnable tasks")
                    continue
                result = self.controller.execute_task(task.id)
                advanced.append(campaign.id)
            except Exception as e:
                log.error(f"Campaign {campaign.id} step failed: {e}", exc_info=True)
                continue
            try:
                self.notifier.task_status_changed(result.id, result.status.value)
            except Exception as e:
                log.warning(f"Status notification for task {result.id} failed: {e}")

        return advanced

    def _loop(self):
        while not self._stop.is_set():
            try:
                self.run_cycle()
            except Exception as e:
                log.error(f"Scheduler loop error: {e}", exc_info=True)
            self._stop.wait(self.polling_interval)
