"""Background reconciliation and cleanup of stored instances."""

from datetime import timedelta
from threading import Event, Thread
from typing import Callable, Optional

from ..config import Config
from ..utils.logging import get_logger
from .errors import RuntimeUnavailable
from .instance import InstanceStatus, utc_now
from .instance_manager import InstanceManager
from .store import InstanceStore

logger = get_logger(__name__)


class PeriodicTask:
    """Runs ``fn`` on a daemon thread every ``interval`` seconds until stopped."""

    def __init__(self, name: str, interval: float, fn: Callable[[], object]):
        self.name = name
        self.interval = interval
        self.fn = fn
        self._stop_event = Event()
        self._thread: Optional[Thread] = None

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None):
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout)

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _loop(self):
        logger.info("task_started", task=self.name, interval=self.interval)
        while not self._stop_event.is_set():
            try:
                self.fn()
            except Exception as e:
                logger.exception("task_tick_failed", task=self.name, error=str(e))
            self._stop_event.wait(self.interval)
        logger.info("task_stopped", task=self.name)


class ContainerMonitor:
    """Keeps stored instance records in line with the runtime.

    Two periodic passes: a short reconcile that copies observed container
    state onto the records, and an hourly cleanup that stops idle instances
    and purges long-failed ones.
    """

    def __init__(
        self,
        instance_manager: InstanceManager,
        store: InstanceStore,
        inactivity: Optional[timedelta] = None,
        failed_retention: Optional[timedelta] = None,
        reconcile_interval: Optional[float] = None,
        cleanup_interval: Optional[float] = None,
    ):
        """
        Initialize monitor.

        Args:
            instance_manager: Lifecycle manager used for runtime actions
            store: Instance record store
            inactivity: Idle time after which running instances are stopped
            failed_retention: Age after which failed instances are removed
            reconcile_interval: Seconds between reconcile passes
            cleanup_interval: Seconds between cleanup passes
        """
        self.instance_manager = instance_manager
        self.store = store
        self.inactivity = inactivity or timedelta(days=Config.INACTIVITY_DAYS)
        self.failed_retention = failed_retention or timedelta(days=Config.FAILED_RETENTION_DAYS)

        self._tasks = [
            PeriodicTask("reconcile", reconcile_interval or Config.RECONCILE_INTERVAL, self.reconcile),
            PeriodicTask("cleanup", cleanup_interval or Config.CLEANUP_INTERVAL, self.run_cleanup),
        ]

    def reconcile(self) -> int:
        """
        Copy observed container status onto stored records.

        Records whose container has vanished from the runtime are marked failed.

        Returns:
            Number of records changed
        """
        changed = 0
        for instance in self.store.list_instances():
            if instance.status == InstanceStatus.REMOVING or not instance.container_id:
                continue

            try:
                stats = self.instance_manager.get_stats(instance.container_id)
                if stats is None:
                    if instance.status == InstanceStatus.FAILED:
                        continue
                    logger.warning(
                        "instance_container_missing",
                        instance_id=instance.id,
                        container_id=instance.container_id,
                    )
                    instance.status = InstanceStatus.FAILED
                elif stats.status != instance.status:
                    logger.info(
                        "instance_status_changed",
                        instance_id=instance.id,
                        old=instance.status.value,
                        new=stats.status.value,
                    )
                    instance.status = stats.status
                    instance.last_accessed_at = utc_now()
                else:
                    continue
                self.store.save(instance)
                changed += 1
            except RuntimeUnavailable as e:
                logger.warning("reconcile_aborted", error=str(e))
                break
            except Exception as e:
                logger.error("instance_reconcile_failed", instance_id=instance.id, error=str(e))

        return changed

    def cleanup_inactive(self) -> int:
        """
        Stop running instances idle for longer than the inactivity threshold.

        Returns:
            Number of instances stopped
        """
        cutoff = utc_now() - self.inactivity
        stopped = 0
        for instance in self.store.list_instances():
            if instance.status != InstanceStatus.RUNNING or instance.last_accessed_at >= cutoff:
                continue

            try:
                if not self.instance_manager.stop_container(instance.container_id):
                    continue
                instance.status = InstanceStatus.STOPPED
                self.store.save(instance)
                stopped += 1
                logger.info(
                    "inactive_instance_stopped",
                    instance_id=instance.id,
                    last_accessed_at=instance.last_accessed_at.isoformat(),
                )
            except Exception as e:
                logger.error("inactive_cleanup_failed", instance_id=instance.id, error=str(e))

        return stopped

    def remove_failed(self) -> int:
        """
        Remove failed instances older than the retention threshold.

        Returns:
            Number of instances removed
        """
        cutoff = utc_now() - self.failed_retention
        removed = 0
        for instance in self.store.list_instances():
            if instance.status != InstanceStatus.FAILED or instance.created_at >= cutoff:
                continue

            try:
                if instance.container_id and not self.instance_manager.remove_container(
                    instance.container_id, subdomain=instance.subdomain, port=instance.port
                ):
                    continue
                self.store.delete(instance.id)
                removed += 1
                logger.info("failed_instance_removed", instance_id=instance.id)
            except Exception as e:
                logger.error("failed_cleanup_failed", instance_id=instance.id, error=str(e))

        return removed

    def run_cleanup(self):
        stopped = self.cleanup_inactive()
        removed = self.remove_failed()
        logger.info("cleanup_completed", stopped=stopped, removed=removed)

    def start(self):
        for task in self._tasks:
            task.start()

    def stop(self, timeout: Optional[float] = None):
        for task in self._tasks:
            task.stop(timeout)
