"""AURA Hub - Core orchestration, module management and scheduling."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

from aura.config import AuraConfig
from aura.hub.store import Store


class Module:
    """Base class for hub modules."""

    def __init__(self, module_id: str, hub: "AutomationHub"):
        self.module_id = module_id
        self.hub = hub
        self.logger = logging.getLogger(f"module.{module_id}")

    async def initialize(self):
        """Initialize module resources."""
        pass

    async def shutdown(self):
        """Cleanup module resources."""
        pass

    async def on_event(self, event_type: str, data: dict[str, Any]):
        """Handle hub event.

        Args:
            event_type: Type of event (e.g., "device_state_changed")
            data: Event data
        """
        pass


class AutomationHub:
    """Central hub owning the store, modules, event bus and periodic tasks."""

    def __init__(self, config: AuraConfig, store: Store | None = None):
        """Initialize automation hub.

        Args:
            config: Top-level configuration
            store: Durable store (defaults to the configured SQLite path)
        """
        self.config = config
        self.user_id = config.user_id
        self.store = store or Store(str(config.storage.db_path), timeout=config.storage.timeout)
        self.modules: dict[str, Module] = {}
        self.module_status: dict[str, str] = {}  # module_id -> "registered" | "running" | "failed"
        self.subscribers: dict[str, set[Callable]] = {}
        self.tasks: set[asyncio.Task] = set()
        self._jobs: dict[str, asyncio.Task] = {}
        self._pool = asyncio.Semaphore(max(1, config.scheduler.worker_concurrency))
        self._stop = asyncio.Event()
        self._running = False
        self._background = True
        self._start_time: datetime | None = None
        self._event_count = 0
        self.logger = logging.getLogger("hub")

    async def initialize(self, background: bool = True):
        """Open the store and initialize modules in registration order.

        Args:
            background: Start periodic tasks. One-shot commands pass False so
                no scheduler loop (and no rule) runs while they execute.
        """
        self.logger.info("Initializing AURA Hub...")
        await self.store.initialize()
        self._stop.clear()
        self._running = True
        self._background = background

        for module_id, module in self.modules.items():
            try:
                await module.initialize()
                self.mark_module_running(module_id)
            except Exception as e:
                self.mark_module_failed(module_id)
                self.logger.error("Module %s failed to initialize: %s", module_id, e)

        await self.schedule_task(
            "retention_prune",
            self._prune_stale_data,
            interval=timedelta(hours=24),
            run_immediately=False,
        )

        self._start_time = datetime.now()
        self.logger.info("Hub initialized successfully")

    async def shutdown(self):
        """Stop ticking, let in-flight work finish within the grace period, then close."""
        if not self._running:
            return
        self.logger.info("Shutting down AURA Hub...")
        self._running = False
        self._stop.set()

        pending = {t for t in self.tasks if not t.done()}
        if pending:
            grace = self.config.scheduler.shutdown_grace
            _, still_running = await asyncio.wait(pending, timeout=grace)
            for task in still_running:
                task.cancel()
            if still_running:
                self.logger.warning("Cancelled %d task(s) after %.1fs grace period", len(still_running), grace)
                await asyncio.gather(*still_running, return_exceptions=True)

        for module_id, module in reversed(list(self.modules.items())):
            self.logger.info("Shutting down module: %s", module_id)
            try:
                await module.shutdown()
            except Exception as e:
                self.logger.error("Error shutting down module %s: %s", module_id, e)

        await self.store.close()
        self.logger.info("Hub shutdown complete")

    def register_module(self, module: Module):
        """Register a module with the hub.

        Raises:
            ValueError: a module with the same id is already registered
        """
        if module.module_id in self.modules:
            raise ValueError(f"Module {module.module_id} already registered")

        self.modules[module.module_id] = module
        self.module_status[module.module_id] = "registered"
        self.logger.info("Registered module: %s", module.module_id)

    def get_module(self, module_id: str) -> Module | None:
        return self.modules.get(module_id)

    def subscribe(self, event_type: str, callback: Callable):
        """Subscribe an async callback to hub events."""
        self.subscribers.setdefault(event_type, set()).add(callback)
        self.logger.debug("Subscribed to event: %s", event_type)

    def unsubscribe(self, event_type: str, callback: Callable):
        if event_type in self.subscribers:
            self.subscribers[event_type].discard(callback)

    async def publish(self, event_type: str, data: dict[str, Any]):
        """Publish event to explicit subscribers and broadcast to every module.

        Subscriber and module failures are logged and never propagate to the
        publisher. The event is also written to the audit log; a failing audit
        write is logged only.
        """
        self.logger.debug("Publishing event: %s", event_type)
        self._event_count += 1

        try:
            await self.store.log_event(event_type, data)
        except Exception as e:
            self.logger.warning("Failed to log event %s: %s", event_type, e)

        dispatch_start = time.monotonic()

        for callback in list(self.subscribers.get(event_type, ())):
            try:
                await callback(data)
            except Exception as e:
                self.logger.error("Error in event callback for %s: %s", event_type, e)

        for module in list(self.modules.values()):
            try:
                await module.on_event(event_type, data)
            except Exception as e:
                self.logger.error("Error in module %s event handler: %s", module.module_id, e)

        elapsed_ms = (time.monotonic() - dispatch_start) * 1000
        if elapsed_ms > 100:
            self.logger.warning("Event '%s' dispatch took %.1f ms (threshold 100 ms)", event_type, elapsed_ms)

    async def schedule_task(
        self,
        task_id: str,
        coro: Callable[[], Awaitable[Any]],
        interval: timedelta | None = None,
        run_immediately: bool = True,
    ):
        """Schedule a task to run periodically.

        Args:
            task_id: Unique task identifier
            coro: Async callable to run
            interval: Run interval (None = run once)
            run_immediately: If True, run immediately then schedule
        """
        if not self._background:
            self.logger.debug("Background tasks disabled, not scheduling %s", task_id)
            return

        async def run_once():
            try:
                await coro()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error("Task %s error: %s", task_id, e)

        async def run_task():
            self.logger.info("Task %s: starting", task_id)
            if run_immediately and self._running:
                await run_once()

            if interval:
                while self._running:
                    try:
                        await asyncio.wait_for(self._stop.wait(), timeout=interval.total_seconds())
                        break  # stop requested
                    except TimeoutError:
                        pass
                    if not self._running:
                        break
                    await run_once()

        self._track(asyncio.create_task(run_task(), name=task_id))
        self.logger.info("Scheduled task: %s%s", task_id, f" (interval: {interval})" if interval else " (one-time)")

    def submit(self, job_id: str, coro: Callable[[], Awaitable[Any]]) -> asyncio.Task | None:
        """Run ``coro`` on the bounded work pool.

        At most ``worker_concurrency`` jobs run at once; a job id that is
        already queued or running is not submitted twice.

        Returns:
            The job task, or None if the hub is stopped or the job is in flight
        """
        if not self._running:
            return None
        existing = self._jobs.get(job_id)
        if existing is not None and not existing.done():
            self.logger.debug("Job %s already in flight, skipping", job_id)
            return None

        async def run_job():
            async with self._pool:
                try:
                    return await coro()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self.logger.error("Job %s failed: %s", job_id, e)
                    return None

        task = asyncio.create_task(run_job(), name=job_id)
        self._jobs[job_id] = task
        task.add_done_callback(lambda t: self._jobs.pop(job_id, None) if self._jobs.get(job_id) is t else None)
        self._track(task)
        return task

    def _track(self, task: asyncio.Task):
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)

    async def _prune_stale_data(self):
        """Prune old predictions, interactions and audit events."""
        storage = self.config.storage
        preds = await self.store.prune_predictions(retention_days=storage.prediction_retention_days)
        interactions = await self.store.prune_interactions(retention_days=storage.interaction_retention_days)
        events = await self.store.prune_events(retention_days=7)
        if preds or interactions or events:
            self.logger.info(
                "Retention pruning: %d predictions, %d interactions, %d events deleted", preds, interactions, events
            )

    def is_running(self) -> bool:
        return self._running

    def mark_module_running(self, module_id: str):
        self.module_status[module_id] = "running"

    def mark_module_failed(self, module_id: str):
        self.module_status[module_id] = "failed"

    def get_uptime_seconds(self) -> float:
        if self._start_time is None:
            return 0.0
        return (datetime.now() - self._start_time).total_seconds()

    async def health_check(self) -> dict[str, Any]:
        """Hub and module health summary."""
        return {
            "status": "ok" if self._running else "stopped",
            "uptime_seconds": round(self.get_uptime_seconds()),
            "modules": {module_id: self.module_status.get(module_id, "unknown") for module_id in self.modules},
            "tasks": len(self.tasks),
            "events_published": self._event_count,
            "timestamp": datetime.now().isoformat(),
        }
