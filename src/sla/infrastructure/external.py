"""
SLA External Service Integrations
==================================

External services for the SLA and automation engine:
- YAML config file watcher (business calendar, profiles)
- Webhook notifier for automation notifications
- Task creator backed by the tasks table
- APScheduler job running the automation sweep
"""

import asyncio
import threading
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from automation.application import INotifier, ITaskCreator
from config import settings
from core import ConfigurationException, ExternalServiceException
from sla.application import ISLAConfigProvider
from sla.domain import SLAConfig, TaskRequest
from shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA config file changes."""

    def __init__(self, config_manager: "SLAConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("SLA config file changed", extra={"path": event.src_path})
            self.config_manager.reload()


class SLAConfigManager(ISLAConfigProvider):
    """
    Thread-safe SLA configuration manager with hot-reload support.

    The watchdog observer thread swaps the config under a lock; readers
    always see either the old or the new config, never a partial one. A
    reload that fails validation keeps the previous config.
    """

    def __init__(self):
        self._config: Optional[SLAConfig] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> SLAConfig:
        """
        Initial configuration load.

        Raises:
            ConfigurationException: file exists but is not a valid config
        """
        self._path = Path(path)
        try:
            config = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, ValidationError) as e:
            raise ConfigurationException(
                f"Invalid SLA config {self._path}", {"error": str(e)}
            ) from e
        with self._lock:
            self._config = config
        return config

    def _load_from_file(self, path: Path) -> SLAConfig:
        if not path.exists():
            logger.warning("SLA config file not found, using defaults", extra={"path": str(path)})
            return SLAConfig()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return SLAConfig(**data)

    def reload(self) -> bool:
        """Reload configuration from file; False keeps the previous config."""
        if self._path is None:
            return False

        try:
            new_config = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, ValidationError) as e:
            logger.error("Failed to reload SLA config", extra={"error": str(e)})
            return False

        with self._lock:
            self._config = new_config
        logger.info("SLA configuration reloaded successfully",
                    extra={"timezone": new_config.business_hours.timezone})
        return True

    def start_watching(self) -> None:
        """
        Start watching the configuration file for changes.

        Skipped when the file does not exist or inotify is unavailable
        (some container runtimes).
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info("Config file doesn't exist, skipping file watch",
                        extra={"path": str(self._path)})
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent), recursive=False)
            self._observer.start()
            logger.info("Started watching config file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static config",
                           extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def is_loaded(self) -> bool:
        return self._config is not None

    @property
    def config(self) -> SLAConfig:
        with self._lock:
            if self._config is None:
                raise RuntimeError("SLA configuration not loaded")
            return self._config

    def get_config(self) -> SLAConfig:
        return self.config


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 60.0):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class WebhookNotifier(INotifier):
    """
    Notifier posting automation messages to a webhook.

    Payload: {"channel", "recipient", "text"}. Retries with exponential
    backoff, then trips the circuit breaker. Never raises: a failed
    delivery is reported as False.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._webhook_url = webhook_url if webhook_url is not None else settings.notifier_webhook_url
        self._timeout = timeout or settings.notifier_timeout_seconds
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._http_client = http_client

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    @staticmethod
    def _build_payload(channel: str, recipient: str, message: str) -> Dict[str, Any]:
        return {"channel": channel, "recipient": recipient, "text": message}

    async def send(self, channel: str, recipient: str, message: str) -> bool:
        if not self._webhook_url:
            logger.debug("Notifier webhook URL not configured, skipping notification")
            return False

        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping notification",
                extra={"channel": channel, "recipient": recipient}
            )
            return False

        payload = self._build_payload(channel, recipient, message)

        try:
            for attempt in range(self._max_retries):
                try:
                    client = await self._get_client()
                    response = await client.post(self._webhook_url, json=payload)

                    if response.is_success:
                        self._circuit_breaker.record_success()
                        logger.info(
                            "Notification sent",
                            extra={"channel": channel, "recipient": recipient}
                        )
                        return True
                    logger.warning(
                        "Notifier webhook returned error status",
                        extra={"status_code": response.status_code, "attempt": attempt + 1}
                    )

                except httpx.HTTPError as e:
                    logger.error(
                        "Notification failed",
                        extra={"error": str(e), "attempt": attempt + 1, "channel": channel}
                    )

                if attempt < self._max_retries - 1:
                    await asyncio.sleep(self._backoff(attempt))
        except asyncio.CancelledError:
            # Caller's deadline expired mid-delivery
            self._circuit_breaker.record_failure()
            logger.warning(
                "Notification cancelled before completion",
                extra={"channel": channel, "recipient": recipient}
            )
            raise

        self._circuit_breaker.record_failure()
        return False

    def _backoff(self, attempt: int) -> float:
        return self._backoff_base * 2 ** attempt

    def delivery_budget(self, default: float) -> float:
        """Time one send() may take: every attempt timing out plus the backoff between them."""
        backoff = sum(self._backoff(attempt) for attempt in range(self._max_retries - 1))
        return self._max_retries * self._timeout + backoff

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class SQLAlchemyTaskCreator(ITaskCreator):
    """
    Creates follow-up tasks in the tasks table.

    Runs inside a savepoint so a failed insert does not poison the ticket
    transaction that triggered it.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create_task(self, task_request: TaskRequest) -> str:
        from sla.infrastructure.models import TaskModel

        model = TaskModel(
            ticket_id=task_request.ticket_id,
            title=task_request.title,
            description=task_request.description,
            priority=task_request.priority,
            assignee_id=task_request.assignee_id,
            due_date=task_request.due_date,
        )
        try:
            async with self._session.begin_nested():
                self._session.add(model)
                await self._session.flush()
        except SQLAlchemyError as e:
            raise ExternalServiceException(
                "TaskCreator", "task insert failed", {"error": str(e)}
            ) from e

        logger.info("Task created", extra={"task_id": model.id, "ticket_id": task_request.ticket_id})
        return str(model.id)


class SweepScheduler:
    """
    Wrapper for APScheduler running the automation sweep.

    Manages the lifecycle of the scheduler and its single interval job.
    """

    def __init__(self, interval_seconds: int = 60):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[Any]]) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("Sweep scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="automation_sweep",
            name="Automation Sweep Job",
            misfire_grace_time=60,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        self._scheduler.start()
        self._running = True

        logger.info("Sweep scheduler started", extra={"interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("Sweep scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
