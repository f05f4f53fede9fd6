"""
SLA External Service Integrations
==================================

External services for SLA monitoring:
- Slack webhook escalations
- YAML monitor config file watcher
- Settings view invalidation
- APScheduler for background evaluation
"""

import asyncio
import threading
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import yaml
import httpx
from pydantic import ValidationError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler

from src.shared.infrastructure.logging import get_logger
from src.config import settings
from src.core import SinkDeliveryException, ConfigurationException
from src.sla.application import (
    IEscalationSink, IViewInvalidator, ISLAMonitorConfigProvider
)
from src.sla.domain import EscalationEvent, SLAMonitorConfig, format_sla_time

logger = get_logger(__name__)


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA monitor config file changes."""

    def __init__(self, config_manager: "SLAMonitorConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("SLA monitor config file changed", extra={"path": str(event.src_path)})
            self.config_manager.reload()


class SLAMonitorConfigManager(ISLAMonitorConfigProvider):
    """
    Thread-safe SLA monitor configuration with hot-reload support.

    Uses watchdog to monitor file changes and reload configuration
    without restarting the service. A bad edit keeps the last good config.
    """

    def __init__(self):
        self._config: Optional[SLAMonitorConfig] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> SLAMonitorConfig:
        """Initial configuration load."""
        self._path = path
        self._config = self._load_from_file(path)
        return self._config

    def _load_from_file(self, path: Path) -> SLAMonitorConfig:
        if not path.exists():
            logger.warning("SLA monitor config file not found, using defaults", extra={"path": str(path)})
            return SLAMonitorConfig()

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
            return SLAMonitorConfig(**data)
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationException(f"Invalid SLA monitor config {path}: {e}")

    def reload(self) -> bool:
        """Reload configuration from file."""
        if self._path is None:
            return False

        try:
            new_config = self._load_from_file(self._path)
            with self._lock:
                self._config = new_config
            logger.info("SLA monitor configuration reloaded successfully")
            return True
        except Exception as e:
            logger.error("Failed to reload SLA monitor config", extra={"error": str(e)})
            return False

    def start_watching(self) -> None:
        """
        Start watching configuration file for changes.

        Skips watching if the file doesn't exist or inotify is unavailable.
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                "SLA monitor config file doesn't exist, skipping file watch",
                extra={"path": str(self._path)}
            )
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(
                handler,
                str(self._path.parent),
                recursive=False
            )
            self._observer.start()
            logger.info("Started watching SLA monitor config file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static config", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching configuration file (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_config(self) -> SLAMonitorConfig:
        with self._lock:
            if self._config is None:
                raise RuntimeError("SLA monitor configuration not loaded")
            return self._config


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

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if self._clock() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class SlackEscalationSink(IEscalationSink):
    """
    Slack webhook escalation sink with circuit breaker and retry logic.

    Raises SinkDeliveryException when the alert could not be delivered,
    so the monitor can count the failure.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        config_provider: Optional[ISLAMonitorConfigProvider] = None,
        app_base_url: Optional[str] = None,
        max_retries: int = 3,
        backoff_base_seconds: float = 1.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._webhook_url = webhook_url if webhook_url is not None else settings.slack_webhook_url
        self._config_provider = config_provider
        self._app_base_url = (app_base_url or settings.app_base_url).rstrip("/")
        self._max_retries = max_retries
        self._backoff_base_seconds = backoff_base_seconds
        self._circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=settings.slack_timeout_seconds)
        return self._http_client

    def _channels_for(self, event: EscalationEvent) -> List[str]:
        channels: List[str] = []
        if self._config_provider is not None:
            channels = self._config_provider.get_config().get_channels_for_state(event.status)
        return channels or [settings.slack_channel]

    def build_message(self, event: EscalationEvent, channel: str) -> Dict[str, Any]:
        """Build Slack Block Kit message."""
        if event.is_breach:
            header_text = ":rotating_light: SLA Breached"
            status_text = ":red_circle: BREACHED"
        else:
            header_text = ":warning: SLA At Risk"
            status_text = ":large_yellow_circle: WARNING"

        thread_url = f"{self._app_base_url}/app/{event.tenant_id}/inbox/{event.thread_id}"
        contact = event.contact_name or "Unknown contact"

        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": header_text, "emoji": True}
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Thread:*\n<{thread_url}|{contact}>"},
                    {"type": "mrkdwn", "text": f"*Status:*\n{status_text}"},
                    {"type": "mrkdwn", "text": f"*First response SLA:*\n{event.first_response_minutes}m"},
                    {"type": "mrkdwn", "text": f"*Time:*\n{format_sla_time(event.minutes_remaining)}"},
                ]
            },
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": f"Tenant: {event.tenant_id} | Elapsed: {event.minutes_elapsed}m"
                    }
                ]
            }
        ]

        return {"channel": channel, "blocks": blocks}

    async def notify(self, event: EscalationEvent) -> None:
        if not self._webhook_url:
            logger.debug("Slack webhook URL not configured, skipping notification")
            return

        if not self._circuit_breaker.allow_request():
            raise SinkDeliveryException("slack", "circuit breaker open")

        failures = []
        for channel in self._channels_for(event):
            error = await self._post(self.build_message(event, channel), event)
            if error is not None:
                failures.append(f"{channel}: {error}")

        if failures:
            raise SinkDeliveryException("slack", "; ".join(failures))

    async def _post(self, message: Dict[str, Any], event: EscalationEvent) -> Optional[str]:
        """Post one message with retries. Returns the last error, or None once delivered."""
        last_error = "no attempts made"

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=message)

                if response.status_code == 200:
                    self._circuit_breaker.record_success()
                    return None

                last_error = f"webhook returned {response.status_code}"
                logger.warning(
                    "Slack webhook returned non-200",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )
            except httpx.HTTPError as e:
                last_error = str(e) or type(e).__name__
                logger.warning(
                    "Slack notification attempt failed",
                    extra={"error": last_error, "attempt": attempt + 1, "thread_id": event.thread_id}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._backoff_base_seconds * (2 ** attempt))

        self._circuit_breaker.record_failure()
        return last_error

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class CompositeEscalationSink(IEscalationSink):
    """
    Fan an escalation out to several sinks.

    Sinks are notified concurrently so a slow sink cannot hold back the
    others. Failures are collected and re-raised as one.
    """

    def __init__(self, sinks: List[IEscalationSink]):
        self._sinks = sinks

    async def notify(self, event: EscalationEvent) -> None:
        results = await asyncio.gather(
            *(sink.notify(event) for sink in self._sinks),
            return_exceptions=True
        )
        failures = [
            f"{type(sink).__name__}: {result}"
            for sink, result in zip(self._sinks, results)
            if isinstance(result, Exception)
        ]

        if failures:
            raise SinkDeliveryException("composite", "; ".join(failures))


class ViewInvalidator(IViewInvalidator):
    """
    Signals that a tenant's SLA settings page must refresh.

    POSTs the settings path to the configured revalidation endpoint; with
    no endpoint configured it only logs.
    """

    def __init__(self, revalidate_url: Optional[str] = None, timeout_seconds: float = 5.0):
        self._revalidate_url = revalidate_url
        self._timeout_seconds = timeout_seconds

    @staticmethod
    def settings_path(tenant_id: str) -> str:
        return f"/app/{tenant_id}/settings/sla"

    async def invalidate(self, tenant_id: str) -> None:
        path = self.settings_path(tenant_id)
        if not self._revalidate_url:
            logger.debug("SLA settings view stale", extra={"tenant_id": tenant_id, "path": path})
            return

        async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
            response = await client.post(self._revalidate_url, json={"path": path})
            response.raise_for_status()


class SLAScheduler:
    """
    Wrapper for APScheduler for background SLA evaluation.

    Manages the lifecycle of the scheduler and jobs. max_instances=1 keeps
    a slow run from overlapping the next tick in this process.
    """

    def __init__(self, interval_seconds: int = 60):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[Any]]) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("SLA scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="sla_monitor",
            name="SLA Monitor Job",
            misfire_grace_time=60,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        self._scheduler.start()
        self._running = True

        logger.info(
            "SLA scheduler started",
            extra={"interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
