"""Data Layer — composition root wiring monitor, executor and subscription manager together.

Invariants:
    - One ConnectionMonitor per DataLayer; executor and manager receive it by reference
    - stop() tears subscriptions down before the monitor, then disposes the engine it owns

Design Decisions:
    - Explicit instance on app.state instead of a module singleton (ADR: no global import
      side effects; tests build independent layers with fakes)
    - Endpoints and notifier injectable; defaults built from Settings
"""

import logging
from dataclasses import dataclass

from backbone.config import Settings
from backbone.core.endpoint_protocols import DataEndpoint, PushEndpoint
from backbone.infrastructure.database import DatabaseSessionManager
from backbone.infrastructure.notifications import NoticeBoard
from backbone.infrastructure.realtime import PostgresPushEndpoint
from backbone.services.connection_monitor import ConnectionMonitor
from backbone.services.query_executor import QueryExecutor
from backbone.services.subscription_manager import SubscriptionManager

logger = logging.getLogger(__name__)


@dataclass
class DataLayer:
    monitor: ConnectionMonitor
    executor: QueryExecutor
    subscriptions: SubscriptionManager
    notices: NoticeBoard
    database: DatabaseSessionManager | None = None

    async def start(self) -> None:
        await self.monitor.initialize()
        logger.info(
            "Data layer started", extra={"status": self.monitor.status.value},
        )

    async def stop(self) -> None:
        await self.subscriptions.cleanup()
        await self.monitor.cleanup()
        if self.database is not None:
            await self.database.dispose()
        logger.info("Data layer stopped")


def build_data_layer(
    settings: Settings,
    *,
    data_endpoint: DataEndpoint | None = None,
    push_endpoint: PushEndpoint | None = None,
    notices: NoticeBoard | None = None,
) -> DataLayer:
    """Assemble a DataLayer from settings, substituting any injected collaborators."""
    notices = notices or NoticeBoard(settings.notice_history_size)
    database = None
    if data_endpoint is None:
        database = DatabaseSessionManager(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
        )
        data_endpoint = database
    if push_endpoint is None:
        push_endpoint = PostgresPushEndpoint(
            settings.listener_dsn, settings.realtime_connect_timeout_ms,
        )

    monitor = ConnectionMonitor(data_endpoint, notices, settings.monitor_config())
    executor = QueryExecutor(
        monitor, notices, settings.query_options(),
        connecting_grace_ms=settings.connecting_grace_ms,
    )
    subscriptions = SubscriptionManager(push_endpoint, monitor, notices)
    return DataLayer(monitor, executor, subscriptions, notices, database)
