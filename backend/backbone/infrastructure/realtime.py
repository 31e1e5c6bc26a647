"""Postgres Push Endpoint — change-feed channels over asyncpg LISTEN/NOTIFY.

Invariants:
    - One dedicated asyncpg connection per channel; released by remove_channel()
    - Lifecycle reported through the state callback: SUBSCRIBED once listening, TIMED_OUT when
      connecting exceeds the timeout, CHANNEL_ERROR on connect failure or connection loss,
      CLOSED after an explicit close
    - Payloads that fail to decode, or do not match the event/row filter, never reach the callback

Design Decisions:
    - LISTEN channel named realtime:<schema>.<table>; the backing store's triggers publish
      JSON rows there (eventType/type, old/old_record, new/record)
    - Row filters use the change-feed syntax "column=eq.value" and compare string forms
    - asyncpg directly (not SQLAlchemy): LISTEN needs a long-lived raw connection
"""

import asyncio
import json
import logging
from typing import Any

import asyncpg

from backbone.core.domain_types import ChangePayload, ChannelSpec, ChannelState
from backbone.core.endpoint_protocols import ChangeCallback, StateCallback
from backbone.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

NOTIFY_PREFIX = "realtime"


def notify_channel_name(spec: ChannelSpec) -> str:
    return f"{NOTIFY_PREFIX}:{spec.schema}.{spec.table}"


def parse_row_filter(expression: str | None) -> tuple[str, str] | None:
    """Parse "column=eq.value" into (column, value)."""
    if not expression:
        return None
    column, sep, rest = expression.partition("=")
    op, dot, value = rest.partition(".")
    if not sep or not dot or op != "eq" or not column:
        raise ConfigurationError(f"Unsupported row filter: {expression!r}")
    return column.strip(), value


def decode_payload(raw: str, spec: ChannelSpec) -> ChangePayload:
    """Decode a NOTIFY payload into a ChangePayload."""
    body = json.loads(raw)
    if not isinstance(body, dict):
        raise ValueError("Change payload must be a JSON object")
    event_type = str(body.get("eventType") or body.get("type") or "").upper()
    if not event_type:
        raise ValueError("Change payload has no event type")
    return ChangePayload(
        event_type=event_type,
        table=body.get("table", spec.table),
        schema=body.get("schema", spec.schema),
        old=body.get("old") or body.get("old_record") or {},
        new=body.get("new") or body.get("record") or {},
    )


def payload_matches(payload: ChangePayload, spec: ChannelSpec) -> bool:
    if not spec.event.matches(payload.event_type):
        return False
    row_filter = parse_row_filter(spec.filter)
    if row_filter is None:
        return True
    column, value = row_filter
    row = payload.old if payload.event_type == "DELETE" else payload.new
    return column in row and str(row[column]) == value


class PgNotifyChannel:
    """A single LISTEN subscription on its own connection."""

    def __init__(
        self,
        name: str,
        spec: ChannelSpec,
        on_change: ChangeCallback,
        dsn: str,
        connect_timeout_ms: int,
    ):
        self.name = name
        self.spec = spec
        self._on_change = on_change
        self._dsn = dsn
        self._connect_timeout_ms = connect_timeout_ms
        self._notify_channel = notify_channel_name(spec)
        self._conn: Any = None
        self._on_state: StateCallback | None = None
        self._closing = False
        parse_row_filter(spec.filter)  # reject bad filters before connecting

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def subscribe(self, on_state: StateCallback) -> None:
        self._on_state = on_state
        try:
            conn = await asyncio.wait_for(
                asyncpg.connect(self._dsn), self._connect_timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            on_state(ChannelState.TIMED_OUT, None)
            return
        except Exception as e:
            on_state(ChannelState.CHANNEL_ERROR, e)
            return
        self._conn = conn
        try:
            conn.add_termination_listener(self._on_terminated)
            await conn.add_listener(self._notify_channel, self._on_notify)
        except Exception as e:
            await self._close_connection()
            on_state(ChannelState.CHANNEL_ERROR, e)
            return
        on_state(ChannelState.SUBSCRIBED, None)

    async def close(self) -> None:
        self._closing = True
        was_open = self.is_open
        await self._close_connection()
        if was_open and self._on_state is not None:
            self._on_state(ChannelState.CLOSED, None)

    async def _close_connection(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            await conn.remove_listener(self._notify_channel, self._on_notify)
        except Exception as e:
            logger.debug(f"remove_listener failed on {self.name}: {e}")
        try:
            await conn.close()
        except Exception as e:
            logger.debug(f"Closing listener connection for {self.name} failed: {e}")

    def _on_terminated(self, conn: Any) -> None:
        if self._closing:
            return
        self._conn = None
        if self._on_state is not None:
            self._on_state(
                ChannelState.CHANNEL_ERROR,
                ConnectionError(f"Listener connection for {self.name} terminated"),
            )

    def _on_notify(self, conn: Any, pid: int, channel: str, raw: str) -> None:
        try:
            payload = decode_payload(raw, self.spec)
        except ValueError as e:
            logger.warning(f"Dropping undecodable change payload on {self.name}: {e}")
            return
        if payload_matches(payload, self.spec):
            self._on_change(payload)


class PostgresPushEndpoint:
    """Hands out PgNotifyChannel instances bound to one DSN."""

    def __init__(self, dsn: str, connect_timeout_ms: int = 10_000):
        self._dsn = dsn
        self._connect_timeout_ms = connect_timeout_ms

    def channel(
        self, name: str, spec: ChannelSpec, on_change: ChangeCallback,
    ) -> PgNotifyChannel:
        return PgNotifyChannel(
            name, spec, on_change, self._dsn, self._connect_timeout_ms,
        )

    async def remove_channel(self, channel: PgNotifyChannel) -> None:
        await channel.close()
