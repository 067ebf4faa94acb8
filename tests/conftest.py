"""Shared fixtures: fake protocol client, in-memory gateway, wired-up manager."""

import asyncio
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from sessionhub.bus.events import BusEvent
from sessionhub.bus.queue import NotificationBus
from sessionhub.client.base import ClientInfo, MediaContent, ProtocolClient
from sessionhub.config.schema import SessionsConfig
from sessionhub.session.manager import SessionManager
from sessionhub.session.models import MessageRecord
from sessionhub.storage.base import PersistenceGateway
from sessionhub.utils.helpers import timestamp


class FakeClient(ProtocolClient):
    """Protocol client driven by the test: events are emitted on demand."""

    def __init__(self, session_id: str, auth_path: Path):
        super().__init__(session_id, auth_path)
        self.initialized = False
        self.destroyed = 0
        self.sent: list[tuple[str, Any]] = []
        self.init_error: Exception | None = None
        self.init_hang = False
        self.send_error: Exception | None = None

    async def initialize(self) -> None:
        if self.init_hang:
            await asyncio.Event().wait()
        if self.init_error is not None:
            raise self.init_error
        self.initialized = True

    async def send_message(self, chat_id: str, content: str | MediaContent) -> dict[str, Any]:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((chat_id, content))
        return {"id": f"msg-{len(self.sent)}"}

    async def destroy(self) -> None:
        self.destroyed += 1

    def emit(self, event_type: str, payload: Any = None) -> None:
        self._emit(event_type, payload)

    def become_ready(self, phone: str) -> None:
        self.info = ClientInfo(phone_number=phone)
        self._emit("ready")


class ClientFactory:
    """Records every client it builds; `configure` tweaks the next ones."""

    def __init__(self):
        self.clients: list[FakeClient] = []
        self.init_error: Exception | None = None
        self.init_hang = False

    def __call__(self, session_id: str, auth_path: Path) -> FakeClient:
        client = FakeClient(session_id, auth_path)
        client.init_error = self.init_error
        client.init_hang = self.init_hang
        self.clients.append(client)
        return client

    @property
    def last(self) -> FakeClient:
        return self.clients[-1]


class FakeGateway(PersistenceGateway):
    """In-memory gateway with a call log; `fail` makes named methods raise."""

    def __init__(self):
        self.sessions: dict[str, dict[str, Any]] = {}
        self.messages: list[MessageRecord] = []
        self.webhook_events: list[dict[str, Any]] = []
        self.calls: list[tuple] = []
        self.fail: set[str] = set()
        self.closed = False

    def _log(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        if name in self.fail:
            raise RuntimeError(f"{name} unavailable")

    def calls_to(self, name: str) -> list[tuple]:
        return [c[1:] for c in self.calls if c[0] == name]

    def add_row(self, session_id: str, status: str, **extra: Any) -> None:
        row = {
            "id": session_id,
            "name": extra.pop("name", session_id),
            "status": status,
            "phone_number": None,
            "user_id": None,
            "webhook_url": None,
            "messages_sent": 0,
            "messages_received": 0,
            "errors": 0,
            "created_at": timestamp(),
            "last_activity": timestamp(),
        }
        row.update(extra)
        self.sessions[session_id] = row

    async def save_session(self, data):
        self._log("save_session", data)
        row = self.sessions.get(data["id"])
        if row is None:
            self.add_row(data["id"], data["status"])
            row = self.sessions[data["id"]]
        row.update(data)

    async def get_all_sessions(self):
        self._log("get_all_sessions")
        return [dict(r) for r in self.sessions.values()]

    async def get_session(self, session_id):
        self._log("get_session", session_id)
        row = self.sessions.get(session_id)
        return dict(row) if row else None

    async def update_session_status(self, session_id, status, phone_number=None):
        self._log("update_session_status", session_id, status, phone_number)
        row = self.sessions.get(session_id)
        if row is not None:
            row["status"] = status
            if phone_number is not None:
                row["phone_number"] = phone_number

    async def delete_session(self, session_id):
        self._log("delete_session", session_id)
        self.sessions.pop(session_id, None)

    async def increment_session_message_count(self, session_id, direction):
        self._log("increment_session_message_count", session_id, direction)
        row = self.sessions.get(session_id)
        if row is not None:
            key = "messages_sent" if direction == "outgoing" else "messages_received"
            row[key] += 1

    async def increment_session_errors(self, session_id):
        self._log("increment_session_errors", session_id)
        row = self.sessions.get(session_id)
        if row is not None:
            row["errors"] += 1

    async def set_session_webhook(self, session_id, webhook_url):
        self._log("set_session_webhook", session_id, webhook_url)
        self.sessions[session_id]["webhook_url"] = webhook_url

    async def get_session_webhook(self, session_id):
        self._log("get_session_webhook", session_id)
        row = self.sessions.get(session_id)
        if row is None:
            return None
        return {"webhook_url": row["webhook_url"], "name": row["name"]}

    async def get_sessions_metrics(self):
        self._log("get_sessions_metrics")
        by_status: dict[str, int] = {}
        for row in self.sessions.values():
            by_status[row["status"]] = by_status.get(row["status"], 0) + 1
        return {"total": len(self.sessions), "byStatus": by_status}

    async def save_message(self, record):
        self._log("save_message", record)
        self.messages.append(record)

    async def get_messages(self, session_id=None, page=1, limit=50):
        self._log("get_messages", session_id, page, limit)
        rows = [m for m in self.messages if session_id is None or m.session_id == session_id]
        return {"messages": rows, "pagination": {"page": page, "limit": limit, "total": len(rows)}}

    async def get_total_message_count(self):
        return len(self.messages)

    async def get_messages_metrics(self):
        return {"hourlyMessages": [], "messageTypes": [], "messageStatus": []}

    async def log_webhook_event(self, session_id, event_type, webhook_url, payload, attempt,
                                response_status, response_body):
        self._log("log_webhook_event", session_id, event_type)
        self.webhook_events.append({
            "session_id": session_id,
            "event_type": event_type,
            "webhook_url": webhook_url,
            "payload": payload,
            "attempt": attempt,
            "response_status": response_status,
            "response_body": response_body,
        })

    async def get_webhook_events(self, session_id, limit=100):
        return [e for e in self.webhook_events if e["session_id"] == session_id][-limit:]

    async def cleanup_old_data(self, days=30):
        self._log("cleanup_old_data", days)
        return {"webhook_events": 0, "messages": 0}

    async def close(self):
        self.closed = True


class EventRecorder:
    """Bus subscriber that keeps every delivered event."""

    def __init__(self, bus: NotificationBus):
        self.events: list[BusEvent] = []
        bus.subscribe(self)

    async def __call__(self, event: BusEvent) -> None:
        self.events.append(event)

    def named(self, name: str) -> list[Any]:
        return [e.data for e in self.events if e.name == name]


@pytest.fixture
def sessions_config(tmp_path) -> SessionsConfig:
    return SessionsConfig(
        sessions_dir=str(tmp_path / "sessions"),
        qr_dir=str(tmp_path / "qr"),
        startup_timeout_s=0.5,
    )


@pytest.fixture
def factory() -> ClientFactory:
    return ClientFactory()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture
async def bus() -> NotificationBus:
    return NotificationBus()


@pytest_asyncio.fixture
async def recorder(bus) -> EventRecorder:
    return EventRecorder(bus)


@pytest_asyncio.fixture
async def manager(sessions_config, bus, factory, gateway):
    mgr = SessionManager(sessions_config, bus, factory, gateway=gateway)
    yield mgr
    await mgr.close()


async def settle(manager: SessionManager) -> None:
    """Let every session worker apply its queued events, then deliver bus events."""
    await manager.drain_events()
    await manager.bus.flush()
