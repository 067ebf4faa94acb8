"""
数据库表定义 - SQLAlchemy 2.x 声明式映射。

三张表：
- sessions        会话的持久化影子副本（主键为会话 ID）
- messages        消息日志（只追加）
- webhook_events  Webhook 投递尝试记录（只追加）

时间列统一保存为不带时区的 UTC 时间，保证 SQLite 与其他后端行为一致。
"""

from datetime import datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: str | datetime | None) -> datetime:
    """把 ISO 字符串或带时区的时间统一转换为不带时区的 UTC 时间。"""
    if value is None:
        return utcnow()
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc).isoformat()


class Base(DeclarativeBase):
    pass


class SessionRow(Base):
    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    name: Mapped[str] = mapped_column(sa.String(255), nullable=False, default="")
    status: Mapped[str] = mapped_column(sa.String(32), nullable=False, default="initializing")
    phone_number: Mapped[Optional[str]] = mapped_column(sa.String(64), nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(sa.String(64), nullable=True, index=True)
    webhook_url: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)

    messages_sent: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    messages_received: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    errors: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(sa.DateTime, nullable=False, default=utcnow)
    last_activity: Mapped[datetime] = mapped_column(sa.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "phone_number": self.phone_number,
            "user_id": self.user_id,
            "webhook_url": self.webhook_url,
            "messages_sent": self.messages_sent,
            "messages_received": self.messages_received,
            "errors": self.errors,
            "created_at": to_iso(self.created_at),
            "last_activity": to_iso(self.last_activity),
        }


class MessageRow(Base):
    __tablename__ = "messages"

    # 协议消息 ID 只在单个账号内唯一，因此使用自增主键
    pk: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(sa.String(128), nullable=False, index=True)
    session_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    direction: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    from_number: Mapped[str] = mapped_column(sa.String(128), nullable=False, default="")
    to_number: Mapped[str] = mapped_column(sa.String(128), nullable=False, default="")
    body: Mapped[str] = mapped_column(sa.Text, nullable=False, default="")
    message_type: Mapped[str] = mapped_column(sa.String(32), nullable=False, default="text")
    status: Mapped[str] = mapped_column(sa.String(16), nullable=False, default="received")
    has_media: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    timestamp: Mapped[datetime] = mapped_column(sa.DateTime, nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "direction": self.direction,
            "from": self.from_number,
            "to": self.to_number,
            "body": self.body,
            "type": self.message_type,
            "status": self.status,
            "hasMedia": self.has_media,
            "timestamp": to_iso(self.timestamp),
        }


class WebhookEventRow(Base):
    __tablename__ = "webhook_events"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    webhook_url: Mapped[str] = mapped_column(sa.Text, nullable=False)
    payload: Mapped[str] = mapped_column(sa.Text, nullable=False)
    attempt: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    response_status: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    response_body: Mapped[str] = mapped_column(sa.Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(sa.DateTime, nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "event_type": self.event_type,
            "webhook_url": self.webhook_url,
            "payload": self.payload,
            "attempt": self.attempt,
            "response_status": self.response_status,
            "response_body": self.response_body,
            "created_at": to_iso(self.created_at),
        }
