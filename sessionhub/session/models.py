"""
会话数据模型 - 会话、状态机、消息记录与发送结果。

【会话状态机】
  initializing → qr_received → authenticated → ready ⇄ disconnected
  终态/错误态 auth_failure，只能通过管理员重启回到 initializing。
  connecting 是启动恢复流程使用的过渡态，语义等同于 initializing。

【不变量】
- connected=True 当且仅当 status == ready
- qr_code 只在 qr_received 状态下非空，离开该状态时一律清除
- 状态只能沿 TRANSITIONS 表变化；重启（reset）是唯一的管理员旁路
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sessionhub.utils.helpers import timestamp


class SessionStatus(str, Enum):
    INITIALIZING = "initializing"
    CONNECTING = "connecting"
    QR_RECEIVED = "qr_received"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    DISCONNECTED = "disconnected"
    AUTH_FAILURE = "auth_failure"


S = SessionStatus

TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    S.INITIALIZING: frozenset({S.QR_RECEIVED, S.AUTHENTICATED, S.READY, S.DISCONNECTED, S.AUTH_FAILURE}),
    S.CONNECTING: frozenset({S.QR_RECEIVED, S.AUTHENTICATED, S.READY, S.DISCONNECTED, S.AUTH_FAILURE}),
    S.QR_RECEIVED: frozenset({S.QR_RECEIVED, S.AUTHENTICATED, S.READY, S.DISCONNECTED, S.AUTH_FAILURE}),
    S.AUTHENTICATED: frozenset({S.READY, S.DISCONNECTED, S.AUTH_FAILURE}),
    S.READY: frozenset({S.DISCONNECTED, S.AUTH_FAILURE}),
    S.DISCONNECTED: frozenset({S.QR_RECEIVED, S.AUTHENTICATED, S.READY, S.AUTH_FAILURE}),
    S.AUTH_FAILURE: frozenset(),
}

# 持久化状态中表示"曾经配对成功"的取值，启动恢复流程只恢复这些会话
RESTORABLE_STATUSES = frozenset({"connected", S.READY.value, S.AUTHENTICATED.value})


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


@dataclass
class Session:
    """
    单个会话 - 一个聊天协议身份的内存状态。

    属性（持久字段）:
        id: 会话唯一标识（uuid4，创建后不可变、永不复用）
        name / user_id: 显示名称与所属用户
        status / connected / phone_number / qr_code: 生命周期状态
        created_at / last_activity: ISO 8601 时间戳
        messages_sent / messages_received / errors: 计数器
        webhook_url: 该会话配置的 Webhook 地址（可选）

    属性（运行时字段，不序列化）:
        client: 当前绑定的协议客户端实例
        generation: 每绑定一个新客户端递增一次，用于丢弃旧客户端的迟到事件
        lock: 会话级临界区，所有对该会话字段的修改都在锁内进行
        events: 该会话的事件队列（保持协议事件的先后顺序）
        worker: 消费事件队列的后台任务
    """

    id: str
    name: str
    user_id: str | None = None
    status: SessionStatus = SessionStatus.INITIALIZING
    connected: bool = False
    phone_number: str | None = None
    created_at: str = field(default_factory=timestamp)
    last_activity: str = field(default_factory=timestamp)
    messages_sent: int = 0
    messages_received: int = 0
    errors: int = 0
    qr_code: str | None = None
    webhook_url: str | None = None

    client: Any = field(default=None, repr=False, compare=False)
    generation: int = field(default=0, repr=False, compare=False)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)
    events: asyncio.Queue = field(default_factory=asyncio.Queue, repr=False, compare=False)
    worker: asyncio.Task | None = field(default=None, repr=False, compare=False)

    def transition(self, target: SessionStatus) -> bool:
        """
        按状态机推进到 target，同时维护 connected / qr_code 不变量。

        返回:
            False 表示该转换不合法，状态保持不变
        """
        if not can_transition(self.status, target):
            return False
        self.status = target
        self.connected = target == SessionStatus.READY
        if target != SessionStatus.QR_RECEIVED:
            self.qr_code = None
        return True

    def reset(self, status: SessionStatus = SessionStatus.INITIALIZING) -> None:
        """管理员重启：无论当前状态如何都回到初始状态。"""
        self.status = status
        self.connected = False
        self.qr_code = None
        self.phone_number = None

    def touch(self) -> None:
        self.last_activity = timestamp()

    def to_dict(self) -> dict[str, Any]:
        """对外投影（camelCase 键名，不含运行时字段）。"""
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "connected": self.connected,
            "phoneNumber": self.phone_number,
            "createdAt": self.created_at,
            "lastActivity": self.last_activity,
            "userId": self.user_id,
            "messagesSent": self.messages_sent,
            "messagesReceived": self.messages_received,
            "errors": self.errors,
            "hasQr": self.qr_code is not None,
        }

    @classmethod
    def from_record(cls, row: dict[str, Any], status: SessionStatus | None = None) -> "Session":
        """从持久化记录重建会话（未知状态值落到 disconnected）。"""
        if status is None:
            try:
                status = SessionStatus(row.get("status"))
            except ValueError:
                status = SessionStatus.DISCONNECTED
        session = cls(
            id=row["id"],
            name=row.get("name") or "",
            user_id=row.get("user_id"),
            status=status,
            connected=status == SessionStatus.READY,
            phone_number=row.get("phone_number"),
            messages_sent=row.get("messages_sent") or 0,
            messages_received=row.get("messages_received") or 0,
            errors=row.get("errors") or 0,
            webhook_url=row.get("webhook_url"),
        )
        if row.get("created_at"):
            session.created_at = row["created_at"]
        if row.get("last_activity"):
            session.last_activity = row["last_activity"]
        return session

    def to_record(self) -> dict[str, Any]:
        """持久化网关 save_session 使用的记录。"""
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "phone_number": self.phone_number,
            "user_id": self.user_id,
            "webhook_url": self.webhook_url,
        }


@dataclass
class MessageRecord:
    """
    消息日志条目（写入一次，不再修改）。

    direction 取值 incoming / outgoing；status 取值 received / sent / failed。
    """

    id: str
    session_id: str
    direction: str
    sender: str
    recipient: str
    body: str
    type: str = "text"
    status: str = "received"
    timestamp: str = field(default_factory=timestamp)
    has_media: bool = False

    def to_event(self) -> dict[str, Any]:
        """message:received 事件负载。"""
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "from": self.sender,
            "to": self.recipient,
            "body": self.body,
            "type": self.type,
            "timestamp": self.timestamp,
            "hasMedia": self.has_media,
        }


@dataclass
class SendResult:
    """send_message 的结果；发送失败被捕获为 success=False，而不是抛异常。"""

    success: bool
    timestamp: str = field(default_factory=timestamp)
    message_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success, "timestamp": self.timestamp}
        if self.message_id is not None:
            data["messageId"] = self.message_id
        if self.error is not None:
            data["error"] = self.error
        return data
