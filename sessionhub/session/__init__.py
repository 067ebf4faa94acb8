"""
会话模块 - 会话数据模型、会话表与生命周期管理器。

【架构定位】
会话管理器位于调用方（CLI / REST 层）与协议客户端之间：
- 调用方通过 SessionManager 创建、重启、销毁会话并发送消息
- 协议客户端的事件经由会话事件队列驱动状态机
- 状态变化经持久化网关落盘，再经通知总线扇出
"""

from sessionhub.session.errors import (
    SessionCreateError,
    SessionError,
    SessionNotFoundError,
    SessionNotReadyError,
    SessionRestartError,
    http_status_for,
)
from sessionhub.session.manager import SessionManager
from sessionhub.session.models import MessageRecord, SendResult, Session, SessionStatus
from sessionhub.session.store import SessionStore

__all__ = [
    "SessionManager",
    "Session",
    "SessionStatus",
    "SessionStore",
    "MessageRecord",
    "SendResult",
    "SessionError",
    "SessionNotFoundError",
    "SessionNotReadyError",
    "SessionCreateError",
    "SessionRestartError",
    "http_status_for",
]
