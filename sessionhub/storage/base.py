"""
持久化网关接口 - 会话、消息与 Webhook 投递记录的持久化契约。

会话管理器与 Webhook 服务只依赖这个抽象接口。所有操作在单行级别原子，
管理器不需要跨表事务；任何一次调用抛出的异常都由调用方捕获并记录日志，
不会中断内存中的状态转换。
"""

from abc import ABC, abstractmethod
from typing import Any

from sessionhub.session.models import MessageRecord


class PersistenceGateway(ABC):
    """持久化网关抽象基类。"""

    # ----- 会话 -----

    @abstractmethod
    async def save_session(self, data: dict[str, Any]) -> None:
        """插入或覆盖一条会话记录（键：id）。"""

    @abstractmethod
    async def get_all_sessions(self) -> list[dict[str, Any]]:
        """按创建时间倒序返回全部会话记录。"""

    @abstractmethod
    async def get_session(self, session_id: str) -> dict[str, Any] | None:
        """读取单条会话记录。"""

    @abstractmethod
    async def update_session_status(
        self, session_id: str, status: str, phone_number: str | None = None
    ) -> None:
        """更新会话状态（phone_number 为 None 时保留原值）与最后活跃时间。"""

    @abstractmethod
    async def delete_session(self, session_id: str) -> None:
        """删除会话记录。"""

    @abstractmethod
    async def increment_session_message_count(self, session_id: str, direction: str) -> None:
        """direction 为 incoming / outgoing，对应的计数器加一。"""

    @abstractmethod
    async def increment_session_errors(self, session_id: str) -> None:
        """会话错误计数器加一。"""

    @abstractmethod
    async def set_session_webhook(self, session_id: str, webhook_url: str | None) -> None:
        """设置或清除会话的 Webhook 地址。"""

    @abstractmethod
    async def get_session_webhook(self, session_id: str) -> dict[str, Any] | None:
        """返回 {"webhook_url", "name"}；会话不存在时返回 None。"""

    @abstractmethod
    async def get_sessions_metrics(self) -> dict[str, Any]:
        """返回 {"total", "byStatus"}。"""

    # ----- 消息 -----

    @abstractmethod
    async def save_message(self, record: MessageRecord) -> None:
        """追加一条消息日志。"""

    @abstractmethod
    async def get_messages(
        self, session_id: str | None = None, page: int = 1, limit: int = 50
    ) -> dict[str, Any]:
        """分页读取消息日志：{"messages": [...], "pagination": {...}}。"""

    @abstractmethod
    async def get_total_message_count(self) -> int:
        """消息总数。"""

    @abstractmethod
    async def get_messages_metrics(self) -> dict[str, Any]:
        """返回 {"hourlyMessages", "messageTypes", "messageStatus"}。"""

    # ----- Webhook 投递记录 -----

    @abstractmethod
    async def log_webhook_event(
        self,
        session_id: str,
        event_type: str,
        webhook_url: str,
        payload: str,
        attempt: int,
        response_status: int,
        response_body: str,
    ) -> None:
        """追加一次 Webhook 投递尝试记录。"""

    @abstractmethod
    async def get_webhook_events(self, session_id: str, limit: int = 100) -> list[dict[str, Any]]:
        """按时间正序返回某会话最近的投递尝试记录。"""

    # ----- 维护 -----

    @abstractmethod
    async def cleanup_old_data(self, days: int = 30) -> dict[str, int]:
        """删除超出保留期的投递记录与消息日志，返回各表删除行数。"""

    @abstractmethod
    async def close(self) -> None:
        """释放连接。"""
