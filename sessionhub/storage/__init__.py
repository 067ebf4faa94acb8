"""持久化模块 - 会话、消息与 Webhook 投递记录的持久化网关。"""

from sessionhub.storage.base import PersistenceGateway
from sessionhub.storage.sql import SqlPersistenceGateway

__all__ = ["PersistenceGateway", "SqlPersistenceGateway"]
