"""
通知总线模块 - 实现会话管理器与外部订阅者之间的解耦通信。

事件流向：
  协议客户端事件 → SessionManager（更新状态 + 持久化）→ NotificationBus
      → PushServer：通过 WebSocket 推送给实时订阅者
      → WebhookDispatcher：投递到会话配置的外部 Webhook 地址
"""

from sessionhub.bus.events import BusEvent
from sessionhub.bus.queue import NotificationBus

__all__ = ["NotificationBus", "BusEvent"]
