"""
通知事件类型定义模块 - 定义通知总线中传输的数据结构。

本模块定义了总线上流转的唯一数据类 BusEvent，以及所有事件名称常量：
- session:qr         会话收到新的配对二维码
- session:status     会话状态变化（认证、就绪、断线、认证失败、重启）
- session:destroyed  会话被销毁
- message:received   会话收到一条入站消息
- sessions:updated   批量变化（如启动恢复流程结束后）的汇总通知

【设计要点】
- data 字段直接就是推送给订阅者/Webhook 的负载，键名保持 camelCase
  （sessionId、qrCode、phoneNumber），与前端及外部系统的约定一致
- session_id 属性用于 Webhook 分发器判断事件是否属于某个具体会话
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

SESSION_QR = "session:qr"
SESSION_STATUS = "session:status"
SESSION_DESTROYED = "session:destroyed"
MESSAGE_RECEIVED = "message:received"
SESSIONS_UPDATED = "sessions:updated"

# 归属于单个会话、需要投递 Webhook 的事件
SESSION_SCOPED_EVENTS = frozenset({
    SESSION_QR,
    SESSION_STATUS,
    SESSION_DESTROYED,
    MESSAGE_RECEIVED,
})


@dataclass
class BusEvent:
    """
    总线事件 - 一次需要扇出的内部状态变化。

    属性:
        name: 事件名称（见模块顶部常量）
        data: 事件负载（dict，sessions:updated 时为 list）
        timestamp: 事件产生时间
        webhook: 发布时已解析好的 Webhook 目标 {"webhook_url", "name"}（不进入推送帧）
    """

    name: str
    data: Any
    timestamp: datetime = field(default_factory=datetime.now)
    webhook: dict[str, Any] | None = None

    @property
    def session_id(self) -> str | None:
        """事件所属会话 ID；汇总类事件返回 None。"""
        if isinstance(self.data, dict):
            return self.data.get("sessionId")
        return None

    def to_frame(self) -> dict[str, Any]:
        """转换为推送通道使用的 JSON 帧。"""
        return {"event": self.name, "data": self.data}
