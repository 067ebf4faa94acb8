"""
协议客户端模块 - 会话所消费的聊天协议能力。

- ProtocolClient：统一接口（initialize / send_message / destroy + 生命周期事件）
- BridgeClient：通过 WebSocket 连接外部协议桥接服务的默认实现
"""

from sessionhub.client.base import ClientEvent, ClientInfo, InboundMessage, MediaContent, ProtocolClient
from sessionhub.client.bridge import BridgeClient, make_bridge_client_factory

__all__ = [
    "ProtocolClient",
    "ClientEvent",
    "ClientInfo",
    "InboundMessage",
    "MediaContent",
    "BridgeClient",
    "make_bridge_client_factory",
]
