"""
协议客户端基类模块 - 定义每个会话所使用的聊天协议客户端的统一接口。

sessionhub 自身不实现聊天协议（配对加密、线路帧格式等），而是把它当作一个
不透明的能力来消费：每个会话持有一个 ProtocolClient 实例，只使用三个命令
initialize / send_message / destroy，并监听它发出的生命周期事件。

【生命周期事件】
- qr(payload)            需要扫码配对，payload 为二维码原始内容
- authenticated()        配对成功
- ready()                客户端完全可用，info 中可读取账号号码
- message(msg)           收到入站消息（InboundMessage）
- disconnected(reason)   连接断开
- auth_failure(reason)   配对/认证被拒绝

【事件订阅】
会话管理器在启动客户端之前调用一次 on_event() 注册处理函数。
处理函数是同步的，只负责把事件放入会话自己的队列，绝不能阻塞客户端。
"""

import base64
import mimetypes
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from loguru import logger

EVENT_QR = "qr"
EVENT_AUTHENTICATED = "authenticated"
EVENT_READY = "ready"
EVENT_MESSAGE = "message"
EVENT_DISCONNECTED = "disconnected"
EVENT_AUTH_FAILURE = "auth_failure"

EVENT_TYPES = frozenset({
    EVENT_QR,
    EVENT_AUTHENTICATED,
    EVENT_READY,
    EVENT_MESSAGE,
    EVENT_DISCONNECTED,
    EVENT_AUTH_FAILURE,
})


@dataclass
class ClientEvent:
    """协议客户端发出的一次生命周期事件。"""

    type: str
    payload: Any = None


@dataclass
class ClientInfo:
    """客户端就绪后可读取的账号信息。"""

    phone_number: str | None = None
    push_name: str | None = None


@dataclass
class InboundMessage:
    """
    协议层入站消息。

    属性:
        id: 协议内消息 ID
        sender: 发送方地址（如 15551234@c.us）
        recipient: 接收方地址
        body: 文本内容
        type: 协议消息类型（chat、image、ptt 等）
        timestamp: Unix 秒级时间戳
        has_media: 是否携带媒体
        is_forwarded: 是否为转发消息
    """

    id: str
    sender: str
    recipient: str
    body: str = ""
    type: str = "chat"
    timestamp: int = 0
    has_media: bool = False
    is_forwarded: bool = False


@dataclass
class MediaContent:
    """待发送的媒体内容（base64 编码）。"""

    mimetype: str
    data: str
    filename: str | None = None

    @classmethod
    def from_file_path(cls, path: str | Path) -> "MediaContent":
        """从本地文件构造媒体内容，MIME 类型按扩展名推断。"""
        p = Path(path)
        mimetype = mimetypes.guess_type(p.name)[0] or "application/octet-stream"
        data = base64.b64encode(p.read_bytes()).decode("ascii")
        return cls(mimetype=mimetype, data=data, filename=p.name)

    def to_dict(self) -> dict[str, Any]:
        return {"mimetype": self.mimetype, "data": self.data, "filename": self.filename}


EventHandler = Callable[[ClientEvent], None]


class ProtocolClient(ABC):
    """
    协议客户端抽象基类。

    属性:
        session_id: 绑定的会话 ID
        auth_path: 该会话独占的凭据目录（不同实例绝不共享）
        info: 就绪后的账号信息
        _handlers: 已注册的事件处理函数
    """

    def __init__(self, session_id: str, auth_path: Path):
        self.session_id = session_id
        self.auth_path = auth_path
        self.info: ClientInfo | None = None
        self._handlers: list[EventHandler] = []

    def on_event(self, handler: EventHandler) -> None:
        """注册事件处理函数。"""
        self._handlers.append(handler)

    def _emit(self, event_type: str, payload: Any = None) -> None:
        """把事件交给所有处理函数；处理函数的异常不会传回协议层。"""
        event = ClientEvent(type=event_type, payload=payload)
        for handler in self._handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Session {self.session_id} event handler failed on {event_type}: {e}")

    @abstractmethod
    async def initialize(self) -> None:
        """启动客户端（建立连接、加载已有凭据）。"""

    @abstractmethod
    async def send_message(self, chat_id: str, content: str | MediaContent) -> dict[str, Any]:
        """
        发送一条消息。

        返回:
            至少包含 "id" 键的结果字典
        """

    @abstractmethod
    async def destroy(self) -> None:
        """停止客户端并释放资源。"""
