"""
桥接协议客户端 - 通过 WebSocket 与外部协议桥接服务通信的 ProtocolClient 实现。

本模块实现了单个会话的协议客户端：
- 入站：从桥接服务接收生命周期事件与消息
- 出站：向桥接服务发送 init / send / destroy 指令

架构特点：
- 桥接模式：Python <-> WebSocket <-> 协议桥接服务 <-> 聊天平台
- 每个会话各自建立一条连接，init 帧携带会话 ID 与独占的凭据目录
- 内置断线重连机制（默认 5 秒间隔），断线时向会话管理器报告 disconnected

消息协议（Python <-> Bridge）：
- init：{"type": "init", "sessionId", "authPath", "token"}
- send：{"type": "send", "requestId", "to", "text" | "media"}
- destroy：{"type": "destroy"}
- 桥接回传：qr / authenticated / ready / message / disconnected / auth_failure
  以及发送回执 sent、错误 error
"""

import asyncio
import json
import uuid
from pathlib import Path
from typing import Any

from loguru import logger

from sessionhub.client.base import (
    EVENT_AUTH_FAILURE,
    EVENT_AUTHENTICATED,
    EVENT_DISCONNECTED,
    EVENT_MESSAGE,
    EVENT_QR,
    EVENT_READY,
    ClientInfo,
    InboundMessage,
    MediaContent,
    ProtocolClient,
)
from sessionhub.config.schema import BridgeConfig


class BridgeError(Exception):
    """桥接服务返回的错误。"""


class BridgeClient(ProtocolClient):
    """
    桥接协议客户端。

    属性:
        config: 桥接服务配置
        _ws: 当前 WebSocket 连接
        _task: 监听/重连循环任务
        _pending: 等待发送回执的请求 {requestId: Future}
    """

    def __init__(self, session_id: str, auth_path: Path, config: BridgeConfig):
        super().__init__(session_id, auth_path)
        self.config = config
        self._ws = None
        self._task: asyncio.Task | None = None
        self._running = False
        self._pending: dict[str, asyncio.Future] = {}

    async def _connect(self):
        """建立连接并发送 init 帧。"""
        import websockets

        ws = await websockets.connect(self.config.url)
        await ws.send(json.dumps({
            "type": "init",
            "sessionId": self.session_id,
            "authPath": str(self.auth_path),
            "token": self.config.token or None,
        }))
        self._ws = ws
        return ws

    async def initialize(self) -> None:
        """
        启动客户端。

        第一次连接失败会直接抛出（由会话管理器按启动失败处理），
        连接成功后在后台运行监听与重连循环。
        """
        logger.info(f"Session {self.session_id} connecting to bridge at {self.config.url}...")
        self._running = True
        ws = await self._connect()
        self._task = asyncio.create_task(self._run(ws))

    async def _run(self, ws) -> None:
        """监听循环；连接断开后上报 disconnected 并按间隔重连。"""
        while self._running:
            try:
                async for raw in ws:
                    try:
                        self._handle_bridge_message(raw)
                    except Exception as e:
                        logger.error(f"Session {self.session_id} error handling bridge message: {e}")
                reason = "bridge connection closed"
            except asyncio.CancelledError:
                break
            except Exception as e:
                reason = f"bridge connection error: {e}"

            self._ws = None
            self._fail_pending(BridgeError(reason))
            if not self._running:
                break

            logger.warning(f"Session {self.session_id} {reason}")
            self._emit(EVENT_DISCONNECTED, reason)

            # 断线重连循环
            while self._running:
                await asyncio.sleep(self.config.reconnect_delay_s)
                try:
                    ws = await self._connect()
                    logger.info(f"Session {self.session_id} reconnected to bridge")
                    break
                except asyncio.CancelledError:
                    return
                except Exception as e:
                    logger.warning(f"Session {self.session_id} reconnect failed: {e}")

    async def send_message(self, chat_id: str, content: str | MediaContent) -> dict[str, Any]:
        """发送一条消息并等待桥接服务的回执。"""
        if not self._ws:
            raise BridgeError("bridge not connected")

        request_id = uuid.uuid4().hex
        payload: dict[str, Any] = {"type": "send", "requestId": request_id, "to": chat_id}
        if isinstance(content, MediaContent):
            payload["media"] = content.to_dict()
        else:
            payload["text"] = content

        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._ws.send(json.dumps(payload))
            return await asyncio.wait_for(future, timeout=self.config.send_timeout_s)
        finally:
            self._pending.pop(request_id, None)

    async def destroy(self) -> None:
        """停止客户端：通知桥接服务注销会话并关闭连接。"""
        self._running = False

        if self._ws:
            try:
                await self._ws.send(json.dumps({"type": "destroy"}))
            except Exception as e:
                logger.debug(f"Session {self.session_id} destroy frame not delivered: {e}")
            await self._ws.close()
            self._ws = None

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        self._fail_pending(BridgeError("client destroyed"))

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()

    def _handle_bridge_message(self, raw: str) -> None:
        """
        处理从桥接服务收到的消息，根据 type 字段分发。

        参数:
            raw: 原始 JSON 字符串
        """
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Session {self.session_id} invalid JSON from bridge: {raw[:100]}")
            return

        msg_type = data.get("type")

        if msg_type == EVENT_QR:
            self._emit(EVENT_QR, data.get("qr", ""))

        elif msg_type == EVENT_AUTHENTICATED:
            self._emit(EVENT_AUTHENTICATED)

        elif msg_type == EVENT_READY:
            # 新版桥接直接给 phoneNumber，旧版给 wid（如 15551234@c.us）
            phone = data.get("phoneNumber")
            if not phone and data.get("wid"):
                phone = str(data["wid"]).split("@")[0]
            self.info = ClientInfo(phone_number=phone, push_name=data.get("pushName"))
            self._emit(EVENT_READY)

        elif msg_type == EVENT_MESSAGE:
            self._emit(EVENT_MESSAGE, InboundMessage(
                id=str(data.get("id", "")),
                sender=data.get("from", ""),
                recipient=data.get("to", ""),
                body=data.get("body", ""),
                type=data.get("messageType", "chat"),
                timestamp=int(data.get("timestamp") or 0),
                has_media=bool(data.get("hasMedia", False)),
                is_forwarded=bool(data.get("isForwarded", False)),
            ))

        elif msg_type == EVENT_DISCONNECTED:
            self._emit(EVENT_DISCONNECTED, data.get("reason", "unknown"))

        elif msg_type == EVENT_AUTH_FAILURE:
            self._emit(EVENT_AUTH_FAILURE, data.get("message", "authentication failed"))

        elif msg_type == "sent":
            future = self._pending.get(data.get("requestId", ""))
            if future and not future.done():
                future.set_result({"id": data.get("id")})

        elif msg_type == "error":
            future = self._pending.get(data.get("requestId", ""))
            if future and not future.done():
                future.set_exception(BridgeError(data.get("error", "send failed")))
            else:
                logger.error(f"Session {self.session_id} bridge error: {data.get('error')}")


def make_bridge_client_factory(config: BridgeConfig):
    """返回会话管理器使用的客户端工厂 (session_id, auth_path) -> BridgeClient。"""

    def factory(session_id: str, auth_path: Path) -> BridgeClient:
        return BridgeClient(session_id, auth_path, config)

    return factory
