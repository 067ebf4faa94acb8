"""
实时推送通道 - 通过 WebSocket 把总线事件广播给已连接的订阅者。

协议（JSON 文本帧）：
- 服务端 → 客户端：{"event": "<事件名>", "data": {...}}
- 客户端 → 服务端：{"action": "join", "sessionId": "<id>"}
  加入某个会话的"房间"后，该连接只会收到这些会话的事件以及汇总事件；
  从未 join 过的连接接收全部事件。

依赖：
- websockets：WebSocket 服务端实现
"""

import asyncio
import json
from typing import Any

from loguru import logger

from sessionhub.bus.events import BusEvent
from sessionhub.bus.queue import NotificationBus


class PushServer:
    """
    WebSocket 推送服务。

    属性:
        host / port: 监听地址
        _clients: 当前连接 → 已加入的会话 ID 集合
        _server: websockets 服务对象
    """

    def __init__(self, bus: NotificationBus, host: str = "0.0.0.0", port: int = 18791):
        self.bus = bus
        self.host = host
        self.port = port
        self._clients: dict[Any, set[str]] = {}
        self._server = None
        bus.subscribe(self.broadcast)

    async def start(self) -> None:
        """启动 WebSocket 服务。"""
        import websockets

        self._server = await websockets.serve(self._handle_client, self.host, self.port)
        logger.info(f"Push server listening on ws://{self.host}:{self.port}")

    async def stop(self) -> None:
        """关闭服务并断开所有订阅者。"""
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        self._clients.clear()

    async def _handle_client(self, ws) -> None:
        """单个订阅者连接的生命周期：登记 → 读取 join 指令 → 断开时注销。"""
        self._clients[ws] = set()
        logger.info(f"Push client connected ({len(self._clients)} total)")
        try:
            async for raw in ws:
                self._handle_command(ws, raw)
        except Exception as e:
            logger.debug(f"Push client error: {e}")
        finally:
            self._clients.pop(ws, None)
            logger.info(f"Push client disconnected ({len(self._clients)} total)")

    def _handle_command(self, ws, raw: str) -> None:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON from push client: {raw[:100]}")
            return

        if data.get("action") == "join" and data.get("sessionId"):
            self._clients.setdefault(ws, set()).add(str(data["sessionId"]))
            logger.info(f"Push client joined session {data['sessionId']}")

    def _wants(self, rooms: set[str], event: BusEvent) -> bool:
        if not rooms:
            return True
        session_id = event.session_id
        return session_id is None or session_id in rooms

    async def broadcast(self, event: BusEvent) -> None:
        """把一条总线事件发送给所有感兴趣的连接。"""
        if not self._clients:
            return

        frame = json.dumps(event.to_frame(), default=str)
        targets = [ws for ws, rooms in list(self._clients.items()) if self._wants(rooms, event)]
        results = await asyncio.gather(
            *(ws.send(frame) for ws in targets), return_exceptions=True
        )
        for ws, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.debug(f"Dropping push client after send failure: {result}")
                self._clients.pop(ws, None)

    @property
    def client_count(self) -> int:
        return len(self._clients)
