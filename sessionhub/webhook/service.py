"""
Webhook 投递服务 - 把会话事件以 JSON 信封 POST 到会话配置的外部地址。

【投递语义】
- 至少一次：失败按 RetryPolicy 重试，成功条件为 HTTP 状态码 2xx 或 3xx
- 每一次尝试（包括网络错误，记为状态码 0）都在下一次尝试之前写入投递记录
- 尝试耗尽只记录警告并返回 False；投递永远不会向调用方抛出异常

【信封格式】
  {"event", "sessionId", "sessionName", "timestamp", "data"}

【与总线的关系】
WebhookDispatcher 订阅通知总线中归属单个会话的事件，为每个事件派生一个
后台投递任务，因此慢速的 Webhook 端点不会拖慢推送通道或会话事件处理。
"""

import asyncio
import json
from typing import Any

import httpx
from loguru import logger

from sessionhub.bus.events import SESSION_SCOPED_EVENTS, BusEvent
from sessionhub.bus.queue import NotificationBus
from sessionhub.storage.base import PersistenceGateway
from sessionhub.utils.helpers import timestamp, truncate_string
from sessionhub.webhook.policy import RetryPolicy

USER_AGENT = "sessionhub-webhook/1.0"


class WebhookService:
    """
    Webhook 投递服务。

    属性:
        gateway: 持久化网关（查询 Webhook 地址、记录投递尝试）
        policy: 重试策略
        timeout: 单次 POST 超时（秒）
        transport: 可选的 httpx 传输层（测试中注入 MockTransport）
    """

    def __init__(
        self,
        gateway: PersistenceGateway | None,
        policy: RetryPolicy | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.gateway = gateway
        self.policy = policy or RetryPolicy()
        self.timeout = timeout
        self.transport = transport

    async def _lookup(self, session_id: str) -> dict[str, Any] | None:
        if self.gateway is None:
            return None
        try:
            return await self.gateway.get_session_webhook(session_id)
        except Exception as e:
            logger.error(f"Session {session_id} failed to load webhook config: {e}")
            return None

    async def _record(
        self,
        session_id: str,
        event_type: str,
        url: str,
        body: str,
        attempt: int,
        status: int,
        outcome: str,
    ) -> None:
        if self.gateway is None:
            return
        try:
            await self.gateway.log_webhook_event(
                session_id, event_type, url, body, attempt, status, outcome
            )
        except Exception as e:
            logger.error(f"Session {session_id} failed to record webhook attempt {attempt}: {e}")

    async def send_webhook(
        self,
        session_id: str,
        event_type: str,
        payload: Any,
        target: dict[str, Any] | None = None,
    ) -> bool:
        """
        投递一个事件。

        参数:
            session_id: 会话 ID
            event_type: 事件名称（如 'message:received'）
            payload: 事件负载，放在信封的 data 字段中
            target: 已解析的 {"webhook_url", "name"}；给出时不再查询网关（会话已删除的情况）

        返回:
            True 表示某次尝试成功；未配置地址或尝试耗尽返回 False
        """
        config = target if target is not None else await self._lookup(session_id)
        url = (config or {}).get("webhook_url")
        if not url:
            return False

        envelope = {
            "event": event_type,
            "sessionId": session_id,
            "sessionName": config.get("name"),
            "timestamp": timestamp(),
            "data": payload,
        }
        body = json.dumps(envelope, ensure_ascii=False, default=str)
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for attempt in self.policy.attempts():
                try:
                    r = await client.post(url, content=body, headers=headers)
                    status, outcome = r.status_code, r.text
                except httpx.HTTPError as e:
                    status, outcome = 0, f"{type(e).__name__}: {e}"

                await self._record(session_id, event_type, url, body, attempt, status, outcome)

                if 200 <= status < 400:
                    logger.debug(f"Session {session_id} webhook {event_type} delivered (attempt {attempt})")
                    return True

                logger.debug(
                    f"Session {session_id} webhook {event_type} attempt {attempt} failed: "
                    f"{status} {truncate_string(outcome, 200)}"
                )
                await self.policy.wait(attempt)

        logger.warning(
            f"Session {session_id} webhook {event_type} to {url} failed after "
            f"{self.policy.max_attempts} attempts"
        )
        return False


class WebhookDispatcher:
    """
    总线订阅者 - 把会话事件交给 WebhookService 在后台投递。

    属性:
        service: Webhook 投递服务
        _tasks: 进行中的投递任务（停机时由 drain() 等待）
    """

    def __init__(self, service: WebhookService, bus: NotificationBus):
        self.service = service
        self._tasks: set[asyncio.Task] = set()
        bus.subscribe(self.handle, events=SESSION_SCOPED_EVENTS)

    async def handle(self, event: BusEvent) -> None:
        session_id = event.session_id
        if not session_id:
            return
        task = asyncio.create_task(
            self.service.send_webhook(session_id, event.name, event.data, target=event.webhook)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """等待所有进行中的投递完成。"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
