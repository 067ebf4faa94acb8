"""
异步通知总线模块 - 会话事件扇出的核心实现。

本模块实现了 NotificationBus 类，它是 sessionhub 中所有状态变化通知的中枢。
采用生产者-消费者模式，基于 Python asyncio.Queue 实现异步扇出：

  SessionManager → publish() → 事件队列 → dispatch() → 订阅者回调
                                                       ├─ PushServer（WebSocket 广播）
                                                       └─ WebhookDispatcher（Webhook 投递）

【核心设计】
- 发布方只负责入队，永远不会被慢订阅者阻塞
- 订阅者可以按事件名过滤（events=None 表示订阅全部事件）
- 单个订阅者抛出的异常只记录日志，不影响其他订阅者和后续事件
"""

import asyncio
from typing import Any, Awaitable, Callable, Iterable

from loguru import logger

from sessionhub.bus.events import BusEvent

Subscriber = Callable[[BusEvent], Awaitable[None]]


class NotificationBus:
    """
    异步通知总线 - 解耦会话管理器与外部订阅者。

    属性:
        events: 待分发事件队列
        _subscribers: 订阅者列表，元素为 (回调, 事件名过滤集合或 None)
        _running: 分发器运行状态标志
        _task: 后台分发任务句柄
    """

    def __init__(self):
        self.events: asyncio.Queue[BusEvent] = asyncio.Queue()
        self._subscribers: list[tuple[Subscriber, frozenset[str] | None]] = []
        self._running = False
        self._task: asyncio.Task | None = None

    async def publish(self, name: str, data: Any, webhook: dict[str, Any] | None = None) -> None:
        """
        发布一条事件。

        参数:
            name: 事件名称（如 'session:status'）
            data: 事件负载
            webhook: 可选的 Webhook 目标；持久化记录已删除时由发布方提供
        """
        await self.events.put(BusEvent(name=name, data=data, webhook=webhook))

    def subscribe(self, callback: Subscriber, events: Iterable[str] | None = None) -> None:
        """
        注册订阅者。

        参数:
            callback: 异步回调函数，接收 BusEvent
            events: 关心的事件名集合，None 表示全部
        """
        names = frozenset(events) if events is not None else None
        self._subscribers.append((callback, names))

    async def _deliver(self, event: BusEvent) -> None:
        """把一条事件依次交给所有匹配的订阅者。"""
        for callback, names in self._subscribers:
            if names is not None and event.name not in names:
                continue
            try:
                await callback(event)
            except Exception as e:
                logger.error(f"Error dispatching {event.name}: {e}")

    async def dispatch(self) -> None:
        """
        事件分发器（后台常驻任务）。

        使用 wait_for 超时机制（1秒）避免在 stop() 时长时间阻塞。
        """
        self._running = True
        while self._running:
            try:
                event = await asyncio.wait_for(self.events.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            try:
                await self._deliver(event)
            finally:
                self.events.task_done()

    async def flush(self) -> int:
        """
        立即分发当前队列中所有积压事件（不依赖后台任务）。

        用于停机前清空队列，也方便测试中同步观察扇出结果。

        返回:
            本次分发的事件数量
        """
        count = 0
        while not self.events.empty():
            event = self.events.get_nowait()
            try:
                await self._deliver(event)
            finally:
                self.events.task_done()
            count += 1
        return count

    def start(self) -> None:
        """在后台启动分发器任务。"""
        if self._task is None:
            self._task = asyncio.create_task(self.dispatch())

    async def stop(self) -> None:
        """停止分发器，并把剩余事件分发完毕。"""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.flush()

    @property
    def pending(self) -> int:
        """待分发的事件数量。"""
        return self.events.qsize()
