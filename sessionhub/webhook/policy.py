"""
Webhook 重试策略 - 尝试次数与退避时长的独立描述。

默认策略：最多 3 次尝试，第 n 次（从 0 开始）失败后等待 2**n 秒，
即 1s、2s，最后一次失败后不再等待。

等待通过注入的 sleep 协程完成，测试中可以替换为记录调用参数的假实现。
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable

Sleep = Callable[[float], Awaitable[None]]


def exponential_backoff(base: float = 2.0) -> Callable[[int], float]:
    """返回 attempt -> base ** attempt 的退避函数。"""

    def backoff(attempt: int) -> float:
        return float(base ** attempt)

    return backoff


@dataclass
class RetryPolicy:
    """
    重试策略。

    属性:
        max_attempts: 最大尝试次数（含首次）
        backoff: attempt（从 0 开始）→ 下一次尝试前的等待秒数
        sleep: 等待实现，默认 asyncio.sleep
    """

    max_attempts: int = 3
    backoff: Callable[[int], float] = field(default_factory=exponential_backoff)
    sleep: Sleep = asyncio.sleep

    def attempts(self) -> range:
        return range(self.max_attempts)

    def is_last(self, attempt: int) -> bool:
        return attempt >= self.max_attempts - 1

    async def wait(self, attempt: int) -> None:
        """第 attempt 次尝试失败后等待；最后一次之后直接返回。"""
        if self.is_last(attempt):
            return
        await self.sleep(self.backoff(attempt))
