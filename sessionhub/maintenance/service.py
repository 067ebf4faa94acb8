"""
数据保留清理服务 - 定期删除超出保留期的 Webhook 投递记录与消息日志。

架构设计：
- 基于 asyncio.Task 的定期循环，先等待一个间隔周期再执行
- 清理本身委托给持久化网关的 cleanup_old_data(days)
- 单次清理失败只记录日志，循环继续

run_now() 方法支持手动触发，CLI 与测试都通过它执行一次清理。
"""

import asyncio

from loguru import logger

from sessionhub.storage.base import PersistenceGateway

# 默认清理间隔：6 小时
DEFAULT_CLEANUP_INTERVAL_S = 6 * 60 * 60


class MaintenanceService:
    """
    数据保留清理服务。

    属性:
        gateway: 持久化网关
        retention_days: 保留天数
        interval_s: 清理间隔（秒）
        enabled: 是否启用
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        retention_days: int = 30,
        interval_s: int = DEFAULT_CLEANUP_INTERVAL_S,
        enabled: bool = True,
    ):
        self.gateway = gateway
        self.retention_days = retention_days
        self.interval_s = interval_s
        self.enabled = enabled
        self._running = False
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        if not self.enabled:
            logger.info("Maintenance disabled")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            f"Maintenance started (every {self.interval_s}s, keep {self.retention_days} days)"
        )

    def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_s)
                if self._running:
                    await self.run_now()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Maintenance error: {e}")

    async def run_now(self) -> dict[str, int]:
        """立即执行一次清理，返回各表删除行数。"""
        return await self.gateway.cleanup_old_data(self.retention_days)
