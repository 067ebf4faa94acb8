"""
数据保留清理模块。

本模块提供 MaintenanceService，按固定间隔调用持久化网关清理过期的
Webhook 投递记录与消息日志。
"""

from sessionhub.maintenance.service import MaintenanceService

__all__ = ["MaintenanceService"]
