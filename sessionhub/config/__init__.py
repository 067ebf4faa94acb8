"""
配置模块 (config)
================
- schema.py：Pydantic 配置模型（会话、桥接、存储、Webhook、推送五个分区）
- loader.py：config.json 的读写，camelCase ↔ snake_case 键名转换
"""

from sessionhub.config.loader import get_config_path, load_config, save_config
from sessionhub.config.schema import Config

__all__ = ["Config", "load_config", "save_config", "get_config_path"]
