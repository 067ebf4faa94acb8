"""
工具函数模块 - 提供 sessionhub 项目全局通用的辅助函数。
"""

from sessionhub.utils.helpers import data_root, ensure_dir, get_data_path, normalize_chat_id, timestamp

__all__ = ["data_root", "ensure_dir", "get_data_path", "normalize_chat_id", "timestamp"]
