"""
工具函数集合 - sessionhub 项目全局通用的辅助函数。

函数分类：
- 路径管理：data_root, get_data_path, ensure_dir
- 字符串工具：truncate_string, safe_filename, normalize_chat_id
- 时间工具：timestamp
"""

import os
import re
from datetime import datetime, timezone
from pathlib import Path

HOME_ENV_VAR = "SESSIONHUB_HOME"

_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def data_root() -> Path:
    """数据根目录：SESSIONHUB_HOME 环境变量，否则 ~/.sessionhub。不创建目录。"""
    override = os.environ.get(HOME_ENV_VAR)
    return Path(override).expanduser() if override else Path.home() / ".sessionhub"


def get_data_path(*parts: str) -> Path:
    """数据根目录下的子目录（不存在则创建）。例: get_data_path("qr")"""
    return ensure_dir(data_root().joinpath(*parts))


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def timestamp() -> str:
    """当前 UTC 时间，ISO 8601 格式。"""
    return datetime.now(timezone.utc).isoformat()


def truncate_string(s: str, max_len: int = 100, suffix: str = "...") -> str:
    """
    截断字符串，结果长度不超过 max_len（含后缀）。

    用于日志输出和 Webhook 响应体落库，避免把整段 HTML 错误页写进去。
    """
    if len(s) <= max_len:
        return s
    keep = max(max_len - len(suffix), 0)
    return s[:keep] + suffix[: max_len - keep]


def safe_filename(name: str) -> str:
    """把会话 ID 等外部输入转换为可用作文件名的字符串（非法字符替换为下划线）。"""
    cleaned = _UNSAFE_CHARS.sub("_", name).strip()
    return cleaned or "_"


def normalize_chat_id(recipient: str, suffix: str = "@c.us") -> str:
    """
    把收件人号码规范化为协议寻址格式。

    已带域名（包含 "@"）的地址原样返回，否则补上固定后缀：
    "15559999" → "15559999@c.us"
    """
    recipient = recipient.strip()
    if "@" in recipient:
        return recipient
    return f"{recipient}{suffix}"
