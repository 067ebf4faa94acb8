"""
配置加载工具模块 (config/loader.py)
=================================
本模块负责 sessionhub 配置文件的加载、保存和格式转换：
- 配置文件默认路径: ~/.sessionhub/config.json（可用 SESSIONHUB_CONFIG 指定其他位置）
- 配置文件使用 camelCase（驼峰命名），Python 内部使用 snake_case（下划线命名）
- 文件中的值优先；文件未给出的字段再从 SESSIONHUB_* 环境变量读取，最后取默认值
"""

import json
import os
import re
from pathlib import Path
from typing import Any

from loguru import logger

from sessionhub.config.schema import Config
from sessionhub.utils.helpers import data_root

CONFIG_ENV_VAR = "SESSIONHUB_CONFIG"

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def get_config_path() -> Path:
    """配置文件路径：SESSIONHUB_CONFIG 环境变量，否则数据根目录下的 config.json"""
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return data_root() / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    加载配置。

    文件不存在时只使用环境变量与默认值；文件损坏或校验失败时记录警告并忽略该文件。

    参数:
        config_path: 可选的配置文件路径。为 None 时使用默认路径。
    """
    path = config_path or get_config_path()

    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            # 通过构造函数（而非 model_validate）传入，环境变量仍可补齐文件中缺失的字段
            return Config(**convert_keys(data))
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            logger.warning(f"Failed to load config from {path}: {e}; using default configuration")

    return Config()


def save_config(config: Config, config_path: Path | None = None) -> None:
    """
    将配置对象保存为 JSON 文件（camelCase 键名，带缩进）。

    参数:
        config: 要保存的配置对象
        config_path: 可选的保存路径。为 None 时使用默认路径。
    """
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        json.dump(convert_to_camel(config.model_dump()), f, indent=2)


def _convert(data: Any, rename) -> Any:
    if isinstance(data, dict):
        return {rename(k): _convert(v, rename) for k, v in data.items()}
    if isinstance(data, list):
        return [_convert(item, rename) for item in data]
    return data


def convert_keys(data: Any) -> Any:
    """递归转换为 snake_case 键名。例: {"startupTimeoutS": 30} → {"startup_timeout_s": 30}"""
    return _convert(data, camel_to_snake)


def convert_to_camel(data: Any) -> Any:
    """递归转换为 camelCase 键名。例: {"max_attempts": 3} → {"maxAttempts": 3}"""
    return _convert(data, snake_to_camel)


def camel_to_snake(name: str) -> str:
    """"maxAttempts" → "max_attempts"；已是 snake_case 的键原样返回。"""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def snake_to_camel(name: str) -> str:
    """"timeout_s" → "timeoutS" """
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)
