"""
配置数据模型定义 (config/schema.py)
=================================
本模块使用 Pydantic 定义 sessionhub 的完整配置结构。
所有配置项都有默认值，用户只需在 config.json 中覆盖需要修改的部分。

整体配置结构（树形）：
Config (根配置)
├── sessions  - 会话目录、启动超时、号码后缀
├── bridge    - 协议桥接服务（WebSocket）连接参数
├── storage   - 数据库地址与数据保留策略
├── webhook   - Webhook 投递重试策略
└── push      - 实时推送（WebSocket 服务端）监听地址
"""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings

from sessionhub.utils.helpers import data_root


class SessionsConfig(BaseModel):
    """会话生命周期相关配置。"""
    sessions_dir: str = "~/.sessionhub/sessions"  # 每个会话独占的凭据目录的父目录
    qr_dir: str = "~/.sessionhub/qr"  # 二维码 PNG 文件目录
    startup_timeout_s: float = 60.0  # 客户端 initialize() 的最长等待时间（秒）
    phone_suffix: str = "@c.us"  # 收件人地址缺少域名时补上的后缀

    @property
    def sessions_path(self) -> Path:
        return Path(self.sessions_dir).expanduser()

    @property
    def qr_path(self) -> Path:
        return Path(self.qr_dir).expanduser()


class BridgeConfig(BaseModel):
    """协议桥接服务配置。每个会话各自建立一条到桥接服务的 WebSocket 连接。"""
    url: str = "ws://localhost:3001"  # 桥接服务 WebSocket 地址
    token: str = ""  # 桥接认证令牌（可选但推荐设置）
    reconnect_delay_s: float = 5.0  # 断线后重连间隔（秒）
    send_timeout_s: float = 30.0  # 等待发送回执的最长时间（秒）


class StorageConfig(BaseModel):
    """持久化配置。默认使用本地 SQLite 文件。"""
    database_url: str = ""  # 为空时使用数据根目录下的 sessionhub.db
    retention_days: int = 30  # Webhook 记录与消息日志的保留天数
    cleanup_interval_s: int = 6 * 60 * 60  # 清理任务执行间隔（秒）
    echo: bool = False  # 是否打印 SQL


class WebhookConfig(BaseModel):
    """Webhook 投递配置。"""
    max_attempts: int = 3  # 最大尝试次数（含首次）
    timeout_s: float = 10.0  # 单次 POST 超时（秒）
    backoff_base: float = 2.0  # 第 n 次失败后等待 backoff_base ** n 秒


class PushConfig(BaseModel):
    """实时推送服务配置。"""
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 18791


class Config(BaseSettings):
    """
    sessionhub 根配置类。

    继承自 Pydantic 的 BaseSettings，除了支持从 JSON 文件加载外，
    还支持从环境变量读取配置：
    - 环境变量前缀: SESSIONHUB_
    - 嵌套分隔符: __ (双下划线)
    - 示例: SESSIONHUB_BRIDGE__URL=ws://bridge:3001 可覆盖 bridge.url
    """
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    bridge: BridgeConfig = Field(default_factory=BridgeConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    push: PushConfig = Field(default_factory=PushConfig)

    @property
    def database_url(self) -> str:
        """数据库连接地址；未配置时落到数据目录下的 SQLite 文件。"""
        if self.storage.database_url:
            return self.storage.database_url
        db_path = data_root() / "sessionhub.db"
        return f"sqlite+aiosqlite:///{db_path}"

    model_config = ConfigDict(
        env_prefix="SESSIONHUB_",
        env_nested_delimiter="__"
    )
