"""
sessionhub - 多会话聊天客户端托管服务

模块概述：
    本文件是 sessionhub 包的入口文件（__init__.py），定义了包的元信息。
    sessionhub 负责托管大量相互独立的长连接聊天协议客户端（"会话"），
    对外暴露会话生命周期、扫码配对以及消息收发能力。

    整个服务的核心功能包括：
    - 会话生命周期管理（创建、恢复、重启、销毁）
    - 扫码配对（二维码图片 + 内联 data URL）
    - 事件总线与实时推送（WebSocket 广播）
    - 带重试与审计的 Webhook 投递
    - 基于关系型数据库的持久化（SQLAlchemy 异步引擎）
"""

# 版本号，遵循语义化版本规范（主版本.次版本.修订号）
__version__ = "0.1.0"

# 项目 logo 表情符号，用于 CLI 输出等场景的品牌标识
__logo__ = "📱"
