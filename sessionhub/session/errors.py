"""
会话相关异常。

只有以下几类错误会以异常形式交还给调用方（HTTP 层）：
- SessionNotFoundError：会话 ID 不存在
- SessionNotReadyError：会话不在 ready/connected 状态时尝试发送消息
- SessionCreateError / SessionRestartError：
  创建/重启时协议客户端启动失败（对外只暴露通用信息，原始异常通过 __cause__ 链保留）

销毁会话时客户端停止与文件清理都是尽力而为，只记录日志，不会抛出。

持久化失败、Webhook 投递失败、恢复流程中的单会话失败都在调用点记录日志后吞掉。
"""


class SessionError(Exception):
    """会话错误基类。"""


class SessionNotFoundError(SessionError):
    def __init__(self, session_id: str):
        super().__init__("Session not found")
        self.session_id = session_id


class SessionNotReadyError(SessionError):
    def __init__(self, session_id: str, status: str, connected: bool):
        super().__init__(
            f"Session is not ready to send messages (status={status}, connected={connected})"
        )
        self.session_id = session_id
        self.status = status
        self.connected = connected


class SessionCreateError(SessionError):
    def __init__(self, message: str = "Failed to create session"):
        super().__init__(message)


class SessionRestartError(SessionError):
    def __init__(self, message: str = "Failed to restart session"):
        super().__init__(message)


def http_status_for(exc: Exception) -> int:
    """REST 层的错误映射：NotFound → 404，NotReady → 409，其余 → 500。"""
    if isinstance(exc, SessionNotFoundError):
        return 404
    if isinstance(exc, SessionNotReadyError):
        return 409
    return 500
