"""
会话存储 - 进程内的会话表，是进程存活期间会话状态的唯一可信来源。

SessionStore 由一个 SessionManager 实例独占，不是模块级全局变量，
因此测试中可以同时存在多个互不干扰的管理器。
"""

from typing import Iterator

from sessionhub.session.models import Session


class SessionStore:
    """
    会话 ID → Session 的映射。

    只有 SessionManager 会修改它；对外的读操作都是纯投影。
    """

    def __init__(self):
        self._sessions: dict[str, Session] = {}

    def add(self, session: Session) -> None:
        if session.id in self._sessions:
            raise ValueError(f"Session {session.id} already registered")
        self._sessions[session.id] = session

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Session | None:
        return self._sessions.pop(session_id, None)

    def ids(self) -> list[str]:
        return list(self._sessions.keys())

    def values(self) -> list[Session]:
        return list(self._sessions.values())

    def connected_count(self) -> int:
        return sum(1 for s in self._sessions.values() if s.connected)

    def status_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for s in self._sessions.values():
            counts[s.status.value] = counts.get(s.status.value, 0) + 1
        return counts

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))
