"""
会话生命周期管理器 - 会话状态的唯一修改者。

本模块实现 SessionManager，负责：
1. 创建 / 重启 / 销毁 / 启动恢复会话，驱动每个会话的协议客户端
2. 把协议客户端发出的生命周期事件翻译为状态转换
3. 通过持久化网关保存影子副本（尽力而为）
4. 通过通知总线把状态变化扇出给推送通道和 Webhook

【事件桥接】
每绑定一个协议客户端，管理器就给它注册一个处理函数。处理函数只做一件事：
把 (generation, event) 放进会话自己的 FIFO 队列。每个会话有一个后台 worker
按顺序取出事件，在会话锁内应用。

  ProtocolClient._emit() → session.events → _run_events() → _apply_event()
                                                 （持锁）    ├─ 状态机
                                                             ├─ 持久化网关
                                                             └─ 通知总线

generation 在每次绑定新客户端时递增；与当前 generation 不一致的事件来自已被
替换的旧客户端，直接丢弃。

【并发模型】
- 同一会话的所有修改（事件 worker、重启、销毁、发送计数）都在 session.lock 内串行
- 不同会话之间互不协调
- 客户端 initialize() 在锁内执行，期间到达的事件排队，等启动完成后再应用
"""

from __future__ import annotations

import asyncio
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from loguru import logger

from sessionhub.bus.events import (
    MESSAGE_RECEIVED,
    SESSION_DESTROYED,
    SESSION_QR,
    SESSION_STATUS,
    SESSIONS_UPDATED,
)
from sessionhub.bus.queue import NotificationBus
from sessionhub.client.base import (
    EVENT_AUTH_FAILURE,
    EVENT_AUTHENTICATED,
    EVENT_DISCONNECTED,
    EVENT_MESSAGE,
    EVENT_QR,
    EVENT_READY,
    ClientEvent,
    InboundMessage,
    MediaContent,
    ProtocolClient,
)
from sessionhub.config.schema import SessionsConfig
from sessionhub.session.errors import (
    SessionCreateError,
    SessionNotFoundError,
    SessionNotReadyError,
    SessionRestartError,
)
from sessionhub.session.models import (
    RESTORABLE_STATUSES,
    MessageRecord,
    SendResult,
    Session,
    SessionStatus,
)
from sessionhub.session.qr import QRRenderer
from sessionhub.session.store import SessionStore
from sessionhub.utils.helpers import ensure_dir, normalize_chat_id, timestamp

if TYPE_CHECKING:
    from sessionhub.storage.base import PersistenceGateway

ClientFactory = Callable[[str, Path], ProtocolClient]


class SessionManager:
    """
    会话生命周期管理器。

    属性:
        config: 会话配置（凭据目录、启动超时等）
        bus: 通知总线
        gateway: 持久化网关（None 表示纯内存模式）
        client_factory: (session_id, auth_path) -> ProtocolClient
        qr: 二维码渲染器
        store: 本实例独占的会话表
        _background: 启动恢复流程派生的后台启动任务
    """

    def __init__(
        self,
        config: SessionsConfig,
        bus: NotificationBus,
        client_factory: ClientFactory,
        gateway: PersistenceGateway | None = None,
        qr_renderer: QRRenderer | None = None,
    ):
        self.config = config
        self.bus = bus
        self.gateway = gateway
        self.client_factory = client_factory
        self.qr = qr_renderer or QRRenderer(config.qr_path)
        self.store = SessionStore()
        self._background: set[asyncio.Task] = set()

    # ========== 内部工具 ==========

    def auth_path(self, session_id: str) -> Path:
        """会话独占的凭据目录。"""
        return self.config.sessions_path / session_id

    def _require(self, session_id: str) -> Session:
        session = self.store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def _persist(self, session_id: str, method: str, *args: Any) -> None:
        """调用持久化网关；任何异常只记录日志。"""
        if self.gateway is None:
            return
        try:
            await getattr(self.gateway, method)(*args)
        except Exception as e:
            logger.error(f"Session {session_id} persistence call {method} failed: {e}")

    def _bind_client(self, session: Session) -> ProtocolClient:
        """
        为会话构造新的协议客户端并注册事件处理函数（必须在启动之前）。

        generation 递增后，旧客户端仍在队列中的事件都会被 worker 丢弃。
        """
        session.generation += 1
        generation = session.generation
        client = self.client_factory(session.id, self.auth_path(session.id))

        def handler(event: ClientEvent) -> None:
            session.events.put_nowait((generation, event))

        client.on_event(handler)
        session.client = client
        return client

    async def _start_client(self, client: ProtocolClient) -> None:
        await asyncio.wait_for(client.initialize(), timeout=self.config.startup_timeout_s)

    async def _destroy_client(self, session_id: str, client: ProtocolClient | None) -> None:
        if client is None:
            return
        try:
            await client.destroy()
        except Exception as e:
            logger.warning(f"Session {session_id} client destroy failed: {e}")

    def _start_worker(self, session: Session) -> None:
        if session.worker is None or session.worker.done():
            session.worker = asyncio.create_task(self._run_events(session))

    async def _stop_worker(self, session: Session) -> None:
        worker, session.worker = session.worker, None
        if worker is None or worker is asyncio.current_task():
            return
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _remove_artifacts(self, session_id: str) -> None:
        try:
            shutil.rmtree(self.auth_path(session_id))
        except FileNotFoundError:
            pass
        except Exception as e:
            logger.warning(f"Session {session_id} failed to remove credential directory: {e}")
        self._remove_qr(session_id)

    def _remove_qr(self, session_id: str) -> None:
        try:
            self.qr.remove(session_id)
        except Exception as e:
            logger.warning(f"Session {session_id} failed to remove QR image: {e}")

    # ========== 生命周期操作 ==========

    async def create_session(
        self, name: str, user_id: str | None = None, webhook_url: str | None = None
    ) -> dict[str, Any]:
        """
        创建会话并启动其协议客户端。

        只有客户端启动成功后会话才会登记到会话表和持久化网关；
        任何一步失败都会回滚（销毁客户端、删除凭据目录），并抛出 SessionCreateError。

        返回:
            {"id", "name", "status", "createdAt", "connected"}
        """
        session_id = str(uuid.uuid4())
        session = Session(id=session_id, name=name, user_id=user_id, webhook_url=webhook_url)
        client: ProtocolClient | None = None

        async with session.lock:
            try:
                ensure_dir(self.auth_path(session_id))
                client = self._bind_client(session)
                self._start_worker(session)
                await self._start_client(client)
            except Exception as e:
                logger.error(f"Session {session_id} failed to start: {e!r}")
                await self._stop_worker(session)
                await self._destroy_client(session_id, client)
                session.client = None
                shutil.rmtree(self.auth_path(session_id), ignore_errors=True)
                raise SessionCreateError() from e

            self.store.add(session)
            await self._persist(session_id, "save_session", session.to_record())
            await self.bus.publish(SESSION_STATUS, {
                "sessionId": session_id,
                "status": session.status.value,
                "connected": False,
            })

        logger.info(f"Session {session_id} created ({name})")
        return {
            "id": session_id,
            "name": name,
            "status": SessionStatus.INITIALIZING.value,
            "createdAt": session.created_at,
            "connected": False,
        }

    async def restart_session(self, session_id: str) -> dict[str, Any]:
        """
        重启会话：销毁当前客户端，状态回到 initializing，用同一凭据目录启动新客户端。

        与当前状态无关（包括 auth_failure）。新客户端启动失败时会话落到
        disconnected，错误计数加一，并抛出 SessionRestartError。
        """
        session = self._require(session_id)

        async with session.lock:
            if self.store.get(session_id) is not session:
                raise SessionNotFoundError(session_id)

            await self._destroy_client(session_id, session.client)
            session.reset()
            session.touch()
            client = self._bind_client(session)
            self._start_worker(session)
            self._remove_qr(session_id)

            try:
                await self._start_client(client)
            except Exception as e:
                logger.error(f"Session {session_id} failed to restart: {e!r}")
                await self._destroy_client(session_id, client)
                # 让新客户端的迟到事件也失效
                session.generation += 1
                session.client = None
                session.transition(SessionStatus.DISCONNECTED)
                session.errors += 1
                await self._persist(session_id, "update_session_status", session_id, session.status.value)
                await self._persist(session_id, "increment_session_errors", session_id)
                await self.bus.publish(SESSION_STATUS, {
                    "sessionId": session_id,
                    "status": session.status.value,
                    "connected": False,
                    "error": "Failed to restart session",
                })
                raise SessionRestartError() from e

            await self._persist(session_id, "save_session", session.to_record())
            await self.bus.publish(SESSION_STATUS, {
                "sessionId": session_id,
                "status": session.status.value,
                "connected": False,
            })

        logger.info(f"Session {session_id} restarted")
        return session.to_dict()

    async def destroy_session(self, session_id: str) -> None:
        """
        销毁会话：停止客户端、删除凭据目录与二维码图片、删除持久化记录、移出会话表。

        清理步骤都是尽力而为，失败只记录日志，会话无论如何都会被移除。
        """
        session = self._require(session_id)

        async with session.lock:
            if self.store.get(session_id) is not session:
                raise SessionNotFoundError(session_id)
            self.store.remove(session_id)

            session.generation += 1
            await self._destroy_client(session_id, session.client)
            session.client = None
            await self._stop_worker(session)
            self._remove_artifacts(session_id)
            webhook = await self._webhook_target(session)
            await self._persist(session_id, "delete_session", session_id)

        await self.bus.publish(SESSION_DESTROYED, {"sessionId": session_id}, webhook=webhook)
        logger.info(f"Session {session_id} destroyed")

    async def _webhook_target(self, session: Session) -> dict[str, Any]:
        """删除持久化记录前解析 Webhook 目标；网关不可用时退回内存中的配置。"""
        if self.gateway is not None:
            try:
                target = await self.gateway.get_session_webhook(session.id)
                if target is not None:
                    return target
            except Exception as e:
                logger.error(f"Session {session.id} failed to load webhook config: {e}")
        return {"webhook_url": session.webhook_url, "name": session.name}

    async def destroy_all_sessions(self) -> None:
        """依次销毁所有会话（停机排空），单个失败只记录日志。"""
        for session_id in self.store.ids():
            try:
                await self.destroy_session(session_id)
            except Exception as e:
                logger.error(f"Session {session_id} failed to destroy during shutdown: {e}")

    async def send_message(
        self, session_id: str, to: str, body: str, kind: str = "text"
    ) -> SendResult:
        """
        通过会话发送消息。

        参数:
            session_id: 会话 ID
            to: 收件人（纯号码会被补上协议后缀）
            body: 文本内容；kind="media" 时为本地文件路径
            kind: text 或 media

        返回:
            SendResult。客户端发送失败被捕获为 success=False，不会抛出。
        """
        session = self._require(session_id)
        if not (session.status == SessionStatus.READY and session.connected):
            raise SessionNotReadyError(session_id, session.status.value, session.connected)

        chat_id = normalize_chat_id(to, self.config.phone_suffix)
        try:
            content: str | MediaContent = (
                await asyncio.to_thread(MediaContent.from_file_path, body) if kind == "media" else body
            )
            response = await session.client.send_message(chat_id, content)
            message_id = (response or {}).get("id")
            result = SendResult(
                success=True,
                message_id=str(message_id) if message_id is not None else None,
            )
        except Exception as e:
            logger.error(f"Session {session_id} failed to send message to {chat_id}: {e}")
            result = SendResult(success=False, error=str(e))

        async with session.lock:
            session.touch()
            session.messages_sent += 1

        record = MessageRecord(
            id=result.message_id or str(uuid.uuid4()),
            session_id=session_id,
            direction="outgoing",
            sender=session.phone_number or "",
            recipient=chat_id,
            body=body,
            type=kind,
            status="sent" if result.success else "failed",
            timestamp=result.timestamp,
            has_media=kind == "media",
        )
        await self._persist(session_id, "save_message", record)
        await self._persist(session_id, "increment_session_message_count", session_id, "outgoing")
        return result

    async def restore_sessions_from_database(self) -> dict[str, int]:
        """
        启动恢复：重新拉起上次配对成功且凭据目录仍在的会话。

        - 可恢复的会话以 connecting 状态登记，客户端在后台启动（不等待配对完成）
        - 其他会话在持久化网关中标记为 disconnected 并跳过
        - 单个会话失败只计数并记录日志，不中断整个流程

        返回:
            {"restored", "skipped", "failed"}
        """
        summary = {"restored": 0, "skipped": 0, "failed": 0}
        if self.gateway is None:
            return summary

        try:
            rows = await self.gateway.get_all_sessions()
        except Exception as e:
            logger.error(f"Failed to load sessions for restore: {e}")
            return summary

        for row in rows:
            session_id = row.get("id", "?")
            try:
                if session_id in self.store:
                    summary["skipped"] += 1
                    continue

                if row.get("status") in RESTORABLE_STATUSES and self.auth_path(session_id).is_dir():
                    session = Session.from_record(row, status=SessionStatus.CONNECTING)
                    self.store.add(session)
                    self._start_worker(session)
                    await self._persist(
                        session_id, "update_session_status", session_id, SessionStatus.CONNECTING.value
                    )
                    self._spawn(self._start_restored(session, session.generation))
                    summary["restored"] += 1
                    logger.info(f"Session {session_id} restoring")
                else:
                    await self._persist(
                        session_id, "update_session_status", session_id, SessionStatus.DISCONNECTED.value
                    )
                    summary["skipped"] += 1
            except Exception as e:
                logger.error(f"Session {session_id} failed to restore: {e}")
                summary["failed"] += 1

        await self.bus.publish(SESSIONS_UPDATED, [s.to_dict() for s in self.store])
        logger.info(
            f"Session restore finished: {summary['restored']} restored, "
            f"{summary['skipped']} skipped, {summary['failed']} failed"
        )
        return summary

    async def _start_restored(self, session: Session, generation: int) -> None:
        """
        后台启动一个恢复中的会话；失败时会话落到 disconnected。

        generation 是派生任务时的值：期间若已被重启或销毁（generation 变化、
        已绑定客户端），直接放弃，保证同一凭据目录上只有一个客户端。
        """
        async with session.lock:
            if (
                self.store.get(session.id) is not session
                or session.generation != generation
                or session.client is not None
            ):
                logger.debug(f"Session {session.id} restore start skipped: session changed")
                return
            client = self._bind_client(session)
            try:
                await self._start_client(client)
            except Exception as e:
                logger.error(f"Session {session.id} failed to start during restore: {e!r}")
                await self._destroy_client(session.id, client)
                session.generation += 1
                session.client = None
                session.transition(SessionStatus.DISCONNECTED)
                await self._persist(
                    session.id, "update_session_status", session.id, session.status.value
                )
                await self.bus.publish(SESSION_STATUS, {
                    "sessionId": session.id,
                    "status": session.status.value,
                    "connected": False,
                    "reason": "restore failed",
                })

    async def wait_background(self) -> None:
        """等待所有后台启动任务结束。"""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ========== 事件处理 ==========

    async def _run_events(self, session: Session) -> None:
        """会话事件 worker：按到达顺序在会话锁内应用事件。"""
        while True:
            generation, event = await session.events.get()
            try:
                async with session.lock:
                    if generation != session.generation:
                        logger.debug(f"Session {session.id} dropped stale {event.type} event")
                        continue
                    await self._apply_event(session, event)
            except Exception as e:
                logger.error(f"Session {session.id} failed to handle {event.type}: {e}")
            finally:
                session.events.task_done()

    async def _apply_event(self, session: Session, event: ClientEvent) -> None:
        handlers = {
            EVENT_QR: self._on_qr,
            EVENT_AUTHENTICATED: self._on_authenticated,
            EVENT_READY: self._on_ready,
            EVENT_MESSAGE: self._on_message,
            EVENT_DISCONNECTED: self._on_disconnected,
            EVENT_AUTH_FAILURE: self._on_auth_failure,
        }
        handler = handlers.get(event.type)
        if handler is None:
            logger.warning(f"Session {session.id} got unknown event {event.type}")
            return
        await handler(session, event.payload)

    def _advance(self, session: Session, target: SessionStatus) -> bool:
        previous = session.status
        if not session.transition(target):
            logger.warning(
                f"Session {session.id} ignored transition {previous.value} -> {target.value}"
            )
            return False
        logger.debug(f"Session {session.id}: {previous.value} -> {target.value}")
        return True

    async def _on_qr(self, session: Session, payload: Any) -> None:
        if not self._advance(session, SessionStatus.QR_RECEIVED):
            return
        try:
            session.qr_code = await self.qr.render(session.id, str(payload))
        except Exception as e:
            logger.error(f"Session {session.id} failed to render QR code: {e}")
            session.qr_code = None
        await self._persist(session.id, "update_session_status", session.id, session.status.value)
        await self.bus.publish(SESSION_QR, {
            "sessionId": session.id,
            "qrCode": session.qr_code,
            "status": session.status.value,
        })

    async def _on_authenticated(self, session: Session, payload: Any) -> None:
        if not self._advance(session, SessionStatus.AUTHENTICATED):
            return
        await self._persist(session.id, "update_session_status", session.id, session.status.value)
        await self.bus.publish(SESSION_STATUS, {
            "sessionId": session.id,
            "status": session.status.value,
        })

    async def _on_ready(self, session: Session, payload: Any) -> None:
        if not self._advance(session, SessionStatus.READY):
            return
        info = getattr(session.client, "info", None)
        if info is not None and info.phone_number:
            session.phone_number = info.phone_number
        session.touch()
        await self._persist(
            session.id, "update_session_status", session.id, session.status.value, session.phone_number
        )
        await self.bus.publish(SESSION_STATUS, {
            "sessionId": session.id,
            "status": session.status.value,
            "connected": True,
            "phoneNumber": session.phone_number,
        })
        logger.info(f"Session {session.id} ready ({session.phone_number})")

    async def _on_message(self, session: Session, msg: InboundMessage) -> None:
        sent_at = (
            datetime.fromtimestamp(msg.timestamp, tz=timezone.utc).isoformat()
            if msg.timestamp
            else timestamp()
        )
        record = MessageRecord(
            id=msg.id or str(uuid.uuid4()),
            session_id=session.id,
            direction="incoming",
            sender=msg.sender,
            recipient=msg.recipient,
            body=msg.body,
            type=msg.type,
            status="received",
            timestamp=sent_at,
            has_media=msg.has_media,
        )
        session.touch()
        session.messages_received += 1
        await self._persist(session.id, "save_message", record)
        await self._persist(session.id, "increment_session_message_count", session.id, "incoming")
        await self.bus.publish(MESSAGE_RECEIVED, record.to_event())

    async def _on_disconnected(self, session: Session, reason: Any) -> None:
        if not self._advance(session, SessionStatus.DISCONNECTED):
            return
        await self._persist(session.id, "update_session_status", session.id, session.status.value)
        await self.bus.publish(SESSION_STATUS, {
            "sessionId": session.id,
            "status": session.status.value,
            "connected": False,
            "reason": reason,
        })
        logger.warning(f"Session {session.id} disconnected: {reason}")

    async def _on_auth_failure(self, session: Session, reason: Any) -> None:
        if not self._advance(session, SessionStatus.AUTH_FAILURE):
            return
        session.errors += 1
        await self._persist(session.id, "update_session_status", session.id, session.status.value)
        await self._persist(session.id, "increment_session_errors", session.id)
        await self.bus.publish(SESSION_STATUS, {
            "sessionId": session.id,
            "status": session.status.value,
            "connected": False,
            "error": reason,
        })
        logger.error(f"Session {session.id} authentication failed: {reason}")

    async def drain_events(self) -> None:
        """等待所有会话事件队列处理完毕。"""
        for session in list(self.store):
            await session.events.join()

    # ========== 只读投影 ==========

    def get_qr_code(self, session_id: str) -> str | None:
        session = self.store.get(session_id)
        return session.qr_code if session else None

    def get_session(self, session_id: str) -> dict[str, Any] | None:
        session = self.store.get(session_id)
        return session.to_dict() if session else None

    async def get_all_sessions(self) -> list[dict[str, Any]]:
        """
        列出所有会话。

        有持久化网关时合并持久化记录（覆盖进程重启前的会话），内存状态优先。
        """
        if self.gateway is None:
            return [s.to_dict() for s in self.store]

        try:
            rows = await self.gateway.get_all_sessions()
        except Exception as e:
            logger.error(f"Failed to load sessions: {e}")
            return [s.to_dict() for s in self.store]

        merged: list[dict[str, Any]] = []
        seen: set[str] = set()
        for row in rows:
            live = self.store.get(row["id"])
            merged.append(live.to_dict() if live else Session.from_record(row).to_dict())
            seen.add(row["id"])
        merged.extend(s.to_dict() for s in self.store if s.id not in seen)
        return merged

    def get_active_session_count(self) -> int:
        return self.store.connected_count()

    async def get_sessions_metrics(self) -> dict[str, Any]:
        metrics: dict[str, Any] = {
            "total": len(self.store),
            "active": self.store.connected_count(),
            "statusBreakdown": self.store.status_counts(),
        }
        if self.gateway is not None:
            try:
                metrics["persisted"] = await self.gateway.get_sessions_metrics()
            except Exception as e:
                logger.error(f"Failed to load session metrics: {e}")
        return metrics

    async def close(self) -> None:
        """取消所有会话 worker 与后台任务（在 destroy_all_sessions 之后调用）。"""
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*list(self._background), return_exceptions=True)
        for session in list(self.store):
            await self._stop_worker(session)


