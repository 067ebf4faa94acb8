"""
CLI 命令模块 - sessionhub 的所有命令行命令定义。

本模块使用 Typer 框架定义 sessionhub 的 CLI 命令体系：
- onboard：初始化配置和数据目录
- gateway：启动网关服务（会话管理器 + 启动恢复 + 实时推送 + Webhook + 数据清理）
- sessions：会话管理（新建并配对、列表、消息日志、Webhook 设置与投递记录）
- cleanup：立即执行一次数据保留清理
- status：查看系统状态

技术栈：
- Typer：CLI 框架（基于 Click，支持类型注解自动生成帮助文档）
- Rich：终端美化输出（表格、彩色状态）
"""

import asyncio
import signal
import sys

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from sessionhub import __logo__, __version__

# 创建 Typer 应用实例（CLI 根命令）
app = typer.Typer(
    name="sessionhub",
    help=f"{__logo__} sessionhub - Chat session manager",
    no_args_is_help=True,
)

console = Console()

STATUS_STYLES = {
    "ready": "green",
    "authenticated": "cyan",
    "qr_received": "yellow",
    "initializing": "blue",
    "connecting": "blue",
    "disconnected": "dim",
    "auth_failure": "red",
}


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} sessionhub v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """sessionhub CLI 根命令回调。处理全局选项（如 --version）。"""
    pass


def _setup_logging(logs: bool, verbose: bool = False) -> None:
    if not logs:
        logger.disable("sessionhub")
        return
    logger.enable("sessionhub")
    if verbose:
        logger.remove()
        logger.add(sys.stderr, level="DEBUG")


def _styled(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def _make_gateway(config):
    from sessionhub.storage.sql import SqlPersistenceGateway

    return SqlPersistenceGateway(config.database_url, echo=config.storage.echo)


async def _with_gateway(config, action):
    """打开持久化网关执行 action(gateway)，结束后关闭连接。"""
    gateway = _make_gateway(config)
    await gateway.initialize()
    try:
        return await action(gateway)
    finally:
        await gateway.close()


# ============================================================================
# Onboard / Setup
# ============================================================================


@app.command()
def onboard():
    """
    初始化 sessionhub 配置和数据目录。

    执行流程：
    1. 在数据根目录（默认 ~/.sessionhub/，可用 SESSIONHUB_HOME 覆盖）下创建 config.json
    2. 创建会话凭据目录与二维码目录
    3. 打印后续操作指引
    """
    from sessionhub.config.loader import get_config_path, save_config
    from sessionhub.config.schema import Config
    from sessionhub.utils.helpers import ensure_dir

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    config = Config()
    save_config(config)
    console.print(f"[green]✓[/green] Created config at {config_path}")

    ensure_dir(config.sessions.sessions_path)
    ensure_dir(config.sessions.qr_path)
    console.print(f"[green]✓[/green] Created session storage at {config.sessions.sessions_path}")

    console.print(f"\n{__logo__} sessionhub is ready!")
    console.print("\nNext steps:")
    console.print(f"  1. Point [cyan]bridge.url[/cyan] in [cyan]{config_path}[/cyan] at your protocol bridge")
    console.print("  2. Pair a session: [cyan]sessionhub sessions create --name Sales[/cyan]")
    console.print("  3. Run the gateway: [cyan]sessionhub gateway[/cyan]")


# ============================================================================
# Gateway / Server
# ============================================================================


async def _run_gateway(config, port: int | None = None, on_started=None) -> None:
    """
    编排所有子服务并运行到收到停止信号。

    启动顺序：持久化网关 → 通知总线 → Webhook → 会话管理器（启动恢复）→ 推送服务 → 数据清理
    停机顺序：推送服务 → 逐个销毁会话 → 等待 Webhook 投递 → 通知总线 → 持久化网关
    """
    from sessionhub.bus.push import PushServer
    from sessionhub.bus.queue import NotificationBus
    from sessionhub.client.bridge import make_bridge_client_factory
    from sessionhub.maintenance.service import MaintenanceService
    from sessionhub.session.manager import SessionManager
    from sessionhub.webhook.policy import RetryPolicy, exponential_backoff
    from sessionhub.webhook.service import WebhookDispatcher, WebhookService

    gateway = _make_gateway(config)
    await gateway.initialize()

    bus = NotificationBus()
    webhooks = WebhookDispatcher(
        WebhookService(
            gateway,
            policy=RetryPolicy(
                max_attempts=config.webhook.max_attempts,
                backoff=exponential_backoff(config.webhook.backoff_base),
            ),
            timeout=config.webhook.timeout_s,
        ),
        bus,
    )
    manager = SessionManager(
        config.sessions,
        bus,
        make_bridge_client_factory(config.bridge),
        gateway=gateway,
    )

    push: PushServer | None = None
    if config.push.enabled:
        push = PushServer(bus, host=config.push.host, port=port or config.push.port)

    maintenance = MaintenanceService(
        gateway,
        retention_days=config.storage.retention_days,
        interval_s=config.storage.cleanup_interval_s,
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    bus.start()
    try:
        summary = await manager.restore_sessions_from_database()
        console.print(
            f"[green]✓[/green] Restored {summary['restored']} sessions "
            f"({summary['skipped']} skipped, {summary['failed']} failed)"
        )
        if push:
            await push.start()
            console.print(f"[green]✓[/green] Push server on ws://{push.host}:{push.port}")
        await maintenance.start()

        if on_started is not None:
            await on_started(manager, bus)

        await stop.wait()
    finally:
        console.print("\nShutting down...")
        maintenance.stop()
        if push:
            await push.stop()
        await manager.destroy_all_sessions()
        await manager.close()
        await bus.flush()
        await webhooks.drain()
        await bus.stop()
        await gateway.close()


@app.command()
def gateway(
    port: int = typer.Option(None, "--port", "-p", help="Push server port"),
    verbose: bool = typer.Option(False, "--verbose", help="Verbose output"),
):
    """
    启动 sessionhub 网关服务（核心启动命令）。

    编排所有子服务：恢复上次配对成功的会话，启动实时推送与 Webhook 投递，
    按配置定期清理过期数据，收到 Ctrl+C / SIGTERM 后按顺序停机。
    """
    from sessionhub.config.loader import load_config

    _setup_logging(True, verbose)
    config = load_config()
    console.print(f"{__logo__} Starting sessionhub gateway...")
    asyncio.run(_run_gateway(config, port=port))


# ============================================================================
# Session Commands
# ============================================================================


sessions_app = typer.Typer(help="Manage sessions")
app.add_typer(sessions_app, name="sessions")


@sessions_app.command("create")
def sessions_create(
    name: str = typer.Option(..., "--name", "-n", help="Session display name"),
    user: str = typer.Option(None, "--user", "-u", help="Owning user id"),
    webhook: str = typer.Option(None, "--webhook", "-w", help="Webhook URL"),
    verbose: bool = typer.Option(False, "--verbose", help="Verbose output"),
):
    """
    新建会话并在前台运行网关，直到配对完成后继续服务。

    二维码图片路径会在收到配对码时打印出来。
    """
    from sessionhub.bus.events import SESSION_QR, SESSION_STATUS
    from sessionhub.config.loader import load_config
    from sessionhub.session.errors import SessionCreateError

    _setup_logging(verbose, verbose)
    config = load_config()

    async def on_started(manager, bus):
        async def show(event):
            data = event.data
            if event.name == SESSION_QR:
                path = manager.qr.image_path(data["sessionId"])
                console.print(f"Scan the QR code to pair: [cyan]{path}[/cyan]")
            else:
                extra = f" ({data['phoneNumber']})" if data.get("phoneNumber") else ""
                console.print(f"Session {data['sessionId']}: {_styled(data['status'])}{extra}")

        bus.subscribe(show, events=[SESSION_QR, SESSION_STATUS])
        try:
            created = await manager.create_session(name, user, webhook_url=webhook)
        except SessionCreateError as e:
            console.print(f"[red]{e}[/red]")
            return
        console.print(f"[green]✓[/green] Created session {created['id']} ({name})")

    asyncio.run(_run_gateway(config, on_started=on_started))


@sessions_app.command("list")
def sessions_list():
    """以表格形式列出所有持久化的会话。"""
    from sessionhub.config.loader import load_config

    _setup_logging(False)
    config = load_config()
    rows = asyncio.run(_with_gateway(config, lambda g: g.get_all_sessions()))

    if not rows:
        console.print("No sessions.")
        return

    table = Table(title="Sessions")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Phone")
    table.add_column("Sent", justify="right")
    table.add_column("Received", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Webhook")

    for row in rows:
        table.add_row(
            row["id"],
            row["name"],
            _styled(row["status"]),
            row["phone_number"] or "",
            str(row["messages_sent"]),
            str(row["messages_received"]),
            str(row["errors"]),
            "[green]✓[/green]" if row["webhook_url"] else "[dim]-[/dim]",
        )

    console.print(table)


@sessions_app.command("messages")
def sessions_messages(
    session_id: str = typer.Option(None, "--session", "-s", help="Only this session"),
    page: int = typer.Option(1, "--page", help="Page number"),
    limit: int = typer.Option(20, "--limit", "-l", help="Messages per page"),
):
    """分页查看消息日志。"""
    from sessionhub.config.loader import load_config
    from sessionhub.utils.helpers import truncate_string

    _setup_logging(False)
    config = load_config()
    result = asyncio.run(
        _with_gateway(config, lambda g: g.get_messages(session_id, page=page, limit=limit))
    )

    messages = result["messages"]
    pagination = result["pagination"]
    if not messages:
        console.print("No messages.")
        return

    table = Table(title=f"Messages (page {pagination['page']}/{pagination['totalPages']}, {pagination['total']} total)")
    table.add_column("Time")
    table.add_column("Session", style="cyan")
    table.add_column("Dir")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Body")

    for m in messages:
        arrow = "[green]←[/green]" if m["direction"] == "incoming" else "[blue]→[/blue]"
        table.add_row(
            m["timestamp"][:19],
            m["sessionId"][:8],
            arrow,
            m["from"],
            m["to"],
            m["type"],
            m["status"],
            truncate_string(m["body"], 40),
        )

    console.print(table)


@sessions_app.command("webhook")
def sessions_webhook(
    session_id: str = typer.Argument(..., help="Session ID"),
    url: str = typer.Option(None, "--url", help="Webhook URL (omit to clear)"),
):
    """设置或清除会话的 Webhook 地址。"""
    from sessionhub.config.loader import load_config

    _setup_logging(False)
    config = load_config()

    async def apply(g):
        if await g.get_session(session_id) is None:
            return False
        await g.set_session_webhook(session_id, url)
        return True

    if not asyncio.run(_with_gateway(config, apply)):
        console.print(f"[red]Session {session_id} not found[/red]")
        raise typer.Exit(1)

    if url:
        console.print(f"[green]✓[/green] Webhook for {session_id} set to {url}")
    else:
        console.print(f"[green]✓[/green] Webhook for {session_id} cleared")


@sessions_app.command("deliveries")
def sessions_deliveries(
    session_id: str = typer.Argument(..., help="Session ID"),
    limit: int = typer.Option(20, "--limit", "-l", help="Number of attempts to show"),
):
    """查看会话最近的 Webhook 投递记录。"""
    from sessionhub.config.loader import load_config

    _setup_logging(False)
    config = load_config()
    events = asyncio.run(_with_gateway(config, lambda g: g.get_webhook_events(session_id, limit)))

    if not events:
        console.print("No webhook deliveries.")
        return

    table = Table(title=f"Webhook deliveries for {session_id}")
    table.add_column("Time")
    table.add_column("Event")
    table.add_column("Attempt", justify="right")
    table.add_column("Status", justify="right")

    for e in events:
        code = e["response_status"]
        style = "green" if 0 < code < 400 else "red"
        table.add_row(e["created_at"][:19], e["event_type"], str(e["attempt"]), f"[{style}]{code}[/{style}]")

    console.print(table)


# ============================================================================
# Maintenance / Status
# ============================================================================


@app.command()
def cleanup(
    days: int = typer.Option(None, "--days", "-d", help="Retention in days (default from config)"),
):
    """立即删除超出保留期的 Webhook 投递记录与消息日志。"""
    from sessionhub.config.loader import load_config
    from sessionhub.maintenance.service import MaintenanceService

    _setup_logging(False)
    config = load_config()
    retention = days if days is not None else config.storage.retention_days

    removed = asyncio.run(
        _with_gateway(config, lambda g: MaintenanceService(g, retention_days=retention).run_now())
    )
    console.print(
        f"[green]✓[/green] Removed {removed['webhook_events']} webhook events "
        f"and {removed['messages']} messages older than {retention} days"
    )


@app.command()
def status():
    """
    显示 sessionhub 系统状态。

    展示内容：
    - 配置文件与数据目录
    - 数据库地址、会话状态分布与消息总数
    - 协议桥接服务与推送服务地址
    """
    from sessionhub.config.loader import get_config_path, load_config

    _setup_logging(False)
    config_path = get_config_path()
    config = load_config()
    sessions_dir = config.sessions.sessions_path

    console.print(f"{__logo__} sessionhub Status\n")

    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}")
    console.print(f"Sessions: {sessions_dir} {'[green]✓[/green]' if sessions_dir.exists() else '[red]✗[/red]'}")
    console.print(f"Database: {config.database_url}")
    console.print(f"Bridge: {config.bridge.url}")
    if config.push.enabled:
        console.print(f"Push: ws://{config.push.host}:{config.push.port}")
    else:
        console.print("Push: [dim]disabled[/dim]")

    async def collect(g):
        return await g.get_sessions_metrics(), await g.get_total_message_count()

    try:
        metrics, total_messages = asyncio.run(_with_gateway(config, collect))
    except Exception as e:
        console.print(f"[red]Database unavailable: {e}[/red]")
        return

    breakdown = ", ".join(
        f"{_styled(status)} {count}" for status, count in sorted(metrics["byStatus"].items())
    )
    console.print(f"Sessions: {metrics['total']}" + (f" ({breakdown})" if breakdown else ""))
    console.print(f"Messages: {total_messages}")


if __name__ == "__main__":
    app()
