"""Typer CLI entrypoint for rt-manager."""

from __future__ import annotations

import sys
import time
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, List, NoReturn, Optional, Sequence

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from .config import AppSettings, SettingsRepository
from .engine import BatchRefresher, BatchResult, HttpClientFactory, PoolReconciler, ProtocolClient, TokenRefresher
from .errors import ExchangeError, RTManagerError
from .infra import SQLiteManager, SystemConfigRepository, TokenRecordRepository
from .logging_conf import available_logs, configure_logging, tail_log
from .records import RecordFilters, RecordUpdate, TokenRecord, token_preview
from .scheduler import ConfigWatcher, SchedulerManager
from .services import RecordService, SystemConfigService

app = typer.Typer(
    help="rt-manager 刷新令牌管理工具",
    no_args_is_help=True,
    rich_markup_mode=None,
)
rt_app = typer.Typer(
    name="rt",
    help="刷新令牌记录管理命令",
    no_args_is_help=True,
    rich_markup_mode=None,
)
config_app = typer.Typer(
    name="config",
    help="系统配置命令",
    no_args_is_help=True,
    rich_markup_mode=None,
)
log_app = typer.Typer(
    name="log",
    help="日志查看命令",
    no_args_is_help=True,
    rich_markup_mode=None,
)

console = Console()


@dataclass
class AppState:
    settings: AppSettings
    storage: SQLiteManager
    records: RecordService
    configs: SystemConfigService
    refresher: TokenRefresher
    batch: BatchRefresher
    scheduler: SchedulerManager


def build_state(verbose: bool) -> AppState:
    """Compose the stores, engine, scheduler and services from settings.

    The scheduler stays idle and schedule saves are only persisted; `serve`
    is the one command that takes ownership of the timer.
    """

    settings_repository = SettingsRepository()
    settings = settings_repository.load_settings()
    logger = configure_logging(verbose=verbose, level=settings.log.level)
    database_path = settings_repository.database_path()

    storage = SQLiteManager(table_prefix=settings.database.table_prefix)
    record_repository = TokenRecordRepository(storage, database_path)
    config_repository = SystemConfigRepository(storage, database_path)

    client = ProtocolClient(
        default_client_id=settings.provider.client_id,
        factory=HttpClientFactory(),
        exchange_timeout=settings.provider.exchange_timeout,
        enrichment_timeout=settings.provider.enrichment_timeout,
        logger=logger.bind(component="client"),
    )
    refresher = TokenRefresher(record_repository, client, logger=logger.bind(component="refresher"))
    batch = BatchRefresher(refresher, record_repository, logger=logger.bind(component="batch"))
    scheduler = SchedulerManager(batch.refresh_all_enabled, logger=logger.bind(component="scheduler"))
    configs = SystemConfigService(
        config_repository,
        PoolReconciler(record_repository, logger=logger.bind(component="pools")),
        scheduler,
        fallback_client_id=settings.provider.client_id,
        logger=logger.bind(component="config"),
        sync_schedule=False,
    )
    records = RecordService(
        record_repository,
        configs,
        provider=settings.provider,
        logger=logger.bind(component="records"),
    )
    return AppState(
        settings=settings,
        storage=storage,
        records=records,
        configs=configs,
        refresher=refresher,
        batch=batch,
        scheduler=scheduler,
    )


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _abort(exc: RTManagerError) -> NoReturn:
    console.print(f"操作失败：{exc}", style="red")
    raise typer.Exit(code=1)


def _format_time(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _render_records_table(records: Sequence[TokenRecord], total: int, page: int) -> Table:
    table = Table(
        title=f"令牌记录 · 第 {page} 页 · 共 {total} 条",
        box=box.SIMPLE_HEAD,
        show_lines=False,
    )
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("业务 ID", style="cyan", overflow="fold")
    table.add_column("邮箱", style="green", overflow="fold")
    table.add_column("类型", style="magenta")
    table.add_column("启用")
    table.add_column("标签", style="yellow")
    table.add_column("代理", overflow="fold")
    table.add_column("最近刷新", style="green")
    for record in records:
        table.add_row(
            str(record.id),
            record.biz_id,
            record.email or "-",
            record.account_type or "-",
            "是" if record.enabled else "否",
            record.tag or "-",
            record.proxy or "-",
            _format_time(record.last_refresh_time),
        )
    return table


def _render_record_detail(record: TokenRecord) -> Table:
    table = Table(title=f"记录 {record.id}", box=box.SIMPLE_HEAD, show_header=False)
    table.add_column("字段", style="cyan", no_wrap=True)
    table.add_column("值", overflow="fold")
    table.add_row("业务 ID", record.biz_id)
    table.add_row("刷新令牌", token_preview(record.refresh_token))
    table.add_row("访问令牌", token_preview(record.access_token) or "-")
    table.add_row("邮箱", record.email or "-")
    table.add_row("用户名", record.user_name or "-")
    table.add_row("账户类型", record.account_type or "-")
    table.add_row("客户端 ID", record.client_id or "-")
    table.add_row("代理", record.proxy or "-")
    table.add_row("最近刷新", _format_time(record.last_refresh_time))
    return table


def _render_batch_table(result: BatchResult) -> Table:
    table = Table(
        title=f"刷新结果 · 成功 {result.success_count} · 失败 {result.fail_count}",
        box=box.SIMPLE_HEAD,
    )
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("业务 ID", style="cyan", overflow="fold")
    table.add_column("状态")
    table.add_column("信息", overflow="fold")
    for report in result.results:
        table.add_row(
            str(report.record_id),
            report.biz_id or "-",
            "[green]成功[/green]" if report.success else "[red]失败[/red]",
            report.message,
        )
    return table


def _read_tokens(path: Path) -> list[str]:
    if str(path) == "-":
        text = sys.stdin.read()
    else:
        text = path.read_text(encoding="utf-8")
    return [line for line in text.splitlines() if line.strip()]


app.add_typer(rt_app, name="rt", help="管理刷新令牌（list/add/edit/refresh 等）")
app.add_typer(config_app, name="config", help="查看或修改系统配置")
app.add_typer(log_app, name="log", help="查看日志文件")


@app.callback()
def main(
    ctx: typer.Context, verbose: bool = typer.Option(False, "--verbose", help="开启调试日志", is_flag=True)
) -> None:
    ctx.obj = build_state(verbose)


@app.command("serve", help="启动后台自动刷新，并跟随系统配置变更，直到按 Ctrl+C 退出。")
def serve(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    state.configs.sync_schedule = True
    action = state.configs.apply_startup_schedule(state.settings)
    status = state.scheduler.status()
    if status["running"]:
        console.print(f"自动刷新已启动，间隔 {status['interval_days']} 天。", style="green")
    else:
        console.print(f"自动刷新未启用（{action}），等待配置变更。", style="yellow")
    watcher = ConfigWatcher(
        state.configs.apply_stored_schedule,
        poll_seconds=state.settings.provider.config_poll_seconds,
    )
    watcher.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("正在停止调度器……", style="yellow")
    finally:
        watcher.stop()
        state.scheduler.stop()
        state.storage.close_all()


# ----------------------------------------------------------------------
# rt
# ----------------------------------------------------------------------
@rt_app.command("list", help="分页查看令牌记录。")
def rt_list(
    ctx: typer.Context,
    biz_id: str = typer.Option("", "--biz-id", help="按业务 ID 模糊匹配。"),
    tag: str = typer.Option("", "--tag", help="按标签模糊匹配。"),
    email: str = typer.Option("", "--email", help="按邮箱模糊匹配。"),
    account_type: str = typer.Option("", "--account-type", help="按账户类型模糊匹配。"),
    enabled: Optional[bool] = typer.Option(None, "--enabled/--disabled", help="只看启用或停用的记录。"),
    created: Optional[str] = typer.Option(None, "--created", help="创建日期（YYYY-MM-DD）。"),
    page: int = typer.Option(1, "--page", min=1, help="页码。"),
    page_size: int = typer.Option(20, "--page-size", min=1, max=500, help="每页条数。"),
) -> None:
    state = _get_state(ctx)
    create_date: Optional[date] = None
    if created:
        try:
            create_date = date.fromisoformat(created)
        except ValueError as exc:
            raise typer.BadParameter("日期格式应为 YYYY-MM-DD", param_hint="--created") from exc
    filters = RecordFilters(
        biz_id=biz_id,
        tag=tag,
        email=email,
        account_type=account_type,
        enabled=enabled,
        create_date=create_date,
    )
    try:
        records, total = state.records.list(filters, page, page_size)
    except RTManagerError as exc:
        _abort(exc)
    if not records:
        console.print("暂无令牌记录，使用 `rt-manager rt add` 或 `rt import` 添加。", style="yellow")
        raise typer.Exit(code=0)
    console.print(_render_records_table(records, total, page))


@rt_app.command("add", help="添加一个刷新令牌。")
def rt_add(
    ctx: typer.Context,
    refresh_token: str = typer.Argument(..., help="刷新令牌。"),
    biz_id: str = typer.Option("", "--biz-id", help="业务 ID（留空自动生成）。"),
    proxy: str = typer.Option("", "--proxy", help="代理地址（http/https/socks5）。"),
    client_id: str = typer.Option("", "--client-id", help="客户端 ID。"),
    tag: str = typer.Option("", "--tag", help="标签。"),
    memo: str = typer.Option("", "--memo", help="备注。"),
) -> None:
    state = _get_state(ctx)
    record = TokenRecord(
        biz_id=biz_id,
        refresh_token=refresh_token,
        proxy=proxy,
        client_id=client_id,
        tag=tag,
        memo=memo,
    )
    try:
        created = state.records.create(record)
    except RTManagerError as exc:
        _abort(exc)
    console.print(f"记录已创建：ID {created.id} · 业务 ID {created.biz_id}", style="green")


@rt_app.command("edit", help="修改记录的业务 ID、代理、标签、启用状态或备注。")
def rt_edit(
    ctx: typer.Context,
    record_id: int = typer.Argument(..., help="记录 ID。"),
    biz_id: Optional[str] = typer.Option(None, "--biz-id", help="新的业务 ID。"),
    proxy: Optional[str] = typer.Option(None, "--proxy", help="新的代理地址（空字符串表示直连）。"),
    tag: Optional[str] = typer.Option(None, "--tag", help="新的标签。"),
    enabled: Optional[bool] = typer.Option(None, "--enable/--disable", help="启用或停用。"),
    memo: Optional[str] = typer.Option(None, "--memo", help="新的备注。"),
) -> None:
    state = _get_state(ctx)
    changes = RecordUpdate(biz_id=biz_id, proxy=proxy, tag=tag, enabled=enabled, memo=memo)
    if changes.is_empty():
        console.print("未指定任何修改项。", style="yellow")
        raise typer.Exit(code=0)
    try:
        record = state.records.update(record_id, changes)
    except RTManagerError as exc:
        _abort(exc)
    console.print(f"记录 {record.id} 已更新。", style="green")


@rt_app.command("remove", help="删除一条或多条记录。")
def rt_remove(
    ctx: typer.Context,
    record_ids: List[int] = typer.Argument(..., help="要删除的记录 ID。"),
    yes: bool = typer.Option(False, "--yes", help="跳过删除确认提示。", is_flag=True),
) -> None:
    state = _get_state(ctx)
    if not yes:
        confirm = typer.confirm(f"确认删除 {len(record_ids)} 条记录？", default=False)
        if not confirm:
            console.print("已取消删除操作。", style="yellow")
            raise typer.Exit(code=0)
    if len(record_ids) == 1:
        try:
            state.records.delete(record_ids[0])
        except RTManagerError as exc:
            _abort(exc)
        console.print(f"记录 {record_ids[0]} 已删除。", style="green")
        return
    success, failed = state.records.batch_delete(record_ids)
    style = "green" if not failed else "yellow"
    console.print(f"删除完成：成功 {success} 条，失败 {failed} 条。", style=style)


@rt_app.command("import", help="从文件批量导入刷新令牌（每行一个，`-` 表示标准输入）。")
def rt_import(
    ctx: typer.Context,
    source: Path = typer.Argument(..., help="令牌文件路径。"),
    tag: str = typer.Option("", "--tag", help="导入记录的标签。"),
    proxy: str = typer.Option("", "--proxy", help="统一代理（留空则从代理池随机分配）。"),
    client_id: str = typer.Option("", "--client-id", help="统一客户端 ID（留空则从池中随机分配）。"),
) -> None:
    state = _get_state(ctx)
    try:
        tokens = _read_tokens(source)
    except OSError as exc:
        console.print(f"无法读取令牌文件：{exc}", style="red")
        raise typer.Exit(code=1)
    if not tokens:
        console.print("文件中没有可导入的令牌。", style="yellow")
        raise typer.Exit(code=0)
    try:
        result = state.records.batch_import(tokens, tag=tag, proxy=proxy, client_id=client_id)
    except RTManagerError as exc:
        _abort(exc)
    console.print(
        f"导入完成：成功 {result.success} 条，失败 {result.fail} 条（导入的记录默认停用）。",
        style="green" if not result.fail else "yellow",
    )


@rt_app.command("refresh", help="立即刷新一条记录。")
def rt_refresh(
    ctx: typer.Context,
    record_id: int = typer.Argument(..., help="记录 ID。"),
    user_info: bool = typer.Option(False, "--user-info", help="同时获取用户信息。", is_flag=True),
    account_info: bool = typer.Option(False, "--account-info", help="同时获取账户信息。", is_flag=True),
) -> None:
    state = _get_state(ctx)
    try:
        record = state.refresher.refresh(
            record_id, with_user_info=user_info, with_account_info=account_info
        )
    except ExchangeError as exc:
        console.print(f"刷新失败：{exc}", style="red")
        if exc.outcome is not None and exc.outcome.raw:
            console.print(exc.outcome.raw, style="dim")
        raise typer.Exit(code=1)
    except RTManagerError as exc:
        _abort(exc)
    console.print("刷新成功。", style="green")
    console.print(_render_record_detail(record))


@rt_app.command("refresh-batch", help="依次刷新多条记录（含用户与账户信息）。")
def rt_refresh_batch(
    ctx: typer.Context,
    record_ids: List[int] = typer.Argument(..., help="记录 ID 列表。"),
) -> None:
    state = _get_state(ctx)
    try:
        result = state.batch.refresh_many(record_ids)
    except RTManagerError as exc:
        _abort(exc)
    console.print(_render_batch_table(result))
    if result.fail_count:
        raise typer.Exit(code=1)


@rt_app.command("refresh-all", help="刷新全部已启用的记录。")
def rt_refresh_all(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    try:
        result = state.batch.refresh_all_enabled()
    except RTManagerError as exc:
        _abort(exc)
    if not result.results:
        console.print("没有已启用的记录。", style="yellow")
        raise typer.Exit(code=0)
    console.print(_render_batch_table(result))


@rt_app.command("token", help="按业务 ID 或邮箱刷新并输出访问令牌。")
def rt_token(
    ctx: typer.Context,
    biz_id: str = typer.Option("", "--biz-id", help="业务 ID。"),
    email: str = typer.Option("", "--email", help="邮箱。"),
) -> None:
    state = _get_state(ctx)
    if not biz_id and not email:
        raise typer.BadParameter("需要 --biz-id 或 --email")
    try:
        record = state.refresher.refresh_by_lookup(biz_id=biz_id, email=email)
    except RTManagerError as exc:
        _abort(exc)
    typer.echo(record.access_token)


@rt_app.command("user-info", help="重新获取记录的用户信息。")
def rt_user_info(ctx: typer.Context, record_id: int = typer.Argument(..., help="记录 ID。")) -> None:
    state = _get_state(ctx)
    try:
        record = state.refresher.refresh_user_info(record_id)
    except RTManagerError as exc:
        _abort(exc)
    console.print(f"用户信息已更新：{record.email or '-'} · {record.user_name or '-'}", style="green")


@rt_app.command("account-info", help="重新获取记录的账户信息。")
def rt_account_info(ctx: typer.Context, record_id: int = typer.Argument(..., help="记录 ID。")) -> None:
    state = _get_state(ctx)
    try:
        record = state.refresher.refresh_account_info(record_id)
    except RTManagerError as exc:
        _abort(exc)
    console.print(f"账户信息已更新：类型 {record.account_type or '-'}", style="green")


# ----------------------------------------------------------------------
# config
# ----------------------------------------------------------------------
def _parse_assignments(pairs: Iterable[str]) -> dict[str, str]:
    updates: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"格式应为 KEY=VALUE：{pair}")
        updates[key.strip()] = value
    return updates


@config_app.command("show", help="查看系统配置。")
def config_show(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    try:
        configs = state.configs.get_system_configs()
    except RTManagerError as exc:
        _abort(exc)
    table = Table(title="系统配置", box=box.SIMPLE_HEAD)
    table.add_column("键", style="cyan", no_wrap=True)
    table.add_column("值", overflow="fold")
    for key, value in configs.items():
        table.add_row(key, value)
    console.print(table)


@config_app.command("set", help="修改系统配置，例如 proxy_list='[\"socks5://h:1080\"]'。")
def config_set(
    ctx: typer.Context,
    assignments: List[str] = typer.Argument(..., help="KEY=VALUE 形式的配置项。"),
) -> None:
    state = _get_state(ctx)
    updates = _parse_assignments(assignments)
    try:
        result = state.configs.save_system_configs(updates)
    except RTManagerError as exc:
        _abort(exc)
    console.print(f"已保存 {len(result.saved)} 项配置。", style="green")
    if result.reconcile is not None:
        console.print(
            f"已按新的代理/客户端池调整 {result.reconcile.updated}/{result.reconcile.total} 条记录。",
            style="cyan",
        )
    if result.schedule_action:
        console.print(f"调度器状态：{result.schedule_action}", style="cyan")
    elif result.schedule_changed:
        console.print(
            f"调度配置已保存，运行中的 serve 进程将在 {state.settings.provider.config_poll_seconds:g} 秒内应用。",
            style="cyan",
        )


# ----------------------------------------------------------------------
# log
# ----------------------------------------------------------------------
@log_app.command("list", help="列出可用的日志文件。")
def log_list() -> None:
    logs = list(available_logs())
    console.print("日志文件：", style="cyan")
    if not logs:
        console.print("暂未生成任何日志。", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("文件名", style="green")
    for path in logs:
        table.add_row(path.name)
    console.print(table)


@log_app.command("show", help="查看指定日志的最近内容。")
def log_show(
    name: str = typer.Argument("rt_manager.log", help="日志文件名。"),
    tail: int = typer.Option(100, "--tail", min=1, help="显示最近 N 行内容。"),
) -> None:
    matches = [path for path in available_logs() if path.name == name]
    lines = tail_log(matches[0], tail) if matches else []
    if not lines:
        console.print("暂无日志信息，请稍后再试。", style="dim")
        return
    console.print(f"{name} · 最近 {len(lines)} 行", style="cyan")
    console.print("".join(lines), markup=False)


__all__ = ["AppState", "app", "build_state", "cli"]


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()

