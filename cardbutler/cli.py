#!/usr/bin/env python3
"""
CardButler - 统一命令行入口
"""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
import yaml

from cardbutler.adapters.base import MailDataSourceError
from cardbutler.api.dependencies import build_services
from cardbutler.models.errors import MailConfigMissingError
from cardbutler.services.config_manager import DEFAULT_CONFIG_PATH, ConfigManager
from cardbutler.services.scheduler import create_ingest_scheduler

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """配置根日志：控制台，可选写入文件"""
    handlers = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


@click.group()
@click.option('--config', '-c', default=DEFAULT_CONFIG_PATH, help='配置文件路径')
@click.option('--verbose', '-v', is_flag=True, help='输出调试日志')
@click.pass_context
def cli(ctx, config, verbose):
    """CardButler - 信用卡同步与账单拉取"""
    ctx.ensure_object(dict)
    manager = ConfigManager(config)
    ctx.obj['config_manager'] = manager

    setup_logging(
        'DEBUG' if verbose else manager.get('logging.level', 'INFO'),
        manager.get('logging.file'),
    )
    ctx.obj['settings'] = manager.settings()


def _services(ctx):
    if 'services' not in ctx.obj:
        ctx.obj['services'] = build_services(ctx.obj['settings'])
    return ctx.obj['services']


# ==================== 服务命令 ====================

@cli.command()
@click.option('--host', default=None, help='监听地址')
@click.option('--port', '-p', default=None, type=int, help='监听端口')
@click.pass_context
def serve(ctx, host, port):
    """启动 HTTP 同步服务"""
    import uvicorn

    from cardbutler.api.app import create_app

    settings = ctx.obj['settings']
    host = host or settings.host
    port = port or settings.port
    click.echo(f"[→] 服务启动: http://{host}:{port}")
    uvicorn.run(create_app(settings), host=host, port=port)


# ==================== 账单命令 ====================

@cli.group()
def bills():
    """账单拉取与查询"""
    pass


@bills.command()
@click.pass_context
def fetch(ctx):
    """从邮箱拉取账单"""
    ingestor = _services(ctx).ingestor
    click.echo("[→] 拉取账单邮件...")
    try:
        summary = ingestor.run()
    except MailConfigMissingError as e:
        click.echo(f"[✗] {e.message}", err=True)
        sys.exit(1)
    except MailDataSourceError as e:
        click.echo(f"[✗] 邮箱访问失败: {e.message}", err=True)
        sys.exit(1)

    click.echo(
        f"[✓] 共 {summary.total} 封, 保存 {summary.saved}, 跳过 {summary.skipped} "
        f"(重复 {summary.duplicate}, 失败 {summary.failed})"
    )


@bills.command("list")
@click.option('--limit', '-l', default=50, help='限制条数')
@click.pass_context
def bills_list(ctx, limit):
    """列出最近拉取的账单"""
    for s in _services(ctx).statements.list_recent(limit):
        amount = s.amount if s.amount is not None else '-'
        click.echo(
            f"{s.statement_date or '-'} | {s.bank_name} | {amount} {s.currency} | "
            f"到期 {s.due_date or '-'} | {s.matched_by}/{s.match_confidence}"
        )


# ==================== 邮箱命令 ====================

@cli.group()
def mail():
    """邮箱配置"""
    pass


@mail.command("set")
@click.option('--email', '-e', required=True, help='邮箱地址')
@click.option('--password', '-p', prompt='授权码', hide_input=True, help='邮箱授权码')
@click.option('--imap-host', default=None, help='IMAP 地址，如 imap.qq.com:993')
@click.pass_context
def mail_set(ctx, email, password, imap_host):
    """保存邮箱配置"""
    credentials = _services(ctx).mail_config.save(email, password, imap_host)
    click.echo(f"[✓] 已保存: {credentials.email} ({credentials.imap_host})")


@mail.command("show")
@click.pass_context
def mail_show(ctx):
    """显示邮箱配置（不含授权码）"""
    credentials = _services(ctx).mail_config.find()
    if credentials is None:
        click.echo("[✗] 未配置邮箱", err=True)
        return
    click.echo(json.dumps(credentials.public_view(), ensure_ascii=False, indent=2))


@mail.command("test")
@click.pass_context
def mail_test(ctx):
    """使用已保存的配置测试连接"""
    services = _services(ctx)
    try:
        credentials = services.mail_config.load()
        services.ingestor.test_connection(
            credentials.email, credentials.secret, credentials.imap_host
        )
    except MailConfigMissingError as e:
        click.echo(f"[✗] {e.message}", err=True)
        sys.exit(1)
    except MailDataSourceError as e:
        click.echo(f"[✗] 连接失败: {e.message}", err=True)
        sys.exit(1)
    click.echo("[✓] 连接成功")


# ==================== 配置命令 ====================

@cli.group()
def config():
    """配置管理命令"""
    pass


@config.command()
@click.pass_context
def show(ctx):
    """显示当前配置"""
    cfg = ctx.obj['config_manager'].load()
    click.echo(yaml.safe_dump(cfg, default_flow_style=False, allow_unicode=True))


@config.command("set")
@click.argument('key')
@click.argument('value')
@click.pass_context
def config_set(ctx, key, value):
    """设置配置项 (key 格式: section.key)"""
    try:
        value_parsed = json.loads(value)
    except json.JSONDecodeError:
        value_parsed = value

    ctx.obj['config_manager'].set(key, value_parsed)
    click.echo(f"[✓] 已设置: {key} = {value_parsed}")


@config.command("get")
@click.argument('key')
@click.pass_context
def config_get(ctx, key):
    """获取配置项"""
    value = ctx.obj['config_manager'].get(key)
    if value is not None:
        click.echo(f"{key} = {value}")
    else:
        click.echo(f"[✗] 配置项不存在: {key}", err=True)


# ==================== 调度命令 ====================

@cli.group()
def schedule():
    """定时任务管理"""
    pass


@schedule.command()
@click.option('--interval', '-i', default=None, type=int, help='拉取间隔（分钟）')
@click.option('--check', default=60, help='检查间隔（秒）')
@click.pass_context
def start(ctx, interval, check):
    """启动定时拉取"""
    settings = ctx.obj['settings']
    interval = interval or settings.ingest_interval_minutes
    scheduler = create_ingest_scheduler(_services(ctx).ingestor, interval)

    click.echo(f"[→] 启动调度器，每 {interval} 分钟拉取一次账单")
    scheduler.start(interval=check)
    click.echo("[✓] 调度器已停止")


# ==================== 卡片查询 ====================

@cli.group()
def cards():
    """卡片查询命令"""
    pass


@cards.command("list")
@click.option('--all', 'show_all', is_flag=True, help='包含已删除')
@click.pass_context
def cards_list(ctx, show_all):
    """列出卡片"""
    repo = _services(ctx).cards
    records = repo.get_since(-1) if show_all else repo.list_recent()
    for r in records:
        flag = ' (已删除)' if r.is_deleted else ''
        click.echo(
            f"{r.sync_id} | {r.bank_name} | {r.display_name} | "
            f"尾号 {r.last_four_digits or '-'} | 额度 {r.credit_limit}{flag}"
        )


if __name__ == '__main__':
    cli()
