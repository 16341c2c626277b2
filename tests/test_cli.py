import logging

import pytest
from click.testing import CliRunner

from cardbutler.cli import cli


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    # 命令里配置的 StreamHandler 指向 CliRunner 已关闭的输出流
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
            root.removeHandler(handler)


def _run(tmp_path, monkeypatch, *args, input=None):
    monkeypatch.setenv('CARDBUTLER_DB_PATH', str(tmp_path / "cli.db"))
    config = str(tmp_path / "config.yaml")
    return CliRunner().invoke(cli, ['--config', config, *args], input=input)


def test_mail_set_and_show_hide_secret(tmp_path, monkeypatch):
    result = _run(tmp_path, monkeypatch, 'mail', 'set', '--email', 'me@qq.com', input="auth-code\n")
    assert result.exit_code == 0, result.output

    shown = _run(tmp_path, monkeypatch, 'mail', 'show')
    assert 'me@qq.com' in shown.output
    assert 'auth-code' not in shown.output


def test_bills_fetch_without_config_exits_1(tmp_path, monkeypatch):
    result = _run(tmp_path, monkeypatch, 'bills', 'fetch')

    assert result.exit_code == 1


def test_config_set_and_get(tmp_path, monkeypatch):
    assert _run(tmp_path, monkeypatch, 'config', 'set', 'mail.fetch_limit', '20').exit_code == 0

    result = _run(tmp_path, monkeypatch, 'config', 'get', 'mail.fetch_limit')

    assert "mail.fetch_limit = 20" in result.output


def test_cards_list_empty(tmp_path, monkeypatch):
    result = _run(tmp_path, monkeypatch, 'cards', 'list', '--all')

    assert result.exit_code == 0
    assert " | " not in result.output
