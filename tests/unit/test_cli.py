import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from dxtrade.cli import app
from dxtrade.exceptions import ErrorCode, error_for

runner = CliRunner()


class _FakeClient:
    """Stands in for DxtradeClient; domain calls are AsyncMocks."""

    instances = []

    def __init__(self, config):
        self.config = config
        self.positions = MagicMock()
        self.positions.get = AsyncMock(return_value=[{"positionKey": {"positionCode": "P1"}, "quantity": 1000}])
        self.positions.close_all = AsyncMock(return_value=["P1", "P2"])
        self.account = MagicMock()
        self.account.metrics = AsyncMock(return_value={"equity": 100.5})
        self.orders = MagicMock()
        self.orders.get = AsyncMock(return_value=[])
        _FakeClient.instances.append(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return None


@pytest.fixture
def fake_client():
    _FakeClient.instances = []
    with patch("dxtrade.cli.DxtradeClient", _FakeClient), \
            patch("dxtrade.cli.load_config", return_value=MagicMock()) as load_config, \
            patch("dxtrade.cli.load_dotenv_files"), \
            patch("dxtrade.cli.setup_logging"):
        yield load_config


def test_positions_prints_json(fake_client):
    result = runner.invoke(app, ["positions"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == [{"positionKey": {"positionCode": "P1"}, "quantity": 1000}]


def test_metrics(fake_client):
    result = runner.invoke(app, ["metrics"])

    assert result.exit_code == 0
    assert json.loads(result.output) == {"equity": 100.5}


def test_orders_empty(fake_client):
    result = runner.invoke(app, ["orders"])

    assert result.exit_code == 0
    assert "No orders." in result.output


def test_config_path_is_forwarded(fake_client, tmp_path):
    path = tmp_path / "dxtrade.yaml"

    runner.invoke(app, ["--config", str(path), "metrics"])

    fake_client.assert_called_once_with(path)


def test_close_all_requires_confirmation(fake_client):
    result = runner.invoke(app, ["close-all"], input="n\n")

    assert result.exit_code != 0
    assert _FakeClient.instances == []


def test_close_all_with_yes(fake_client):
    result = runner.invoke(app, ["close-all", "--yes"])

    assert result.exit_code == 0
    assert "2 position(s)" in result.output


def test_client_error_exits_with_status_1(fake_client):
    def failing(config):
        client = _FakeClient(config)
        client.account.metrics = AsyncMock(side_effect=error_for(ErrorCode.ACCOUNT_METRICS_TIMEOUT, "Account metrics timed out"))
        return client

    with patch("dxtrade.cli.DxtradeClient", side_effect=failing):
        result = runner.invoke(app, ["metrics"])

    assert result.exit_code == 1
    assert "ACCOUNT_METRICS_TIMEOUT" in result.output


def test_ctrl_c_exits_130(fake_client):
    def interrupted(config):
        client = _FakeClient(config)
        client.positions.get = AsyncMock(side_effect=KeyboardInterrupt)
        return client

    with patch("dxtrade.cli.DxtradeClient", side_effect=interrupted):
        result = runner.invoke(app, ["positions"])

    assert result.exit_code == 130
    assert "No open positions." not in result.output


def test_log_options_are_forwarded(fake_client, tmp_path):
    log_file = tmp_path / "cli.log"

    with patch("dxtrade.cli.setup_logging") as setup_logging:
        result = runner.invoke(
            app,
            ["--log-level", "debug", "--log-format", "json", "--log-file", str(log_file), "metrics"],
        )

    assert result.exit_code == 0, result.output
    setup_logging.assert_called_once_with("DEBUG", "json", str(log_file))
