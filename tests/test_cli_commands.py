import json
import socket
import sys

import pytest
from loguru import logger
from pydantic import SecretStr
from typer.testing import CliRunner

import wnodeprobe.cli.commands as commands
import wnodeprobe.cli.shared.logging_utils as logging_utils
from wnodeprobe import __version__
from wnodeprobe.config.schema import Config, NodeConfig, ScenarioConfig
from wnodeprobe.node.peer import SubprocessPeer
from wnodeprobe.scenario.driver import PubSubScenario

runner = CliRunner()


@pytest.fixture(autouse=True)
def _log_dir(monkeypatch, tmp_path):
    monkeypatch.setattr(logging_utils, "get_log_dir", lambda: tmp_path / "logs")
    yield
    # run() swaps every loguru sink for ones bound to the runner streams
    logger.remove()
    logging_utils._SINK_IDS.clear()
    logger.add(sys.stderr)


def test_version_command() -> None:
    result = runner.invoke(commands.app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_build_scenario_wires_managed_nodes() -> None:
    config = Config()
    config.nodes.subscriber.secret = SecretStr("pw")
    scenario = commands.build_scenario(config)

    assert scenario.publisher.base_url == "http://127.0.0.1:8537"
    assert scenario.subscriber.base_url == "http://127.0.0.1:8536"
    assert [s.name for s in scenario.supervisors] == ["node-a", "node-b"]
    peer = scenario.supervisors[1].peer
    assert isinstance(peer, SubprocessPeer)
    assert peer.command == ["./wnode-status", "-httpport=8536", "-http=true"]
    assert peer.cwd == "build/bin"
    assert peer._env_overrides == {"ACCOUNT_PASSWORD": "pw"}


def test_build_scenario_attach_and_unmanaged_skip_supervisors() -> None:
    config = Config()
    assert commands.build_scenario(config, attach=True).supervisors == []
    config.nodes.publisher = NodeConfig(name="remote-a", host="10.0.0.5", http_port=9000, managed=False)
    scenario = commands.build_scenario(config)
    assert scenario.publisher.base_url == "http://10.0.0.5:9000"
    assert [s.name for s in scenario.supervisors] == ["node-b"]


def test_run_with_broken_config_exits_2(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{broken")
    result = runner.invoke(commands.app, ["run", "--config", str(path)])
    assert result.exit_code == 2
    assert "Failed to load config" in result.output


def test_run_prints_json_report(monkeypatch, tmp_path, make_network) -> None:
    network = make_network()

    def fake_build(config, *, attach=False):
        assert attach is True
        return PubSubScenario(
            network.client("node-a", 8537),
            network.client("node-b", 8536),
            settings=ScenarioConfig(poll_interval=0.01),
        )

    # keep log lines out of the JSON on stdout
    monkeypatch.setattr(commands, "_configure_logging", lambda command, level, verbose: tmp_path / "run.log")
    monkeypatch.setattr(commands, "build_scenario", fake_build)
    result = runner.invoke(commands.app, ["run", "--config", str(tmp_path / "none.json"), "--attach", "--json"])
    assert result.exit_code == 0, result.output
    summary = json.loads(result.output)
    assert summary["ok"] is True
    assert summary["lateMessages"] == []


def test_run_failure_exits_1(monkeypatch, tmp_path, make_network) -> None:
    network = make_network(drop=True)

    def fake_build(config, *, attach=False):
        return PubSubScenario(
            network.client("node-a", 8537),
            network.client("node-b", 8536),
            settings=ScenarioConfig(poll_interval=0.01, delivery_timeout=0.05),
        )

    monkeypatch.setattr(commands, "build_scenario", fake_build)
    result = runner.invoke(commands.app, ["run", "--config", str(tmp_path / "none.json")])
    assert result.exit_code == 1
    assert "await_delivery" in result.output


def test_probe_unreachable_node_exits_1() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]
    result = runner.invoke(commands.app, ["probe", f"http://127.0.0.1:{port}", "--attempts", "1", "--timeout", "1"])
    assert result.exit_code == 1
    assert "not ready" in result.output


def test_run_with_zero_ttl_is_a_config_error(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"scenario": {"ttl": 0}}))
    result = runner.invoke(commands.app, ["run", "--config", str(path)])
    assert result.exit_code == 2
    assert "Failed to load config" in result.output


def test_init_creates_then_refreshes_config(tmp_path) -> None:
    path = tmp_path / "cfg" / "config.json"
    result = runner.invoke(commands.app, ["init", "--config", str(path)])
    assert result.exit_code == 0
    assert "Created config" in result.output
    data = json.loads(path.read_text())
    assert data["nodes"]["subscriber"]["httpPort"] == 8536

    data["scenario"]["deliveryTimeout"] = 42
    path.write_text(json.dumps(data))
    result = runner.invoke(commands.app, ["init", "--config", str(path)])
    assert result.exit_code == 0
    assert "refreshed" in result.output
    assert json.loads(path.read_text())["scenario"]["deliveryTimeout"] == 42

    result = runner.invoke(commands.app, ["init", "--config", str(path), "--force"])
    assert result.exit_code == 0
    assert json.loads(path.read_text())["scenario"]["deliveryTimeout"] == 10.0
