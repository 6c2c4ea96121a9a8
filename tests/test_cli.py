from unittest.mock import patch

import pytest
from rich.table import Table

import cli
from feedcore import config


def printed(mock_print):
    return " ".join(str(call.args[0]) for call in mock_print.call_args_list if call.args)


def test_score_command():
    with patch("cli.console.print") as mock_print:
        code = cli.main(["--log-level", "WARNING", "score", "like", "--dwell", "4000"])
    assert code == 0
    out = printed(mock_print)
    assert "-> [bold green]61[/]" in out
    assert "weight 0.65" in out
    assert "like: 5 x 0.65 + dwell: 8" in out


def test_score_command_rejects_unknown_variant():
    with pytest.raises(SystemExit):
        cli.main(["score", "like", "--variant", "Z"])


@pytest.mark.asyncio
async def test_simulation_is_reproducible():
    first = await cli.run_simulation(users=3, interactions=2, seed=11)
    second = await cli.run_simulation(users=3, interactions=2, seed=11)

    stats = first.assignor.get_stats()
    assert stats["total_users"] == 3
    assert stats["total_interactions"] == 6
    assert stats == second.assignor.get_stats()
    assert (
        first.events.get_ab_test_stats()["variants"]
        == second.events.get_ab_test_stats()["variants"]
    )


def test_simulate_command_prints_table():
    with patch("cli.console.print") as mock_print:
        code = cli.main(["--log-level", "WARNING", "simulate", "--users", "2", "--interactions", "1"])
    assert code == 0
    assert any(
        call.args and isinstance(call.args[0], Table) for call in mock_print.call_args_list
    )


def test_cleanup_command(tmp_path):
    with patch("cli.console.print") as mock_print:
        code = cli.main(["--log-level", "WARNING", "cleanup", "--cache-dir", str(tmp_path)])
    assert code == 0
    assert "Removed 0" in printed(mock_print)


def test_config_command(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "CONFIG_DIR", tmp_path)
    monkeypatch.setattr(config, "CONFIG_FILE", tmp_path / "config.json")
    with patch("cli.console.print"):
        cli.main(["--log-level", "WARNING", "config", "ollama_model", "llama3:8b"])
    assert config.load_config() == {"ollama_model": "llama3:8b"}


def test_serve_command():
    with patch("uvicorn.run") as mock_run:
        cli.main(["--log-level", "WARNING", "serve", "--port", "9000"])
    mock_run.assert_called_once_with("feedcore.main:app", host="127.0.0.1", port=9000)
