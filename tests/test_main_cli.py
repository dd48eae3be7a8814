from __future__ import annotations

from typing import Any

import pytest

import main as app_main


def test_main_runner_delegates_to_run_runner(monkeypatch):
    calls: list[dict[str, Any]] = []

    def _fake_run_runner(cfg_path: str, max_cycles: int | None = None, **_kwargs):
        calls.append({"cfg_path": cfg_path, "max_cycles": max_cycles})
        return {"ok": True}

    monkeypatch.setattr(app_main, "run_runner", _fake_run_runner)
    res = app_main.main(["--config", "config/other.yml", "runner", "--max-cycles", "12"])
    assert res == {"ok": True}
    assert calls == [{"cfg_path": "config/other.yml", "max_cycles": 12}]


def test_main_runner_accepts_config_after_subcommand(monkeypatch):
    seen: list[str] = []
    monkeypatch.setattr(app_main, "run_runner", lambda cfg_path, max_cycles=None: seen.append(cfg_path))
    app_main.main(["runner", "--config", "config/x.yml"])
    assert seen == ["config/x.yml"]


def test_default_task_is_runner():
    args = app_main.parse_args([])
    assert args.task == "runner"
    assert args.config == "config/config.yml"
    assert args.max_cycles is None


def test_check_config_returns_dump(tmp_path, capsys):
    path = tmp_path / "c.yml"
    path.write_text("symbol: ETHUSDT\ntrading_symbol: USDT\n", encoding="utf-8")
    out = app_main.main(["check-config", "--config", str(path)])
    assert out["symbol"] == "ETHUSDT"
    assert "Config OK" in capsys.readouterr().out


def test_invalid_config_exits_with_code_2(tmp_path, capsys):
    path = tmp_path / "c.yml"
    path.write_text("symbol: USDT\ntrading_symbol: USDT\n", encoding="utf-8")
    with pytest.raises(SystemExit) as exc:
        app_main.main(["check-config", "--config", str(path)])
    assert exc.value.code == 2
    assert "Configuration error" in capsys.readouterr().err
