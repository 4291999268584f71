from __future__ import annotations

import json
from pathlib import Path

import pytest
from browser_support import require_chromium

from agentic_sandbox.main import build_parser, main


def test_parser_defaults() -> None:
    args = build_parser().parse_args([])
    assert (args.profile, args.fixtures, args.feed, args.port, args.json) == (None, None, False, None, False)
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--profile", "warp"])


def test_main_json_run(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    require_chromium()
    monkeypatch.delenv("SANDBOX_FIXTURE_BASE", raising=False)
    with pytest.raises(SystemExit) as info:
        main(["--profile", "fast", "--json"])
    assert info.value.code == 0

    out = json.loads(capsys.readouterr().out)
    assert out["run"]["state"] == "completed"
    assert [a["ok"] for a in out["run"]["assertions"]] == [True, True]
    assert any(alert["kind"] == "SensitiveSubmit" for alert in out["alerts"])
    assert len(out["contexts"]) == 1 and out["activeId"] == out["contexts"][0]["id"]


def test_main_text_output(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    require_chromium()
    monkeypatch.delenv("SANDBOX_FIXTURE_BASE", raising=False)
    with pytest.raises(SystemExit) as info:
        main(["--profile", "fast"])
    assert info.value.code == 0
    out = capsys.readouterr().out
    assert "Agent Console" in out
    assert 'assert OK: "Welcome, alice!"' in out
    assert "[SensitiveSubmit]" in out
    assert "secret123" not in out


def test_main_reports_failure_when_fixture_dir_is_empty(tmp_path: Path) -> None:
    require_chromium()
    with pytest.raises(SystemExit) as info:
        main(["--profile", "fast", "--fixtures", str(tmp_path), "--json"])
    assert info.value.code == 1
