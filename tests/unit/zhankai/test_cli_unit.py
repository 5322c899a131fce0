from __future__ import annotations

from pathlib import Path

import pytest

from zhankai import __version__
from zhankai.cli import parse_args, setup_output_directory
from zhankai.logging import get_logger


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in ("ZHANKAI_OUTPUT", "ZHANKAI_DEPTH", "ZHANKAI_TIMEOUT", "ZHANKAI_API_URL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.mark.unit
def test_parse_args_defaults(tmp_path: Path) -> None:
    settings = parse_args([])

    assert settings.repo == tmp_path.resolve()
    assert settings.output == ""
    assert settings.depth is None
    assert settings.query is None
    assert settings.sort is False


@pytest.mark.unit
def test_parse_args_short_flags(tmp_path: Path) -> None:
    settings = parse_args(["--repo", str(tmp_path), "-o", "out.md", "-d", "2", "-c", "-q", "why?", "--timeout", "5000"])

    assert settings.output == "out.md"
    assert settings.depth == 2
    assert settings.contents is True
    assert settings.query == "why?"
    assert settings.timeout == 5000


@pytest.mark.unit
def test_parse_args_layers_env_and_pyproject(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "pyproject.toml").write_text("[tool.zhankai]\ndepth = 3\ntimeout = 9000\n", encoding="utf-8")
    monkeypatch.setenv("ZHANKAI_TIMEOUT", "7000")

    settings = parse_args(["--repo", str(tmp_path)])

    assert settings.depth == 3
    assert settings.timeout == 7000


def test_parse_args_infinity_overrides_configured_depth(tmp_path: Path) -> None:
    (tmp_path / "pyproject.toml").write_text("[tool.zhankai]\ndepth = 1\n", encoding="utf-8")

    assert parse_args(["--depth", "Infinity"]).depth is None


@pytest.mark.unit
def test_parse_args_rejects_bad_depth(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        parse_args(["--depth", "deep"])

    assert excinfo.value.code == 2
    assert "Invalid depth 'deep'" in capsys.readouterr().err


def test_version_flag(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        parse_args(["--version"])

    assert excinfo.value.code == 0
    assert capsys.readouterr().out.strip() == f"zhankai {__version__}"


@pytest.mark.unit
def test_setup_output_directory_registers_gitignore(tmp_path: Path) -> None:
    output_dir = setup_output_directory(tmp_path, logger=get_logger())

    assert output_dir == tmp_path / "zhankai"
    assert output_dir.is_dir()
    assert "/zhankai" in (tmp_path / ".gitignore").read_text(encoding="utf-8").split("\n")
