from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import httpx
import pytest
from pytest_mock import MockerFixture

from zhankai import cli
from zhankai.logging import get_logger
from zhankai.settings import Settings


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    root = tmp_path / "demo"
    (root / "src").mkdir(parents=True)
    (root / "src" / "app.ts").write_text("export const answer = 41;\n", encoding="utf-8")
    return root


@pytest.fixture
def clean_git(mocker: MockerFixture) -> None:
    mocker.patch.object(cli, "get_repo_name", return_value="demo")
    mocker.patch.object(cli, "has_uncommitted_changes", return_value=False)


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.mark.integration
@pytest.mark.usefixtures("clean_git")
def test_export_writes_document_in_output_directory(repo: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli.run(Settings(repo=repo, sort=True), logger=get_logger())

    document = repo / "zhankai" / "demo_app_description.md"
    assert exit_code == 0
    assert f"Wrote {document}" in capsys.readouterr().out
    text = document.read_text(encoding="utf-8")
    assert text.startswith("# demo\n\n")
    assert "### src/app.ts" in text
    assert "```typescript\nexport const answer = 41;\n" in text
    assert (repo / ".gitignore").read_text(encoding="utf-8") == "/zhankai\n"


@pytest.mark.integration
@pytest.mark.usefixtures("clean_git")
def test_second_export_gets_a_fresh_name(repo: Path) -> None:
    cli.run(Settings(repo=repo), logger=get_logger())
    cli.run(Settings(repo=repo), logger=get_logger())

    names = sorted(p.name for p in (repo / "zhankai").iterdir())
    assert names == ["demo_app_description(1).md", "demo_app_description.md"]


@pytest.mark.integration
@pytest.mark.usefixtures("clean_git")
def test_query_applies_file_updates(repo: Path, capsys: pytest.CaptureFixture[str]) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        request.read()
        assert b"export const answer = 41;" in request.content
        return httpx.Response(
            200,
            json={
                "output": "## Fixed\n- answer is now 42",
                "filesToUpdate": [{"fileName": "src/app.ts", "fileContent": "export const answer = 42;\n"}],
            },
        )

    settings = Settings(repo=repo, query="fix the answer")
    exit_code = cli.run(settings, logger=get_logger(), client=_client(handler))

    assert exit_code == 0
    assert "answer is now 42" in capsys.readouterr().out
    assert (repo / "src" / "app.ts").read_text(encoding="utf-8") == "export const answer = 42;\n"
    assert (repo / "zhankai" / "query.md").exists()


@pytest.mark.integration
def test_dirty_tree_refuses_query(repo: Path, mocker: MockerFixture, capsys: pytest.CaptureFixture[str]) -> None:
    mocker.patch.object(cli, "get_repo_name", return_value="demo")
    mocker.patch.object(cli, "has_uncommitted_changes", return_value=True)
    handler = mocker.Mock()

    exit_code = cli.run(Settings(repo=repo, query="q"), logger=get_logger(), client=_client(handler))

    assert exit_code == 1
    handler.assert_not_called()
    assert cli.DIRTY_TREE_MESSAGE in capsys.readouterr().out
    assert (repo / "zhankai" / "demo_app_description.md").exists()


@pytest.mark.integration
def test_allow_dirty_sends_query(repo: Path, mocker: MockerFixture) -> None:
    mocker.patch.object(cli, "get_repo_name", return_value="demo")
    mocker.patch.object(cli, "has_uncommitted_changes", return_value=True)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"answer": "fine"})

    settings = Settings(repo=repo, query="q", allow_dirty=True)

    assert cli.run(settings, logger=get_logger(), client=_client(handler)) == 0


@pytest.mark.integration
@pytest.mark.usefixtures("clean_git")
def test_failed_query_exits_non_zero(repo: Path, capsys: pytest.CaptureFixture[str]) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"error": "forbidden"})

    exit_code = cli.run(Settings(repo=repo, query="q"), logger=get_logger(), client=_client(handler))

    assert exit_code == 1
    assert "Failed to get response from API: API request failed with status 403: forbidden" in capsys.readouterr().out


def _git(repo: Path, *args: str) -> str:
    out = subprocess.run(
        ["git", "-c", "user.name=zhankai", "-c", "user.email=zhankai@example.test", "-c", "commit.gpgsign=false", *args],
        cwd=repo,
        text=True,
        capture_output=True,
        check=True,
    )
    return out.stdout


@pytest.fixture
def committed_repo(repo: Path) -> Path:
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    _git(repo, "init", "--quiet")
    _git(repo, "add", "--all")
    _git(repo, "commit", "--quiet", "-m", "initial")
    return repo


@pytest.mark.integration
def test_query_on_clean_committed_repo_is_sent(committed_repo: Path, capsys: pytest.CaptureFixture[str]) -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"output": "hi"})

    exit_code = cli.run(Settings(repo=committed_repo, query="q"), logger=get_logger(), client=_client(handler))

    assert exit_code == 0
    assert len(requests) == 1
    assert cli.DIRTY_TREE_MESSAGE not in capsys.readouterr().out
    assert "?? .gitignore" in _git(committed_repo, "status", "--porcelain")
    assert (committed_repo / "zhankai" / "query.md").read_text(encoding="utf-8") == "hi"


@pytest.mark.integration
def test_query_on_modified_committed_repo_is_refused(
    committed_repo: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    (committed_repo / "src" / "app.ts").write_text("export const answer = 0;\n", encoding="utf-8")
    handler = httpx.MockTransport(lambda request: httpx.Response(500))

    exit_code = cli.run(
        Settings(repo=committed_repo, query="q"),
        logger=get_logger(),
        client=httpx.Client(transport=handler),
    )

    assert exit_code == 1
    assert (committed_repo / "zhankai" / "demo_app_description.md").exists()
    assert cli.DIRTY_TREE_MESSAGE in capsys.readouterr().out
