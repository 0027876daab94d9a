from __future__ import annotations

import zipfile
from typing import TYPE_CHECKING

import httpx
import pytest

from repo2txt import cli
from repo2txt.providers import GitHubSource

if TYPE_CHECKING:
    from pathlib import Path

    from pytest_mock import MockerFixture


def _make_repo(root: Path) -> Path:
    repo = root / "project"
    (repo / "src").mkdir(parents=True)
    (repo / "build").mkdir()
    (repo / "src" / "app.py").write_text("print('hi')\n", encoding="utf-8")
    (repo / "src" / "style.css").write_text("body {}\n", encoding="utf-8")
    (repo / "build" / "out.js").write_text("compiled\n", encoding="utf-8")
    (repo / "notes.md").write_text("# Notes\n", encoding="utf-8")
    return repo


@pytest.mark.integration
def test_main_applies_gitignore_file_and_extension_filter(tmp_path: Path) -> None:
    repo = _make_repo(tmp_path)
    ignore = tmp_path / "ignore.txt"
    ignore.write_text("build/\n", encoding="utf-8")
    output = tmp_path / "out.txt"

    exit_code = cli.main(
        [
            str(repo),
            "--output",
            str(output),
            "--gitignore-file",
            str(ignore),
            "--ext",
            ".py",
            "--ext",
            ".js",
            "--no-worker",
            "--min-delay",
            "0",
        ],
    )

    assert exit_code == 0
    text = output.read_text(encoding="utf-8")
    assert "File: src/app.py" in text
    assert "out.js" not in text
    assert "style.css" not in text
    assert "notes.md" not in text


@pytest.mark.integration
def test_main_show_excluded_marks_ignored_nodes(tmp_path: Path) -> None:
    repo = _make_repo(tmp_path)
    output = tmp_path / "out.txt"

    exit_code = cli.main(
        [str(repo), "-o", str(output), "--gitignore", "build/", "--show-excluded", "--no-worker", "--min-delay", "0"],
    )

    assert exit_code == 0
    text = output.read_text(encoding="utf-8")
    assert "📁 build (excluded)" in text
    assert "File: build/out.js" not in text


@pytest.mark.integration
def test_main_writes_markdown_for_zip_archive(tmp_path: Path) -> None:
    archive = tmp_path / "bundle.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("lib/util.py", "def f():\n    return 1\n")
    output = tmp_path / "bundle.md"

    exit_code = cli.main([str(archive), "--output", str(output), "--no-worker", "--min-delay", "0"])

    assert exit_code == 0
    text = output.read_text(encoding="utf-8")
    assert text.startswith("# Repository Contents")
    assert "### lib/util.py\n\n```python\n" in text


@pytest.mark.integration
def test_main_exports_github_repository(
    tmp_path: Path,
    mocker: MockerFixture,
    capsys: pytest.CaptureFixture[str],
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/repos/octo/demo/contents/":
            return httpx.Response(200, json={"sha": "root-sha", "type": "dir"})
        if path == "/repos/octo/demo/git/trees/root-sha":
            return httpx.Response(
                200,
                json={
                    "truncated": False,
                    "tree": [
                        {"path": "README.md", "type": "blob", "size": 6, "url": "https://api.github.com/blob/1"},
                    ],
                },
            )
        if path == "/blob/1":
            return httpx.Response(200, json={"content": "IyBEZW1vCg==\n", "encoding": "base64"})
        return httpx.Response(404)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    real_create = cli.create_source

    def create_source(provider_type: str, **kwargs: object) -> GitHubSource:
        kwargs.pop("timeout", None)
        return real_create(provider_type, client=client, **kwargs)

    mocker.patch.object(cli, "create_source", side_effect=create_source)
    mocker.patch.object(cli, "load_env", return_value=False)
    output = tmp_path / "demo.txt"

    exit_code = cli.main(["https://github.com/octo/demo", "-o", str(output), "--no-worker", "--min-delay", "0"])

    assert exit_code == 0
    text = output.read_text(encoding="utf-8")
    assert "└── 📄 README.md" in text
    assert "File: README.md\nLines: 2" in text
    assert "# Demo" in text
    assert f"Wrote {output} files=1" in capsys.readouterr().out


@pytest.mark.integration
def test_main_reports_rate_limit(tmp_path: Path, mocker: MockerFixture, capsys: pytest.CaptureFixture[str]) -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda _request: httpx.Response(403)))
    real_create = cli.create_source

    def create_source(provider_type: str, **kwargs: object) -> GitHubSource:
        kwargs.pop("timeout", None)
        return real_create(provider_type, client=client, **kwargs)

    mocker.patch.object(cli, "create_source", side_effect=create_source)
    mocker.patch.object(cli, "load_env", return_value=False)

    exit_code = cli.main(["https://github.com/octo/demo", "-o", str(tmp_path / "x.txt"), "--min-delay", "0"])

    assert exit_code == 1
    err = capsys.readouterr().err
    assert "rate limit" in err
    assert "See: https://github.com/settings/tokens" in err
    assert not (tmp_path / "x.txt").exists()


@pytest.mark.integration
def test_main_refuses_to_export_without_selected_files(
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    repo = _make_repo(tmp_path)
    output = tmp_path / "out.txt"

    exit_code = cli.main([str(repo), "-o", str(output), "--gitignore", "*", "--no-worker", "--min-delay", "0"])

    assert exit_code == 1
    assert cli.NO_SELECTION in capsys.readouterr().err
    assert not output.exists()
