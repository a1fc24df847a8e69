import importlib.util
import sys
import uuid
from pathlib import Path

import pytest

from webq.webq_datatypes import PageData


def _load_cli_module():
    """Dynamically load the top-level webq.py as a module with a unique name."""
    cli_path = Path(__file__).resolve().parents[1] / "webq.py"
    mod_name = f"webq_cli_for_test_{uuid.uuid4().hex}"
    spec = importlib.util.spec_from_file_location(mod_name, str(cli_path))
    mod = importlib.util.module_from_spec(spec)
    sys.modules[mod_name] = mod
    assert spec.loader is not None
    spec.loader.exec_module(mod)
    return mod


@pytest.fixture
def json_file(tmp_path):
    path = tmp_path / "data.json"
    path.write_text('{"items": [{"name": "a"}, {"name": "b"}], "meta": {"count": 2}}', encoding="utf-8")
    return str(path)


@pytest.mark.asyncio
async def test_cli_prints_text_value(json_file, capsys):
    cli = _load_cli_module()
    await cli.main(["json:items/0/name", json_file])
    out = capsys.readouterr().out
    assert out == "a\n"


@pytest.mark.asyncio
async def test_cli_prints_json_list(json_file, capsys):
    cli = _load_cli_module()
    await cli.main(["json:items/name", json_file])
    out = capsys.readouterr().out
    assert out == '[\n  "a",\n  "b"\n]\n'


@pytest.mark.asyncio
async def test_cli_yaml_output(json_file, capsys):
    cli = _load_cli_module()
    await cli.main(["json:meta", json_file, "--format", "yaml"])
    assert capsys.readouterr().out == "count: 2\n"


@pytest.mark.asyncio
async def test_cli_variables_and_url(json_file, capsys):
    cli = _load_cli_module()
    await cli.main(["template:${who}@${rootUrl}", json_file,
                    "--var", "who=me", "--url", "https://example.com/x"])
    assert capsys.readouterr().out == "me@https://example.com\n"


@pytest.mark.asyncio
async def test_cli_bad_var(json_file):
    cli = _load_cli_module()
    with pytest.raises(SystemExit):
        await cli.main(["json:meta", json_file, "--var", "novalue"])


@pytest.mark.asyncio
async def test_cli_query_error_exits(json_file, capsys):
    cli = _load_cli_module()
    with pytest.raises(SystemExit) as exc:
        await cli.main(["ftp:thing", json_file])
    assert exc.value.code == 1
    err = capsys.readouterr().err
    assert "UnsupportedScheme: ftp" in err
    assert "^" in err


@pytest.mark.asyncio
async def test_cli_missing_file_exits(tmp_path, capsys):
    cli = _load_cli_module()
    with pytest.raises(SystemExit) as exc:
        await cli.main(["json:a", str(tmp_path / "nope.json")])
    assert exc.value.code == 1
    assert "file not found" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_cli_validate_flag(json_file, capsys):
    cli = _load_cli_module()
    await cli.main(["json:meta/count", json_file, "--validate"])
    out, err = capsys.readouterr()
    assert out == "2\n"
    assert "Query Information:" in err


@pytest.mark.asyncio
async def test_cli_fetches_http_sources(monkeypatch, capsys):
    cli = _load_cli_module()
    seen = []

    async def fake_fetch(url, config=None):
        seen.append(url)
        return PageData(url, "<html><body><h1>Remote</h1></body></html>")
    monkeypatch.setattr(cli, "fetch_page", fake_fetch)

    await cli.main(["h1@text", "https://example.com/page"])
    assert seen == ["https://example.com/page"]
    assert capsys.readouterr().out == "Remote\n"


@pytest.mark.asyncio
async def test_cli_fetch_failure_exits(monkeypatch, capsys):
    cli = _load_cli_module()

    async def failing_fetch(url, config=None):
        raise RuntimeError("HTTP 500 for " + url)
    monkeypatch.setattr(cli, "fetch_page", failing_fetch)

    with pytest.raises(SystemExit):
        await cli.main(["h1", "https://example.com/"])
    assert "could not load" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_repl_runs_queries_until_exit(json_file, monkeypatch, capsys):
    cli = _load_cli_module()
    lines = iter([
        "json:meta/count",
        "",
        ":validate jsn:x",
        "ftp:nope",
        "exit",
    ])

    async def fake_ainput(prompt: str) -> str:
        return next(lines) + "\n"
    monkeypatch.setattr(cli, "ainput", fake_ainput)

    await cli.main([json_file])
    out, err = capsys.readouterr()
    assert "webq REPL v0.1" in out
    assert "Type 'exit' or press Ctrl+D to quit." in out
    assert "\n2\n" in out
    assert 'Invalid scheme "jsn"' in out
    assert "UnsupportedScheme: ftp" in err


@pytest.mark.asyncio
async def test_repl_exits_on_eof(json_file, monkeypatch, capsys):
    cli = _load_cli_module()

    async def fake_ainput(prompt: str) -> str:
        return ""
    monkeypatch.setattr(cli, "ainput", fake_ainput)

    await cli.main([json_file])
    assert "Exiting." in capsys.readouterr().out
