import base64
import hashlib
import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from stepgraph.config import RunSettings, Verbosity
from stepgraph.errors import GraphUnwrapError, InputFileError
from stepgraph.run import (
    FileSpec,
    extract_autorun_graph,
    load_file_uri,
    main,
    parse_args,
    prompt_for_missing_inputs,
    read_input_file,
    run_graph_file,
    unwrap_graph,
)
from tests.fakes import ScriptedProvider, final, make_graph, make_step

GRAPH = {"steps": {"a": make_step("a").model_dump()}, "edges": []}

# ---------------------------------------------------------------------------
# Graph unwrapping
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "document, wrapper",
    [
        (GRAPH, None),
        (json.dumps(GRAPH), None),
        ({"workflow": GRAPH, "notes": "x"}, "workflow"),
        ({"anything": GRAPH}, "anything"),
        ({"meta": 1, "plan": GRAPH}, "plan"),
    ],
)
def test_unwrap_graph(document, wrapper):
    graph, found = unwrap_graph(document)
    assert graph == GRAPH
    assert found == wrapper


def test_unwrap_prefers_named_wrappers():
    other = {"steps": {}, "edges": []}
    graph, found = unwrap_graph({"first": other, "stepgraph": GRAPH})
    assert found == "stepgraph"
    assert graph == GRAPH


def test_unwrap_rejects_non_objects():
    with pytest.raises(GraphUnwrapError, match="not an object"):
        unwrap_graph([1, 2])


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


def test_read_text_file_with_metadata(tmp_path):
    path = tmp_path / "brief.txt"
    path.write_text("hello", encoding="utf-8")
    value, meta = read_input_file(FileSpec("brief", path, "text"), limit_mb=1)

    assert value == "hello"
    assert meta["filename"] == "brief.txt"
    assert meta["abspath"] == str(path.resolve())
    assert meta["size_bytes"] == 5
    assert meta["sha256"] == hashlib.sha256(b"hello").hexdigest()
    assert meta["mode"] == "text"


def test_read_base64_and_json_files(tmp_path):
    raw = tmp_path / "blob.bin"
    raw.write_bytes(b"\x00\x01")
    doc = tmp_path / "doc.json"
    doc.write_text('{"k": [1]}', encoding="utf-8")

    assert read_input_file(FileSpec("blob", raw, "base64"), 1)[0] == base64.b64encode(b"\x00\x01").decode()
    assert read_input_file(FileSpec("doc", doc, "json"), 1)[0] == {"k": [1]}


def test_read_input_file_errors(tmp_path):
    big = tmp_path / "big.txt"
    big.write_text("x" * 2048, encoding="utf-8")
    with pytest.raises(InputFileError, match="too large"):
        read_input_file(FileSpec("big", big, "text"), limit_mb=0.001)

    broken = tmp_path / "broken.json"
    broken.write_text("{nope", encoding="utf-8")
    with pytest.raises(InputFileError, match="Failed to parse JSON"):
        read_input_file(FileSpec("b", broken, "json"), limit_mb=1)

    with pytest.raises(InputFileError):
        read_input_file(FileSpec("gone", tmp_path / "missing.txt", "text"), limit_mb=1)


def test_load_file_uri(tmp_path):
    path = tmp_path / "answer.txt"
    path.write_text("from file", encoding="utf-8")
    assert load_file_uri(path.as_uri()) == "from file"
    with pytest.raises(InputFileError):
        load_file_uri("file:///definitely/not/here.txt")


def test_prompt_only_for_missing_unscoped_required(tmp_path):
    answer_file = tmp_path / "topic.txt"
    answer_file.write_text("batteries", encoding="utf-8")
    step = make_step("a", inputs={"required": ["topic", "audience", "other.result", "given"]})
    ask = MagicMock(side_effect=[answer_file.as_uri(), "engineers"])

    answers = prompt_for_missing_inputs(step, {"given": 1}, ask=ask)

    assert answers == {"topic": "batteries", "audience": "engineers"}
    assert ask.call_count == 2


def test_prompt_disabled_when_not_interactive():
    ask = MagicMock()
    step = make_step("a", inputs={"required": ["topic"]})
    assert prompt_for_missing_inputs(step, {}, interactive=False, ask=ask) == {}
    ask.assert_not_called()


def test_extract_autorun_graph(store):
    graph = make_graph(make_step("plan", outputs=("notes", "workflow")), make_step("first"), edges=[("first", "plan")])
    store.write("plan.notes", "no graph here")
    store.write("plan.workflow", {"stepgraph": GRAPH})
    assert extract_autorun_graph(graph, store) == (GRAPH, "plan.workflow")


def test_extract_autorun_graph_none(store):
    graph = make_graph(make_step("plan"))
    store.write("plan.result", "text")
    assert extract_autorun_graph(graph, store) is None


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


@pytest.fixture
def run_settings(tmp_path):
    return RunSettings(
        run_id="cli-run",
        runs_dir=str(tmp_path / "runs"),
        interactive=False,
        verbosity=Verbosity(quiet=True),
    )


def _graph_file(tmp_path, document):
    path = tmp_path / "graph.json"
    path.write_text(json.dumps(document), encoding="utf-8")
    return path


def test_run_graph_file_seeds_inputs_and_runs(tmp_path, run_settings, reporter):
    step = make_step("a", inputs={"required": ["topic", "brief"]})
    graph_path = _graph_file(tmp_path, {"workflow": make_graph(step).dump()})
    brief = tmp_path / "brief.txt"
    brief.write_text("be brief", encoding="utf-8")
    provider = ScriptedProvider(final(result="done"))

    reports = run_graph_file(
        graph_path,
        {"topic": "batteries"},
        [FileSpec("brief", brief, "text")],
        settings=run_settings,
        provider=provider,
        reporter=reporter,
    )

    assert [report.executed for report in reports] == [["a"]]
    user_prompt = provider.requests[0]["messages"][1]["content"]
    assert '- topic: "batteries"' in user_prompt
    assert '- brief: "be brief"' in user_prompt
    assert (tmp_path / "runs" / "cli-run" / "a" / "outputs.json").exists()


def test_run_graph_file_autorun(tmp_path, run_settings, reporter):
    produced = make_graph(make_step("child", inputs={"required": ["planner.result"]})).dump()
    graph_path = _graph_file(tmp_path, make_graph(make_step("planner")).dump())
    provider = ScriptedProvider(final(result=json.dumps(produced)), final(result="child done"))

    reports = run_graph_file(graph_path, autorun=True, settings=run_settings, provider=provider, reporter=reporter)

    assert [report.run_id for report in reports] == ["cli-run", "cli-run-autorun"]
    assert reports[1].executed == ["child"]


def test_run_graph_file_rejects_empty_graph(tmp_path, run_settings, reporter):
    graph_path = _graph_file(tmp_path, {"steps": {}, "edges": []})
    with pytest.raises(GraphUnwrapError, match="no steps"):
        run_graph_file(graph_path, settings=run_settings, provider=ScriptedProvider(), reporter=reporter)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def test_parse_args_collects_repeatables():
    args = parse_args(["--graph", "g.json", "--kv", "a=1", "--kv", "b=x=y", "--fileb", "img=pic.png", "--autorun"])
    assert args.kv == [("a", "1"), ("b", "x=y")]
    assert args.fileb == [("img", "pic.png")]
    assert args.autorun is True


def test_parse_args_usage_errors():
    with pytest.raises(SystemExit) as exc:
        parse_args(["--kv", "a=1"])
    assert exc.value.code == 2
    with pytest.raises(SystemExit):
        parse_args(["--graph", "g.json", "--kv", "novalue"])


@patch("stepgraph.run.run_graph_file")
def test_main_wires_settings(mock_run, monkeypatch):
    monkeypatch.setenv("MODEL", "env-model")
    assert main(["--graph", "g.json", "--kv", "topic=x", "--file", "brief=b.txt", "--model", "cli-model", "--quiet"]) == 0

    args, kwargs = mock_run.call_args
    assert args[1] == {"topic": "x"}
    assert args[2] == [FileSpec("brief", Path("b.txt"), "text")]
    assert kwargs["settings"].model == "cli-model"
    assert kwargs["settings"].verbosity.quiet is True


@patch("stepgraph.run.run_graph_file", side_effect=GraphUnwrapError("No StepGraph found"))
def test_main_returns_1_on_run_errors(mock_run):
    assert main(["--graph", "g.json", "--quiet"]) == 1


def test_main_returns_2_on_bad_config(monkeypatch):
    monkeypatch.setenv("MAX_ITERATIONS_PER_STEP", "many")
    assert main(["--graph", "g.json"]) == 2


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("MAX_TOOL_EXEC_PER_STEP", "3")
    monkeypatch.setenv("TEMPERATURE", "0.7")
    monkeypatch.setenv("NO_INTERACTIVE", "1")
    monkeypatch.setenv("LOG_TOOLS", "yes")
    monkeypatch.setenv("LOG_STEPS", "0")
    settings = RunSettings.from_env()
    assert settings.max_tool_exec_per_step == 3
    assert settings.temperature == 0.7
    assert settings.interactive is False
    assert settings.verbosity.tools is True
    assert settings.verbosity.steps is False


def test_settings_reject_below_minimum(monkeypatch):
    monkeypatch.setenv("MAX_ITERATIONS_PER_STEP", "0")
    with pytest.raises(ValueError, match="MAX_ITERATIONS_PER_STEP must be >= 1"):
        RunSettings.from_env()
