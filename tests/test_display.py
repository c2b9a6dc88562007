import io

import pytest
from rich.console import Console

from stepgraph.config import Verbosity
from stepgraph.display import Reporter


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def loud_reporter(output):
    console = Console(file=output, width=200, color_system=None, highlight=False)
    return Reporter(Verbosity(), console=console)


def test_repaired_prints_call_ids_literally(loud_reporter, output):
    loud_reporter.repaired(["call_[/red]", "call_[bold]"])
    text = output.getvalue()
    assert "synthesized 2 missing tool reply(ies)" in text
    assert "call_[/red], call_[bold]" in text


def test_outputs_written_prints_field_names_literally(loud_reporter, output):
    loud_reporter.outputs_written(0, ["[/green]", "summary"])
    assert "iter 1 — wrote: [/green], summary" in output.getvalue()


def test_outputs_written_without_fields(loud_reporter, output):
    loud_reporter.outputs_written(2, [])
    assert "iter 3 — wrote: (none)" in output.getvalue()


def test_quiet_reporter_prints_nothing(output):
    reporter = Reporter(Verbosity(quiet=True), console=Console(file=output))
    reporter.repaired(["a"])
    reporter.outputs_written(0, ["summary"])
    assert output.getvalue() == ""
