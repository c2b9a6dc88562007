from unittest.mock import MagicMock

import pytest

from stepgraph.config import RunSettings, Verbosity
from stepgraph.display import Reporter
from stepgraph.models import ToolResult
from stepgraph.store import VersionedStore
from stepgraph.tools import ToolSpec


@pytest.fixture
def store():
    return VersionedStore()


@pytest.fixture
def settings():
    return RunSettings(run_id="test-run", verbosity=Verbosity(quiet=True))


@pytest.fixture
def reporter():
    return Reporter(Verbosity(quiet=True))


@pytest.fixture
def echo_handler():
    return MagicMock(side_effect=lambda args: ToolResult(name="echo", ok=True, output={"echo": args}))


@pytest.fixture
def echo_tool(echo_handler):
    return ToolSpec("echo", echo_handler, description="Echo the arguments back.", input_schema={"text": "string"})
