# registry.py
# Default tool registry and the catalogue rendered for the oracle.

from typing import Any

from stepgraph.inject import WORKFLOW_INJECT_SUBGRAPH
from stepgraph.tools import CLI_EXEC, HTTP_REQUEST, WEB_SEARCH, ToolRegistry, ToolSpec


def build_tool_registry(*extra: ToolSpec) -> ToolRegistry:
    registry: ToolRegistry = {
        tool.name: tool for tool in (WEB_SEARCH, HTTP_REQUEST, CLI_EXEC, WORKFLOW_INJECT_SUBGRAPH)
    }
    for tool in extra:
        registry[tool.name] = tool
    return registry


def tool_definitions(registry: ToolRegistry) -> list[dict[str, Any]]:
    return [tool.definition() for tool in registry.values()]
