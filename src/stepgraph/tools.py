# tools.py
# Tool contract and the concrete tool implementations.
#
# The execution loop never calls these handlers directly: it looks tools up
# by name in a registry and calls ToolSpec.invoke(), which turns every
# handler exception into a structured error result.

import json
import subprocess
from collections.abc import Callable
from typing import Any

from stepgraph.models import ToolResult

ToolHandler = Callable[[dict[str, Any]], ToolResult]


class ToolSpec:
    """A named tool with informal input/output schemas and a handler."""

    def __init__(
        self,
        name: str,
        handler: ToolHandler,
        *,
        description: str = "",
        input_schema: dict[str, str] | None = None,
        output_schema: dict[str, str] | None = None,
    ) -> None:
        self.name = name
        self.description = description or f"Adapter for {name}"
        self.input_schema = input_schema or {}
        self.output_schema = output_schema or {}
        self._handler = handler

    def invoke(self, args: dict[str, Any]) -> ToolResult:
        try:
            return self._handler(args)
        except Exception as exc:
            return ToolResult(name=self.name, ok=False, output={}, error=str(exc) or type(exc).__name__)

    def definition(self) -> dict[str, Any]:
        """Function definition for the oracle's tool catalogue."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": {
                "type": "object",
                "properties": {
                    field: {"description": hint} for field, hint in self.input_schema.items()
                },
            },
        }


ToolRegistry = dict[str, ToolSpec]


# ---------------------------------------------------------------------------
# web_search
# ---------------------------------------------------------------------------


def _tool_web_search(args: dict[str, Any]) -> ToolResult:
    from ddgs import DDGS

    query = str(args.get("query") or "").strip()
    if not query:
        return ToolResult(name="web_search", ok=False, output={"items": []}, error="missing query")
    k = 5 if args.get("k") is None else int(args["k"])

    try:
        # Coerce the generator to a list to ensure actual execution
        results = list(DDGS().text(query, max_results=k))
    except Exception as exc:
        return ToolResult(name="web_search", ok=False, output={"items": []}, error=f"Search failed: {exc}")

    items = [
        {"url": r.get("href", ""), "title": r.get("title"), "snippet": r.get("body")}
        for r in results
        if r.get("href")
    ]
    return ToolResult(name="web_search", ok=True, output={"items": items})


# ---------------------------------------------------------------------------
# http_request
# ---------------------------------------------------------------------------


def _tool_http_request(args: dict[str, Any]) -> ToolResult:
    import httpx

    url = str(args.get("url") or "").strip()
    if not url:
        return ToolResult(name="http_request", ok=False, output={}, error="missing url")
    method = str(args.get("method") or "GET").upper()
    headers = args.get("headers") or {}
    body = args.get("body")
    content = body if isinstance(body, str) or body is None else json.dumps(body)

    response = httpx.request(method, url, headers=headers, content=content, timeout=20)
    ok = response.is_success
    return ToolResult(
        name="http_request",
        ok=ok,
        output={"status": response.status_code, "headers": dict(response.headers), "body": response.text},
        error=None if ok else f"HTTP {response.status_code}",
    )


# ---------------------------------------------------------------------------
# cli_exec
# ---------------------------------------------------------------------------


def _as_text(value: str | bytes | None) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value or ""


def _tool_cli_exec(args: dict[str, Any]) -> ToolResult:
    cmd = str(args.get("cmd") or "").strip()
    if not cmd:
        return ToolResult(name="cli_exec", ok=False, output={}, error="cmd is required")
    cwd = str(args["cwd"]) if args.get("cwd") else None
    timeout_s = max(1.0, 15.0 if args.get("timeout_s") is None else float(args["timeout_s"]))

    try:
        completed = subprocess.run(
            cmd, shell=True, cwd=cwd, timeout=timeout_s, capture_output=True, text=True
        )
    except subprocess.TimeoutExpired as exc:
        return ToolResult(
            name="cli_exec",
            ok=False,
            output={"stdout": _as_text(exc.stdout), "stderr": _as_text(exc.stderr), "exit_code": "TIMEOUT"},
            error=f"timed out after {timeout_s:g}s",
        )
    except OSError as exc:
        return ToolResult(
            name="cli_exec",
            ok=False,
            output={"stdout": "", "stderr": str(exc), "exit_code": exc.errno or "ERR"},
            error=str(exc),
        )

    output = {"stdout": completed.stdout, "stderr": completed.stderr, "exit_code": completed.returncode}
    if completed.returncode != 0:
        return ToolResult(name="cli_exec", ok=False, output=output, error=f"exit code {completed.returncode}")
    return ToolResult(name="cli_exec", ok=True, output=output)


WEB_SEARCH = ToolSpec(
    "web_search",
    _tool_web_search,
    description="Search the web and return result links with snippets.",
    input_schema={"query": "string (search query)", "k": "number (max results, default 5)"},
    output_schema={"items": "array<{url:string,title?:string,snippet?:string}>"},
)

HTTP_REQUEST = ToolSpec(
    "http_request",
    _tool_http_request,
    description="Perform an HTTP request and return status, headers and body.",
    input_schema={
        "url": "string (absolute URL)",
        "method": "string (GET,POST,...)",
        "headers": "object (optional)",
        "body": "string or object (optional)",
    },
    output_schema={"status": "number", "headers": "object", "body": "string"},
)

CLI_EXEC = ToolSpec(
    "cli_exec",
    _tool_cli_exec,
    description="Run a shell command and return stdout, stderr and exit code.",
    input_schema={
        "cmd": "string (command to run)",
        "cwd": "string (optional working directory)",
        "timeout_s": "number (optional, default 15)",
    },
    output_schema={"stdout": "string", "stderr": "string", "exit_code": "number|string"},
)
