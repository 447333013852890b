# tools.py
# Tool Invocation Service: the registry of concrete actions and the local,
# workspace-rooted service that runs them.
#
# The executor never calls these functions directly; it goes through
# ToolInvocationService.invoke(), which always returns a ToolResult.

import asyncio
import logging
import os
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ToolError(Exception):
    """Raised by a tool implementation when the action cannot be completed."""


class ToolResult(BaseModel):
    """Success payload or error text from one invocation."""

    ok: bool
    output: str = ""
    error: str | None = None


@runtime_checkable
class ToolInvocationService(Protocol):
    async def invoke(self, action_name: str, args: dict[str, str]) -> ToolResult:
        ...


@dataclass(frozen=True)
class Workspace:
    """Filesystem root every tool path is resolved against."""

    root: Path
    command_timeout: float = 60.0

    def resolve(self, relative: str) -> Path:
        base = self.root.resolve()
        candidate = (base / relative).resolve()
        if not candidate.is_relative_to(base):
            raise ToolError(f"SECURITY BLOCK: {relative!r} resolves outside the workspace.")
        return candidate


def _require(args: dict, key: str) -> str:
    value = str(args.get(key, "")).strip()
    if not value:
        raise ToolError(f"no {key} provided.")
    return value


# ---------------------------------------------------------------------------
# Tool implementations
# ---------------------------------------------------------------------------


async def _tool_create_directory(args: dict, workspace: Workspace) -> str:
    path = _require(args, "path")
    workspace.resolve(path).mkdir(parents=True, exist_ok=True)
    return f"Directory {path} is ready."


async def _tool_write_file(args: dict, workspace: Workspace) -> str:
    path = _require(args, "path")
    content = args.get("content", "")
    target = workspace.resolve(path)
    if not target.parent.is_dir():
        raise ToolError(f"parent directory of {path} does not exist.")
    target.write_text(content, encoding="utf-8")
    return f"Wrote {len(content)} bytes to {path}."


async def _tool_read_file(args: dict, workspace: Workspace) -> str:
    path = _require(args, "path")
    target = workspace.resolve(path)
    if not target.is_file():
        raise ToolError(f"{path} is not a file.")
    content = target.read_text(encoding="utf-8")
    return f"File {path} ({len(content)} characters):\n{content}"


async def _tool_list_files(args: dict, workspace: Workspace) -> str:
    path = str(args.get("path", "")).strip() or "."
    target = workspace.resolve(path)
    if not target.is_dir():
        raise ToolError(f"{path} is not a directory.")
    entries = sorted(
        f"{entry.name}/" if entry.is_dir() else entry.name for entry in target.iterdir()
    )
    listing = "\n".join(entries) if entries else "(empty)"
    return f"Files in {path}:\n{listing}"


def _kill_group(process: asyncio.subprocess.Process) -> None:
    # The shell runs in its own session, so this also reaches its children.
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


async def _tool_execute_bash(args: dict, workspace: Workspace) -> str:
    command = _require(args, "command")
    process = await asyncio.create_subprocess_shell(
        command,
        cwd=workspace.root,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        start_new_session=True,
    )
    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(), timeout=workspace.command_timeout
        )
    except TimeoutError:
        raise ToolError(f"command timed out after {workspace.command_timeout:g}s: {command}")
    finally:
        # Timeout or cancellation (Ctrl-C) must not leave the command running.
        if process.returncode is None:
            _kill_group(process)
            await process.wait()

    if process.returncode != 0:
        detail = stderr.decode("utf-8", errors="replace").strip()
        raise ToolError(detail or f"command exited with status {process.returncode}.")
    return stdout.decode("utf-8", errors="replace").strip() or "Command executed successfully."


TOOLS: dict[str, Any] = {
    "create_directory": _tool_create_directory,
    "write_file":       _tool_write_file,
    "read_file":        _tool_read_file,
    "list_files":       _tool_list_files,
    "execute_bash":     _tool_execute_bash,
}

# Shown to the completion backend whenever it has to produce a request.
TOOL_CATALOGUE = """\
- create_directory: {"path": "<string>"}
- write_file: {"path": "<string>", "content": "<string>"}
- read_file: {"path": "<string>"}
- list_files: {"path": "<string>"}
- execute_bash: {"command": "<string>"}\
"""


# ---------------------------------------------------------------------------
# Local service
# ---------------------------------------------------------------------------


class LocalToolService:
    """Runs registry tools against a single workspace directory."""

    def __init__(self, root: Path | str = ".", command_timeout: float = 60.0) -> None:
        self._workspace = Workspace(root=Path(root), command_timeout=command_timeout)

    @property
    def workspace(self) -> Workspace:
        return self._workspace

    async def invoke(self, action_name: str, args: dict[str, str]) -> ToolResult:
        tool = TOOLS.get(action_name)
        if tool is None:
            return ToolResult(ok=False, error=f"Tool {action_name!r} is not in the registry.")

        logger.debug("Invoking %s with %s", action_name, args)
        try:
            output = await tool(args, self._workspace)
        except (ToolError, OSError, UnicodeDecodeError) as exc:
            logger.info("Tool %s failed: %s", action_name, exc)
            return ToolResult(ok=False, error=f"{action_name}: {exc}")
        return ToolResult(ok=True, output=output)
