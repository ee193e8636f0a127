"""Async external command execution with hard timeouts and JSON extraction."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from mission_control import config
from mission_control.errors import CommandTimeout, MalformedOutput, ProcessFailed

logger = logging.getLogger("mission_control.runner")


@dataclass(frozen=True)
class CommandResult:
    argv: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str


def describe_command(argv: Sequence[str]) -> str:
    """Short, log-safe label for a command: executable name plus subcommand."""
    if not argv:
        return "<empty>"
    head = Path(argv[0]).name
    subcommand = [part for part in argv[1:3] if not part.startswith("-")]
    return " ".join([head, *subcommand])


def _build_env(env_overrides: Mapping[str, str] | None) -> dict[str, str]:
    env = os.environ.copy()
    env.update(config.command_env())
    if env_overrides:
        env.update(env_overrides)
    return env


async def run_command(
    argv: Sequence[str],
    *,
    timeout_seconds: float,
    env_overrides: Mapping[str, str] | None = None,
    accept_partial_output: bool = False,
) -> CommandResult:
    """Run *argv* without a shell and return its captured output.

    Raises :class:`CommandTimeout` when the process outlives *timeout_seconds*
    (the child is killed and reaped first) and :class:`ProcessFailed` on a
    non-zero exit or when the executable cannot be started. With
    ``accept_partial_output`` a non-zero exit whose stdout is non-empty is
    returned as a result instead.
    """
    args = tuple(str(part) for part in argv)
    label = describe_command(args)
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=_build_env(env_overrides),
        )
    except FileNotFoundError as exc:
        raise ProcessFailed(label, 127, f"Command not found: {args[0]}") from exc
    except OSError as exc:
        # Not executable, a directory, or otherwise refused by exec.
        raise ProcessFailed(label, 126, f"Cannot execute {args[0]}: {exc.strerror or exc}") from exc

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        await _kill(proc)
        logger.warning("Command %s timed out after %.1fs", label, timeout_seconds)
        raise CommandTimeout(label, timeout_seconds) from None
    except asyncio.CancelledError:
        await _kill(proc)
        raise

    result = CommandResult(
        argv=args,
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout_bytes.decode("utf-8", errors="replace"),
        stderr=stderr_bytes.decode("utf-8", errors="replace"),
    )
    if result.returncode == 0:
        return result

    if accept_partial_output and result.stdout.strip():
        logger.info("Command %s exited with code %d; using partial stdout", label, result.returncode)
        return result

    raise ProcessFailed(label, result.returncode, result.stderr)


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        return
    await proc.wait()


def extract_json(text: str, command: str = "command") -> Any:
    """Parse JSON from *text*, skipping any diagnostic lines printed before it.

    Plugin log lines such as ``[plugins] loaded`` also start with a bracket, so
    a candidate line that does not parse moves the scan on to the next one.
    """
    lines = text.splitlines()
    last_error: json.JSONDecodeError | None = None
    for index, line in enumerate(lines):
        if not line.strip().startswith(("{", "[")):
            continue
        try:
            return json.loads("\n".join(lines[index:]))
        except json.JSONDecodeError as exc:
            last_error = exc
    if last_error is not None:
        raise MalformedOutput(command, f"invalid JSON payload ({last_error.msg})") from last_error
    raise MalformedOutput(command, "no JSON found in output")
