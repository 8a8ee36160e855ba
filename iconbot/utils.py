from __future__ import annotations

import asyncio
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path


@dataclass
class CmdResult:
    returncode: int
    stdout: bytes
    stderr: bytes
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def error_text(self, limit: int = 500) -> str:
        err = self.stderr.decode("utf-8", errors="replace").strip()
        return err[-limit:] if err else f"exit {self.returncode}"


async def run_process(
    argv: Sequence[str],
    input: bytes | None = None,
    cwd: Path | str | None = None,
    timeout_sec: float = 60,
    env: Mapping[str, str] | None = None,
) -> CmdResult:
    """Run an executable, feed ``input`` to stdin and collect stdout/stderr as bytes.

    No shell is involved. A missing executable yields returncode 127, one that
    cannot be started (no execute permission, bad format) yields 126, and an
    expired timeout kills the process and yields returncode 124 with ``timed_out``.
    """
    full_env = None
    if env:
        full_env = {**os.environ, **env}
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd is not None else None,
            env=full_env,
        )
    except FileNotFoundError:
        return CmdResult(returncode=127, stdout=b"", stderr=f"{argv[0]}: command not found".encode())
    except OSError as e:
        return CmdResult(returncode=126, stdout=b"", stderr=f"{argv[0]}: {e.strerror or e}".encode())

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(input), timeout=timeout_sec)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return CmdResult(
            returncode=124,
            stdout=b"",
            stderr=f"Timeout after {timeout_sec}s".encode(),
            timed_out=True,
        )

    return CmdResult(returncode=proc.returncode or 0, stdout=stdout or b"", stderr=stderr or b"")


def human_bytes(n: int) -> str:
    step = 1024.0
    units = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    v = float(n)
    while v >= step and i < len(units) - 1:
        v /= step
        i += 1
    return f"{v:.2f} {units[i]}"
