"""
Process execution for layer effectors.

CommandExecutor runs external commands (cdk, git, deployment scripts) and
always returns a CommandResult: non-zero exits, missing binaries, and
timeouts are reported as values, so callers decide what a failure means.

Usage:
    from stack_orchestrator.executor import CommandExecutor

    executor = CommandExecutor()
    result = executor.run("npx", ["cdk", "deploy"], cwd=app_dir, stream_output=True)
    if not result.success:
        logger.error(result.output)
"""

import os
import shutil
import subprocess
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from . import constants as CONSTANTS
from .core.types import CommandResult
from .logger import logger, truncate_tail


class CommandExecutor:
    """
    Runs commands through subprocess.

    Attributes:
        default_timeout_s: Timeout applied when a call does not pass one
    """

    def __init__(self, default_timeout_s: float = CONSTANTS.COMMAND_TIMEOUT_S):
        self.default_timeout_s = default_timeout_s

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        cwd: Optional[Path] = None,
        env: Optional[Dict[str, str]] = None,
        timeout_s: Optional[float] = None,
        stream_output: bool = False,
        silent: bool = False,
    ) -> CommandResult:
        """
        Run a command and capture its output.

        Args:
            command: Executable name or path
            args: Command arguments
            cwd: Working directory (defaults to the current directory)
            env: Extra environment variables, merged over os.environ
            timeout_s: Seconds before the process is killed
            stream_output: If True, echo output to the console while capturing it
            silent: If True, do not log the command or its failure

        Returns:
            CommandResult. exit_code is 127 when the binary does not exist
            and 124 when the timeout expired.
        """
        cmd = [command, *args]
        full_command = " ".join(cmd)
        timeout = timeout_s if timeout_s is not None else self.default_timeout_s
        run_env = {**os.environ, **(env or {})}
        start = time.monotonic()

        if not silent:
            logger.info(f"Running: {full_command}" + (f" (in {cwd})" if cwd else ""))

        try:
            if stream_output and not silent:
                exit_code, stdout, stderr = self._run_streaming(cmd, cwd, run_env, timeout)
            else:
                completed = subprocess.run(
                    cmd,
                    cwd=str(cwd) if cwd else None,
                    env=run_env,
                    capture_output=True,
                    text=True,
                    timeout=timeout,
                    check=False,
                )
                exit_code, stdout, stderr = completed.returncode, completed.stdout, completed.stderr
        except FileNotFoundError as e:
            exit_code, stdout, stderr = CONSTANTS.EXIT_CODE_NOT_FOUND, "", f"Command not found: {e}"
        except subprocess.TimeoutExpired as e:
            exit_code = CONSTANTS.EXIT_CODE_TIMEOUT
            stdout = _to_text(e.stdout)
            stderr = (_to_text(e.stderr) + f"\nCommand timed out after {timeout}s").strip()
        except OSError as e:
            exit_code, stdout, stderr = 1, "", str(e)

        duration_ms = int((time.monotonic() - start) * 1000)
        result = CommandResult(
            success=exit_code == 0,
            stdout=stdout or "",
            stderr=stderr or "",
            exit_code=exit_code,
            duration_ms=duration_ms,
        )

        if not silent:
            if result.success:
                logger.debug(f"✓ {full_command} finished in {duration_ms}ms")
            else:
                logger.error(
                    f"✗ Command failed (exit {exit_code}): {full_command}\n"
                    f"{truncate_tail(result.output, CONSTANTS.DIAGNOSTIC_TAIL_CHARS)}"
                )
        return result

    def run_shell(self, shell_command: str, **kwargs) -> CommandResult:
        """Run a command line through `sh -c` (pipes, redirects, ...)."""
        return self.run("sh", ["-c", shell_command], **kwargs)

    @staticmethod
    def command_exists(command: str) -> bool:
        return shutil.which(command) is not None

    @staticmethod
    def _run_streaming(cmd: List[str], cwd: Optional[Path], env: Dict[str, str], timeout: float):
        """
        Stream combined output to the console and collect it.

        A reader thread drains the pipe so the timeout is enforced even
        when the process stops printing.
        """
        process = subprocess.Popen(
            cmd,
            cwd=str(cwd) if cwd else None,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
        )
        output_lines: List[str] = []

        def _drain():
            for line in process.stdout:
                print(line, end="", flush=True)
                output_lines.append(line)

        reader = threading.Thread(target=_drain, daemon=True)
        reader.start()
        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
            reader.join(timeout=5)
            raise subprocess.TimeoutExpired(cmd, timeout, output="".join(output_lines))
        reader.join()
        return process.returncode, "".join(output_lines), ""


def _to_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
