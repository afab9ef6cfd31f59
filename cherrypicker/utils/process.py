"""
Local execution of the MongoDB command line tools.
"""

import re
import shlex
import logging
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Sequence

from cherrypicker.errors import ProcessExecutionError


logger = logging.getLogger(__name__)

_SECRET_ARG = re.compile(r'^(--password=)(.*)$')
_URI_CREDENTIALS = re.compile(r'(mongodb(?:\+srv)?://[^:/@]+:)([^@]+)(@)')


@dataclass
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str


def mask_arg(arg: str) -> str:
    """Hide passwords in a single command line argument."""
    arg = _SECRET_ARG.sub(r'\1****', arg)
    return _URI_CREDENTIALS.sub(r'\1****\3', arg)


def format_command(executable: str, args: Sequence[str]) -> str:
    """Render a shell-like command line for logs and errors, secrets masked."""
    return ' '.join(shlex.quote(part) for part in [executable] + [mask_arg(a) for a in args])


def _decode(data) -> str:
    if data is None:
        return ''
    if isinstance(data, bytes):
        return data.decode('utf-8', errors='replace')
    return data


def run_tool(executable: str, args: List[str], timeout: Optional[float] = None) -> ProcessResult:
    """
    Run a command line tool to completion.

    Args:
        executable: Tool path or name looked up on PATH
        args: Argument list (no shell involved)
        timeout: Seconds before the process is killed

    Returns:
        ProcessResult of a successful (exit code 0) run

    Raises:
        ProcessExecutionError: If the tool cannot start, times out or exits non-zero
    """
    command = format_command(executable, args)
    logger.debug(f"Running: {command}")

    try:
        completed = subprocess.run(
            [executable] + list(args),
            stdin=subprocess.DEVNULL,
            capture_output=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise ProcessExecutionError(f"{executable} not found: {e}", command=command)
    except subprocess.TimeoutExpired as e:
        raise ProcessExecutionError(
            f"{executable} timed out after {timeout} seconds",
            command=command,
            stderr=_decode(e.stderr),
        )
    except OSError as e:
        raise ProcessExecutionError(f"Failed to start {executable}: {e}", command=command)

    stdout = _decode(completed.stdout)
    stderr = _decode(completed.stderr)

    if completed.returncode != 0:
        for line in stderr.strip().splitlines():
            logger.warning(f"{executable}: {line}")
        raise ProcessExecutionError(
            f"{executable} exited with code {completed.returncode}. stderr: {stderr.strip()}",
            command=command,
            stderr=stderr,
            returncode=completed.returncode,
        )

    # mongodump/mongorestore report progress on stderr
    for line in stderr.strip().splitlines():
        logger.debug(f"{executable}: {line}")

    return ProcessResult(completed.returncode, stdout, stderr)
