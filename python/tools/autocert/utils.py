#!/usr/bin/env python3
"""
Utility functions shared across AutoCert.

Directory handling, operation logging and a thin subprocess wrapper that
every component uses to talk to native tools.
"""

import os
import shutil
import subprocess
from functools import wraps
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence

from loguru import logger


def ensure_directory_exists(path: Path, mode: int = 0o755) -> None:
    """
    Ensure the specified directory exists, creating it if necessary.

    Args:
        path: The directory path to check/create
        mode: Permission bits for newly created directories

    Raises:
        OSError: If directory creation fails
    """
    try:
        path.mkdir(mode=mode, exist_ok=True, parents=True)
    except OSError as e:
        logger.error(f"Failed to create directory {path}: {e}")
        raise


def write_file(path: Path, data: bytes, mode: int) -> None:
    """Write bytes to path, then apply the permission bits."""
    path.write_bytes(data)
    os.chmod(path, mode)


def log_operation(func: Callable) -> Callable:
    """
    Decorator to log function calls and their results.

    Args:
        func: The function to decorate

    Returns:
        The decorated function
    """
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        logger.debug(f"Calling {func.__name__}")
        try:
            result = func(*args, **kwargs)
            logger.debug(f"{func.__name__} completed successfully")
            return result
        except Exception as e:
            logger.error(f"Error in {func.__name__}: {str(e)}")
            raise
    return wrapper


def which(name: str) -> Optional[str]:
    """Return the full path of an executable on PATH, or None."""
    return shutil.which(name)


def run_command(
    cmd: Sequence[str],
    input_text: Optional[str] = None,
    timeout: Optional[float] = None,
    **kwargs: Any,
) -> subprocess.CompletedProcess:
    """
    Run a command and capture its output.

    A missing executable is reported as a completed process with return
    code 127, the same code a shell uses, so callers only ever inspect
    ``returncode``.

    Args:
        cmd: Command and arguments
        input_text: Text written to the command's stdin
        timeout: Seconds before the command is killed
        **kwargs: Additional arguments to pass to subprocess.run

    Returns:
        The completed process with text stdout and stderr
    """
    args: List[str] = [str(part) for part in cmd]
    logger.debug(f"Running command: {' '.join(args)}")
    try:
        return subprocess.run(
            args,
            input=input_text,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=timeout,
            check=False,
            **kwargs,
        )
    except FileNotFoundError:
        logger.debug(f"Executable not found: {args[0]}")
        return subprocess.CompletedProcess(args, 127, "", f"{args[0]}: command not found")
    except subprocess.TimeoutExpired:
        logger.error(f"Command timed out after {timeout}s: {' '.join(args)}")
        return subprocess.CompletedProcess(args, 124, "", f"timed out after {timeout}s")


def combined_output(result: subprocess.CompletedProcess) -> str:
    """Return stdout and stderr of a finished command as one stripped string."""
    parts = [part.strip() for part in (result.stdout, result.stderr) if part and part.strip()]
    return "\n".join(parts)
