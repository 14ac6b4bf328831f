"""
elastix command-line invocation.

Runs the elastix binary synchronously with:
- Up-front parameter file validation
- Captured (quiet) or pass-through (verbose) output
- Exit status mapped to RegistrationFailed, with no retries
- Optional timeout that kills the child process
"""

import logging
import os
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from elastix_bridge.exceptions import (
    InvalidParameterFile,
    RegistrationFailed,
    RegistrationTimeout,
)

logger = logging.getLogger(__name__)

# Lines of captured output repeated in the log when elastix fails
ERROR_TAIL_LINES = 20


@dataclass
class ExitStatus:
    """Outcome of a successful elastix run."""
    returncode: int
    elapsed: float
    command: List[str]
    stdout: str = ''
    stderr: str = ''


def check_elastix_available(executable: str = 'elastix') -> bool:
    """Check if the elastix executable is accessible"""
    return shutil.which(executable) is not None


def validate_parameter_file(param_file: Optional[Path]) -> Path:
    """
    Check that the registration parameter file exists and is readable.

    Raises:
        InvalidParameterFile: If the path is empty, missing, not a file or unreadable
    """
    if param_file is None or str(param_file) == '':
        raise InvalidParameterFile("No elastix parameter file given")

    param_file = Path(param_file)
    if not param_file.exists():
        raise InvalidParameterFile(f"Parameter file not found: {param_file}")
    if not param_file.is_file():
        raise InvalidParameterFile(f"Parameter file is not a regular file: {param_file}")
    if not os.access(param_file, os.R_OK):
        raise InvalidParameterFile(f"Parameter file is not readable: {param_file}")
    return param_file


def build_command(
    fixed: Path,
    moving: Path,
    out_dir: Path,
    param_file: Path,
    executable: str = 'elastix',
    threads: Optional[int] = None
) -> List[str]:
    """Assemble the elastix argument list."""
    cmd = [
        executable,
        '-f', str(fixed),
        '-m', str(moving),
        '-out', str(out_dir),
        '-p', str(param_file),
    ]

    if threads is not None:
        cmd.extend(['-threads', str(threads)])

    return cmd


def _tail(text: str, n: int = ERROR_TAIL_LINES) -> str:
    return '\n'.join(text.splitlines()[-n:])


def run_elastix(
    fixed: Path,
    moving: Path,
    out_dir: Path,
    param_file: Path,
    verbose: bool = False,
    executable: str = 'elastix',
    threads: Optional[int] = None,
    timeout: Optional[float] = None
) -> ExitStatus:
    """
    Execute elastix and wait for it to finish.

    Args:
        fixed: Fixed (reference) image file
        moving: Moving image file
        out_dir: Existing directory elastix writes its results into
        param_file: elastix registration parameter file
        verbose: If False, capture elastix output instead of printing it
        executable: elastix binary name or path
        threads: Maximum number of threads for elastix
        timeout: Seconds before the process is killed (None: wait forever)

    Returns:
        ExitStatus of the finished process

    Raises:
        InvalidParameterFile: If the parameter file is missing or unreadable
        RegistrationFailed: If elastix cannot be started or exits non-zero
        RegistrationTimeout: If elastix exceeds ``timeout``
    """
    param_file = validate_parameter_file(param_file)
    cmd = build_command(fixed, moving, out_dir, param_file, executable, threads)

    logger.info(f"Executing elastix: {' '.join(cmd)}")

    start_time = time.time()
    try:
        if verbose:
            result = subprocess.run(cmd, timeout=timeout)
        else:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout
            )
    except FileNotFoundError as e:
        logger.error(f"elastix executable not found: {executable}")
        raise RegistrationFailed(
            f"Cannot run elastix ('{executable}'): {e}. "
            "Ensure elastix is installed and on the PATH."
        ) from e
    except subprocess.TimeoutExpired as e:
        logger.error(f"elastix killed after {timeout} seconds")
        raise RegistrationTimeout(
            f"Registration timed out after {timeout} seconds"
        ) from e

    elapsed = time.time() - start_time
    stdout = result.stdout or ''
    stderr = result.stderr or ''

    if stdout:
        logger.debug(stdout)
    if stderr:
        logger.debug(stderr)

    if result.returncode != 0:
        logger.error(f"elastix failed with exit code {result.returncode}")
        if not verbose:
            output = _tail(stderr or stdout)
            if output:
                logger.error(output)
        raise RegistrationFailed(
            f"Registration failed: elastix exited with code {result.returncode}",
            returncode=result.returncode
        )

    logger.info(f"elastix completed in {elapsed:.1f} seconds")

    return ExitStatus(
        returncode=result.returncode,
        elapsed=elapsed,
        command=cmd,
        stdout=stdout,
        stderr=stderr
    )
