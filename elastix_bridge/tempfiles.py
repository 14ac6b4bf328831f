"""
Scoped temporary files and directories.

A TempResource owns exactly one filesystem path. It is created through
``acquire_temp_file`` or ``acquire_temp_dir`` and deleted by ``release``,
which is idempotent and never raises. Using the resource as a context
manager guarantees release on every exit path.

Names come from an injectable generator. The default draws from
``uuid.uuid4`` (os.urandom) so that concurrent sessions sharing a temp
root never collide; tests can pass ``SequentialNames`` instead.
"""

import logging
import os
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Callable, Optional

from elastix_bridge.exceptions import TempResourceError

logger = logging.getLogger(__name__)

NameGenerator = Callable[[], str]


def random_name() -> str:
    """Return a collision-resistant name for a temporary artifact."""
    return f"elxb_{uuid.uuid4().hex}"


class SequentialNames:
    """
    Deterministic name generator.

    Parameters
    ----------
    prefix : str
        Prefix for every generated name

    Examples
    --------
    >>> names = SequentialNames('tmp')
    >>> names(), names()
    ('tmp0000', 'tmp0001')
    """

    def __init__(self, prefix: str = 'tmp'):
        self.prefix = prefix
        self.count = 0

    def __call__(self) -> str:
        name = f"{self.prefix}{self.count:04d}"
        self.count += 1
        return name


class TempResource:
    """
    Single temporary file or directory with guaranteed release.

    Parameters
    ----------
    name_generator : callable, optional
        Zero-argument callable returning a new base name (default: random_name)
    root : Path, optional
        Directory the artifact is created in (default: system temp directory)

    Examples
    --------
    >>> with TempResource() as res:
    ...     out_dir = res.acquire_temp_dir()
    ...     # elastix writes into out_dir
    >>> out_dir.exists()
    False
    """

    def __init__(
        self,
        name_generator: Optional[NameGenerator] = None,
        root: Optional[Path] = None
    ):
        self.name_generator = name_generator or random_name
        self.root = Path(root) if root is not None else Path(tempfile.gettempdir())
        self.path: Optional[Path] = None
        self.is_dir = False
        self.released = False

    def _next_path(self, suffix: str = '') -> Path:
        if self.path is not None:
            raise TempResourceError(f"Temp resource already owns {self.path}")
        if self.released:
            raise TempResourceError("Temp resource has already been released")
        return self.root / f"{self.name_generator()}{suffix}"

    def acquire_temp_file(self, suffix: str = '') -> Path:
        """
        Create a new empty file and take ownership of it.

        Parameters
        ----------
        suffix : str
            File suffix, including the leading dot (e.g. '.nii.gz')

        Returns
        -------
        Path
            Path of the created file

        Raises
        ------
        TempResourceError
            If the file already exists or cannot be created
        """
        path = self._next_path(suffix)
        try:
            # 'x' mode fails on an existing name instead of reusing it
            with open(path, 'x'):
                pass
        except OSError as e:
            raise TempResourceError(f"Cannot create temp file {path}: {e}") from e

        self.path = path
        self.is_dir = False
        logger.debug(f"Created temp file {path}")
        return path

    def acquire_temp_dir(self) -> Path:
        """
        Create a new empty directory and take ownership of it.

        Raises
        ------
        TempResourceError
            If the directory already exists or cannot be created
        """
        path = self._next_path()
        try:
            path.mkdir(mode=0o700)
        except OSError as e:
            raise TempResourceError(
                f"Cannot create temp directory for registration output: {path}: {e}"
            ) from e

        self.path = path
        self.is_dir = True
        logger.debug(f"Created temp directory {path}")
        return path

    def release(self) -> None:
        """Delete the owned path. Safe to call more than once; never raises."""
        if self.released:
            return
        self.released = True

        if self.path is None:
            return

        try:
            if self.is_dir:
                shutil.rmtree(self.path)
            else:
                os.unlink(self.path)
            logger.debug(f"Removed temp {'directory' if self.is_dir else 'file'} {self.path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove temporary path {self.path}: {e}")

    def __enter__(self) -> 'TempResource':
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False

    def __repr__(self) -> str:
        state = 'released' if self.released else 'held'
        return f"TempResource({self.path}, {state})"
