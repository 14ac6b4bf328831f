"""
One elastix registration, from caller images to in-memory results.

A RegistrationSession walks through

    INIT -> INPUTS_RESOLVED -> INVOKED -> RESULTS_PARSED -> RELOCATED
         -> CLEANED -> DONE

and drops to FAILED from any step that raises. Every temporary file and
directory is owned by a TempResource entered on a single ExitStack, so
cleanup runs exactly once on both paths before the session finishes or the
error reaches the caller.
"""

import logging
from contextlib import ExitStack
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from elastix_bridge.config import RegistrationOptions
from elastix_bridge.exceptions import MissingResultImage
from elastix_bridge.images import ImageRef, PixelData, as_image_ref, materialize
from elastix_bridge.invoker import ExitStatus, run_elastix, validate_parameter_file
from elastix_bridge.relocate import relocate_result
from elastix_bridge.results import (
    IterationRecord,
    TransformRecord,
    find_iteration_file,
    find_transform_file,
    locate_result_image,
    parse_iteration_info,
    parse_transform_parameters,
)
from elastix_bridge.tempfiles import NameGenerator, TempResource

logger = logging.getLogger(__name__)


class SessionState(Enum):
    INIT = 'init'
    INPUTS_RESOLVED = 'inputs_resolved'
    INVOKED = 'invoked'
    RESULTS_PARSED = 'results_parsed'
    RELOCATED = 'relocated'
    CLEANED = 'cleaned'
    DONE = 'done'
    FAILED = 'failed'


@dataclass(frozen=True)
class RegistrationResult:
    """
    Outputs of a registration.

    Unpacks like a tuple: ``transform, image, iterations = result``.
    ``image`` is None when no registered image is returned.
    """
    transform: TransformRecord
    image: Optional[ImageRef]
    iterations: IterationRecord

    def __iter__(self) -> Iterator:
        return iter((self.transform, self.image, self.iterations))


class RegistrationSession:
    """
    Single-use orchestrator for one elastix run.

    Parameters
    ----------
    param_file : Path
        elastix registration parameter file
    fixed, moving : path, numpy.ndarray or ImageRef
        Images to register; arrays are written to temporary files
    options : RegistrationOptions, optional
        Session options (defaults if omitted)
    name_generator : callable, optional
        Temp name generator, replaceable for deterministic tests
    runner : callable, optional
        Function with the signature of ``run_elastix`` (default: run_elastix)
    """

    def __init__(
        self,
        param_file: Path,
        fixed: Any,
        moving: Any,
        options: Optional[RegistrationOptions] = None,
        name_generator: Optional[NameGenerator] = None,
        runner: Optional[Callable[..., ExitStatus]] = None
    ):
        self.param_file = param_file
        self.fixed = as_image_ref(fixed)
        self.moving = as_image_ref(moving)
        self.options = options or RegistrationOptions()
        self.name_generator = name_generator
        self.runner = runner or run_elastix

        # Output path only applies to moving images given as files
        self.output_path = self.options.output_path
        if isinstance(self.moving, PixelData):
            self.output_path = None

        self.state = SessionState.INIT
        self.history: List[SessionState] = [SessionState.INIT]
        self.exit_status: Optional[ExitStatus] = None

    def _advance(self, state: SessionState) -> None:
        logger.debug(f"Session {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def run(self) -> RegistrationResult:
        """
        Register the images and release all temporary resources.

        Returns
        -------
        RegistrationResult

        Raises
        ------
        ElastixBridgeError
            Any fatal error, after cleanup has run
        RuntimeError
            If the session has already been run
        """
        if self.state is not SessionState.INIT:
            raise RuntimeError(f"Registration session already used (state: {self.state.value})")

        resources = ExitStack()
        succeeded = False
        try:
            param_file = validate_parameter_file(self.param_file)
            result = self._execute(param_file, resources)
            succeeded = True
        finally:
            if not succeeded:
                self._advance(SessionState.FAILED)
            resources.close()
            self._advance(SessionState.CLEANED)

        self._advance(SessionState.DONE)
        return result

    def _execute(self, param_file: Path, resources: ExitStack) -> RegistrationResult:
        temp_root = self.options.temp_root

        fixed_path, _ = materialize(self.fixed, resources, self.name_generator, temp_root)
        moving_path, _ = materialize(self.moving, resources, self.name_generator, temp_root)
        out_dir = resources.enter_context(
            TempResource(self.name_generator, temp_root)
        ).acquire_temp_dir()
        self._advance(SessionState.INPUTS_RESOLVED)

        self.exit_status = self.runner(
            fixed_path,
            moving_path,
            out_dir,
            param_file,
            verbose=self.options.verbose,
            executable=self.options.executable,
            threads=self.options.threads,
            timeout=self.options.timeout
        )
        self._advance(SessionState.INVOKED)

        transform = parse_transform_parameters(find_transform_file(out_dir))
        iterations = parse_iteration_info(find_iteration_file(out_dir))
        result_image = self._locate_result_image(out_dir)
        self._advance(SessionState.RESULTS_PARSED)

        image = relocate_result(result_image, self.moving, self.output_path)
        self._advance(SessionState.RELOCATED)

        logger.info(
            f"Registration done: {transform.transform}, "
            f"{len(iterations)} iterations"
        )
        return RegistrationResult(transform=transform, image=image, iterations=iterations)

    def _locate_result_image(self, out_dir: Path) -> Optional[Path]:
        try:
            return locate_result_image(out_dir)
        except MissingResultImage:
            if isinstance(self.moving, PixelData):
                logger.warning("elastix wrote no result image; returning an empty image")
                return None
            raise


def register(
    param_file: Path,
    fixed: Any,
    moving: Any,
    options: Union[RegistrationOptions, Dict[str, Any], None] = None,
    name_generator: Optional[NameGenerator] = None,
    **overrides: Any
) -> RegistrationResult:
    """
    Register ``moving`` onto ``fixed`` with elastix.

    Parameters
    ----------
    param_file : Path
        elastix registration parameter file (e.g. ParametersTranslation2D.txt)
    fixed, moving : path or numpy.ndarray
        Images given as file names or arrays
    options : RegistrationOptions or dict, optional
        Session options
    name_generator : callable, optional
        Temp name generator
    **overrides
        RegistrationOptions fields, e.g. ``verbose=True`` or
        ``output_path='moving_reg.png'``

    Returns
    -------
    RegistrationResult
        (transform, image, iterations). ``image`` is an array (PixelData)
        when ``moving`` was an array, FilePath(output_path) when an output
        path was given, and None otherwise.

    Examples
    --------
    >>> t, moving_reg, iter_info = register(
    ...     'ParametersTranslation2D.txt',
    ...     'fixed.png',
    ...     'moving.png',
    ...     output_path='moving_reg.png'
    ... )
    >>> t['TransformParameters']
    (-2.4571, 0.3162)
    """
    if options is None:
        options = RegistrationOptions.from_mapping(overrides)
    else:
        if isinstance(options, dict):
            options = RegistrationOptions.from_mapping(options)
        if overrides:
            options = options.with_overrides(**overrides)

    session = RegistrationSession(
        param_file, fixed, moving, options=options, name_generator=name_generator
    )
    return session.run()
