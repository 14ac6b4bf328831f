"""
Shared fixtures for the elastix_bridge test suite.

``fake_elastix`` stands in for the elastix binary: it writes the same
artifacts elastix would into the output directory, so sessions can be
tested without elastix installed.
"""

import shutil
from pathlib import Path

import pytest

from elastix_bridge.invoker import ExitStatus

TRANSFORM_TEXT = """\
(Transform "TranslationTransform")
(NumberOfParameters 2)
(TransformParameters -2.4571 0.3162)
(InitialTransformParametersFileName "NoInitialTransform")
(HowToCombineTransforms "Compose")

// Image specific
(FixedImageDimension 2)
(MovingImageDimension 2)
(FixedInternalImagePixelType "float")
(MovingInternalImagePixelType "float")
(Size 2592 1944)
(Index 0 0)
(Spacing 1.0000000000 1.0000000000)
(Origin 0.0000000000 0.0000000000)
(Direction 1.0000000000 0.0000000000 0.0000000000 1.0000000000)
(UseDirectionCosines "true")

// ResampleInterpolator specific
(ResampleInterpolator "FinalBSplineInterpolator")
(FinalBSplineInterpolationOrder 3)

// Resampler specific
(Resampler "DefaultResampler")
(DefaultPixelValue 0.000000)
(ResultImageFormat "png")
(ResultImagePixelType "unsigned char")
(CompressResultImage "false")
"""

ITERATION_HEADER = "1:ItNr\t2:Metric\t3a:Time\t3b:StepSize\t4:||Gradient||\tTime[ms]"


def make_iteration_text(n_rows: int = 10) -> str:
    lines = [ITERATION_HEADER]
    for i in range(n_rows):
        metric = -0.5 - 0.01 * i
        step = 2.0 / (i + 1)
        lines.append(f"{i}\t{metric:.6f}\t{float(i):.1f}\t{step:.6f}\t{1.5 - 0.1 * i:.6f}\t{12.5 + i:.1f}")
    return '\n'.join(lines) + '\n'


def write_elastix_outputs(out_dir: Path, n_rows: int = 10) -> None:
    (out_dir / 'TransformParameters.0.txt').write_text(TRANSFORM_TEXT)
    (out_dir / 'IterationInfo.0.R0.txt').write_text(make_iteration_text(n_rows))


class FakeElastix:
    """
    Callable with the signature of run_elastix.

    Parameters
    ----------
    result_suffix : str or None
        Suffix of the result.0 image; None writes no result image
    copy_moving : bool
        Use the moving image file as the result image (round-trip tests)
    write_outputs : bool
        Write TransformParameters and IterationInfo files
    """

    def __init__(self, result_suffix='.nii.gz', copy_moving=False, write_outputs=True):
        self.result_suffix = result_suffix
        self.copy_moving = copy_moving
        self.write_outputs = write_outputs
        self.calls = []

    def __call__(self, fixed, moving, out_dir, param_file, **kwargs):
        fixed, moving, out_dir = Path(fixed), Path(moving), Path(out_dir)
        self.calls.append({
            'fixed': fixed,
            'moving': moving,
            'out_dir': out_dir,
            'param_file': Path(param_file),
            'fixed_existed': fixed.exists(),
            'moving_existed': moving.exists(),
            'out_dir_existed': out_dir.is_dir(),
            **kwargs,
        })

        if self.write_outputs:
            write_elastix_outputs(out_dir)
            # elastix always leaves its own log behind as well
            (out_dir / 'elastix.log').write_text('elastix log\n')

        if self.result_suffix is not None:
            result = out_dir / f'result.0{self.result_suffix}'
            if self.copy_moving:
                shutil.copy(moving, result)
            else:
                result.write_bytes(b'registered image')

        return ExitStatus(returncode=0, elapsed=0.01, command=['elastix'])


@pytest.fixture
def param_file(tmp_path):
    path = tmp_path / 'ParametersTranslation2D.txt'
    path.write_text('(Transform "TranslationTransform")\n(MaximumNumberOfIterations 10)\n')
    return path


@pytest.fixture
def work_dir(tmp_path):
    """Temp root for session artifacts; must be empty after every session."""
    d = tmp_path / 'work'
    d.mkdir()
    return d


@pytest.fixture
def transform_file(tmp_path):
    path = tmp_path / 'TransformParameters.0.txt'
    path.write_text(TRANSFORM_TEXT)
    return path


@pytest.fixture
def iteration_file(tmp_path):
    path = tmp_path / 'IterationInfo.0.R0.txt'
    path.write_text(make_iteration_text(10))
    return path
