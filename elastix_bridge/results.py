"""
Locating and parsing elastix output artifacts.

elastix writes into its output directory:
- TransformParameters.0.<ext>  key/value transform description
- IterationInfo.0.R0.<ext>     optimizer log for the first resolution
- result.0.<ext>               registered image (format chosen by elastix)

Only the first registration level and first resolution are read.
"""

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, NamedTuple, Optional, Tuple, Union

import numpy as np
import pandas as pd

from elastix_bridge.exceptions import (
    MalformedIterationLog,
    MissingResultFile,
    MissingResultImage,
)

logger = logging.getLogger(__name__)

RESULT_IMAGE_GLOB = 'result.0.*'
TRANSFORM_FILE_GLOB = 'TransformParameters.0.*'
ITERATION_FILE_GLOB = 'IterationInfo.0.R0.*'

# Data files that sit next to an image header and are never the image itself
COMPANION_SUFFIXES = ('.raw', '.zraw', '.img')

Value = Union[str, float, Tuple[Union[str, float], ...]]

STRING_KEYS = (
    'Transform',
    'InitialTransformParametersFileName',
    'HowToCombineTransforms',
    'FixedInternalImagePixelType',
    'MovingInternalImagePixelType',
    'UseDirectionCosines',
    'ResampleInterpolator',
    'Resampler',
    'ResultImageFormat',
    'ResultImagePixelType',
    'CompressResultImage',
)
NUMBER_KEYS = (
    'NumberOfParameters',
    'FixedImageDimension',
    'MovingImageDimension',
    'FinalBSplineInterpolationOrder',
    'DefaultPixelValue',
)
SEQUENCE_KEYS = (
    'TransformParameters',
    'Size',
    'Index',
    'Spacing',
    'Origin',
    'Direction',
    'CenterOfRotationPoint',
)

LINE_PATTERN = re.compile(r'^\s*\(\s*([A-Za-z_]\w*)\s+(.*?)\s*\)\s*(?://.*)?$')
TOKEN_PATTERN = re.compile(r'"([^"]*)"|([^\s"]+)')
NUMBER_PATTERN = re.compile(
    r'^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$|^[+-]?(?:nan|inf|infinity)$',
    re.IGNORECASE
)


class Token(NamedTuple):
    text: str
    quoted: bool

    @property
    def is_number(self) -> bool:
        return not self.quoted and NUMBER_PATTERN.match(self.text) is not None

    def value(self) -> Union[str, float]:
        return float(self.text) if self.is_number else self.text


def _tokenize(raw: str) -> List[Token]:
    raw = raw.strip()
    # Values may be wrapped as (a b c) or [a b c]
    if len(raw) >= 2 and raw[0] in '([' and raw[-1] in ')]':
        raw = raw[1:-1]
    tokens = []
    for match in TOKEN_PATTERN.finditer(raw):
        if match.group(1) is not None:
            tokens.append(Token(match.group(1), True))
        else:
            tokens.append(Token(match.group(2), False))
    return tokens


def _generic_value(tokens: List[Token]) -> Value:
    if len(tokens) == 1:
        return tokens[0].value()
    return tuple(t.value() for t in tokens)


def _coerce(key: str, tokens: List[Token]) -> Tuple[bool, Value]:
    """Convert tokens for a known key. Returns (declared_type_ok, value)."""
    if key in STRING_KEYS:
        return True, ' '.join(t.text for t in tokens)
    if key in NUMBER_KEYS:
        if len(tokens) == 1 and tokens[0].is_number:
            return True, float(tokens[0].text)
        return False, _generic_value(tokens)
    if key in SEQUENCE_KEYS:
        if all(t.is_number for t in tokens):
            return True, tuple(float(t.text) for t in tokens)
        return False, _generic_value(tokens)
    return False, _generic_value(tokens)


class TransformRecord(Mapping):
    """
    Contents of an elastix TransformParameters file.

    Behaves as a read-only mapping from parameter name to value. Keys with a
    declared meaning (STRING_KEYS, NUMBER_KEYS, SEQUENCE_KEYS) are coerced to
    str, float or tuple of float; every other key is kept as parsed in
    ``extra``.

    Examples
    --------
    >>> t = parse_transform_parameters(out_dir / 'TransformParameters.0.txt')
    >>> t['Transform']
    'TranslationTransform'
    >>> t.transform_parameters
    (-2.4571, 0.3162)
    """

    def __init__(self, known: Dict[str, Value], extra: Optional[Dict[str, Value]] = None):
        self._known = MappingProxyType(dict(known))
        self.extra = MappingProxyType(dict(extra or {}))

    def __getitem__(self, key: str) -> Value:
        if key in self._known:
            return self._known[key]
        return self.extra[key]

    def __iter__(self) -> Iterator[str]:
        yield from self._known
        yield from self.extra

    def __len__(self) -> int:
        return len(self._known) + len(self.extra)

    def __repr__(self) -> str:
        return f"TransformRecord({dict(self)!r})"

    @property
    def known(self) -> Mapping:
        return self._known

    def _int(self, key: str) -> Optional[int]:
        value = self._known.get(key)
        return int(value) if value is not None else None

    def _int_tuple(self, key: str) -> Optional[Tuple[int, ...]]:
        value = self._known.get(key)
        return tuple(int(v) for v in value) if value is not None else None

    @property
    def transform(self) -> Optional[str]:
        return self._known.get('Transform')

    @property
    def number_of_parameters(self) -> Optional[int]:
        return self._int('NumberOfParameters')

    @property
    def transform_parameters(self) -> Optional[Tuple[float, ...]]:
        return self._known.get('TransformParameters')

    @property
    def dimension(self) -> Optional[int]:
        return self._int('FixedImageDimension')

    @property
    def size(self) -> Optional[Tuple[int, ...]]:
        return self._int_tuple('Size')

    @property
    def spacing(self) -> Optional[Tuple[float, ...]]:
        return self._known.get('Spacing')

    @property
    def origin(self) -> Optional[Tuple[float, ...]]:
        return self._known.get('Origin')

    @property
    def direction(self) -> Optional[np.ndarray]:
        """Direction cosines as a square matrix (elastix stores them flat)."""
        value = self._known.get('Direction')
        if value is None:
            return None
        n = int(round(len(value) ** 0.5))
        if n * n != len(value):
            return np.asarray(value)
        return np.asarray(value).reshape(n, n)

    @property
    def pixel_type(self) -> Optional[str]:
        return self._known.get('ResultImagePixelType')

    @property
    def result_image_format(self) -> Optional[str]:
        return self._known.get('ResultImageFormat')

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict with lists instead of tuples, for JSON output."""
        return {k: list(v) if isinstance(v, tuple) else v for k, v in self.items()}


class IterationRow(NamedTuple):
    iteration: int
    metric: float
    step_size: float
    gradient: float
    time: float


# Header label (ordinal prefix removed, lowercase) -> IterationRow field
ITERATION_COLUMNS = {
    'itnr': 'iteration',
    'metric': 'metric',
    'stepsize': 'step_size',
    '||gradient||': 'gradient',
    'time[ms]': 'time',
}
# Plain field names, used only for fields no elastix label matched.
# '3a:Time' is the optimizer time and must not shadow 'Time[ms]'.
ITERATION_COLUMN_ALIASES = {
    'iteration': 'iteration',
    'step_size': 'step_size',
    'gradient': 'gradient',
    'time': 'time',
}


@dataclass(frozen=True)
class IterationRecord:
    """Optimizer iterations from an elastix IterationInfo file."""
    rows: Tuple[IterationRow, ...] = ()

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[IterationRow]:
        return iter(self.rows)

    def __getitem__(self, index):
        return self.rows[index]

    def column(self, name: str) -> np.ndarray:
        """
        Values of one field across all iterations.

        Parameters
        ----------
        name : str
            One of IterationRow._fields
        """
        if name not in IterationRow._fields:
            raise KeyError(f"Unknown iteration column '{name}'")
        dtype = int if name == 'iteration' else float
        return np.array([getattr(row, name) for row in self.rows], dtype=dtype)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(list(self.rows), columns=list(IterationRow._fields))


def _find_one(out_dir: Path, pattern: str) -> Optional[Path]:
    matches = sorted(p for p in Path(out_dir).glob(pattern) if p.is_file())
    return matches[0] if matches else None


def locate_result_image(out_dir: Path) -> Path:
    """
    Find the registered image elastix wrote to ``out_dir``.

    The extension is picked by elastix (ResultImageFormat), so the directory
    is scanned for ``result.0.*``.

    Raises
    ------
    MissingResultImage
        If no result image exists
    """
    candidates = sorted(p for p in Path(out_dir).glob(RESULT_IMAGE_GLOB) if p.is_file())
    images = [p for p in candidates if p.suffix.lower() not in COMPANION_SUFFIXES]
    if not images:
        raise MissingResultImage(f"elastix did not produce a result image in {out_dir}")
    if len(images) > 1:
        logger.warning(f"Several result images found, using {images[0].name}")
    return images[0]


def find_transform_file(out_dir: Path) -> Path:
    """Path of TransformParameters.0.<ext>; raises MissingResultFile."""
    path = _find_one(out_dir, TRANSFORM_FILE_GLOB)
    if path is None:
        raise MissingResultFile(f"Transform parameter file not found in {out_dir}")
    return path


def find_iteration_file(out_dir: Path) -> Path:
    """Path of IterationInfo.0.R0.<ext>; raises MissingResultFile."""
    path = _find_one(out_dir, ITERATION_FILE_GLOB)
    if path is None:
        raise MissingResultFile(f"Iteration info file not found in {out_dir}")
    return path


def _read_lines(path: Path) -> List[str]:
    path = Path(path)
    if not path.is_file():
        raise MissingResultFile(f"elastix output file not found: {path}")
    with open(path, 'r') as f:
        return f.read().splitlines()


def parse_transform_parameters(path: Path) -> TransformRecord:
    """
    Parse an elastix transform parameter file.

    Each declaration has the form ``(Key Value ...)``. Unquoted tokens that
    look like numbers become floats; several values become a tuple. Lines
    that are not declarations are skipped.

    Parameters
    ----------
    path : Path
        TransformParameters file

    Returns
    -------
    TransformRecord

    Raises
    ------
    MissingResultFile
        If the file does not exist
    """
    known: Dict[str, Value] = {}
    extra: Dict[str, Value] = {}

    for line_no, line in enumerate(_read_lines(path), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith('//'):
            continue

        match = LINE_PATTERN.match(stripped)
        if match is None:
            logger.debug(f"{Path(path).name}:{line_no}: skipping unrecognised line: {stripped}")
            continue

        key, raw = match.groups()
        tokens = _tokenize(raw)
        if not tokens:
            logger.debug(f"{Path(path).name}:{line_no}: no value for {key}")
            continue

        typed, value = _coerce(key, tokens)
        if typed:
            known[key] = value
        else:
            if key in NUMBER_KEYS or key in SEQUENCE_KEYS:
                logger.warning(f"{key} has unexpected value {raw!r}; kept as-is")
            extra[key] = value

    return TransformRecord(known, extra)


def _parse_header(line: str, path: Path) -> Dict[str, int]:
    # Labels look like '1:ItNr' or '3b:StepSize'; 'Time[ms]' has no prefix
    names = [label.split(':', 1)[-1].lower() for label in line.split()]
    positions: Dict[str, int] = {}
    for columns in (ITERATION_COLUMNS, ITERATION_COLUMN_ALIASES):
        for index, name in enumerate(names):
            field = columns.get(name)
            if field is not None and field not in positions:
                positions[field] = index

    missing = [f for f in IterationRow._fields if f not in positions]
    if missing:
        raise MalformedIterationLog(
            f"{path}: header is missing columns {missing}: {line.strip()!r}"
        )
    return positions


def parse_iteration_info(path: Path) -> IterationRecord:
    """
    Parse an elastix IterationInfo file.

    The first non-blank line is a header naming the columns; each further
    line is one optimizer iteration.

    Raises
    ------
    MissingResultFile
        If the file does not exist
    MalformedIterationLog
        If the header lacks a required column or a row does not parse
    """
    lines = [(n, line) for n, line in enumerate(_read_lines(path), start=1) if line.strip()]
    if not lines:
        raise MalformedIterationLog(f"{path}: empty iteration log")

    _, header = lines[0]
    positions = _parse_header(header, path)
    n_columns = len(header.split())

    rows = []
    for line_no, line in lines[1:]:
        values = line.split()
        if len(values) != n_columns:
            raise MalformedIterationLog(
                f"{path}:{line_no}: expected {n_columns} columns, got {len(values)}"
            )
        try:
            numbers = [float(v) for v in values]
        except ValueError as e:
            raise MalformedIterationLog(f"{path}:{line_no}: {e}") from e

        rows.append(IterationRow(
            iteration=int(numbers[positions['iteration']]),
            metric=numbers[positions['metric']],
            step_size=numbers[positions['step_size']],
            gradient=numbers[positions['gradient']],
            time=numbers[positions['time']],
        ))

    return IterationRecord(tuple(rows))
