"""
Image references and on-disk materialization.

elastix only reads and writes image files. Callers may hand us either a
path or an in-memory array; ImageRef is the tagged union of the two and
``materialize`` turns either variant into a path elastix can open.

Axis convention: arrays are indexed with the first axis along x, as nibabel
returns them. Files read or written through SimpleITK are transposed to
match, so an array survives a round trip through any supported format
with the same shape.
"""

import logging
import os
from contextlib import ExitStack
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

import nibabel as nib
import numpy as np
import SimpleITK as sitk

from elastix_bridge.exceptions import DecodeError, EncodeError
from elastix_bridge.tempfiles import NameGenerator, TempResource

logger = logging.getLogger(__name__)

NIFTI_SUFFIXES = ('.nii', '.nii.gz')
SITK_SUFFIXES = ('.mha', '.mhd', '.nrrd', '.png', '.tif', '.tiff', '.bmp')
# Formats whose pixels live in a separate file named inside the header
HEADER_SUFFIXES = ('.mhd', '.hdr')
DEFAULT_ENCODING = '.nii.gz'


@dataclass(frozen=True)
class FilePath:
    """Image stored on disk at ``path``."""
    path: Path

    def __post_init__(self):
        object.__setattr__(self, 'path', Path(self.path))


@dataclass(frozen=True, eq=False)
class PixelData:
    """
    Image held in memory.

    ``encoding`` is the file suffix used whenever the array has to be
    written out for elastix.
    """
    array: np.ndarray
    encoding: str = DEFAULT_ENCODING


ImageRef = Union[FilePath, PixelData]


def as_image_ref(image) -> ImageRef:
    """
    Coerce a caller-supplied image into an ImageRef.

    Parameters
    ----------
    image : str, os.PathLike, numpy.ndarray, FilePath or PixelData
        Image given as a path or as pixel data

    Returns
    -------
    ImageRef
    """
    if isinstance(image, (FilePath, PixelData)):
        return image
    if isinstance(image, (str, os.PathLike)):
        return FilePath(Path(image))
    if isinstance(image, np.ndarray):
        return PixelData(image)
    raise TypeError(
        f"Image must be a path or a numpy array, got {type(image).__name__}"
    )


def image_suffix(path: Union[str, Path]) -> str:
    """
    Return the image suffix of ``path``, keeping compressed double suffixes.

    >>> image_suffix('result.0.nii.gz')
    '.nii.gz'
    >>> image_suffix('/tmp/out.PNG')
    '.PNG'
    """
    suffixes = Path(path).suffixes
    if not suffixes:
        return ''
    if suffixes[-1].lower() == '.gz' and len(suffixes) > 1:
        return ''.join(suffixes[-2:])
    return suffixes[-1]


def _is_nifti(suffix: str) -> bool:
    return suffix.lower() in NIFTI_SUFFIXES


def write_image(array: np.ndarray, path: Path) -> Path:
    """
    Write pixel data to ``path`` in the format given by its suffix.

    NIfTI files are written with nibabel and an identity affine; the other
    formats in SITK_SUFFIXES go through SimpleITK.

    Raises
    ------
    EncodeError
        If the suffix is unsupported or the array cannot be stored in it
    """
    path = Path(path)
    suffix = image_suffix(path)
    array = np.asarray(array)

    if array.ndim < 2:
        raise EncodeError(f"Image must have at least 2 dimensions, got shape {array.shape}")

    try:
        if _is_nifti(suffix):
            # nibabel refuses 64-bit integers unless the dtype is explicit
            dtype = array.dtype if array.dtype in (np.int64, np.uint64) else None
            img = nib.Nifti1Image(array, affine=np.eye(4), dtype=dtype)
            nib.save(img, str(path))
        elif suffix.lower() in SITK_SUFFIXES:
            sitk_img = sitk.GetImageFromArray(np.ascontiguousarray(array.T))
            sitk.WriteImage(sitk_img, str(path))
        else:
            raise EncodeError(f"Unsupported image encoding '{suffix}' for {path}")
    except EncodeError:
        raise
    except Exception as e:
        raise EncodeError(
            f"Cannot encode {array.dtype} array of shape {array.shape} as {suffix}: {e}"
        ) from e

    return path


def read_image(path: Path) -> np.ndarray:
    """
    Read an image file into a numpy array.

    Raises
    ------
    DecodeError
        If the file is missing or cannot be decoded
    """
    path = Path(path)
    if not path.exists():
        raise DecodeError(f"Image file not found: {path}")

    try:
        if _is_nifti(image_suffix(path)):
            # Read fully into memory, the source file is deleted afterwards.
            # dataobj keeps the on-disk dtype, get_fdata() would cast to float
            img = nib.load(str(path), mmap=False)
            return np.asanyarray(img.dataobj)

        sitk_img = sitk.ReadImage(str(path))
        data = sitk.GetArrayFromImage(sitk_img)
    except Exception as e:
        raise DecodeError(f"Cannot decode image {path}: {e}") from e

    if sitk_img.GetNumberOfComponentsPerPixel() > 1:
        # Reverse the spatial axes only, components stay last
        spatial = list(range(data.ndim - 1))[::-1]
        return data.transpose(spatial + [data.ndim - 1])
    return data.T


def materialize(
    image: ImageRef,
    resources: ExitStack,
    name_generator: Optional[NameGenerator] = None,
    root: Optional[Path] = None
) -> Tuple[Path, bool]:
    """
    Return a path elastix can read for ``image``.

    Parameters
    ----------
    image : ImageRef
        Image to materialize
    resources : ExitStack
        Stack that takes ownership of any temp file created here
    name_generator : callable, optional
        Temp name generator passed to TempResource
    root : Path, optional
        Directory for the temp file

    Returns
    -------
    tuple of (Path, bool)
        Path to the image and whether a temp file was created for it
    """
    match image:
        case FilePath(path=path):
            return path, False
        case PixelData(array=array, encoding=encoding):
            resource = resources.enter_context(TempResource(name_generator, root))
            if encoding.lower() in HEADER_SUFFIXES:
                # Header and data file share one temp directory
                path = resource.acquire_temp_dir() / f'image{encoding}'
            else:
                path = resource.acquire_temp_file(suffix=encoding)
            write_image(array, path)
            logger.debug(f"Wrote {array.dtype} array {array.shape} to {path}")
            return path, True
        case _:
            raise TypeError(f"Not an image reference: {image!r}")
