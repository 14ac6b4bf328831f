"""
Hand the registered image back to the caller.

What happens to ``result.0.<ext>`` depends on how the moving image was given:

- path, no output path:  the result image is deleted, nothing is returned
- path, output path set: the result image is moved to the output path
- pixel data:            the result image is decoded and returned as an array
"""

import logging
import shutil
import warnings
from pathlib import Path
from typing import Optional

import SimpleITK as sitk

from elastix_bridge.exceptions import DecodeError, ExtensionMismatchWarning, MissingResultImage
from elastix_bridge.images import (
    HEADER_SUFFIXES,
    FilePath,
    ImageRef,
    PixelData,
    image_suffix,
    read_image,
)

logger = logging.getLogger(__name__)


def check_extension(result_image: Path, output_path: Path) -> bool:
    """
    Warn if elastix wrote a different format than the caller asked for.

    Returns
    -------
    bool
        True if the extensions match (case-insensitive)
    """
    result_ext = image_suffix(result_image)
    output_ext = image_suffix(output_path)
    if result_ext.lower() == output_ext.lower():
        return True

    message = (
        f"elastix produced a {result_ext or 'suffix-less'} image, "
        f"but output was requested as {output_ext or 'suffix-less'}: {output_path}"
    )
    logger.warning(message)
    warnings.warn(message, ExtensionMismatchWarning, stacklevel=3)
    return False


def _move_image(source: Path, destination: Path) -> None:
    if source.suffix.lower() not in HEADER_SUFFIXES:
        shutil.move(str(source), str(destination))
        return

    # Moving only the header would orphan its data file, so write a new pair
    try:
        sitk.WriteImage(sitk.ReadImage(str(source)), str(destination))
    except RuntimeError as e:
        raise DecodeError(f"Cannot copy {source} to {destination}: {e}") from e
    source.unlink()


def relocate_result(
    result_image: Optional[Path],
    moving: ImageRef,
    output_path: Optional[Path] = None
) -> Optional[ImageRef]:
    """
    Move, discard or decode the registered image.

    Parameters
    ----------
    result_image : Path or None
        result.0.<ext> inside the elastix output directory. None when elastix
        wrote no image, which is only valid for in-memory moving images.
    moving : ImageRef
        The moving image as the caller gave it
    output_path : Path, optional
        Destination for the registered image (path moving images only)

    Returns
    -------
    ImageRef or None
        FilePath(output_path), PixelData with the registered pixels, or None
        when no image is returned

    Raises
    ------
    DecodeError
        If an in-memory result cannot be read back
    MissingResultImage
        If there is no result image for a moving image given as a path
    """
    match moving:
        case PixelData():
            if output_path is not None:
                logger.debug(f"Ignoring output path {output_path} for in-memory moving image")
            if result_image is None:
                return None
            array = read_image(result_image)
            return PixelData(array, encoding=image_suffix(result_image))

        case FilePath():
            if result_image is None:
                raise MissingResultImage(f"No registered image for moving image {moving.path}")
            if output_path is None:
                Path(result_image).unlink(missing_ok=True)
                logger.debug(f"Discarded result image {result_image}")
                return None

            output_path = Path(output_path)
            check_extension(result_image, output_path)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            _move_image(Path(result_image), output_path)
            logger.info(f"Registered image saved to {output_path}")
            return FilePath(output_path)

        case _:
            raise TypeError(f"Not an image reference: {moving!r}")
