"""
elastix_bridge: call the elastix registration program from Python.

Images can be passed as file names or numpy arrays; temporary files,
the elastix output directory and result parsing are handled here.
"""

from elastix_bridge.config import RegistrationOptions, load_options
from elastix_bridge.exceptions import (
    ConfigurationError,
    DecodeError,
    ElastixBridgeError,
    EncodeError,
    ExtensionMismatchWarning,
    InvalidParameterFile,
    MalformedIterationLog,
    MissingResultFile,
    MissingResultImage,
    RegistrationFailed,
    RegistrationTimeout,
    TempResourceError,
)
from elastix_bridge.images import FilePath, ImageRef, PixelData, as_image_ref
from elastix_bridge.results import (
    IterationRecord,
    IterationRow,
    TransformRecord,
    parse_iteration_info,
    parse_transform_parameters,
)
from elastix_bridge.session import (
    RegistrationResult,
    RegistrationSession,
    SessionState,
    register,
)

__version__ = '0.1.0'

__all__ = [
    # Entry point
    'register',
    'RegistrationSession',
    'RegistrationResult',
    'SessionState',
    # Options
    'RegistrationOptions',
    'load_options',
    # Images
    'FilePath',
    'PixelData',
    'ImageRef',
    'as_image_ref',
    # Results
    'TransformRecord',
    'IterationRecord',
    'IterationRow',
    'parse_transform_parameters',
    'parse_iteration_info',
    # Errors
    'ElastixBridgeError',
    'ConfigurationError',
    'InvalidParameterFile',
    'EncodeError',
    'DecodeError',
    'TempResourceError',
    'RegistrationFailed',
    'RegistrationTimeout',
    'MissingResultFile',
    'MissingResultImage',
    'MalformedIterationLog',
    'ExtensionMismatchWarning',
]
