"""
Exceptions raised by elastix_bridge.

Every fatal condition derives from ElastixBridgeError so callers can catch
the whole family at once. ExtensionMismatchWarning is a warning category
and is only ever emitted through the warnings module.
"""

from typing import Optional


class ElastixBridgeError(Exception):
    """Base class for all elastix_bridge errors"""
    pass


class ConfigurationError(ElastixBridgeError):
    """Raised when registration options are invalid or cannot be loaded."""
    pass


class InvalidParameterFile(ElastixBridgeError):
    """Raised when the elastix parameter file is missing or unreadable"""
    pass


class EncodeError(ElastixBridgeError):
    """Raised when pixel data cannot be written to an image file"""
    pass


class DecodeError(ElastixBridgeError):
    """Raised when an image file cannot be read back into pixel data"""
    pass


class TempResourceError(ElastixBridgeError):
    """Raised when a temporary file or directory cannot be created"""
    pass


class RegistrationFailed(ElastixBridgeError):
    """
    Raised when the elastix process exits with a non-zero status.

    ``returncode`` is None when the process could not be started at all.
    """

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__(message)
        self.returncode = returncode


class RegistrationTimeout(RegistrationFailed):
    """Raised when elastix is killed after exceeding its time limit"""
    pass


class MissingResultFile(ElastixBridgeError):
    """Raised when an expected elastix output artifact is absent"""
    pass


class MissingResultImage(MissingResultFile):
    """Raised when elastix did not write a result.0.* image"""
    pass


class MalformedIterationLog(ElastixBridgeError):
    """Raised when an IterationInfo file does not parse"""
    pass


class ExtensionMismatchWarning(UserWarning):
    """Result image format differs from the requested output file format."""
    pass
