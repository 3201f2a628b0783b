"""
Custom exception classes for the stereo depth core.

Precondition violations (mismatched images, unsupported encodings, invalid
window sizes, empty inputs) raise one of the exceptions below. Per-element
failures such as an unmatched feature point or an overflowing depth value
never raise: they are reported through status arrays and zeroed pixels.
"""


class StereoDepthError(Exception):
    """Base exception for all stereo depth errors."""

    def __init__(self, message: str, details: dict = None):
        """
        Initialize the exception.

        Args:
            message: Error message
            details: Optional dictionary with additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        """String representation with details."""
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


# Configuration Errors
class ConfigurationError(StereoDepthError):
    """Base exception for configuration errors."""
    pass


class InvalidParameterError(ConfigurationError):
    """Raised when a parameter value is invalid."""
    pass


class ParameterValidationError(ConfigurationError):
    """Raised when configuration validation fails."""
    pass


# Input (precondition) Errors
class InputError(StereoDepthError):
    """Base exception for precondition violations on call inputs."""
    pass


class EmptyImageError(InputError):
    """Raised when an image is None or has no pixels."""
    pass


class ImageDimensionError(InputError):
    """Raised when image or window dimensions are invalid or mismatched."""
    pass


class EncodingError(InputError):
    """Raised when a sample encoding is unsupported or mismatched."""
    pass


class WindowSizeError(InputError):
    """Raised when a matching window size is invalid."""
    pass


class InvalidPointsError(InputError):
    """Raised when feature points are not an (N, 2) coordinate array."""
    pass


# Correspondence Errors
class CorrespondenceError(StereoDepthError):
    """Base exception for correspondence search errors."""
    pass


class PyramidError(CorrespondenceError):
    """Raised when an image pyramid cannot be built or used."""
    pass


class TerminationCriteriaError(CorrespondenceError):
    """Raised when tracker termination criteria are incomplete."""
    pass


# Disparity Errors
class DisparityError(StereoDepthError):
    """Base exception for dense disparity errors."""
    pass


class InvalidDisparityMapError(DisparityError):
    """Raised when a disparity map is invalid or cannot be computed."""
    pass


# Depth Errors
class DepthError(StereoDepthError):
    """Base exception for depth map errors."""
    pass


class DepthConversionError(DepthError):
    """Raised when a depth or disparity map cannot be converted."""
    pass


class RegistrationError(DepthError):
    """Raised when depth registration inputs are invalid."""
    pass


class HoleFillingError(DepthError):
    """Raised when hole filling is applied to an unsupported depth map."""
    pass


# Pipeline Errors
class PipelineError(StereoDepthError):
    """Base exception for pipeline execution errors."""
    pass


class PipelineStageError(PipelineError):
    """Raised when a pipeline stage fails."""
    pass


def handle_error(error: Exception, logger=None, reraise: bool = True) -> None:
    """
    Centralized error handling function.

    Args:
        error: The exception to handle
        logger: Optional DepthLogger instance for logging the error
        reraise: Whether to re-raise the exception after handling
    """
    if logger is not None:
        if isinstance(error, StereoDepthError):
            logger.error(
                f"{type(error).__name__}: {error.message}",
                **error.details
            )
        else:
            logger.log_exception(error)

    if reraise:
        raise error
