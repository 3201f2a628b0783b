"""Sample encodings understood by the block scorers."""

from enum import Enum
import numpy as np

from stereo_depth.errors import EmptyImageError, EncodingError


class SampleEncoding(Enum):
    """
    Closed set of window encodings.

    GRAY8 and FLOAT32 are single-channel 2-D arrays. PACKED_S16X2 is a signed
    16-bit array with a trailing dimension of two components; its comparable
    intensity is the mean of both components.
    """
    GRAY8 = "gray8"
    FLOAT32 = "float32"
    PACKED_S16X2 = "packed_s16x2"

    @classmethod
    def of(cls, window: np.ndarray) -> "SampleEncoding":
        """
        Determine the encoding of an array.

        Raises:
            EmptyImageError: If the array is None or empty
            EncodingError: If the dtype/shape combination is not supported
        """
        if window is None or window.size == 0:
            raise EmptyImageError("Window is empty or None")

        if window.ndim == 2 and window.dtype == np.uint8:
            return cls.GRAY8
        if window.ndim == 2 and window.dtype == np.float32:
            return cls.FLOAT32
        if window.ndim == 3 and window.shape[2] == 2 and window.dtype == np.int16:
            return cls.PACKED_S16X2

        raise EncodingError(
            "Unsupported sample encoding",
            details={"dtype": str(window.dtype), "shape": window.shape}
        )

    def intensities(self, window: np.ndarray) -> np.ndarray:
        """Comparable per-pixel intensities as float32."""
        if self is SampleEncoding.PACKED_S16X2:
            return (window[..., 0].astype(np.float32) * 0.5
                    + window[..., 1].astype(np.float32) * 0.5)
        return window.astype(np.float32, copy=False)
