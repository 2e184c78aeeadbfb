"""
Error taxonomy for stopmo.

Failures in optional subsystems (device optics, captioning, background
loading) degrade to a safe default; export failures are fatal to the
export only.
"""


class StopMotionError(Exception):
    """Base class for all stopmo errors."""


class DeviceCapabilityUnsupported(StopMotionError):
    """The live source does not support the requested control."""


class DeviceUnavailable(StopMotionError):
    """The live source could not be opened."""


class EmptySequence(StopMotionError):
    """Operation requires at least one captured frame."""


class OutOfRange(StopMotionError, IndexError):
    """Frame lookup on an empty sequence or an invalid index."""


class EncodingUnavailable(StopMotionError):
    """The video encoder could not be initialized."""


class EncodingFailed(StopMotionError):
    """A frame write or finalization failed; partial output was discarded."""


class BackgroundLoadPending(StopMotionError):
    """Background image has not finished decoding yet."""
