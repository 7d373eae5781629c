"""Exception types raised across the gesture pipeline."""


class TreeGestureError(Exception):
    """Base class for all tree_gesture errors."""


class SourceError(TreeGestureError):
    """The landmark source could not produce detections."""


class InitializationFailure(SourceError):
    """The hand-landmark backend failed to load (missing package, bad model)."""


class DeviceAccessFailure(SourceError):
    """The camera could not be opened or permission was denied."""


class SourceExhausted(SourceError):
    """A finite source (e.g. a replayed recording) has no frames left."""


class MalformedDetection(TreeGestureError, ValueError):
    """A detection that is not a usable 21-point hand skeleton."""


class ConfigError(TreeGestureError, ValueError):
    """Invalid or unreadable configuration."""
