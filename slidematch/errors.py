"""Exceptions raised by the slide matcher."""


class SlideMatchError(RuntimeError):
    """Base class for every error the matcher raises."""


class DecodeError(SlideMatchError):
    """Target or background bytes could not be decoded as an image."""


class DimensionError(SlideMatchError):
    """Background is smaller than the target in width or height."""


class ValidationError(SlideMatchError, ValueError):
    """A caller supplied parameter is out of range."""


class ImageReadError(SlideMatchError, OSError):
    """An image file could not be read from disk."""
