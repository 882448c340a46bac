"""
Exceptions raised by the image post-processing pipeline.
"""


class ImagePipelineError(Exception):
    """Base class for bitmap boundary failures."""


class DecodeError(ImagePipelineError):
    """Input bytes are not a valid image."""


class EncodeError(ImagePipelineError):
    """A bitmap could not be serialized to the requested format."""


class AssetUnavailable(Exception):
    """
    The brand logo could not be loaded.

    Only ever raised inside the watermark compositor, which recovers by
    switching to the text watermark.
    """
