"""Exception types raised by Variant Watcher."""


class VariantSyncError(Exception):
    """Base class for all Variant Watcher errors."""


class StartupError(VariantSyncError):
    """The service cannot start (e.g. the output folder is unusable)."""


class CodecError(VariantSyncError):
    """Decoding, resizing or encoding an image failed."""


class UnsupportedFormatError(CodecError):
    """The codec has no decoder for the source file's format."""
