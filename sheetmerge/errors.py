# sheetmerge/errors.py


class SheetMergeError(Exception):
    """Base class for all sheetmerge errors."""


class MissingFileError(SheetMergeError):
    pass


class CorruptFileError(SheetMergeError):
    """File could not be opened, re-saved and re-opened cleanly."""


class MissingHeaderSentinelError(SheetMergeError):
    pass


class InvalidJoinConfigurationError(SheetMergeError):
    """Join key references a header that the dataset does not have."""


class ImmutableFileError(SheetMergeError):
    pass
