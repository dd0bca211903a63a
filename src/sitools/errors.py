"""Exception types shared across sitools."""


class SitoolsError(Exception):
    """Base class for sitools errors."""


class DaqConnectionError(SitoolsError):
    """A DAQ device or task could not be created."""


class AcquisitionError(SitoolsError):
    """The driver reported an error while acquiring or generating samples."""


class LoggerClosedError(SitoolsError):
    """A block was written to a binary logger that is not open."""
