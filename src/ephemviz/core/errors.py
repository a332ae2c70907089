"""
===============================================================================
EPHEMVIZ - Error Taxonomy
===============================================================================
Exceptions raised by the pipeline. Recovery follows a fixed policy:

    OutOfOrderSample      -> fatal to one insertion, prior samples intact
    MalformedRow          -> row skipped and logged
    MissingFrameMatrix    -> sample skipped (or identity), logged
    EmptyDataset          -> input marked FAILED ("no data"), never a crash
    StaleGenerationResult -> result discarded
    InputsNotReady        -> consumer asked for data before its inputs
    DataSourceError       -> input marked FAILED
    ConfigurationError    -> fatal at startup

A zero-length whisker vector is a defined no-op, not an error.
===============================================================================
"""


class EphemvizError(Exception):
    """Base class for every error raised by this package."""


class OutOfOrderSample(EphemvizError, ValueError):
    """A sample was inserted with a time earlier than the last sample."""

    def __init__(self, time: float, last_time: float) -> None:
        self.time = time
        self.last_time = last_time
        super().__init__(
            f"Sample time {time!r} precedes last sample time {last_time!r}"
        )


class MalformedRow(EphemvizError, ValueError):
    """A raw data row could not be decoded against its column contract."""


class EmptyDataset(EphemvizError):
    """No rows were returned for the requested range or parameter."""


class MissingFrameMatrix(EphemvizError):
    """No frame transform is available for a given instant or row."""

    def __init__(self, time: float, detail: str = '') -> None:
        self.time = time
        message = f"No frame matrix available at t={time!r}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class StaleGenerationResult(EphemvizError):
    """An async result arrived after its generation was superseded."""


class InputsNotReady(EphemvizError):
    """A consumer asked for derived data while an input was not READY."""


class DataSourceError(EphemvizError):
    """The remote data service failed or returned an unusable payload."""


class ConfigurationError(EphemvizError):
    """The configuration file is missing required values or is invalid."""
