"""Exception hierarchy for the K8s Memory Analyzer.

Configuration and data errors subclass ValueError so callers (the CLI in
particular) can report them as usage problems. Network and disk failures are
not wrapped: they propagate as raised by requests, pyarrow or the filesystem.
"""


class AnalyzerError(Exception):
    """Base class for all analyzer errors."""


class ConfigurationError(AnalyzerError, ValueError):
    """Invalid configuration or analysis parameters."""


class IncompatibleHistogramError(ConfigurationError):
    """Two histograms with different bucket configurations were merged."""


class EmptyDatasetError(ConfigurationError):
    """The dataset has no aggregate samples to calibrate against."""


class DataError(AnalyzerError, ValueError):
    """Invalid or inconsistent usage data."""


class ValueOutOfRangeError(DataError):
    """A sample lies outside the trackable range of a histogram."""


class DatasetInconsistencyError(DataError):
    """A usage dataset violates one of its structural invariants."""


class HistogramDecodingError(DataError):
    """A persisted histogram payload could not be decoded."""


class MetricsSourceError(AnalyzerError):
    """The metrics backend answered with an error payload."""


class UnattainableRiskError(DataError):
    """No percentile keeps the under-request frequency within the tolerance."""
