"""Bounded-error percentile histogram.

Values are counted in a numpy array indexed by a log-linear mapping (the
HdrHistogram layout): every power-of-two bucket is split into enough linear
sub-buckets to keep ``significant_figures`` decimal digits of precision. The
array only grows as far as the largest recorded value, so memory depends on
the range actually used, never on the number of samples. Merging two
histograms is an element-wise addition of their counters.
"""
import math
import struct
import zlib
import numpy as np

from k8s_memory_analyzer.exceptions import ConfigurationError
from k8s_memory_analyzer.exceptions import HistogramDecodingError
from k8s_memory_analyzer.exceptions import IncompatibleHistogramError
from k8s_memory_analyzer.exceptions import ValueOutOfRangeError

_ENCODING_MAGIC = b"KMAH"
_ENCODING_VERSION = 1
# magic, version, significant figures, highest trackable value, populated buckets
_HEADER = struct.Struct("<4sBBQI")


class PercentileHistogram:
    """Histogram of non-negative integer samples answering percentile queries.

    The relative error of any reported value is bounded by
    ``10 ** -significant_figures``. Values below ``2 * 10 ** significant_figures``
    are tracked exactly.
    """

    def __init__(self, highest_trackable_value: int, significant_figures: int = 3):
        if not 1 <= significant_figures <= 5:
            raise ConfigurationError(
                f"significant_figures must be between 1 and 5, got {significant_figures}"
            )
        if highest_trackable_value < 2:
            raise ConfigurationError(
                f"highest_trackable_value must be at least 2, got {highest_trackable_value}"
            )
        self._highest_trackable_value = int(highest_trackable_value)
        self._significant_figures = int(significant_figures)

        largest_value_with_single_unit_resolution = 2 * 10**significant_figures
        # ceil(log2(n)) for n > 1
        sub_bucket_count_magnitude = (
            largest_value_with_single_unit_resolution - 1
        ).bit_length()
        self._sub_bucket_half_count_magnitude = max(sub_bucket_count_magnitude, 1) - 1
        self._sub_bucket_count = 1 << (self._sub_bucket_half_count_magnitude + 1)
        self._sub_bucket_half_count = self._sub_bucket_count // 2
        self._sub_bucket_mask = self._sub_bucket_count - 1

        smallest_untrackable_value = self._sub_bucket_count
        bucket_count = 1
        while smallest_untrackable_value <= self._highest_trackable_value:
            smallest_untrackable_value <<= 1
            bucket_count += 1
        self._bucket_count = bucket_count

        self._counts_len = (bucket_count + 1) * self._sub_bucket_half_count
        # values below sub_bucket_count need no growth
        self._counts = np.zeros(self._sub_bucket_count, dtype=np.int64)
        self._total_count = 0

    @property
    def highest_trackable_value(self) -> int:
        return self._highest_trackable_value

    @property
    def significant_figures(self) -> int:
        return self._significant_figures

    @property
    def total_count(self) -> int:
        return self._total_count

    @property
    def counts_len(self) -> int:
        """Number of counters needed to cover the whole trackable range."""
        return self._counts_len

    @property
    def nbytes(self) -> int:
        """Bytes currently held by the counter array."""
        return self._counts.nbytes

    def _ensure_capacity(self, length: int) -> None:
        if length <= len(self._counts):
            return
        grown = np.zeros(
            min(max(length, 2 * len(self._counts)), self._counts_len), dtype=np.int64
        )
        grown[: len(self._counts)] = self._counts
        self._counts = grown

    def is_empty(self) -> bool:
        return self._total_count == 0

    def is_compatible(self, other: "PercentileHistogram") -> bool:
        return (
            isinstance(other, PercentileHistogram)
            and self._highest_trackable_value == other._highest_trackable_value
            and self._significant_figures == other._significant_figures
        )

    def _indices_for(self, value: int):
        pow2ceiling = (value | self._sub_bucket_mask).bit_length()
        bucket_index = pow2ceiling - (self._sub_bucket_half_count_magnitude + 1)
        sub_bucket_index = value >> bucket_index
        return bucket_index, sub_bucket_index

    def _counts_index_for(self, value: int) -> int:
        bucket_index, sub_bucket_index = self._indices_for(value)
        bucket_base_index = (bucket_index + 1) << self._sub_bucket_half_count_magnitude
        return bucket_base_index + (sub_bucket_index - self._sub_bucket_half_count)

    def _value_from_index(self, index: int) -> int:
        bucket_index = (index >> self._sub_bucket_half_count_magnitude) - 1
        sub_bucket_index = (
            index & (self._sub_bucket_half_count - 1)
        ) + self._sub_bucket_half_count
        if bucket_index < 0:
            sub_bucket_index -= self._sub_bucket_half_count
            bucket_index = 0
        return sub_bucket_index << bucket_index

    def lowest_equivalent_value(self, value: int) -> int:
        """Smallest value counted in the same bucket as ``value``."""
        bucket_index, sub_bucket_index = self._indices_for(value)
        return sub_bucket_index << bucket_index

    def size_of_equivalent_range(self, value: int) -> int:
        bucket_index, sub_bucket_index = self._indices_for(value)
        if sub_bucket_index >= self._sub_bucket_count:
            bucket_index += 1
        return 1 << bucket_index

    def highest_equivalent_value(self, value: int) -> int:
        """Largest value counted in the same bucket as ``value``."""
        return (
            self.lowest_equivalent_value(value)
            + self.size_of_equivalent_range(value)
            - 1
        )

    def record(self, value: int, count: int = 1) -> None:
        """Record ``count`` occurrences of ``value``."""
        value = int(value)
        if value < 0 or value > self._highest_trackable_value:
            raise ValueOutOfRangeError(
                f"Value {value} is outside the trackable range "
                f"[0, {self._highest_trackable_value}]"
            )
        if count < 0:
            raise ConfigurationError(f"count must not be negative, got {count}")
        index = self._counts_index_for(value)
        self._ensure_capacity(index + 1)
        self._counts[index] += count
        self._total_count += int(count)

    def merge(self, other: "PercentileHistogram") -> None:
        """Add every count of ``other`` into this histogram."""
        if not self.is_compatible(other):
            raise IncompatibleHistogramError(
                "Cannot merge histograms with different configurations: "
                f"{self!r} and {other!r}"
            )
        other_len = len(other._counts)
        self._ensure_capacity(other_len)
        self._counts[:other_len] += other._counts
        self._total_count += other._total_count

    def copy(self) -> "PercentileHistogram":
        clone = PercentileHistogram(
            self._highest_trackable_value, self._significant_figures
        )
        clone.merge(self)
        return clone

    def value_at_percentile(self, percentile: float) -> int:
        """Smallest recorded value such that at least ``percentile``% of samples are <= it.

        Percentiles below 0 or above 100 are clamped to that range. The value is
        reported as the highest value equivalent to its bucket (the lowest one
        for the 0th percentile). An empty histogram reports 0.
        """
        if math.isnan(percentile):
            raise ConfigurationError("percentile must be a number, got NaN")
        percentile = min(max(float(percentile), 0.0), 100.0)
        if self._total_count == 0:
            return 0

        count_at_percentile = max(
            math.ceil(percentile * self._total_count / 100.0), 1
        )
        populated = np.flatnonzero(self._counts)
        cumulative = np.cumsum(self._counts[populated])
        index = int(
            populated[np.searchsorted(cumulative, count_at_percentile, side="left")]
        )
        value = self._value_from_index(index)
        if percentile == 0.0:
            return self.lowest_equivalent_value(value)
        return self.highest_equivalent_value(value)

    @property
    def min_value(self) -> int:
        populated = np.flatnonzero(self._counts)
        if len(populated) == 0:
            return 0
        return self.lowest_equivalent_value(self._value_from_index(int(populated[0])))

    @property
    def max_value(self) -> int:
        populated = np.flatnonzero(self._counts)
        if len(populated) == 0:
            return 0
        return self.highest_equivalent_value(
            self._value_from_index(int(populated[-1]))
        )

    def encode(self) -> bytes:
        """Serialize to a compact deflated payload.

        Only populated buckets are stored, as delta-encoded indices followed by
        their counts, compressed with zlib.
        """
        populated = np.flatnonzero(self._counts)
        index_deltas = np.diff(populated, prepend=0).astype("<i8")
        counts = self._counts[populated].astype("<i8")
        header = _HEADER.pack(
            _ENCODING_MAGIC,
            _ENCODING_VERSION,
            self._significant_figures,
            self._highest_trackable_value,
            len(populated),
        )
        return header + zlib.compress(index_deltas.tobytes() + counts.tobytes())

    @classmethod
    def decode(cls, payload: bytes) -> "PercentileHistogram":
        """Rebuild a histogram produced by :meth:`encode`."""
        try:
            magic, version, significant_figures, highest, populated = _HEADER.unpack_from(
                payload
            )
            body = zlib.decompress(payload[_HEADER.size :])
        except (struct.error, zlib.error) as e:
            raise HistogramDecodingError(f"Malformed histogram payload: {e}") from e
        if magic != _ENCODING_MAGIC or version != _ENCODING_VERSION:
            raise HistogramDecodingError(
                f"Unsupported histogram encoding {magic!r} v{version}"
            )
        if len(body) != 16 * populated:
            raise HistogramDecodingError(
                f"Expected {populated} populated buckets, got {len(body)} bytes"
            )

        try:
            histogram = cls(highest, significant_figures)
        except ConfigurationError as e:
            raise HistogramDecodingError(str(e)) from e
        values = np.frombuffer(body, dtype="<i8")
        indices = np.cumsum(values[:populated])
        counts = values[populated:]
        if populated and (
            indices[0] < 0
            or indices[-1] >= histogram.counts_len
            or (counts <= 0).any()
            or (np.diff(indices) <= 0).any()
        ):
            raise HistogramDecodingError("Histogram payload has invalid buckets")

        if populated:
            histogram._ensure_capacity(int(indices[-1]) + 1)
        histogram._counts[indices] = counts
        histogram._total_count = int(counts.sum())
        return histogram

    def __eq__(self, other):
        if not isinstance(other, PercentileHistogram):
            return NotImplemented
        if not self.is_compatible(other):
            return False
        shared = min(len(self._counts), len(other._counts))
        return (
            bool(np.array_equal(self._counts[:shared], other._counts[:shared]))
            and not self._counts[shared:].any()
            and not other._counts[shared:].any()
        )

    __hash__ = None

    def __repr__(self):
        return (
            f"PercentileHistogram(highest_trackable_value={self._highest_trackable_value}, "
            f"significant_figures={self._significant_figures}, "
            f"total_count={self._total_count})"
        )
