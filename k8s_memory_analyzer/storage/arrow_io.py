"""Arrow/Parquet storage layer for usage datasets.

A dataset is stored as a directory (local or ``s3://``) of three Parquet files:

- ``aggregate.parquet``: the total memory series, one row per timestamp
- ``histograms.parquet``: one row per container with its encoded histogram
- ``presence.parquet``: one row per timestamp listing the containers present,
  as indices into ``histograms.parquet``
"""
import logging
from pathlib import Path
from typing import Dict
from typing import List

import pyarrow as pa
import pyarrow.parquet as pq
import s3fs
from k8s_memory_analyzer.analytics.histogram import PercentileHistogram
from k8s_memory_analyzer.exceptions import DatasetInconsistencyError
from k8s_memory_analyzer.models.container_id import ContainerId
from k8s_memory_analyzer.models.controller_type import ControllerType
from k8s_memory_analyzer.models.dataset import UsageDataset

from .datasink import IDatasetStore

logger = logging.getLogger(__name__)

FORMAT_VERSION = "1"
AGGREGATE_FILE = "aggregate.parquet"
HISTOGRAMS_FILE = "histograms.parquet"
PRESENCE_FILE = "presence.parquet"

_META_VERSION = b"k8s_memory_analyzer.format_version"
_META_SIGNIFICANT_FIGURES = b"k8s_memory_analyzer.significant_figures"
_META_HIGHEST_TRACKABLE_VALUE = b"k8s_memory_analyzer.highest_trackable_value"


class ParquetDatasetStore(IDatasetStore):
    """
    A store that writes usage datasets to a directory of Parquet files.
    """

    def __init__(self, location: str):
        """
        Initializes the store with a target location.
        :param location: The dataset directory (e.g., 's3://my-bucket/my-path/' or './data').
        """
        self.location = location.rstrip("/")
        self.filesystem = (
            s3fs.S3FileSystem() if self.location.startswith("s3://") else None
        )

    def _path(self, name: str) -> str:
        return f"{self.location}/{name}"

    def _metadata(self, dataset: UsageDataset) -> Dict[bytes, bytes]:
        return {
            _META_VERSION: FORMAT_VERSION.encode(),
            _META_SIGNIFICANT_FIGURES: str(dataset.significant_figures).encode(),
            _META_HIGHEST_TRACKABLE_VALUE: str(
                dataset.highest_trackable_value
            ).encode(),
        }

    def _aggregate_schema(self, metadata):
        return pa.schema(
            [
                pa.field("timestamp", pa.int64(), nullable=False),
                pa.field("value", pa.int64(), nullable=False),
            ],
            metadata=metadata,
        )

    def _histograms_schema(self, metadata):
        return pa.schema(
            [
                pa.field("entity_index", pa.int32(), nullable=False),
                pa.field("namespace", pa.string()),
                pa.field("controller_type", pa.string()),
                pa.field("controller_id", pa.string()),
                pa.field("container", pa.string()),
                pa.field("histogram", pa.binary(), nullable=False),
            ],
            metadata=metadata,
        )

    def _presence_schema(self, metadata):
        return pa.schema(
            [
                pa.field("timestamp", pa.int64(), nullable=False),
                pa.field("entities", pa.list_(pa.int32())),
            ],
            metadata=metadata,
        )

    def _makedirs(self) -> None:
        if self.filesystem:
            self.filesystem.makedirs(self.location, exist_ok=True)
        else:
            Path(self.location).mkdir(parents=True, exist_ok=True)

    def _file_exists(self, name: str) -> bool:
        if self.filesystem:
            return self.filesystem.exists(self._path(name))
        return Path(self._path(name)).exists()

    def exists(self) -> bool:
        return all(
            self._file_exists(name)
            for name in (AGGREGATE_FILE, HISTOGRAMS_FILE, PRESENCE_FILE)
        )

    def save(self, dataset: UsageDataset) -> None:
        """
        Saves the dataset, replacing any dataset previously stored at the location.
        """
        if not isinstance(dataset, UsageDataset):
            raise TypeError("Data must be a UsageDataset object")
        dataset.validate()

        metadata = self._metadata(dataset)
        container_ids = sorted(dataset.entity_histograms)
        entity_index = {
            container_id: index for index, container_id in enumerate(container_ids)
        }

        series = dataset.sorted_aggregate_series()
        aggregate_table = pa.Table.from_pydict(
            {
                "timestamp": [sample.timestamp for sample in series],
                "value": [sample.value for sample in series],
            },
            schema=self._aggregate_schema(metadata),
        )
        histograms_table = pa.Table.from_pydict(
            {
                "entity_index": list(range(len(container_ids))),
                "namespace": [cid.namespace for cid in container_ids],
                "controller_type": [cid.controller_type.value for cid in container_ids],
                "controller_id": [cid.controller_id for cid in container_ids],
                "container": [cid.container for cid in container_ids],
                "histogram": [
                    dataset.entity_histograms[cid].encode() for cid in container_ids
                ],
            },
            schema=self._histograms_schema(metadata),
        )
        timestamps = sorted(dataset.presence)
        presence_table = pa.Table.from_pydict(
            {
                "timestamp": timestamps,
                "entities": [
                    [entity_index[cid] for cid in dataset.presence[ts]]
                    for ts in timestamps
                ],
            },
            schema=self._presence_schema(metadata),
        )

        logger.info(f"Saving dataset to {self.location}")
        self._makedirs()
        for name, table in (
            (AGGREGATE_FILE, aggregate_table),
            (HISTOGRAMS_FILE, histograms_table),
            (PRESENCE_FILE, presence_table),
        ):
            pq.write_table(table, self._path(name), filesystem=self.filesystem)

    def _read(self, name: str) -> pa.Table:
        return pq.read_table(self._path(name), filesystem=self.filesystem)

    def load(self) -> UsageDataset:
        """Loads and validates the dataset stored at the location."""
        logger.info(f"Loading dataset from {self.location}")
        if not self.exists():
            raise FileNotFoundError(f"No dataset found at {self.location}")
        histograms_table = self._read(HISTOGRAMS_FILE)
        metadata = histograms_table.schema.metadata or {}
        version = metadata.get(_META_VERSION, b"").decode()
        if version != FORMAT_VERSION:
            raise DatasetInconsistencyError(
                f"Unsupported dataset format version {version!r} at {self.location}"
            )
        dataset = UsageDataset(
            significant_figures=int(metadata[_META_SIGNIFICANT_FIGURES]),
            highest_trackable_value=int(metadata[_META_HIGHEST_TRACKABLE_VALUE]),
        )

        ids_by_index: Dict[int, ContainerId] = {}
        for row in histograms_table.to_pylist():
            try:
                controller_type = ControllerType(row["controller_type"])
            except ValueError as e:
                raise DatasetInconsistencyError(
                    f"Unknown controller type {row['controller_type']!r}"
                ) from e
            container_id = ContainerId(
                namespace=row["namespace"],
                controller_type=controller_type,
                controller_id=row["controller_id"],
                container=row["container"],
            )
            ids_by_index[row["entity_index"]] = container_id
            dataset.add_entity_histogram(
                container_id, PercentileHistogram.decode(row["histogram"])
            )

        aggregate = self._read(AGGREGATE_FILE).to_pydict()
        for timestamp, value in zip(aggregate["timestamp"], aggregate["value"]):
            dataset.record_aggregate(timestamp, value)

        presence = self._read(PRESENCE_FILE).to_pydict()
        for timestamp, indices in zip(presence["timestamp"], presence["entities"]):
            present: List[ContainerId] = dataset.presence.setdefault(timestamp, [])
            for index in indices or []:
                if index not in ids_by_index:
                    raise DatasetInconsistencyError(
                        f"Presence at {timestamp} references unknown container {index}"
                    )
                present.append(ids_by_index[index])

        dataset.validate()
        return dataset
