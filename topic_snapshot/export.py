"""
Snapshot export to JSON or Parquet files.

JSON output is an array of {"key": ..., "value": ...} objects. Parquet
output has a "key" column and either a "value" text column (raw messages)
or the decoded value flattened into columns.

Files are written to a temp file in the destination directory and moved
into place, so a failed export never leaves a truncated file behind.
"""

import json
import os
import shutil
import tempfile
from dataclasses import dataclass

import polars as pl

from . import config
from .decoding import flatten_dict, render_key, render_value
from .errors import ExportError

KEY_DTYPES = {
    "string": pl.Utf8,
    "json": pl.Utf8,
    "long": pl.Int64,
}


@dataclass(frozen=True)
class ExportedTopic:
    """Destination descriptor of one topic's snapshot."""
    name: str
    export_name: str
    export_raw_message: bool = True


@dataclass(frozen=True)
class ExportResult:
    topic: str
    path: str
    records: int
    size_bytes: int


def snapshot_items(snapshot):
    """Iterate (key, value) pairs of a list or compacted dict snapshot."""
    if isinstance(snapshot, dict):
        return list(snapshot.items())
    return list(snapshot)


class SnapshotExporter:
    """Writes snapshots into output_dir in the configured format."""

    def __init__(self, output_dir=None, export_format=None, key_type="string", value_format=None,
                 compression=None, compression_level=None, console=None):
        self.output_dir = output_dir or config.OUTPUT_DIR
        self.export_format = export_format or config.EXPORT_FORMAT
        self.key_type = key_type
        self.value_format = value_format or config.VALUE_FORMAT
        self.compression = compression or config.PARQUET_COMPRESSION
        self.compression_level = compression_level if compression_level is not None else config.COMPRESSION_LEVEL
        self.console = console

        if self.export_format not in config.EXPORT_FORMATS:
            raise ValueError(f"Export format {self.export_format} not supported")

    def to_records(self, snapshot, raw_message):
        return [
            {
                "key": render_key(key, self.key_type),
                "value": render_value(value, raw_message, self.value_format),
            }
            for key, value in snapshot_items(snapshot)
        ]

    def to_dataframe(self, snapshot, raw_message) -> pl.DataFrame:
        """Build the Parquet frame; JSON keys stay as text."""
        rows = []
        for key, value in snapshot_items(snapshot):
            rendered = render_value(value, raw_message, self.value_format)
            row = {"key": key}
            if isinstance(rendered, dict):
                row.update({f"value_{k}": v for k, v in flatten_dict(rendered).items()})
            elif rendered is None or isinstance(rendered, str):
                row["value"] = rendered
            else:
                row["value"] = json.dumps(rendered)
            rows.append(row)

        if not rows:
            return pl.DataFrame(schema={"key": KEY_DTYPES.get(self.key_type, pl.Utf8), "value": pl.Utf8})
        return pl.DataFrame(rows, infer_schema_length=None)

    def write_json(self, snapshot, raw_message, path):
        records = self.to_records(snapshot, raw_message)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(records, f, ensure_ascii=False, indent=2, default=str)
        return len(records)

    def write_parquet(self, snapshot, raw_message, path):
        df = self.to_dataframe(snapshot, raw_message)
        df.write_parquet(
            path,
            compression=self.compression,
            compression_level=self.compression_level if self.compression == "zstd" else None,
        )
        return len(df)

    def export(self, snapshot, exported_topic: ExportedTopic) -> ExportResult:
        """Write the snapshot of one topic, replacing any previous export."""
        os.makedirs(self.output_dir, exist_ok=True)
        filepath = os.path.join(self.output_dir, exported_topic.export_name)
        target_dir = os.path.dirname(os.path.abspath(filepath))
        os.makedirs(target_dir, exist_ok=True)

        temp_fd, temp_path = tempfile.mkstemp(suffix=f".{self.export_format}", dir=target_dir)
        os.close(temp_fd)

        try:
            if self.export_format == "parquet":
                records = self.write_parquet(snapshot, exported_topic.export_raw_message, temp_path)
            else:
                records = self.write_json(snapshot, exported_topic.export_raw_message, temp_path)
            # Atomic move
            shutil.move(temp_path, filepath)
        except (OSError, TypeError, ValueError, pl.exceptions.PolarsError) as e:
            if self.console:
                self.console.log(f"[red][ERROR][/red] {exported_topic.name}: Failed to write {filepath}: {e}")
            raise ExportError(f"Cannot export {exported_topic.name} to {filepath}: {e}",
                              topic=exported_topic.name) from e
        finally:
            if os.path.exists(temp_path):
                os.remove(temp_path)

        size_bytes = os.path.getsize(filepath)
        if self.console:
            size_mb = size_bytes / (1024 * 1024)
            self.console.log(
                f"[blue][INFO][/blue] {exported_topic.name}: Written {filepath} ({records:,} records, {size_mb:.1f} MB)"
            )
        return ExportResult(exported_topic.name, filepath, records, size_bytes)
