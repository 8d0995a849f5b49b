"""
Snapshot Reader - load exported snapshot files back into Polars.

Used by the post-run validation to count exported records, and as a small
script to inspect exports:

    python -m topic_snapshot.reader [--base-dir PATH] [file ...]
"""

import json
import sys
from pathlib import Path
from typing import List, Optional

import polars as pl
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import config

console = Console(legacy_windows=False)


class SnapshotReader:
    """Read exported JSON / Parquet snapshots."""

    def __init__(self, snapshot_dir: Optional[str] = None, console: Optional[Console] = None):
        self.snapshot_dir = Path(snapshot_dir if snapshot_dir is not None else config.OUTPUT_DIR)
        self.console = console

    def load_snapshot(self, filepath) -> pl.DataFrame:
        """Load an export file with polars."""
        filepath = Path(filepath)
        if filepath.suffix == ".parquet":
            return pl.read_parquet(filepath)

        # Empty JSON arrays carry no schema for polars to infer
        if filepath.read_text(encoding="utf-8").strip() in ("", "[]"):
            return pl.DataFrame(schema={"key": pl.Utf8, "value": pl.Utf8})
        return pl.read_json(filepath, infer_schema_length=None)

    def count_records(self, filepath, export_format: Optional[str] = None) -> int:
        filepath = Path(filepath)
        if (export_format or filepath.suffix.lstrip(".")) == "parquet":
            return pl.scan_parquet(filepath).select(pl.len()).collect().item()
        # Mixed value shapes can defeat schema inference; counting needs none
        with open(filepath, "r", encoding="utf-8") as f:
            return len(json.load(f))

    def find_snapshots(self) -> List[Path]:
        if not self.snapshot_dir.exists():
            return []
        return sorted(
            p for p in self.snapshot_dir.rglob("*")
            if p.is_file() and p.suffix in (".json", ".parquet")
        )

    def show_summary(self, df: pl.DataFrame, filename: str = ""):
        """Print row count, columns, data types."""
        out = self.console or console
        out.print()
        title = f"Summary: {Path(filename).name}" if filename else "Snapshot Summary"
        out.print(Panel(title, style="bold cyan"))

        out.print(f"Rows: {len(df):,}", style="bold")
        out.print(f"Columns: {len(df.columns)}", style="bold")

        table = Table(box=box.SIMPLE)
        table.add_column("Column", style="cyan")
        table.add_column("Type", style="magenta")
        table.add_column("Null Count", style="yellow")

        for col in df.columns:
            table.add_row(col, str(df[col].dtype), str(df[col].null_count()))

        out.print(table)

        if "key" in df.columns and len(df) > 0:
            distinct = df["key"].n_unique()
            out.print(f"Distinct keys: {distinct:,}", style="bold")

    def show_preview(self, df: pl.DataFrame, n: int = 10):
        """Display first n rows."""
        out = self.console or console
        out.print(Panel(f"Preview (first {n} rows)", style="bold cyan"))
        out.print(df.head(n))


def main():
    """Main entry point for the script."""
    args = sys.argv[1:]
    base_dir = None

    if args and args[0] in ("-h", "--help"):
        console.print("Usage: python -m topic_snapshot.reader [--base-dir PATH] [file ...]", style="bold")
        return 0

    if "--base-dir" in args:
        idx = args.index("--base-dir")
        if idx + 1 < len(args):
            base_dir = args[idx + 1]
        args = [arg for i, arg in enumerate(args) if i not in (idx, idx + 1)]

    reader = SnapshotReader(snapshot_dir=base_dir)
    files = [Path(a) for a in args] or reader.find_snapshots()

    if not files:
        console.print(f"[yellow]No snapshot files found in {reader.snapshot_dir}[/yellow]")
        return 0

    for filepath in files:
        try:
            df = reader.load_snapshot(filepath)
        except (OSError, pl.exceptions.PolarsError) as e:
            console.print(f"[ERROR] Failed to load {filepath}: {e}", style="red")
            continue
        reader.show_summary(df, str(filepath))
        reader.show_preview(df)

    return 0


if __name__ == "__main__":
    sys.exit(main())
