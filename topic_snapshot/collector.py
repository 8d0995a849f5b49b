"""
Topic Snapshot Collector

Takes a point-in-time snapshot of Kafka / Redpanda topics and writes one
export file per topic.

For every configured topic:
  1. Capture the high watermark of each partition (partitions with nothing
     to read are skipped)
  2. Drain all partitions in parallel up to the captured watermarks
  3. Optionally compact to the latest value per key
  4. Export to JSON or Parquet (atomic replace, never a partial file)

Topics run in parallel (USE_CONCURRENT_LOAD / "use_concurrent_load") with
progress bars, a per-phase timing summary and post-run validation of the
written files. Console output is also saved to a timestamped log file in
LOG_DIR.

Ctrl+C cancels every running drain; cancelled topics are reported as
failed and produce no export.

Usage:
  TOPICS_CONFIG=topics.json BOOTSTRAP_SERVERS=broker:9092 python -m topic_snapshot
"""

import os
import signal
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

import polars as pl
from confluent_kafka import KafkaException
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from . import config
from .consumers import ConsumerFactory, get_all_topics
from .decoding import get_key_decoder
from .errors import ConfigurationError, SnapshotError
from .export import SnapshotExporter
from .processing import ProcessingUnit
from .reader import SnapshotReader
from .snapshot import SnapshotLoader


class TimingTracker:
    """Track timing for different phases of processing."""
    def __init__(self):
        self.phases: Dict[str, float] = {}
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None

    def record(self, topic: str, phase: str, duration: float):
        self.phases[f"{topic}_{phase}"] = duration

    def get_total_time(self) -> float:
        """Get total processing time."""
        if self.start_time and self.end_time:
            return self.end_time - self.start_time
        return 0.0

    def aggregate(self) -> Dict[str, float]:
        """Sum phase durations across topics."""
        totals = {}
        for name, duration in self.phases.items():
            phase = name.rsplit("_", 1)[1]
            totals[phase] = totals.get(phase, 0.0) + duration
        return totals


@dataclass
class TopicResult:
    topic: str
    records: int = 0
    error: Optional[str] = None
    path: Optional[str] = None
    size_bytes: int = 0
    expected: Optional[int] = None  # Messages below the watermark, when every one is exported


def build_processing_units(tool_config, console=None) -> List[ProcessingUnit]:
    """Wire a loader and an exporter for every configured topic."""
    units = []
    for topic in tool_config.topics:
        loader = SnapshotLoader(
            ConsumerFactory(topic.name),
            key_decoder=get_key_decoder(topic.key_type),
            metadata_timeout=config.METADATA_TIMEOUT,
            poll_timeout=config.POLL_TIMEOUT,
            console=console,
        )
        exporter = SnapshotExporter(key_type=topic.key_type, console=console)
        units.append(ProcessingUnit(topic, loader, exporter, console))
    return units


def process_topic(unit, cancel_event, timing_tracker, progress=None, task_id=None, console=None) -> TopicResult:
    """Process a single topic, reporting failure in the result instead of raising."""
    topic = unit.topic_name
    if progress and task_id is not None:
        progress.update(task_id, description=f"[yellow]{topic}[/yellow] - loading...")

    try:
        export_result = unit.process(cancel_event)
    except Exception as e:
        if console:
            console.log(f"[red][ERROR][/red] {topic}: {e}")
        if progress and task_id is not None:
            progress.update(task_id, description=f"[red]{topic}[/red] - ERROR", completed=1)
        return TopicResult(topic, error=str(e) or type(e).__name__)
    finally:
        for phase, duration in unit.phase_times.items():
            timing_tracker.record(topic, phase, duration)

    topic_config = unit.topic_config
    expected = None
    watermark = unit.loader.last_watermark
    if (watermark is not None and not topic_config.load_with_compacting
            and topic_config.filter_type == "none" and not topic_config.offset_start_date):
        expected = watermark.expected_messages

    if progress and task_id is not None:
        progress.update(task_id, description=f"[green]{topic}[/green] - {export_result.records:,} records",
                        completed=1)

    return TopicResult(topic, export_result.records, None, export_result.path, export_result.size_bytes, expected)


def validate_topic(result: TopicResult, reader: SnapshotReader, export_format=None) -> dict:
    """
    Re-read a topic's export and compare record counts.

    Returns dict with topic, reported, actual, expected and a status of
    PASS, WARNING or ERROR.
    """
    validation = {
        "topic": result.topic,
        "reported": result.records,
        "actual": None,
        "expected": result.expected,
        "status": "PASS",
    }
    try:
        validation["actual"] = reader.count_records(result.path, export_format)
    except (OSError, ValueError, pl.exceptions.PolarsError) as e:
        validation["status"] = "ERROR"
        validation["error"] = str(e)
        return validation

    if validation["actual"] != result.records:
        validation["status"] = "WARNING"
    elif result.expected is not None and result.expected != result.records:
        # Control records (transaction markers) occupy offsets without being exported
        validation["status"] = "WARNING"
    return validation


def run_validation(results: List[TopicResult], console):
    """Run post-processing validation for all successfully processed topics."""
    console.print("\n" + "=" * 60)
    console.print("[bold cyan]POST-RUN VALIDATION[/bold cyan]")
    console.print("=" * 60)

    successful = [r for r in results if r.error is None]
    if not successful:
        console.print("[yellow]No topics to validate (all failed during processing)[/yellow]")
        return []

    reader = SnapshotReader(console=console)
    validations = [validate_topic(r, reader, config.EXPORT_FORMAT) for r in successful]

    for v in validations:
        if v["status"] == "PASS":
            console.print(f"  ✓ {v['topic']}: [green]{v['actual']:,}[/green] records verified")
        elif v["status"] == "WARNING":
            expected = f", watermark span {v['expected']:,}" if v["expected"] is not None else ""
            console.print(f"  ⚠ {v['topic']}: reported {v['reported']:,}, file holds {v['actual']:,}{expected}")
        else:
            console.print(f"  ✗ {v['topic']}: [red]{v.get('error', 'Unknown error')}[/red]")

    return validations


def load_tool_configuration(console):
    if config.TOPICS_CONFIG:
        return config.load_configuration(config.TOPICS_CONFIG)

    topics = get_all_topics()
    console.print(f"[dim]TOPICS_CONFIG not set, snapshotting all {len(topics)} topics[/dim]")
    tool_config = config.default_configuration(topics)
    failures = config.validate_configuration(tool_config)
    if failures:
        raise ConfigurationError(failures)
    return tool_config


def install_signal_handlers(cancel_event, console):
    def handle(signum, frame):
        console.log(f"[yellow][WARN][/yellow] Received signal {signum}, cancelling...")
        cancel_event.set()

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)


def run(tool_config, console, cancel_event=None) -> List[TopicResult]:
    """Process every configured topic and return the per-topic results."""
    cancel_event = cancel_event or threading.Event()
    timing_tracker = TimingTracker()
    timing_tracker.start_time = time.perf_counter()

    units = build_processing_units(tool_config, console)
    results = []

    with Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        overall_task = progress.add_task("[cyan]Overall Progress", total=len(units))
        topic_tasks = {
            unit.topic_name: progress.add_task(f"[yellow]{unit.topic_name}[/yellow] - waiting...", total=1)
            for unit in units
        }

        if tool_config.use_concurrent_load and len(units) > 1:
            with ThreadPoolExecutor(max_workers=config.MAX_WORKERS) as executor:
                futures = [
                    executor.submit(process_topic, unit, cancel_event, timing_tracker, progress,
                                    topic_tasks[unit.topic_name], console)
                    for unit in units
                ]
                for future in as_completed(futures):
                    results.append(future.result())
                    progress.update(overall_task, advance=1)
        else:
            for unit in units:
                results.append(process_topic(unit, cancel_event, timing_tracker, progress,
                                             topic_tasks[unit.topic_name], console))
                progress.update(overall_task, advance=1)

    timing_tracker.end_time = time.perf_counter()
    print_summary(results, timing_tracker, console)
    return results


def print_summary(results: List[TopicResult], timing_tracker: TimingTracker, console):
    console.print("\n" + "=" * 60)
    console.print("[bold cyan]SUMMARY: Snapshot Complete[/bold cyan]")
    console.print("=" * 60)

    successful = [r for r in results if r.error is None]
    failed = [r for r in results if r.error is not None]
    total_time = timing_tracker.get_total_time()
    total_records = sum(r.records for r in successful)

    console.print(f"\n[bold]Processing completed in {total_time:.1f} seconds[/bold]")

    if successful:
        console.print(f"\n[bold green]SUCCESS[/bold green] - Exported {len(successful)} topics:")
        for r in sorted(successful, key=lambda r: r.topic):
            size_mb = r.size_bytes / (1024 * 1024)
            console.print(f"  • {r.topic}: [green]{r.records:,}[/green] records → {r.path} ({size_mb:.1f} MB)")

    if failed:
        console.print(f"\n[bold red]FAILED[/bold red] - {len(failed)} topics:")
        for r in sorted(failed, key=lambda r: r.topic):
            console.print(f"  • {r.topic}: [red]{r.error}[/red]")

    console.print("\n[bold]Processing phases:[/bold]")
    for phase_name, time_val in sorted(timing_tracker.aggregate().items()):
        percentage = (time_val / total_time * 100) if total_time > 0 else 0
        console.print(f"  - {phase_name.title()}: {time_val:.1f}s ({percentage:.0f}%)")

    console.print(f"\n[bold]Total records exported:[/bold] [green]{total_records:,}[/green]")


def save_log(console):
    """Export recorded console output to a timestamped file in LOG_DIR."""
    timestamp = datetime.now().strftime("%Y-%m-%d_%H%M%S")
    log_filepath = os.path.join(config.LOG_DIR, f"topic-snapshot_{timestamp}.log")
    try:
        os.makedirs(config.LOG_DIR, exist_ok=True)
        with open(log_filepath, "w", encoding="utf-8") as f:
            f.write(console.export_text())
        console.print(f"\n[dim]Log saved to: {log_filepath}[/dim]")
    except OSError as e:
        console.print(f"\n[yellow][WARN][/yellow] Failed to write log file: {e}")


def main() -> int:
    console = Console(record=True)  # Enable recording for file export

    console.print(f"\n[bold cyan]Session ID:[/bold cyan] {config.SESSION_ID}")
    console.print(f"[dim]Bootstrap servers: {config.BOOTSTRAP_SERVERS}[/dim]")
    console.print(f"[dim]Output: {config.OUTPUT_DIR} ({config.EXPORT_FORMAT})[/dim]\n")

    try:
        tool_config = load_tool_configuration(console)
    except (ConfigurationError, SnapshotError) as e:
        console.print(f"[red][ERROR][/red] {e}")
        save_log(console)
        return 1
    except KafkaException as e:
        console.print(f"[red][ERROR][/red] Cannot list topics: {e}")
        save_log(console)
        return 1

    names = ", ".join(t.name for t in tool_config.topics)
    console.print(f"[bold cyan]Snapshotting {len(tool_config.topics)} topics:[/bold cyan] {names}\n")

    cancel_event = threading.Event()
    install_signal_handlers(cancel_event, console)

    results = run(tool_config, console, cancel_event)

    if not config.SKIP_VALIDATION:
        run_validation(results, console)

    save_log(console)
    return 1 if any(r.error is not None for r in results) else 0
