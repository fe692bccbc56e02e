#!/usr/bin/env python3
"""
Extract clean Chinese sentences from a compressed archive of LIHKG API logs
into a single text file, one sentence per line.

- Streams the archive (.tar.xz, .tar.gz, .tar.bz2 or plain .tar) member by
  member, in archive order. Non-regular members are skipped.
- Every line of every member goes through lihkg_record_processor.
- Two concurrency strategies over one worker pool:
    stream: batches of --batch-size lines are dispatched as soon as they are
            read; finished batches are appended in completion order. The last,
            partial batch of each member is dispatched too.
    bulk:   a whole member is read, split into batches, processed in parallel
            and written once, in input order.
- Bad lines are counted and skipped. A missing or corrupt archive, or an
  output file that cannot be written, stops the run with exit status 1.

Example:
  python lihkg_sentence_extractor.py ^
    --archive "./data/lihkg-1800000-2800000-csv.tar.xz" ^
    --output "sentences.txt" --strategy stream --workers 8
"""

import argparse
import itertools
import logging
import lzma
import os
import sys
import tarfile
import threading
import zlib
from concurrent.futures import (
    ALL_COMPLETED,
    FIRST_COMPLETED,
    Executor,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    wait,
)
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Iterable, Iterator, List, Optional, Tuple

from lihkg_record_processor import BatchResult, ExtractionError, ExtractionStats, process_batch
from paragraph_filter import CJK_RATIO, DEFAULT_SETTINGS, MAX_CHARS, MIN_CHARS, MIN_CJK, FilterSettings


LOGGER = logging.getLogger(__name__)

ARCHIVE_PATH = "./data/lihkg-1800000-2800000-csv.tar.xz"
OUTPUT_PATH = "sentences.txt"

BATCH_SIZE = 1000
PROGRESS_EVERY = 100_000  # lines

LOG_FORMAT = "%(levelname)s %(message)s"

STRATEGIES = ("stream", "bulk")
EXECUTORS = ("process", "thread")

# Raised by tarfile and the decompressors on truncated or corrupt input
ARCHIVE_READ_ERRORS = (tarfile.TarError, OSError, EOFError, lzma.LZMAError, zlib.error)


class ArchiveOpenError(ExtractionError):
    stage = "archive"


class SinkWriteError(ExtractionError):
    stage = "output"


def default_workers() -> int:
    return os.cpu_count() or 1


@dataclass(frozen=True)
class ExtractorConfig:
    archive_path: Path = Path(ARCHIVE_PATH)
    output_path: Path = Path(OUTPUT_PATH)
    strategy: str = "stream"
    executor: str = "process"
    workers: int = field(default_factory=default_workers)
    batch_size: int = BATCH_SIZE
    filters: FilterSettings = DEFAULT_SETTINGS
    break_on_br: bool = False
    progress_every: int = PROGRESS_EVERY

    def __post_init__(self):
        object.__setattr__(self, "archive_path", Path(self.archive_path))
        object.__setattr__(self, "output_path", Path(self.output_path))
        if self.strategy not in STRATEGIES:
            raise ValueError(f"Unknown strategy {self.strategy!r}; expected one of {STRATEGIES}")
        if self.executor not in EXECUTORS:
            raise ValueError(f"Unknown executor {self.executor!r}; expected one of {EXECUTORS}")
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")


class SentenceSink:
    """
    Append-only output file shared by all batches.
    Truncated on open; each write() puts one whole chunk under a lock.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.lines_written = 0
        self._lock = threading.Lock()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = self.path.open("w", encoding="utf-8", newline="\n")
        except OSError as e:
            raise SinkWriteError(f"Cannot open output file {self.path}: {e}") from e

    def write(self, chunk: str) -> None:
        if not chunk:
            return
        with self._lock:
            try:
                self._fh.write(chunk)
            except OSError as e:
                raise SinkWriteError(f"Cannot write to {self.path}: {e}") from e
            self.lines_written += chunk.count("\n")

    def close(self) -> None:
        with self._lock:
            try:
                self._fh.close()
            except OSError as e:
                raise SinkWriteError(f"Cannot flush {self.path}: {e}") from e

    def __enter__(self) -> "SentenceSink":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def open_archive(archive_path: Path) -> tarfile.TarFile:
    if not archive_path.is_file():
        raise ArchiveOpenError(f"Archive not found: {archive_path}")
    try:
        # Stream mode: members are read once, in order, without an index pass
        return tarfile.open(archive_path, mode="r|*")
    except ARCHIVE_READ_ERRORS as e:
        raise ArchiveOpenError(f"Cannot open archive {archive_path}: {e}") from e


def iter_archive_entries(tf: tarfile.TarFile) -> Iterator[Tuple[str, IO[bytes]]]:
    """
    (member name, binary file object) for each regular member.
    The file object is only valid until the next member is requested.
    """
    try:
        for member in tf:
            if not member.isreg():
                continue
            src_f = tf.extractfile(member)
            if src_f is None:
                continue
            yield member.name, src_f
    except ARCHIVE_READ_ERRORS as e:
        raise ArchiveOpenError(f"Corrupt archive data: {e}") from e


def iter_entry_lines(name: str, src_f: IO[bytes]) -> Iterator[bytes]:
    try:
        for line in src_f:
            yield line
    except ARCHIVE_READ_ERRORS as e:
        raise ArchiveOpenError(f"Corrupt archive member {name!r}: {e}") from e


def iter_batches(lines: Iterable[bytes], batch_size: int) -> Iterator[Tuple[int, List[bytes]]]:
    """Yield (first line number, batch); the last batch may be shorter."""
    iterator = iter(lines)
    first_lineno = 1
    while True:
        batch = list(itertools.islice(iterator, batch_size))
        if not batch:
            break
        yield first_lineno, batch
        first_lineno += len(batch)


def init_worker_logging(level: int) -> None:
    """Process-pool initializer; spawned workers start without logging set up."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format=LOG_FORMAT)
    root.setLevel(level)


def make_executor(config: ExtractorConfig) -> Executor:
    if config.executor == "thread":
        return ThreadPoolExecutor(max_workers=config.workers)
    return ProcessPoolExecutor(
        max_workers=config.workers,
        initializer=init_worker_logging,
        initargs=(logging.getLogger().getEffectiveLevel(),),
    )


class _Progress:
    def __init__(self, every: int):
        self.every = every
        self.next_at = every

    def update(self, stats: ExtractionStats) -> None:
        if self.every <= 0 or stats.lines < self.next_at:
            return
        print(f"  Processed {stats.lines} lines; wrote {stats.sentences} sentences")
        while self.next_at <= stats.lines:
            self.next_at += self.every


def _collect(result: BatchResult, sink: SentenceSink, stats: ExtractionStats, progress: _Progress) -> None:
    sink.write(result.text)
    stats.merge(result.stats)
    progress.update(stats)


def run_stream(
    entries: Iterable[Tuple[str, IO[bytes]]],
    config: ExtractorConfig,
    executor: Executor,
    sink: SentenceSink,
    stats: ExtractionStats,
) -> None:
    progress = _Progress(config.progress_every)
    max_pending = 2 * config.workers
    pending = set()

    def drain(return_when):
        done, not_done = wait(pending, return_when=return_when)
        for fut in done:
            _collect(fut.result(), sink, stats, progress)
        return not_done

    for entry_no, (name, src_f) in enumerate(entries, 1):
        print(f"[{entry_no}] Processing: {name}")
        stats.entries += 1
        for first_lineno, batch in iter_batches(iter_entry_lines(name, src_f), config.batch_size):
            fut = executor.submit(
                process_batch, batch, config.filters, name, first_lineno, config.break_on_br
            )
            pending.add(fut)
            if len(pending) >= max_pending:
                pending = set(drain(FIRST_COMPLETED))

    if pending:
        drain(ALL_COMPLETED)


def run_bulk(
    entries: Iterable[Tuple[str, IO[bytes]]],
    config: ExtractorConfig,
    executor: Executor,
    sink: SentenceSink,
    stats: ExtractionStats,
) -> None:
    progress = _Progress(config.progress_every)

    for entry_no, (name, src_f) in enumerate(entries, 1):
        print(f"[{entry_no}] Processing: {name}")
        stats.entries += 1
        batches = list(iter_batches(iter_entry_lines(name, src_f), config.batch_size))
        if not batches:
            continue

        results = executor.map(
            process_batch,
            [batch for _, batch in batches],
            itertools.repeat(config.filters),
            itertools.repeat(name),
            [first_lineno for first_lineno, _ in batches],
            itertools.repeat(config.break_on_br),
        )
        entry_stats = ExtractionStats()
        parts = []
        for result in results:
            parts.append(result.text)
            entry_stats.merge(result.stats)

        sink.write("".join(parts))
        stats.merge(entry_stats)
        progress.update(stats)


def extract_archive(config: ExtractorConfig) -> ExtractionStats:
    """
    Run the whole pipeline. Raises ArchiveOpenError or SinkWriteError on
    fatal problems; per-line problems only show up in the returned stats.
    """
    stats = ExtractionStats()
    tf = open_archive(config.archive_path)
    run = run_stream if config.strategy == "stream" else run_bulk

    with tf, SentenceSink(config.output_path) as sink, make_executor(config) as executor:
        LOGGER.info(
            "Extracting %s -> %s (%s strategy, %d %s workers, batch size %d)",
            config.archive_path,
            config.output_path,
            config.strategy,
            config.workers,
            config.executor,
            config.batch_size,
        )
        run(iter_archive_entries(tf), config, executor, sink, stats)

    return stats


def build_arg_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Extract clean Chinese sentences from LIHKG API log archives.")
    ap.add_argument("--archive", default=ARCHIVE_PATH, help="Compressed tar archive of tab-separated log files")
    ap.add_argument("--output", default=OUTPUT_PATH, help="Destination text file (truncated on start)")
    ap.add_argument("--strategy", choices=STRATEGIES, default="stream", help="Batch dispatch strategy")
    ap.add_argument("--executor", choices=EXECUTORS, default="process", help="Worker pool type")
    ap.add_argument("--workers", type=int, default=default_workers(), help="Number of parallel workers")
    ap.add_argument("--batch-size", type=int, default=BATCH_SIZE, help="Lines per dispatched batch")
    ap.add_argument("--min-chars", type=int, default=MIN_CHARS, help="Shortest paragraph kept (characters)")
    ap.add_argument("--max-chars", type=int, default=MAX_CHARS, help="Longest paragraph kept (characters)")
    ap.add_argument("--min-cjk", type=int, default=MIN_CJK, help="Minimum CJK characters per paragraph")
    ap.add_argument("--cjk-ratio", type=float, default=CJK_RATIO, help="CJK share a paragraph must exceed")
    ap.add_argument("--break-on-br", action="store_true", help="Treat <br> tags as line breaks")
    ap.add_argument("--progress-every", type=int, default=PROGRESS_EVERY, help="Print progress every N lines (0 = off)")
    ap.add_argument("--verbose", action="store_true", help="Log every skipped line")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    ap = build_arg_parser()
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format=LOG_FORMAT,
    )

    try:
        config = ExtractorConfig(
            archive_path=Path(args.archive),
            output_path=Path(args.output),
            strategy=args.strategy,
            executor=args.executor,
            workers=args.workers,
            batch_size=args.batch_size,
            filters=FilterSettings(
                min_chars=args.min_chars,
                max_chars=args.max_chars,
                min_cjk=args.min_cjk,
                cjk_ratio=args.cjk_ratio,
            ),
            break_on_br=args.break_on_br,
            progress_every=args.progress_every,
        )
    except ValueError as e:
        ap.error(str(e))

    try:
        stats = extract_archive(config)
    except (ArchiveOpenError, SinkWriteError) as e:
        LOGGER.error("%s stage failed: %s", e.stage, e)
        print(f"Error ({e.stage}): {e}", file=sys.stderr)
        return 1

    print("\nDone.")
    print(f"  Entries processed:   {stats.entries}")
    print(f"  Lines read:          {stats.lines}")
    print(f"  Malformed skipped:   {stats.malformed}")
    print(f"  Invalid JSON:        {stats.invalid_json}")
    print(f"  Messages scanned:    {stats.messages}")
    print(f"  Sentences written:   {stats.sentences}")
    print(f"  Tokens written:      {stats.tokens}")
    for reason, count in stats.rejected.most_common():
        print(f"  Rejected ({reason}): {count}")
    print(f"  Output file:         {config.output_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
