"""
flowsink - CLI for backpressure-aware buffered writes.

Usage:
    flowsink write out.txt --source input.txt --high-water-mark 65536
    cat big.log | flowsink write out.log --append
    flowsink bench --count 100000 --strategy streamed awaited
    flowsink init

Commands:
    write   Stream a source (file or stdin) into TARGET through a BufferedSink
    bench   Compare write strategies (awaited, sync, streamed)
    init    Generate a default flowsink.yaml
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import BinaryIO, Iterator, List, Optional

from .bench import STRATEGIES, format_results, run_all
from .config import CONFIG_FILENAME, DEFAULT_CONFIG, load_config
from .sink import FlowSinkError, SinkConfig, open_file_sink, pipe_chunks

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 8192


def read_chunks(source: BinaryIO, chunk_size: int) -> Iterator[bytes]:
    """Yield fixed-size chunks from a binary file object until EOF."""
    while True:
        chunk = source.read(chunk_size)
        if not chunk:
            break
        yield chunk


async def _write(target: Path, source: BinaryIO, chunk_size: int, config: SinkConfig,
                 append: bool) -> int:
    sink = open_file_sink(target, config, append=append)
    total = await pipe_chunks(sink, read_chunks(source, chunk_size))
    logger.debug(f"Sink stats: {sink.get_stats()}")
    return total


def cmd_write(args: argparse.Namespace) -> int:
    config = load_config(args.config).sink_config()
    if args.high_water_mark is not None:
        config.high_water_mark = args.high_water_mark
        config.validate()

    if args.source in (None, "-"):
        total = asyncio.run(
            _write(args.target, sys.stdin.buffer, args.chunk_size, config, args.append)
        )
    else:
        source_path = Path(args.source)
        if not source_path.exists():
            print(f"Error: Source file not found: {source_path}")
            return 1
        with open(source_path, "rb") as f:
            total = asyncio.run(_write(args.target, f, args.chunk_size, config, args.append))

    print(f"Wrote {total} bytes to {args.target}")
    return 0


def cmd_bench(args: argparse.Namespace) -> int:
    flow_config = load_config(args.config)
    count = args.count if args.count is not None else flow_config.bench_count
    strategies = args.strategy or flow_config.bench_strategies or list(STRATEGIES)
    output_dir = args.output_dir or flow_config.bench_output_dir

    print(f"Writing {count} chunks per strategy to {output_dir}")
    print("-" * 57)
    results = asyncio.run(
        run_all(output_dir, count, strategies=strategies, config=flow_config.sink_config())
    )

    if args.json:
        print(json.dumps([r.to_dict() for r in results], indent=2))
    else:
        print(format_results(results))
    return 0


def cmd_init(args: argparse.Namespace) -> int:
    config_path = Path(args.config or CONFIG_FILENAME)
    if config_path.exists():
        print(f"Error: {config_path} already exists")
        return 1

    config_path.write_text(DEFAULT_CONFIG)
    print(f"Created {config_path}")
    return 0


def _add_common_arguments(parser: argparse.ArgumentParser, default=None) -> None:
    """--config/--verbose, accepted before or after the subcommand."""
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=default,
        help=f"Path to {CONFIG_FILENAME} configuration file",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        default=False if default is None else default,
        help="Verbose output",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flowsink",
        description="Backpressure-aware buffered file writes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Copy stdin to a file with a 64 KiB high water mark
  cat input.bin | flowsink write out.bin --high-water-mark 65536

  # Compare write strategies on 100k small writes
  flowsink bench --count 100000
        """,
    )
    _add_common_arguments(parser)

    # Subcommand copies must not overwrite values given before the subcommand
    common = argparse.ArgumentParser(add_help=False)
    _add_common_arguments(common, default=argparse.SUPPRESS)

    subparsers = parser.add_subparsers(dest="command", required=True)

    write = subparsers.add_parser(
        "write", parents=[common], help="Stream a source into a target file"
    )
    write.add_argument("target", type=Path, help="File to write to")
    write.add_argument(
        "--source", "-s",
        type=str,
        help="File to read from (default: stdin)",
    )
    write.add_argument(
        "--chunk-size",
        type=int,
        default=DEFAULT_CHUNK_SIZE,
        help="Bytes per submitted chunk",
    )
    write.add_argument(
        "--high-water-mark",
        type=int,
        help="Bytes buffered before the producer pauses",
    )
    write.add_argument(
        "--append", "-a",
        action="store_true",
        help="Append to target instead of truncating it",
    )
    write.set_defaults(func=cmd_write)

    bench = subparsers.add_parser("bench", parents=[common], help="Compare write strategies")
    bench.add_argument("--count", "-n", type=int, help="Chunks written per strategy")
    bench.add_argument(
        "--strategy",
        nargs="+",
        choices=STRATEGIES,
        help="Strategies to run (default: all)",
    )
    bench.add_argument("--output-dir", "-o", type=Path, help="Directory for output files")
    bench.add_argument("--json", action="store_true", help="Print JSON instead of a table")
    bench.set_defaults(func=cmd_bench)

    init = subparsers.add_parser(
        "init", parents=[common], help=f"Generate default {CONFIG_FILENAME}"
    )
    init.set_defaults(func=cmd_init)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for flowsink."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        return args.func(args)
    except FlowSinkError as e:
        print(f"Error: {e}")
        return 1
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
