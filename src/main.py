# src/main.py — v2
"""CLI entry point — run, scan, test, providers commands.

Usage:
    audiobatch run <folder.json> [options]
    audiobatch scan <folder.json>
    audiobatch test <folder.json>
    audiobatch providers

A folder file is the JSON form of an external folder config:
    {"name": ..., "storage_config": {"type": ..., "config": {...}},
     "monitor_config": {...}, "processing_config": {...}}
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from audiobatch.version import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    _setup_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="audiobatch",
        description=f"audiobatch v{__version__} — External folder batch ingestion",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- run ---
    p_run = subparsers.add_parser(
        "run", help="Register a folder and process it to completion",
    )
    p_run.add_argument("folder", type=Path, help="Folder config JSON file")
    p_run.add_argument(
        "-w", "--workers", type=int, default=None,
        help="Max concurrent files (default: BATCH_MAX_CONCURRENT_FILES)",
    )
    p_run.add_argument(
        "--max-retries", type=int, default=None,
        help="Retry budget per file (default: BATCH_MAX_RETRIES)",
    )
    p_run.add_argument(
        "--name", default=None,
        help="Batch job name",
    )
    p_run.set_defaults(func=_cmd_run)

    # --- scan ---
    p_scan = subparsers.add_parser(
        "scan", help="Scan a folder and show which files would be admitted",
    )
    p_scan.add_argument("folder", type=Path, help="Folder config JSON file")
    p_scan.set_defaults(func=_cmd_scan)

    # --- test ---
    p_test = subparsers.add_parser(
        "test", help="Test storage and monitor providers of a folder",
    )
    p_test.add_argument("folder", type=Path, help="Folder config JSON file")
    p_test.set_defaults(func=_cmd_test)

    # --- providers ---
    p_providers = subparsers.add_parser(
        "providers", help="List registered provider types",
    )
    p_providers.set_defaults(func=_cmd_providers)

    return parser


async def _cmd_run(args: argparse.Namespace) -> int:
    """Create the folder config, run one batch job and print its counts."""
    from audiobatch.batch.analysis import create_analyzer
    from audiobatch.batch.config_service import ConfigService
    from audiobatch.batch.orchestrator import BatchOrchestrator
    from audiobatch.config.settings import load_settings
    from audiobatch.core.models import BatchJobOptions
    from audiobatch.logging.logger import setup_logging_from_settings
    from audiobatch.providers.registry import ProviderFactory
    from audiobatch.store.store_factory import create_store

    data = _load_folder_file(args.folder)
    if data is None:
        return 1

    settings = load_settings()
    setup_logging_from_settings(settings, level="DEBUG" if args.verbose else None)
    store = create_store(settings)
    factory = ProviderFactory()
    orchestrator = BatchOrchestrator(store, factory, create_analyzer(settings), settings)
    service = ConfigService(store, factory, orchestrator)

    await orchestrator.initialize()
    try:
        folder = await service.create_folder(data)
        result = await orchestrator.start_batch_processing(
            folder.id,
            BatchJobOptions(
                name=args.name,
                max_concurrent_files=args.workers,
                max_retries=args.max_retries,
            ),
        )
        job = await orchestrator.wait_for_job(result.job_id)
    finally:
        await orchestrator.shutdown()

    print(f"\nBatch job {job.name}: {job.status.value}")
    print(f"  Discovered:   {job.discovered_files}")
    print(f"  Admitted:     {job.total_files}")
    print(f"  Processed:    {job.processed_files}")
    print(f"  Failed:       {job.failed_files}")
    print(f"  Skipped:      {job.skipped_files}")
    if job.error_summary:
        for code, count in job.error_summary.get("by_error_code", {}).items():
            print(f"    {code}: {count}")
    return 0 if job.status.value == "completed" else 1


async def _cmd_scan(args: argparse.Namespace) -> int:
    """Manual scan without creating a job."""
    from audiobatch.batch.config_service import ConfigService
    from audiobatch.providers.registry import ProviderFactory
    from audiobatch.store.memory_store import MemoryStore

    data = _load_folder_file(args.folder)
    if data is None:
        return 1

    service = ConfigService(MemoryStore(), ProviderFactory())
    admission = await service.scan_folder(data)

    print(f"\nDiscovered {admission.discovered} files:")
    for f in admission.admitted:
        print(f"  + {f.path} ({f.size} bytes)")
    for rejection in admission.rejected:
        print(f"  - {rejection.file.path} [{rejection.error_code.value}] {rejection.message}")
    return 0


async def _cmd_test(args: argparse.Namespace) -> int:
    """Non-throwing provider tests."""
    from audiobatch.batch.config_service import ConfigService
    from audiobatch.providers.registry import ProviderFactory
    from audiobatch.store.memory_store import MemoryStore

    data = _load_folder_file(args.folder)
    if data is None:
        return 1

    service = ConfigService(MemoryStore(), ProviderFactory())
    report = await service.test_folder(data)

    for label, result in (("Storage", report.storage), ("Monitor", report.monitor)):
        state = "OK" if result.success else "FAILED"
        print(f"  {label}: {state} {result.message or result.error or ''}".rstrip())
    return 0 if report.success else 1


async def _cmd_providers(args: argparse.Namespace) -> int:
    """List registered provider types per category."""
    from audiobatch.providers.registry import ProviderFactory

    for category, types in ProviderFactory().get_available_providers().items():
        print(f"{category}: {', '.join(types)}")
    return 0


def _load_folder_file(path: Path) -> dict[str, Any] | None:
    if not path.is_file():
        logger.error("Folder config not found: %s", path)
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        logger.error("Invalid JSON in %s: %s", path, exc)
        return None
    if not isinstance(data, dict):
        logger.error("Folder config must be a JSON object: %s", path)
        return None
    return data


def _setup_logging(verbose: bool) -> None:
    """Configure logging for CLI usage."""
    from audiobatch.logging.logger import setup_logging

    setup_logging(level="DEBUG" if verbose else "INFO", log_format="text")
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


if __name__ == "__main__":
    sys.exit(main())
