"""
Photo Embedding Maintenance Tool

Command-line access to the embedding engine for a folder of photos.

Usage:
    python embedding_tool.py --photos ~/Pictures sweep
    python embedding_tool.py --photos ~/Pictures stats
    python embedding_tool.py --photos ~/Pictures similar 2024/IMG_0001.jpg --threshold 0.8
    python embedding_tool.py --photos ~/Pictures duplicates
    python embedding_tool.py --photos ~/Pictures cleanup
    python embedding_tool.py --photos ~/Pictures stacks

Embeddings are stored in the SQLite database given by --db (default from
the embedding config). Ctrl+C during a sweep stops after the current photo;
everything stored so far is kept.
"""

import argparse
import sys

from config.embedding_config import EmbeddingConfig
from logging_config import setup_logging, disable_external_logging, get_logger
from repository.embedding_repository import SQLiteEmbeddingRepository, StorageError
from services.embedding_computer import ClipEmbeddingComputer, ColorLayoutEmbeddingComputer
from services.photo_embedding_service import MaintenanceBusyError, PhotoEmbeddingService
from services.photo_source import FolderPhotoSource

logger = get_logger(__name__)


def build_service(args) -> PhotoEmbeddingService:
    config = EmbeddingConfig(args.config) if args.config else EmbeddingConfig()
    db_path = args.db or config.storage.db_path

    store = SQLiteEmbeddingRepository(
        db_path,
        use_half_precision=config.extraction.use_half_precision,
        page_size=config.storage.page_size,
    )
    if args.computer == "clip":
        computer = ClipEmbeddingComputer(args.clip_model)
    else:
        computer = ColorLayoutEmbeddingComputer()

    return PhotoEmbeddingService(
        store=store,
        photo_source=FolderPhotoSource(args.photos),
        computer=computer,
        config=config,
    )


def cmd_sweep(service: PhotoEmbeddingService, args) -> int:
    def on_progress(processed, total):
        print(f"\r  {processed}/{total}", end="", flush=True)

    # The sweep runs on the job thread so Ctrl+C only lands here, never mid-photo
    job = service.start_embedding_job(progress_callback=on_progress)
    interrupted = False
    try:
        result = job.result()
    except KeyboardInterrupt:
        interrupted = True
        job.cancel()
        print("\nInterrupted, finishing current photo...")
        result = job.result()
    print()

    print(f"{'=' * 60}")
    print("Sweep Summary:")
    print(f"  Processed:          {result.processed}/{result.total}")
    print(f"  Computed:           {result.computed}")
    print(f"  Already up to date: {result.up_to_date}")
    print(f"  Failed:             {result.failed}")
    print(f"  Permanently failed: {result.skipped_failed}")
    print(f"  Duration:           {result.duration_seconds:.1f}s")
    print(f"{'=' * 60}")
    if interrupted:
        return 130
    return 0 if not result.cancelled else 1


def cmd_stats(service: PhotoEmbeddingService, args) -> int:
    stats = service.get_stats()
    print(f"Total photos:          {stats.total_photos}")
    print(f"With embeddings:       {stats.photos_with_embeddings}")
    print(f"Coverage:              {stats.coverage_percentage}%")
    print(f"Stale embeddings:      {stats.stale_embeddings}")
    print(f"Orphaned embeddings:   {stats.orphaned_embeddings}")
    return 0


def cmd_similar(service: PhotoEmbeddingService, args) -> int:
    results = service.find_similar_photos(args.photo_id, threshold=args.threshold, limit=args.limit)
    if not results:
        print("No similar photos found")
        return 0
    for match in results:
        print(f"  {match.percentage:3d}%  {match.photo_id}")
    return 0


def cmd_duplicates(service: PhotoEmbeddingService, args) -> int:
    groups = [g for g in service.find_duplicates(threshold=args.threshold) if not g.is_singleton]
    if not groups:
        print("No duplicates found")
        return 0
    for i, group in enumerate(groups, 1):
        print(f"Group {i} ({group.count} photos):")
        print(f"  * {group.representative_id}")
        for dup in group.duplicates:
            print(f"    {dup.photo_id} ({dup.percentage}%)")
    return 0


def cmd_cleanup(service: PhotoEmbeddingService, args) -> int:
    removed = service.cleanup_orphaned()
    print(f"Removed {removed} orphaned embeddings")
    return 0


def cmd_stacks(service: PhotoEmbeddingService, args) -> int:
    stacks = [s for s in service.build_photo_stacks() if s.is_stack]
    if not stacks:
        print("No photo stacks found")
        return 0
    for stack in stacks:
        print(f"Stack ({stack.count} photos): {', '.join(stack.photo_ids)}")
    return 0


COMMANDS = {
    "sweep": cmd_sweep,
    "stats": cmd_stats,
    "similar": cmd_similar,
    "duplicates": cmd_duplicates,
    "cleanup": cmd_cleanup,
    "stacks": cmd_stacks,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Compute and query photo embeddings for a folder of photos"
    )
    parser.add_argument("--photos", required=True, help="Photo folder")
    parser.add_argument("--db", default=None, help="Embedding database (default: from config)")
    parser.add_argument("--config", default=None, help="Configuration JSON file")
    parser.add_argument(
        "--computer",
        choices=["color", "clip"],
        default="color",
        help="Embedding computer (default: color)"
    )
    parser.add_argument("--clip-model", default="openai/clip-vit-base-patch32")
    parser.add_argument("--log-level", default="INFO")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("sweep", help="Compute missing and stale embeddings")
    sub.add_parser("stats", help="Show embedding coverage")

    similar = sub.add_parser("similar", help="Find photos similar to one photo")
    similar.add_argument("photo_id")
    similar.add_argument("--threshold", type=float, default=None)
    similar.add_argument("--limit", type=int, default=None)

    duplicates = sub.add_parser("duplicates", help="Find near-duplicate groups")
    duplicates.add_argument("--threshold", type=float, default=None)

    sub.add_parser("cleanup", help="Remove embeddings of deleted photos")
    sub.add_parser("stacks", help="Group consecutive look-alike photos")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    setup_logging(
        log_level=args.log_level.upper(),
        log_file=None,
        context={"Photo folder": args.photos, "Database": args.db or "(from config)", "Computer": args.computer},
    )
    disable_external_logging()

    service = None
    try:
        service = build_service(args)
        return COMMANDS[args.command](service, args)
    except MaintenanceBusyError as e:
        print(f"\n❌ BUSY: {e}")
        return 2
    except (StorageError, FileNotFoundError) as e:
        print(f"\n❌ ERROR: {e}")
        return 1
    finally:
        if service is not None:
            service.shutdown()


if __name__ == "__main__":
    sys.exit(main())
