"""
Command-line entry point for causemap.

    python -m causemap.main embed [--force]
    python -m causemap.main discover [--max-causes N] [--max-sub-causes N] [--min-projects N]
    python -m causemap.main project [--layout SCOPE]
    python -m causemap.main all

Add --mock to run without external services (hash embeddings, canned
labels) and --debug-log PATH for a full DEBUG trace.
"""

import asyncio
import logging
import sys
from typing import Optional

from .config import get_settings
from .errors import CausemapError, ConfigurationError
from .pipeline import CausePipeline

logger = logging.getLogger(__name__)


class _FlushingFileHandler(logging.FileHandler):
    """File handler that flushes every record, so a crashed run keeps its trace."""

    def emit(self, record):
        super().emit(record)
        self.flush()


def configure_logging(debug_log: Optional[str] = None) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # Suppress noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    if debug_log:
        handler = _FlushingFileHandler(debug_log, mode="w", encoding="utf-8")
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s.%(msecs)03d | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%H:%M:%S",
        ))
        pkg_logger = logging.getLogger("causemap")
        pkg_logger.setLevel(logging.DEBUG)
        pkg_logger.addHandler(handler)
        logger.info(f"Debug log → {debug_log}")


def _print_discovery(result) -> None:
    print("\n" + "=" * 60)
    print("DISCOVERED CAUSES")
    print("=" * 60)
    for cause in result.top_level:
        print(f"[{cause.id}] {cause.name}  ({cause.metadata.project_count} projects, "
              f"{cause.label_source.value}, confidence {cause.confidence:.2f})")
        for sub in (c for c in result.sub_causes if c.parent_id == cause.id):
            print(f"    [{sub.id}] {sub.name}  ({sub.size} projects, {sub.label_source.value})")
    print(f"\nUnclustered: {len(result.unclustered_ids)}")
    top = result.silhouette.get("top")
    print(f"Silhouette (top level): {top:.3f}" if top is not None else "Silhouette (top level): n/a")
    if result.used_metadata_fallback:
        print("No embeddings were available: clustered on metadata features")
    print("=" * 60 + "\n")


async def cli_main(argv=None):
    """Command-line interface for running the pipeline."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Discover social-impact causes in open-source projects"
    )
    parser.add_argument("--mock", action="store_true", help="Run in mock mode (no real API calls)")
    parser.add_argument("--debug-log", metavar="PATH", help="Write a DEBUG-level log to PATH")
    sub = parser.add_subparsers(dest="command", required=True)

    embed = sub.add_parser("embed", help="Embed new or changed projects")
    embed.add_argument("--force", action="store_true", help="Re-embed every project")

    discover = sub.add_parser("discover", help="Cluster and label causes")
    discover.add_argument("--max-causes", type=int, default=None, help="Max top-level causes")
    discover.add_argument("--max-sub-causes", type=int, default=None, help="Max subcauses per cause")
    discover.add_argument("--min-projects", type=int, default=None, help="Min projects per cause")
    discover.add_argument("--dry-run", action="store_true", help="Do not save the causes")

    project = sub.add_parser("project", help="Compute and cache PCA projections")
    project.add_argument("--layout", metavar="SCOPE", nargs="?", const="global",
                         help="Also print a layout summary for SCOPE (default: global)")

    sub.add_parser("all", help="embed → discover → project")

    args = parser.parse_args(argv)
    configure_logging(args.debug_log)

    settings = get_settings()
    if args.mock:
        settings = settings.model_copy(update={"mock_mode": True})
        print("Running in MOCK MODE (no real API calls)\n")

    try:
        pipeline = CausePipeline(settings=settings)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2

    async with pipeline:
        try:
            if args.command in ("embed", "all"):
                stats = await pipeline.embed_projects(force=getattr(args, "force", False))
                print(f"Embeddings: {stats}")

            if args.command in ("discover", "all"):
                result = await pipeline.discover(
                    persist=not getattr(args, "dry_run", False),
                    max_top_level_causes=getattr(args, "max_causes", None),
                    max_sub_causes=getattr(args, "max_sub_causes", None),
                    min_projects_per_cause=getattr(args, "min_projects", None),
                )
                _print_discovery(result)

            if args.command in ("project", "all"):
                projections = await pipeline.compute_projections()
                for p in projections:
                    status = f"skipped ({p.skipped_reason})" if p.skipped else (
                        f"{len(p.coordinates)} projects, {p.components} components, "
                        f"variance {sum(p.explained_variance):.3f}"
                    )
                    print(f"Projection {p.scope_id or 'global'}: {status}")

                if getattr(args, "layout", None):
                    scope = None if args.layout == "global" else args.layout
                    layout = await pipeline.build_layout(scope)
                    print(
                        f"Layout {args.layout}: {len(layout.nodes)} nodes, "
                        f"{len(layout.causes)} causes, {layout.outlier_count} outliers, "
                        f"spread {layout.spread_factor:.2f}"
                    )
        except CausemapError as e:
            logger.error(f"{args.command} failed: {type(e).__name__}: {e}")
            return 1
    return 0


def main():
    """Entry point for CLI."""
    sys.exit(asyncio.run(cli_main()))


if __name__ == "__main__":
    main()
