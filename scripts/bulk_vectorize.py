#!/usr/bin/env python
"""Bulk-vectorize a project's stored hierarchy.

Usage:
    python -m scripts.bulk_vectorize --project-id alpha --embedding hash

Reads ``hta.json`` and ``learning_history.json`` from the project's sidecar
directory, writes vectors to the configured provider, and exits non-zero
when any stage failed.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from forest_vectors.config import ProviderName, Settings, get_settings
from forest_vectors.logging_config import get_logger, setup_logging
from forest_vectors.vectorization import BulkVectorizationResult, create_manager

logger = get_logger(__name__)


def build_settings(
    data_dir: Path | None,
    provider: str | None,
    embedding: str | None,
) -> Settings:
    """Apply command line overrides to the environment settings."""
    settings = get_settings()
    updates: dict[str, object] = {}
    if data_dir is not None:
        updates["data_dir"] = data_dir
    if provider is not None:
        updates["vector_store"] = settings.vector_store.model_copy(
            update={"provider": ProviderName(provider)}
        )
    if embedding is not None:
        updates["embedding"] = settings.embedding.model_copy(update={"provider": embedding})
    return settings.model_copy(update=updates)


async def run_bulk_vectorization(project_id: str, settings: Settings) -> BulkVectorizationResult:
    """Vectorize one project and print the summary.

    Args:
        project_id: Project to vectorize.
        settings: Effective settings.

    Returns:
        Bulk vectorization result.
    """
    setup_logging(level=settings.log_level)

    manager = create_manager(settings)
    try:
        await manager.initialize()
        logger.info(
            f"Vectorizing project {project_id}",
            extra={
                "provider": manager.provider.name.value,
                "fallback_used": manager.orchestrator.fallback_used,
            },
        )
        result = await manager.bulk_vectorize_project(project_id)
    finally:
        await manager.close()

    print(json.dumps(result.model_dump(), indent=2))
    return result


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Vectorize a project's hierarchy and learning history",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--project-id",
        required=True,
        help="Project identifier",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Root data directory (overrides FOREST_DATA_DIR)",
    )
    parser.add_argument(
        "--provider",
        choices=[p.value for p in ProviderName],
        default=None,
        help="Primary vector provider (overrides FOREST_VECTOR_PROVIDER)",
    )
    parser.add_argument(
        "--embedding",
        choices=["http", "hash"],
        default=None,
        help="Embedding backend (overrides EMBEDDING_PROVIDER)",
    )

    args = parser.parse_args()
    settings = build_settings(args.data_dir, args.provider, args.embedding)

    result = asyncio.run(run_bulk_vectorization(args.project_id, settings))

    sys.exit(0 if result.errors == 0 else 1)


if __name__ == "__main__":
    main()
