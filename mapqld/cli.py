"""Command-line front end for the map-QLD client.

Usage::

    mapqld layers
    mapqld normalize "3RP67254" "L2 SP12345"
    mapqld search 3RP67254 --layer landtypes --layer veg --export --output-dir out/
    mapqld health

Connection settings come from the ``MAPQLD_*`` environment variables
(see ``mapqld.core.config``); ``--api-base`` overrides ``MAPQLD_API_BASE``.
Results are printed as JSON on stdout, logs go to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from mapqld import __version__
from mapqld.backend.http_backend import HttpParcelBackend
from mapqld.core.config import ClientConfig, ConfigValidationError, validate_config
from mapqld.core.exceptions import MapQLDError
from mapqld.models.session import PipelineStatus
from mapqld.orchestrators.pipeline import PipelineOrchestrator
from mapqld.utils.lotplan import normalize_lotplan, split_batch_input

if TYPE_CHECKING:
    from collections.abc import Sequence

    from mapqld.models.parcel import Parcel
    from mapqld.models.session import SessionState

logger = logging.getLogger("mapqld.cli")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="mapqld",
        description="Resolve Queensland lot/plan parcels, intersect them with dataset layers "
        "and export the result as KMZ.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--api-base",
        default=None,
        help="Backend origin. Overrides MAPQLD_API_BASE.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging.")

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("layers", help="List the backend's layer catalog.")

    normalize = commands.add_parser("normalize", help="Show the canonical keys for lot/plan input.")
    normalize.add_argument("text", nargs="+", help="Lot/plan text, e.g. '3RP67254' or 'L2 SP12345'.")

    search = commands.add_parser("search", help="Resolve a parcel and intersect it with layers.")
    search.add_argument("lotplan", help="Lot/plan text; separate several with ',' or ';'.")
    search.add_argument(
        "--layer",
        action="append",
        dest="layers",
        default=None,
        help="Layer id to intersect (repeatable). Defaults to the first two catalog layers.",
    )
    search.add_argument("--export", action="store_true", help="Export the result as KMZ.")
    search.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Directory for exported archives. Overrides MAPQLD_DOWNLOAD_DIR.",
    )

    commands.add_parser("health", help="Probe the backend health endpoint.")
    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def load_config(args: argparse.Namespace) -> ClientConfig:
    config = ClientConfig.from_env()
    if args.api_base:
        config = dataclasses.replace(config, api_base=args.api_base.rstrip("/"))
        validate_config(config)
    return config


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def run_normalize(texts: Sequence[str]) -> int:
    out = {text: normalize_lotplan(text) for text in texts}
    _emit(out)
    return EXIT_OK


async def run_layers(config: ClientConfig) -> int:
    backend = HttpParcelBackend.from_config(config)
    try:
        layers = await backend.list_layers()
    finally:
        await backend.aclose()
    _emit([{"id": layer.id, "label": layer.label, "description": layer.description} for layer in layers])
    return EXIT_OK


async def run_health(config: ClientConfig) -> int:
    backend = HttpParcelBackend.from_config(config)
    try:
        _emit(await backend.health())
    finally:
        await backend.aclose()
    return EXIT_OK


async def run_search(
    config: ClientConfig,
    lotplan: str,
    *,
    layer_ids: Sequence[str] | None,
    export: bool,
    output_dir: Path | None,
) -> int:
    backend = HttpParcelBackend.from_config(config)
    pipeline = PipelineOrchestrator(backend, config=config, auto_search=False)
    try:
        await pipeline.load_layers()
        if pipeline.state.error:
            logger.error("Layer catalog unavailable | error=%s", pipeline.state.error)
            return EXIT_FAILED
        if layer_ids is not None:
            pipeline.set_selected_layers(layer_ids)

        # Batch input: entries are searched in order until one resolves.
        # search() normalises each raw entry itself; duplicates are skipped.
        state = pipeline.state
        tried: set[tuple[str, ...]] = set()
        for entry in split_batch_input(lotplan):
            keys = tuple(normalize_lotplan(entry))
            if not keys or keys in tried:
                continue
            tried.add(keys)
            state = await pipeline.search(entry)
            if state.status is PipelineStatus.READY:
                break
        parcel = state.parcel
        if state.status is not PipelineStatus.READY or parcel is None:
            logger.error("Search failed | error=%s", state.error)
            _emit({"error": state.error})
            return EXIT_FAILED

        summary = _summarise(parcel, state)
        summary["bounds"] = pipeline.view_bounds()
        if export:
            result = await pipeline.export(output_dir)
            summary["export"] = {
                "path": str(result.path),
                "bytes": result.size_bytes,
                "placemarks": result.placemark_count,
                "layers": list(result.layer_ids),
            }
        _emit(summary)
        return EXIT_OK
    finally:
        await pipeline.aclose()
        await backend.aclose()


def _summarise(parcel: Parcel, state: SessionState) -> dict[str, Any]:
    return {
        "lotplan": parcel.lot_plan,
        "area_m2": round(parcel.area, 1),
        "area_ha": round(parcel.area_ha, 4),
        "centroid": list(parcel.centroid),
        "layers": {
            layer_id: [feature.display_name for feature in features]
            for layer_id, features in state.features_by_layer.items()
        },
    }


def _emit(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, indent=2, default=str) + "\n")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)

    if args.command == "normalize":
        return run_normalize(args.text)

    try:
        config = load_config(args)
    except ConfigValidationError as exc:
        logger.error("%s", exc)
        return EXIT_CONFIG

    try:
        if args.command == "layers":
            return asyncio.run(run_layers(config))
        if args.command == "health":
            return asyncio.run(run_health(config))
        return asyncio.run(
            run_search(
                config,
                args.lotplan,
                layer_ids=args.layers,
                export=args.export,
                output_dir=args.output_dir,
            )
        )
    except MapQLDError as exc:
        logger.error(
            "Command failed | command=%s | %s",
            args.command,
            " | ".join(f"{k}={v}" for k, v in exc.to_error_dict().items()),
        )
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
