"""Session orchestrator for the resolve → intersect → export pipeline.

Owns the ``SessionState`` container and is its only writer. The
presentation layer reads snapshots (``state`` or ``subscribe``) and issues
intents: ``update_query``, ``search``, ``toggle_layer``, ``export``.

States::

    IDLE ──search──▶ SEARCHING ──▶ READY ──export──▶ EXPORTING ──▶ READY
                         │           ▲                   │
                         ▼           │                   ▼
                       FAILED ──search                 FAILED

Supersession:
    Each search starts a new generation and replaces the orchestrator's
    ``CancellationToken``, cancelling the previous search's in-flight
    resolve/intersect. Every commit after an ``await`` checks that its
    generation is still current, so a response from generation *g-1* is
    never applied once generation *g* has started.

Failure semantics:
    Cancellation is swallowed. Any other failure sets ``error`` and moves
    to ``FAILED``; a resolve failure leaves the previously committed
    parcels and features in place.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from mapqld.activities.export_archive import build_export_request, store_export
from mapqld.core.config import ClientConfig
from mapqld.core.constants import DEFAULT_SELECTED_LAYER_COUNT
from mapqld.core.exceptions import (
    MapQLDError,
    ParcelNotFoundError,
    RequestCancelledError,
    ValidationError,
)
from mapqld.core.request import CancellationToken
from mapqld.models.session import PipelineStatus, SessionState
from mapqld.render.coordinates import (
    CoordinateCache,
    compute_view_bounds,
    feature_cache_key,
)
from mapqld.utils.lotplan import normalize_lotplan

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator

    from mapqld.activities.export_archive import ExportResult
    from mapqld.backend.base import ParcelBackend
    from mapqld.models.feature import Feature
    from mapqld.models.layer import LayerConfig
    from mapqld.models.parcel import Parcel
    from mapqld.render.coordinates import Bounds

logger = logging.getLogger("mapqld.orchestrators.pipeline")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class UnknownLayerError(ValidationError):
    """Raised when selecting a layer id the loaded catalog does not contain."""

    default_stage = "toggle_layer"
    default_code = "UNKNOWN_LAYER"


class NothingToExportError(ValidationError):
    """Raised when ``export`` is called before any parcel was resolved."""

    default_stage = "export"
    default_code = "NOTHING_TO_EXPORT"


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class PipelineOrchestrator:
    """Single-writer controller of the client session.

    Example usage::

        backend = HttpParcelBackend.from_config(config)
        pipeline = PipelineOrchestrator(backend, config=config)
        await pipeline.load_layers()
        state = await pipeline.search("3RP67254")
        if state.status is PipelineStatus.READY:
            result = await pipeline.export()

    Args:
        backend: Backend adapter used for every remote call.
        config: Client configuration (debounce window, download dir, CRS).
        cache: Coordinate cache; one is created from ``config`` if omitted.
        auto_search: Whether a debounced query triggers a search.
    """

    def __init__(
        self,
        backend: ParcelBackend,
        *,
        config: ClientConfig | None = None,
        cache: CoordinateCache | None = None,
        auto_search: bool = True,
    ) -> None:
        self._backend = backend
        self._config = config or ClientConfig()
        self._cache = cache or CoordinateCache(self._config.source_crs)
        self._auto_search = auto_search
        self._state = SessionState()
        self._listeners: list[Callable[[SessionState], None]] = []
        self._generation = 0
        self._token: CancellationToken | None = None
        self._in_flight = 0
        self._exports = 0
        self._debounce_task: asyncio.Task[None] | None = None
        self._waiting_debounce: asyncio.Task[None] | None = None
        self._search_task: asyncio.Future[SessionState] | None = None

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        """Current session snapshot."""
        return self._state

    @property
    def cache(self) -> CoordinateCache:
        return self._cache

    @property
    def generation(self) -> int:
        return self._generation

    def subscribe(self, listener: Callable[[SessionState], None]) -> Callable[[], None]:
        """Call *listener* with every new snapshot; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe

    def view_bounds(self) -> Bounds | None:
        """Fit-to-content ``((south, west), (north, east))`` of the current result."""
        return compute_view_bounds(
            self._cache, self._state.parcels, self._state.features_by_layer
        )

    # ------------------------------------------------------------------
    # Layer catalog and selection
    # ------------------------------------------------------------------

    async def load_layers(self, *, reload: bool = False) -> tuple[LayerConfig, ...]:
        """Fetch the layer catalog once (or again with ``reload=True``).

        The first load selects the first two catalog layers. A reload keeps
        the current selection, minus ids the new catalog no longer offers.
        Failures set ``error`` and return the catalog already held.
        """
        if self._state.layers and not reload:
            return self._state.layers

        with self._outstanding():
            try:
                layers = await self._backend.list_layers()
            except MapQLDError as exc:
                logger.warning("Layer catalog failed | error=%s", exc)
                self._commit(error=_error_message(exc))
                return self._state.layers

        if not self._state.layers and not self._state.selected_layer_ids:
            selected = frozenset(layer.id for layer in layers[:DEFAULT_SELECTED_LAYER_COUNT])
        else:
            selected = self._state.selected_layer_ids & {layer.id for layer in layers}

        self._commit(layers=tuple(layers), selected_layer_ids=selected, error=None)
        return self._state.layers

    def toggle_layer(self, layer_id: str) -> SessionState:
        """Flip *layer_id* in the selection. Never triggers a backend call.

        Raises:
            UnknownLayerError: If the catalog is loaded and lacks *layer_id*.
        """
        self._check_known(layer_id)
        selected = set(self._state.selected_layer_ids)
        if layer_id in selected:
            selected.remove(layer_id)
        else:
            selected.add(layer_id)
        return self._commit(selected_layer_ids=frozenset(selected))

    def set_selected_layers(self, layer_ids: Iterable[str]) -> SessionState:
        """Replace the selection with *layer_ids*."""
        ids = list(layer_ids)
        for layer_id in ids:
            self._check_known(layer_id)
        return self._commit(selected_layer_ids=frozenset(ids))

    # ------------------------------------------------------------------
    # Query input
    # ------------------------------------------------------------------

    def update_query(self, text: str) -> asyncio.Task[None]:
        """Record a keystroke and restart the debounce window.

        Once the window elapses without another keystroke the text becomes
        ``debounced_query`` and, with ``auto_search``, is searched.
        Must be called from within a running event loop.
        """
        self._commit(query=text)
        self._cancel_pending_debounce()
        task = asyncio.get_running_loop().create_task(self._debounce(text))
        self._debounce_task = task
        self._waiting_debounce = task
        return task

    async def _debounce(self, text: str) -> None:
        await asyncio.sleep(self._config.debounce_s)
        if self._waiting_debounce is asyncio.current_task():
            self._waiting_debounce = None

        self._commit(debounced_query=text)
        if self._auto_search and text.strip():
            self._search_task = asyncio.ensure_future(self.search(text))
            # A later keystroke cancels this task, not the search itself.
            await asyncio.shield(self._search_task)

    def _cancel_pending_debounce(self) -> None:
        """Cancel the debounce task still inside its quiet window, if any."""
        if self._waiting_debounce is not None:
            self._waiting_debounce.cancel()
            self._waiting_debounce = None

    # ------------------------------------------------------------------
    # search
    # ------------------------------------------------------------------

    async def search(self, raw_input: str) -> SessionState:
        """Resolve *raw_input* and intersect it with the selected layers.

        Blank input is a no-op. Otherwise any previous in-flight search is
        cancelled and only this search's results may be committed.

        Returns:
            The session snapshot after this search settled (or was superseded).
        """
        if not raw_input or not raw_input.strip():
            logger.debug("Blank search ignored")
            return self._state

        self._cancel_pending_debounce()
        keys = normalize_lotplan(raw_input)
        generation, token = self._begin_generation()
        selection = self._state.ordered_selection()

        self._commit(status=PipelineStatus.SEARCHING, error=None, generation=generation)
        logger.info(
            "Search started | generation=%d | input=%r | keys=%s | layers=%s",
            generation,
            raw_input,
            keys,
            selection,
        )

        with self._outstanding():
            try:
                await self._run_search(generation, token, keys, selection)
            except RequestCancelledError:
                logger.info("Search superseded | generation=%d", generation)
            except Exception as exc:  # noqa: BLE001
                if self._is_current(generation):
                    self._fail(exc, generation)
                else:
                    logger.info(
                        "Discarding failure of superseded search | generation=%d | error=%s",
                        generation,
                        exc,
                    )
        return self._state

    async def _run_search(
        self,
        generation: int,
        token: CancellationToken,
        keys: list[str],
        selection: list[str],
    ) -> None:
        parcel = await self._resolve_first(keys, token)
        if not self._is_current(generation):
            return

        # Results are replaced wholesale: the new parcel starts with no features.
        self._commit(parcels=(parcel,), features_by_layer={})

        features: dict[str, tuple[Feature, ...]] = {}
        if selection:
            intersected = await self._backend.intersect(parcel, selection, token=token)
            if not self._is_current(generation):
                return
            features = self._accept_features(intersected, selection)
        else:
            logger.info("No layers selected, showing parcel only | generation=%d", generation)

        self._commit(features_by_layer=features, status=PipelineStatus.READY, error=None)
        self._prune_cache()
        logger.info(
            "Search complete | generation=%d | lotplan=%s | layers=%d | features=%d",
            generation,
            parcel.lot_plan,
            len(features),
            self._state.feature_count,
        )

    async def _resolve_first(self, keys: list[str], token: CancellationToken) -> Parcel:
        """Resolve keys in order; the first parcel found must carry geometry."""
        for key in keys:
            parcel = await self._backend.resolve_parcel(key, token=token)
            if parcel is None:
                continue
            if not parcel.has_geometry:
                logger.warning("Resolved parcel has no geometry | lotplan=%s", key)
                break
            return parcel
        raise ParcelNotFoundError(keys)

    def _accept_features(
        self,
        intersected: dict[str, list[Feature]],
        selection: list[str],
    ) -> dict[str, tuple[Feature, ...]]:
        """Keep layers that were requested and that the catalog knows."""
        requested = set(selection)
        known = {layer.id for layer in self._state.layers}
        accepted: dict[str, tuple[Feature, ...]] = {}
        for layer_id, features in intersected.items():
            if layer_id not in requested or (known and layer_id not in known):
                logger.warning("Dropping unrequested layer from intersect | layer=%s", layer_id)
                continue
            accepted[layer_id] = tuple(features)
        return accepted

    # ------------------------------------------------------------------
    # export
    # ------------------------------------------------------------------

    async def export(
        self,
        download_dir: str | Path | None = None,
        *,
        filename: str | None = None,
    ) -> ExportResult:
        """Export the parcel and the selected layers' features as a KMZ.

        Does not change ``parcels`` or ``features_by_layer``.

        Raises:
            NothingToExportError: If no parcel has been resolved.
            MapQLDError: If the backend call or archive check fails
                (``error`` is set as well).
        """
        state = self._state
        parcel = state.parcel
        if parcel is None:
            msg = "Nothing to export: resolve a parcel first."
            raise NothingToExportError(msg)

        generation = self._generation
        owns_status = state.status is not PipelineStatus.SEARCHING
        request = build_export_request(
            parcel, state.features_by_layer, state.ordered_selection(), state.layer
        )
        layer_ids = [layer["id"] for layer in request["layers"]]
        directory = Path(download_dir if download_dir is not None else self._config.download_dir)

        if owns_status:
            self._commit(status=PipelineStatus.EXPORTING, error=None)
        logger.info("Export started | lotplan=%s | layers=%s", parcel.lot_plan, layer_ids)

        self._exports += 1
        try:
            with self._outstanding():
                content = await self._backend.export_kmz(request)
                result = store_export(
                    content,
                    parcel=parcel,
                    layer_ids=layer_ids,
                    directory=directory,
                    filename=filename,
                )
        except Exception as exc:
            if owns_status and self._is_current(generation):
                if self._exports > 1:
                    self._commit(error=_error_message(exc))
                else:
                    self._commit(status=PipelineStatus.FAILED, error=_error_message(exc))
            logger.warning("Export failed | lotplan=%s | error=%s", parcel.lot_plan, exc)
            raise
        finally:
            self._exports -= 1

        # Overlapping exports leave the status at EXPORTING until the last one settles.
        if owns_status and not self._exports and self._is_current(generation):
            self._commit(status=PipelineStatus.READY)
        return result

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        """Cancel pending debounce and in-flight search work."""
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._debounce_task
        if self._token is not None:
            self._token.cancel("orchestrator closed")
        if self._search_task is not None and not self._search_task.done():
            await asyncio.wait({self._search_task})

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _commit(self, **changes: object) -> SessionState:
        """Single update entry point: replace the snapshot and notify listeners."""
        self._state = dataclasses.replace(self._state, **changes)  # type: ignore[arg-type]
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("State listener failed | listener=%r", listener)
        return self._state

    def _begin_generation(self) -> tuple[int, CancellationToken]:
        """Start a new search generation, cancelling the previous one."""
        if self._token is not None:
            self._token.cancel(f"superseded by search {self._generation + 1}")
        self._generation += 1
        self._token = CancellationToken()
        return self._generation, self._token

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    @contextlib.contextmanager
    def _outstanding(self) -> Iterator[None]:
        """Hold ``loading`` true while at least one backend call is outstanding."""
        self._in_flight += 1
        if self._in_flight == 1:
            self._commit(loading=True)
        try:
            yield
        finally:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._commit(loading=False)

    def _fail(self, exc: Exception, generation: int) -> None:
        if isinstance(exc, MapQLDError):
            logger.warning(
                "Search failed | generation=%d | %s",
                generation,
                " | ".join(f"{k}={v}" for k, v in exc.to_error_dict().items()),
            )
        else:
            logger.exception("Search failed unexpectedly | generation=%d", generation)
        self._commit(status=PipelineStatus.FAILED, error=_error_message(exc))

    def _check_known(self, layer_id: str) -> None:
        if self._state.layers and self._state.layer(layer_id) is None:
            msg = f"Unknown layer: {layer_id!r}"
            raise UnknownLayerError(msg)

    def _prune_cache(self) -> None:
        ids = [parcel.id for parcel in self._state.parcels]
        ids.extend(
            feature_cache_key(feature)
            for features in self._state.features_by_layer.values()
            for feature in features
        )
        dropped = self._cache.retain(ids)
        if dropped:
            logger.debug("Coordinate cache pruned | dropped=%d | size=%d", dropped, len(self._cache))


def _error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__
