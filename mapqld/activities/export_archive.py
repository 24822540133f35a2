"""KMZ export activity.

Builds the ``/export/kml`` request body from the session's parcel and the
features of the currently selected layers, checks the archive the backend
returns, and writes it to the download directory.

The archive check opens the KMZ (a zip) and parses its KML document with
lxml, so a truncated or non-KML payload fails as a
``MalformedResponseError`` instead of leaving a corrupt file behind.
"""

from __future__ import annotations

import io
import logging
import re
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from mapqld.core.constants import DEFAULT_EXPORT_FILENAME
from mapqld.core.exceptions import MalformedResponseError

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from mapqld.models.feature import Feature
    from mapqld.models.layer import LayerConfig
    from mapqld.models.parcel import Parcel
    from mapqld.models.payloads import ExportLayerPayload, ExportRequest

logger = logging.getLogger("mapqld.activities.export_archive")

KMZ_ROOT_DOCUMENT = "doc.kml"
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True, slots=True)
class ExportResult:
    """Outcome of a successful export.

    Attributes:
        path: Where the KMZ was written.
        lot_plan: Lot/plan of the exported parcel.
        size_bytes: Archive size in bytes.
        placemark_count: Number of KML Placemarks in the archive.
        layer_ids: Layers included in the export request.
    """

    path: Path
    lot_plan: str
    size_bytes: int
    placemark_count: int
    layer_ids: tuple[str, ...] = ()


def build_export_request(
    parcel: Parcel,
    features_by_layer: Mapping[str, Sequence[Feature]],
    selected_layer_ids: Sequence[str],
    layer_lookup: Callable[[str], LayerConfig | None],
) -> ExportRequest:
    """Package the parcel with the features of the selected layers.

    Layers selected after the search (and therefore never fetched) are
    skipped; layers fetched but since deselected are left out.
    """
    layers: list[ExportLayerPayload] = []
    for layer_id in selected_layer_ids:
        features = features_by_layer.get(layer_id)
        if features is None:
            continue
        layer = layer_lookup(layer_id)
        layers.append(
            {
                "id": layer_id,
                "label": layer.label if layer is not None else layer_id,
                "features": [f.to_export_dict() for f in features],  # type: ignore[misc]
                "style": layer.to_export_style() if layer is not None else {},
            }
        )
    return {"parcel": parcel.geometry, "layers": layers}


def count_placemarks(content: bytes) -> int:
    """Open a KMZ archive and count the Placemarks in its KML document.

    Raises:
        MalformedResponseError: If *content* is not a zip holding a
            well-formed KML document.
    """
    from lxml import etree  # type: ignore[attr-defined]

    try:
        with zipfile.ZipFile(io.BytesIO(content)) as archive:
            names = [n for n in archive.namelist() if n.lower().endswith(".kml")]
            if not names:
                msg = "export: archive contains no KML document"
                raise MalformedResponseError(msg, stage="export", code="INVALID_KMZ")
            name = KMZ_ROOT_DOCUMENT if KMZ_ROOT_DOCUMENT in names else names[0]
            document = archive.read(name)
    except zipfile.BadZipFile as exc:
        msg = "export: response is not a KMZ (zip) archive"
        raise MalformedResponseError(msg, stage="export", code="INVALID_KMZ") from exc

    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    try:
        root = etree.fromstring(document, parser=parser)
    except etree.XMLSyntaxError as exc:
        msg = f"export: {name} is not well-formed XML: {exc}"
        raise MalformedResponseError(msg, stage="export", code="INVALID_KMZ") from exc

    return sum(1 for _ in root.iter("{*}Placemark"))


def archive_filename(lot_plan: str) -> str:
    """File name for an exported parcel, e.g. ``3_RP67254.kmz``."""
    stem = _UNSAFE_FILENAME_CHARS.sub("_", lot_plan).strip("_")
    return f"{stem}.kmz" if stem else DEFAULT_EXPORT_FILENAME


def save_archive(content: bytes, directory: Path, filename: str) -> Path:
    """Write *content* to ``directory/filename``, replacing any previous file."""
    directory.mkdir(parents=True, exist_ok=True)
    target = directory / filename
    partial = target.with_name(f"{target.name}.part")
    try:
        partial.write_bytes(content)
        partial.replace(target)
    except OSError:
        partial.unlink(missing_ok=True)
        raise
    return target


def store_export(
    content: bytes,
    *,
    parcel: Parcel,
    layer_ids: Sequence[str],
    directory: Path,
    filename: str | None = None,
) -> ExportResult:
    """Check and save an exported archive, returning its ``ExportResult``."""
    placemarks = count_placemarks(content)
    path = save_archive(content, directory, filename or archive_filename(parcel.lot_plan))
    logger.info(
        "Export saved | lotplan=%s | path=%s | bytes=%d | placemarks=%d",
        parcel.lot_plan,
        path,
        len(content),
        placemarks,
    )
    return ExportResult(
        path=path,
        lot_plan=parcel.lot_plan,
        size_bytes=len(content),
        placemark_count=placemarks,
        layer_ids=tuple(layer_ids),
    )
