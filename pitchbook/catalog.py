"""
Pitch catalog loader.

The venue's pitches live in a YAML file (``PITCHES_FILE``) and are
upserted into the store on startup::

    pitches:
      - id: colombo-5s-a
        name: Colombo Five-a-side A
        hourly_rate: 3500
        opens_at: "06:00"
        closes_at: "22:00"
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from pitchbook.models import Resource

logger = logging.getLogger(__name__)


class CatalogError(Exception):
    """The catalog file is missing or malformed."""


def parse_catalog(data: object) -> list[Resource]:
    if data is None:
        return []
    entries = data.get("pitches") if isinstance(data, dict) else data
    if not isinstance(entries, list):
        raise CatalogError("Catalog must be a list of pitches or a mapping with a 'pitches' list")

    resources: list[Resource] = []
    seen: set[str] = set()
    for i, entry in enumerate(entries):
        try:
            resource = Resource.model_validate(entry)
        except ValidationError as exc:
            raise CatalogError(f"Pitch #{i} is invalid: {exc}") from exc
        if resource.closing_minute <= resource.opening_minute:
            raise CatalogError(f"Pitch {resource.id!r} closes before it opens")
        if resource.id in seen:
            raise CatalogError(f"Duplicate pitch id {resource.id!r}")
        seen.add(resource.id)
        resources.append(resource)
    return resources


def load_catalog(path: str | Path) -> list[Resource]:
    """Read pitches from a YAML file. A missing file yields an empty catalog."""
    path = Path(path)
    if not path.exists():
        logger.warning("Pitch catalog %s not found; starting with no pitches", path)
        return []

    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise CatalogError(f"Cannot parse {path}: {exc}") from exc

    resources = parse_catalog(data)
    logger.info("Loaded %d pitch(es) from %s", len(resources), path)
    return resources
