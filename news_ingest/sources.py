"""Static source list loader."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, ValidationError

from news_ingest.models import SourceConfig

DEFAULT_SOURCES_FILE = Path(__file__).resolve().parent / "sources.yaml"


class SourceCatalog(BaseModel):
    """Top-level shape of a sources YAML file, keyed by source id."""

    sources: Dict[str, dict]

    def to_configs(self) -> List[SourceConfig]:
        configs: List[SourceConfig] = []
        for key, data in self.sources.items():
            payload = dict(data or {})
            payload.setdefault("id", key)
            configs.append(SourceConfig.model_validate(payload))
        return configs


@lru_cache(maxsize=4)
def load_sources(path: Path = DEFAULT_SOURCES_FILE) -> tuple[SourceConfig, ...]:
    """Load and validate the source list, preserving file order.

    Returns a tuple so the cached value cannot be mutated by a caller.
    """

    if not path.exists():
        raise ValueError(f"Sources file not found: {path}")

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - configuration error
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

    try:
        catalog = SourceCatalog(**raw)
        configs = catalog.to_configs()
    except ValidationError as exc:
        raise ValueError(f"Invalid source configuration: {exc}") from exc

    seen: set[str] = set()
    for config in configs:
        if config.id in seen:
            raise ValueError(f"Duplicate source id in {path}: {config.id}")
        seen.add(config.id)

    return tuple(configs)


def resolve_sources(sources_file: Optional[str] = None, *, source_id: Optional[str] = None) -> List[SourceConfig]:
    """Return the configured sources, optionally narrowed to a single id."""

    path = Path(sources_file) if sources_file else DEFAULT_SOURCES_FILE
    sources = list(load_sources(path))
    if source_id:
        sources = [source for source in sources if source.id == source_id]
        if not sources:
            raise ValueError(f"Unknown source id: {source_id}")
    return sources
