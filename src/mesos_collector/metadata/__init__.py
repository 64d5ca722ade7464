"""Workload metadata enrichment."""

from .cache import MetadataCache, build_container_map, map_task_labels
from .single_flight import RefreshGate

__all__ = ["MetadataCache", "RefreshGate", "build_container_map", "map_task_labels"]
