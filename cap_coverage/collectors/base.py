"""
Base collector class — shared contract for the Graph-backed collection steps.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any

from ..config import CollectionConfig
from ..graph.client import GraphAPIError, GraphClient

logger = logging.getLogger("cap_coverage.collectors")


class CollectorResult:
    """Standardized result from a collector."""

    def __init__(self, collector_name: str):
        self.collector_name = collector_name
        self.data: dict[str, Any] = {}
        self.metadata: dict[str, Any] = {
            "collector": collector_name,
            "started_at": None,
            "completed_at": None,
            "duration_seconds": 0,
            "items_collected": 0,
            "errors": [],
            "warnings": [],
            "endpoints_queried": 0,
            "permission_gaps": [],
        }

    def add_data(self, key: str, value: Any):
        self.data[key] = value
        if isinstance(value, (list, dict)):
            self.metadata["items_collected"] += len(value)
        else:
            self.metadata["items_collected"] += 1

    def add_error(self, error: str):
        self.metadata["errors"].append(error)
        logger.error(f"[{self.collector_name}] {error}")

    def add_warning(self, warning: str):
        self.metadata["warnings"].append(warning)
        logger.warning(f"[{self.collector_name}] {warning}")

    @property
    def ok(self) -> bool:
        return not self.metadata["errors"]


class BaseCollector(ABC):
    """
    Abstract base class for all collectors.

    Subclasses implement collect(). The base class provides timing,
    metadata and an error-handling wrapper so a failing collector
    never aborts the run.
    """

    name: str = "base"
    description: str = "Base collector"

    def __init__(self, graph: GraphClient, config: CollectionConfig):
        self.graph = graph
        self.config = config

    async def execute(self) -> CollectorResult:
        result = CollectorResult(self.name)
        result.metadata["started_at"] = time.time()
        logger.info(f"[{self.name}] Starting collection...")

        try:
            await self.collect(result)
        except Exception as e:
            result.add_error(f"Collection failed: {type(e).__name__}: {e}")
            logger.exception(f"[{self.name}] Collection failed")

        result.metadata["completed_at"] = time.time()
        result.metadata["duration_seconds"] = round(
            result.metadata["completed_at"] - result.metadata["started_at"], 2
        )
        logger.info(
            f"[{self.name}] Completed in {result.metadata['duration_seconds']}s — "
            f"{result.metadata['items_collected']} items"
        )
        return result

    @abstractmethod
    async def collect(self, result: CollectorResult):
        """Add data to result via result.add_data(key, value)."""
        raise NotImplementedError

    async def safe_get_all(self, endpoint: str, result: CollectorResult, **kwargs) -> list:
        """Get all pages; permission gaps and failures are recorded, not raised."""
        try:
            data = await self.graph.get_all_pages(endpoint, **kwargs)
            result.metadata["endpoints_queried"] += 1
            return data
        except GraphAPIError as e:
            if e.status_code == 403:
                result.add_warning(f"Permission denied: {endpoint} — {e}")
                result.metadata["permission_gaps"].append(endpoint)
            else:
                result.add_error(f"Failed to paginate {endpoint}: {e}")
            return []
