"""Detector registry — discovers and loads all available detector adapters."""

from __future__ import annotations

import importlib
import logging
import pkgutil
from typing import Type

from threatscan.analyzer.detectors.base import BaseDetector

logger = logging.getLogger(__name__)


class DetectorRegistry:
    """Registry for detector adapter classes.

    Discovers detectors from the ``threatscan.analyzer.detectors`` package
    and provides methods to list, filter, and instantiate them.
    """

    def __init__(self) -> None:
        self._detectors: dict[str, Type[BaseDetector]] = {}
        self._loaded = False

    def discover(self) -> None:
        """Auto-discover all detector classes from the detectors package."""
        if self._loaded:
            return

        import threatscan.analyzer.detectors as detectors_pkg

        for _finder, module_name, _is_pkg in pkgutil.walk_packages(
            detectors_pkg.__path__,
            prefix=detectors_pkg.__name__ + ".",
        ):
            try:
                module = importlib.import_module(module_name)
            except ImportError as exc:
                logger.warning("Failed to load detector module %s: %s", module_name, exc)
                continue
            for attr_name in dir(module):
                attr = getattr(module, attr_name)
                if (
                    isinstance(attr, type)
                    and issubclass(attr, BaseDetector)
                    and attr is not BaseDetector
                    and attr.DETECTOR_ID
                ):
                    self._detectors[attr.DETECTOR_ID] = attr

        self._loaded = True

    def get_all(self) -> list[Type[BaseDetector]]:
        """Return all registered detector classes, ordered by id."""
        self.discover()
        return [self._detectors[key] for key in sorted(self._detectors)]

    def get_by_id(self, detector_id: str) -> Type[BaseDetector] | None:
        self.discover()
        return self._detectors.get(detector_id)

    def count(self) -> int:
        self.discover()
        return len(self._detectors)


def default_detectors() -> list[BaseDetector]:
    """Instantiate every discovered production detector."""
    registry = DetectorRegistry()
    return [detector_cls() for detector_cls in registry.get_all()]
