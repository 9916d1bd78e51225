"""
Process-wide container for the external service clients.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from .config import Settings
from .extractor import NoticeExtractor
from .geocoder import VillageGeocoder
from .ocr import VisionOCR
from .store import NoticeStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """The clients one pipeline run needs"""
    settings: Settings
    ocr: VisionOCR
    extractor: NoticeExtractor
    geocoder: VillageGeocoder
    store: NoticeStore

    def describe(self) -> dict:
        return {
            "vision": self.ocr.is_configured,
            "gemini": self.extractor.is_configured,
            "google_maps": self.geocoder.is_configured,
            "firestore": self.store.is_configured,
        }


_services: Optional[Services] = None
_lock = threading.Lock()


def build_services(settings: Settings) -> Services:
    return Services(
        settings=settings,
        ocr=VisionOCR.from_settings(settings),
        extractor=NoticeExtractor.from_settings(settings),
        geocoder=VillageGeocoder.from_settings(settings),
        store=NoticeStore.from_settings(settings),
    )


def init_services(settings: Optional[Settings] = None, force: bool = False) -> Services:
    """
    Create the shared clients once. Later calls return the same container
    unless ``force`` is set.
    """
    global _services
    with _lock:
        if _services is None or force:
            _services = build_services(settings or Settings.from_env())
            logger.info("Services initialized: %s", _services.describe())
        return _services


def get_services() -> Services:
    """Get or create the services container"""
    if _services is None:
        return init_services()
    return _services


def set_services(services: Services) -> None:
    global _services
    with _lock:
        _services = services


def reset_services() -> None:
    global _services
    with _lock:
        _services = None
