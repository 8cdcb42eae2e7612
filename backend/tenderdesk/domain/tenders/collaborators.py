"""
Interfaces for the external systems tender operations depend on.

Implementations live under `tenderdesk.infrastructure`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from .models import SiteDraft


@dataclass(frozen=True, slots=True)
class CreatedSite:
    site_id: str


@dataclass(frozen=True, slots=True)
class StoredFile:
    url: str
    key: str | None = None


class SiteCreator(ABC):
    """Creates the project ("site") record a won tender converts into."""

    @abstractmethod
    def create_site(self, draft: SiteDraft) -> CreatedSite:
        """Create the site or raise; never returns without a site id."""


class DocumentStorage(ABC):
    """Stores uploaded checklist files and returns where they live."""

    @abstractmethod
    def upload(self, *, content: bytes, file_name: str, content_type: str | None = None) -> StoredFile:
        """Upload the bytes or raise."""
