"""
External collaborator interfaces
Remote anchor store and content asset lookup
"""

from typing import Any, Dict, Iterable, List, Optional, Protocol, Union

from .models import GeoLocation, SavedAnchorRecord

RawOrParsedRecord = Union[SavedAnchorRecord, Dict[str, Any]]


class AnchorRecordSource(Protocol):
    """Remote store returning records already filtered by proximity"""

    async def fetch_records(self, location: GeoLocation) -> List[RawOrParsedRecord]:
        ...


class AssetResolver(Protocol):
    """Content asset lookup"""

    def exists(self, content_id: str) -> bool:
        ...


class StaticAssetResolver:
    """Resolves content ids against a fixed catalogue; ``None`` accepts any id"""

    def __init__(self, known_assets: Optional[Iterable[str]] = None):
        self.known_assets = set(known_assets) if known_assets is not None else None

    def exists(self, content_id: str) -> bool:
        if not content_id:
            return False
        if self.known_assets is None:
            return True
        return content_id in self.known_assets
