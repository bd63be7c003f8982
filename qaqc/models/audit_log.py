from dataclasses import asdict, dataclass, fields
from typing import Any, Generic, Iterator, List, Type, TypeVar

import pandas as pd


@dataclass
class ReviewLogEntry:
    """One examined value of the outlier or cover pass."""
    row: int
    site: Any
    column: str
    original_value: Any
    value: Any                 # value after the decision was applied
    issue: str
    direction: str = ""
    action_taken: str = "keep"
    note: str = ""


@dataclass
class GeoLogEntry:
    """One site row of the geospatial pass: a status string per field check."""
    site: Any
    row: int
    lat_0m: str = ""
    lat_30m: str = ""
    long_0m: str = ""
    long_30m: str = ""
    long_west_0m: str = ""
    long_west_30m: str = ""
    elevation: str = ""
    elevation_note: str = ""
    slope: str = ""
    slope_note: str = ""
    aspect: str = ""
    aspect_note: str = ""
    transect_orientation: str = ""
    transect_note: str = ""
    moisture_class: str = ""
    unparseable: str = ""      # text found in numeric fields and its replacement


@dataclass
class SiteCodeLogEntry:
    row: int
    original_site: Any
    corrected_site: str


EntryT = TypeVar("EntryT")


class AuditLog(Generic[EntryT]):
    """
    Append-only, ordered log of one check pass.

    Entries stay as dataclass instances until to_frame() is called at
    persistence time, so an empty pass still produces a table with headers.
    """

    def __init__(self, entry_type: Type[EntryT]):
        self.entry_type = entry_type
        self.entries: List[EntryT] = []

    def append(self, entry: EntryT) -> None:
        if not isinstance(entry, self.entry_type):
            raise TypeError(
                f"{type(entry).__name__} does not belong in a {self.entry_type.__name__} log"
            )
        self.entries.append(entry)

    @property
    def columns(self) -> List[str]:
        return [f.name for f in fields(self.entry_type)]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([asdict(e) for e in self.entries], columns=self.columns)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[EntryT]:
        return iter(self.entries)
