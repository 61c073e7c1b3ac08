from datetime import date, datetime, time, timezone
from typing import Any, Optional, Union

from pydantic import BaseModel, Field

Quantity = Union[int, float]


class TimeWindow(BaseModel):
    """Half-open ``[start, end)`` span of time (timezone-aware)."""
    start: datetime
    end: datetime


class BusyInterval(TimeWindow):
    """One reservation/usage block reported by Planyo for a resource."""


class DateRange(BaseModel):
    start: date
    end: date

    def to_window(self) -> TimeWindow:
        """UTC midnight of ``start`` up to (not including) UTC midnight of ``end``."""
        return TimeWindow(
            start=datetime.combine(self.start, time.min, tzinfo=timezone.utc),
            end=datetime.combine(self.end, time.min, tzinfo=timezone.utc),
        )


# Validated inbound queries -------------------------------------------------

class SearchQuery(BaseModel):
    start: str  # YYYY-MM-DD, echoed back verbatim
    end: str
    quantity: Quantity = 1
    resource_ids: list[str] = []
    debug: bool = False


class UsageQuery(BaseModel):
    start: str
    end: str
    resource_ids: list[str]
    debug: bool = False
    window: TimeWindow


# Outbound JSON contract ----------------------------------------------------

_camel = {"populate_by_name": True}


class UpstreamErrorInfo(BaseModel):
    response_code: Any = None
    response_message: Any = None


class DebugInfo(BaseModel):
    top_level_keys: list[str] = Field(default_factory=list, alias="topLevelKeys")
    raw_preview: Any = Field(None, alias="rawPreview")
    # best effort only; never feeds the availability decision
    deep_scan_resource_ids: Optional[list[str]] = Field(None, alias="deepScanResourceIds")

    model_config = _camel


class SearchMeta(BaseModel):
    requested_filter_count: int = Field(alias="requestedFilterCount")
    returned_count: int = Field(alias="returnedCount")
    reasons_count: int = Field(alias="reasonsCount")
    debug: int = 0

    model_config = _camel


class SearchAvailabilityResponse(BaseModel):
    start: str
    end: str
    quantity: Quantity
    available_resource_ids: list[str] = Field(alias="availableResourceIds")
    unavailable_resource_ids: list[str] = Field(alias="unavailableResourceIds")
    reasons_by_resource_id: dict[str, str] = Field(alias="reasonsByResourceId")
    meta: SearchMeta
    error: Optional[UpstreamErrorInfo] = None
    debug: Optional[DebugInfo] = None

    model_config = _camel


class ResourceUsageResult(BaseModel):
    """Outcome of probing a single resource in usage mode."""
    resource_id: str = Field(alias="resourceId")
    available: bool
    busy: list[BusyInterval] = Field(default_factory=list)
    error: Optional[UpstreamErrorInfo] = None
    top_level_keys: Optional[list[str]] = Field(None, alias="topLevelKeys")
    raw_preview: Any = Field(None, alias="rawPreview")

    model_config = _camel


class UsageMeta(BaseModel):
    checked: int
    concurrency: int
    debug: int = 0


class UsageAvailabilityResponse(BaseModel):
    start: str
    end: str
    available_resource_ids: list[str] = Field(alias="availableResourceIds")
    unavailable_resource_ids: list[str] = Field(alias="unavailableResourceIds")
    errors_by_resource_id: dict[str, UpstreamErrorInfo] = Field(alias="errorsByResourceId")
    meta: UsageMeta
    debug_results: Optional[list[ResourceUsageResult]] = Field(None, alias="debugResults")

    model_config = _camel
