"""
Pydantic data models for the item publisher.

`UnifiedItem` is the canonical message body sent to the queue; its JSON keys are
PascalCase because downstream consumers read them that way.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, validator

from .utils import utc_now


class RequestSource(str, Enum):
    """Where the triggering request came from."""

    UNKNOWN = "unknown"
    API_GATEWAY = "api_gateway"
    EVENT_BRIDGE = "event_bridge"
    CICD_HEALTH_CHECK = "cicd_health_check"
    LAMBDA = "lambda"
    SQS = "sqs"


class PriceInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str = Field("", alias="Type")
    currency: str = Field("USD", alias="Currency")
    value: float = Field(0.0, alias="Value")


class AttributeInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="Id")
    value: str = Field("", alias="Value")


class CategoryInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    path: str = Field("", alias="Path")
    source: str = Field("", alias="Source")


class UnifiedItem(BaseModel):
    """Canonical item record published to the downstream queue."""

    model_config = ConfigDict(populate_by_name=True)

    sku: str = Field(..., alias="Sku")
    name: str = Field("", alias="Name")
    gs1_barcode: Optional[str] = Field(None, alias="Gs1Barcode")
    alternate_barcodes: List[str] = Field(default_factory=list, alias="AlternateBarcodes")
    description: Optional[str] = Field(None, alias="Description")
    hts_tariff_code: Optional[str] = Field(None, alias="HtsTariffCode")
    country_of_origin_code: str = Field("", alias="CountryOfOriginCode")
    prices: List[PriceInfo] = Field(default_factory=list, alias="Prices")
    categories: List[CategoryInfo] = Field(default_factory=list, alias="Categories")
    attributes: List[AttributeInfo] = Field(default_factory=list, alias="Attributes")

    @validator("sku")
    def _strip_sku(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("sku must not be empty")
        return v

    def attribute(self, attribute_id: str) -> Optional[str]:
        for attr in self.attributes:
            if attr.id == attribute_id:
                return attr.value
        return None

    def to_payload(self) -> str:
        """Serialize to the queue message body (PascalCase JSON)."""
        return self.model_dump_json(by_alias=True)


class AuditRecord(BaseModel):
    """One row in the processing audit log."""

    operation: str
    success: bool
    item_count: Optional[int] = None
    error_message: Optional[str] = None
    trace_id: Optional[str] = None
    request_source: RequestSource = RequestSource.UNKNOWN
    timestamp: datetime = Field(default_factory=utc_now)

    @validator("operation")
    def _upcase(cls, v):
        return v.upper()
