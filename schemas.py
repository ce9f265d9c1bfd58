import math
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

# Fields the order form must always send, in the order they are reported
REQUIRED_ORDER_FIELDS = ("customerName", "phone", "governorate", "area", "items", "total")


def id_key(value):
    """Comparable form of a product id: numeric strings match numbers ("007" == 7)."""
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return text
    if not math.isfinite(number):
        return text
    return int(number) if number.is_integer() else number


class Product(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int
    name: str
    price: int = 0
    discount: int = 0
    stock: int = Field(0, ge=0)
    # older catalogs stored the path under "img"
    imagePath: str = Field("", validation_alias=AliasChoices("imagePath", "img"))


class Order(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int
    customerName: str
    phone: str
    governorate: str = Field(validation_alias=AliasChoices("governorate", "gov"))
    area: str
    items: str
    total: float = Field(allow_inf_nan=False)
    createdAt: str = Field("", validation_alias=AliasChoices("createdAt", "time"))


class OrderCreate(BaseModel):
    """Order form payload. Emptiness is checked in ``missing_fields``."""

    model_config = ConfigDict(populate_by_name=True)

    customerName: Optional[str] = None
    phone: Optional[str] = None
    governorate: Optional[str] = Field(None, validation_alias=AliasChoices("governorate", "gov"))
    area: Optional[str] = None
    items: Optional[str] = None
    total: Optional[float] = Field(None, allow_inf_nan=False)
    # any element is allowed; ids that match no product are skipped
    productIds: Optional[List[Any]] = None

    @field_validator("customerName", "phone", "governorate", "area", "items", mode="before")
    @classmethod
    def strip_text(cls, v):
        if isinstance(v, str):
            return v.strip()
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("total", mode="before")
    @classmethod
    def blank_total(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def missing_fields(self) -> List[str]:
        return [name for name in REQUIRED_ORDER_FIELDS if not getattr(self, name)]


def normalize(model, records: List[dict]) -> List[dict]:
    """Re-key stored records under current field names; unreadable ones pass through."""
    out = []
    for record in records:
        try:
            out.append(model.model_validate(record).model_dump())
        except ValidationError:
            out.append(record)
    return out
