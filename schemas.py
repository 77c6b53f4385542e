"""
Database Schemas for CampusKart (campus marketplace)

Listings live in the "listing" collection and carts in the "cart" collection.
Stored documents use the snake_case attribute names below; the HTTP layer
speaks the camelCase aliases.
"""

from datetime import datetime
from typing import Annotated, List, Literal, Optional, get_args

from pydantic import AfterValidator, AnyUrl, BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

Category = Literal[
    "textbooks",
    "electronics",
    "dorm-items",
    "supplies",
    "clothing",
    "furniture",
    "other",
]
ContactMethod = Literal["email", "phone", "whatsapp", "telegram"]
Condition = Literal["new", "like-new", "good", "fair", "poor"]
ListingStatus = Literal["available", "sold"]

CATEGORIES = get_args(Category)
ALL_CATEGORIES = "all"

_any_url = TypeAdapter(AnyUrl)


def _check_url(value: str) -> str:
    # Validated as a URL, stored exactly as the seller sent it
    try:
        _any_url.validate_python(value)
    except PydanticValidationError:
        raise ValueError(f"{value!r} is not a valid URL")
    return value


ImageUrl = Annotated[str, AfterValidator(_check_url)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# What a seller submits to put an item up for sale
class ListingCreate(CamelModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: float = Field(..., ge=0, strict=True)
    category: Category
    images: List[ImageUrl] = Field(default_factory=list)
    seller_name: str = Field(..., min_length=1)
    contact_method: ContactMethod
    contact_details: str = Field(..., min_length=1)
    condition: Condition = "good"

    def to_document(self) -> dict:
        return self.model_dump(mode="json")


# Partial edit of a listing; status, sold_at and the secret are not editable here
class ListingUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0, strict=True)
    category: Optional[Category] = None
    images: Optional[List[ImageUrl]] = None
    seller_name: Optional[str] = Field(None, min_length=1)
    contact_method: Optional[ContactMethod] = None
    contact_details: Optional[str] = Field(None, min_length=1)
    condition: Optional[Condition] = None

    def changes(self) -> dict:
        data = self.model_dump(mode="json", exclude_unset=True)
        return {k: v for k, v in data.items() if v is not None}


class Listing(CamelModel):
    """Public projection of a stored listing. It has no field for the secret."""

    id: str
    title: str
    description: str
    price: float = Field(..., ge=0)
    category: Category
    images: List[str] = Field(default_factory=list)
    seller_name: str
    contact_method: ContactMethod
    contact_details: str
    condition: Condition = "good"
    status: ListingStatus = "available"
    sold_at: Optional[datetime] = None
    created_at: datetime

    @model_validator(mode="after")
    def _sold_at_matches_status(self):
        if (self.status == "sold") != (self.sold_at is not None):
            raise ValueError("sold_at must be set exactly when status is 'sold'")
        return self


# Returned once, by create, and never again
class CreatedListing(Listing):
    secret_key: str


class MarkSoldBody(CamelModel):
    secret_key: str = Field(..., min_length=1)


class DeleteBody(CamelModel):
    secret_key: Optional[str] = None


class CartItem(CamelModel):
    listing_id: str = Field(..., alias="productId", min_length=1)
    quantity: int = Field(1, ge=1)


class Cart(CamelModel):
    id: Optional[str] = None
    session_id: str = Field(..., min_length=1)
    items: List[CartItem] = Field(default_factory=list)
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _one_entry_per_listing(self):
        seen = set()
        for item in self.items:
            if item.listing_id in seen:
                raise ValueError(f"duplicate cart entry for {item.listing_id}")
            seen.add(item.listing_id)
        return self

    def item_documents(self) -> List[dict]:
        return [item.model_dump() for item in self.items]


class ResolvedCartItem(CartItem):
    product: Optional[Listing] = None


class CartView(CamelModel):
    id: Optional[str] = None
    session_id: str
    items: List[ResolvedCartItem] = Field(default_factory=list)
    updated_at: Optional[datetime] = None


class AddCartItemBody(CamelModel):
    listing_id: str = Field(..., alias="productId", min_length=1)
