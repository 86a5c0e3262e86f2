from datetime import datetime
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional, Union

from schemas.common import ImagePair, parse_json_field


def _parse_category_ids(value):
    if value is None:
        return value
    if isinstance(value, str):
        value = [part.strip() for part in value.split(",") if part.strip()]
    ids: list[int] = []
    for raw in value:
        try:
            category_id = int(raw)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid category id: {raw}")
        if category_id not in ids:
            ids.append(category_id)
    return ids


class SizeIn(BaseModel):
    name: str = Field(min_length=1, max_length=30)
    quantity: int = Field(ge=0)


class ColorIn(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    # Filename of an uploaded file, or an image pair the product already has
    image: Optional[Union[str, ImagePair]] = None
    sizes: List[SizeIn]


class ProductCreate(BaseModel):
    name: str = Field(min_length=3, max_length=100)
    description: str = Field(min_length=3, max_length=500)
    price: float = Field(ge=0)
    featured: bool = False
    categories: List[int] = Field(min_length=1)
    colors: List[ColorIn] = []

    @field_validator("categories", mode="before")
    @classmethod
    def split_categories(cls, v):
        return _parse_category_ids(v)

    @field_validator("colors", mode="before")
    @classmethod
    def load_colors(cls, v):
        return parse_json_field(v, "colors")


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = Field(None, min_length=3, max_length=500)
    price: Optional[float] = Field(None, ge=0)
    featured: Optional[bool] = None
    categories: Optional[List[int]] = Field(None, min_length=1)
    colors: Optional[List[ColorIn]] = None

    @field_validator("categories", mode="before")
    @classmethod
    def split_categories(cls, v):
        return _parse_category_ids(v)

    @field_validator("colors", mode="before")
    @classmethod
    def load_colors(cls, v):
        return parse_json_field(v, "colors")


class DeleteImageRequest(BaseModel):
    store_id: Optional[int] = None
    image: ImagePair


class CategoryRef(BaseModel):
    id: int
    name: str

    class Config:
        from_attributes = True


class SizeOut(BaseModel):
    name: str
    quantity: int

    class Config:
        from_attributes = True


class ColorOut(BaseModel):
    name: str
    image: Optional[ImagePair] = None
    sizes: List[SizeOut]

    class Config:
        from_attributes = True


class ProductImageOut(BaseModel):
    original: str
    thumbnail: str

    class Config:
        from_attributes = True


class ProductOut(BaseModel):
    id: int
    store_id: int
    name: str
    description: str
    price: float
    sku: str
    featured: bool
    categories: List[CategoryRef]
    images: List[ProductImageOut]
    colors: List[ColorOut]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
