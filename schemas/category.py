from pydantic import BaseModel, Field, model_validator
from typing import List, Optional


class CategoryCreate(BaseModel):
    name: str = Field(min_length=3, max_length=50)
    description: Optional[str] = Field(None, min_length=3, max_length=500)
    is_subcategory: bool = False
    parent_category_id: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def strip_strings(cls, data):
        if isinstance(data, dict):
            return {k: v.strip() if isinstance(v, str) else v for k, v in data.items()}
        return data

    @model_validator(mode="after")
    def check_parent(self):
        if self.is_subcategory and self.parent_category_id is None:
            raise ValueError("parent_category_id is required for a subcategory")
        if not self.is_subcategory and self.parent_category_id is not None:
            raise ValueError("parent_category_id is only allowed for a subcategory")
        return self


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=3, max_length=50)
    description: Optional[str] = Field(None, min_length=3, max_length=500)
    is_subcategory: Optional[bool] = None
    parent_category_id: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def strip_strings(cls, data):
        if isinstance(data, dict):
            return {k: v.strip() if isinstance(v, str) else v for k, v in data.items()}
        return data

    @model_validator(mode="after")
    def check_parent(self):
        if self.is_subcategory and self.parent_category_id is None:
            raise ValueError("parent_category_id is required for a subcategory")
        if not self.is_subcategory and self.parent_category_id is not None:
            raise ValueError("parent_category_id is only allowed for a subcategory")
        return self


class SubcategoryRef(BaseModel):
    id: int
    name: str


class CategoryOut(BaseModel):
    id: int
    store_id: int
    name: str
    description: Optional[str] = None
    image: Optional[str] = None
    thumbnail: Optional[str] = None
    is_subcategory: bool
    parent_category_id: Optional[int] = None
    subcategories: List[SubcategoryRef] = []

    class Config:
        from_attributes = True
