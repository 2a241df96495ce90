from pydantic import BaseModel, model_validator
from typing import Optional, List, Dict, Any, Union


class ProductOption(BaseModel):
    name: str
    values: List[str] = []


class ProductVariant(BaseModel):
    title: Optional[str] = None
    sku: Optional[str] = None
    barcode: Optional[str] = None
    price: Optional[float] = 0
    compare_at_price: Optional[float] = None
    cost_per_item: Optional[float] = None
    weight: Optional[float] = None
    inventory_quantity: Optional[int] = 0
    option1: Optional[str] = None
    option2: Optional[str] = None
    option3: Optional[str] = None
    status: Optional[str] = "active"


class _ProductFields(BaseModel):
    @model_validator(mode="after")
    def normalize_images_and_tags(self):
        # legacy clients send images as [{"url": ...}] and tags as "a, b"
        if self.images is not None:
            self.images = [
                img if isinstance(img, str) else img.get("url")
                for img in self.images
                if img and (isinstance(img, str) or img.get("url"))
            ]
        if isinstance(self.tags, str):
            self.tags = [t.strip() for t in self.tags.split(",") if t.strip()]
        return self


class ProductCreate(_ProductFields):
    handle: Optional[str] = None
    title: str
    description: Optional[str] = None
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    category: Optional[str] = None
    brand: Optional[str] = None
    tags: Optional[Union[List[str], str]] = None
    status: Optional[str] = "active"
    images: Optional[List[Union[str, Dict[str, Any]]]] = None
    price: Optional[float] = None
    mrp: Optional[float] = None
    offer_price: Optional[float] = None
    stock_quantity: Optional[int] = None
    sku: Optional[str] = None
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    options: Optional[List[ProductOption]] = None
    variants: Optional[List[ProductVariant]] = None


class ProductUpdate(_ProductFields):
    title: Optional[str] = None
    description: Optional[str] = None
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    category: Optional[str] = None
    brand: Optional[str] = None
    tags: Optional[Union[List[str], str]] = None
    status: Optional[str] = None
    image: Optional[str] = None
    images: Optional[List[Union[str, Dict[str, Any]]]] = None
    additional_images: Optional[List[str]] = None
    price: Optional[float] = None
    mrp: Optional[float] = None
    offer_price: Optional[float] = None
    stock_quantity: Optional[int] = None
    sku: Optional[str] = None
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    options: Optional[List[ProductOption]] = None
    variants: Optional[List[ProductVariant]] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class ProductListResponse(BaseModel):
    success: bool = True
    data: List[Dict[str, Any]]
    pagination: Pagination


class ProductResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    data: Dict[str, Any]
    warnings: Optional[List[str]] = None


class ImportErrorItem(BaseModel):
    row: int
    field: str
    message: str


class ImportResults(BaseModel):
    success: int
    errors: List[ImportErrorItem]
    created_products: List[str]
    updated_products: List[str]


class ImportResponse(BaseModel):
    success: bool = True
    message: str
    results: ImportResults
    debug: Dict[str, Any] = {}
