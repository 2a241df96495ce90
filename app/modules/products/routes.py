from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from fastapi.responses import Response
from app.config.permissions_config import ADMIN_ROLES
from app.core.dependencies import require_roles
from app.database.supabase_client import get_service_supabase
from app.modules.products.schemas import (
    ProductCreate, ProductUpdate, ProductListResponse, ProductResponse, ImportResponse
)
from app.modules.products.service import ProductService
from supabase import Client
from typing import Dict, Optional

router = APIRouter(prefix="/products", tags=["products"])


def get_product_service(supabase: Client = Depends(get_service_supabase)) -> ProductService:
    return ProductService(supabase)


def _csv_response(content: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@router.get("", response_model=ProductListResponse)
async def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    status_filter: Optional[str] = Query(None, alias="status"),
    vendor: Optional[str] = None,
    search: Optional[str] = None,
    category: Optional[str] = None,
    service: ProductService = Depends(get_product_service)
):
    """Product catalogue, newest first"""
    return service.list_products(page, limit, status_filter, vendor, search, category)


@router.get("/export")
async def export_products(
    current: Dict = Depends(require_roles(*ADMIN_ROLES)),
    service: ProductService = Depends(get_product_service)
):
    """All products and variants as CSV"""
    return _csv_response(service.export_csv(), "products_export.csv")


@router.get("/template")
async def download_template(service: ProductService = Depends(get_product_service)):
    """Import template with sample rows"""
    return _csv_response(service.template_csv(), "product_template.csv")


@router.post("/import", response_model=ImportResponse)
async def import_products(
    file: UploadFile = File(...),
    current: Dict = Depends(require_roles(*ADMIN_ROLES)),
    service: ProductService = Depends(get_product_service)
):
    """Bulk create/update products from a CSV upload"""
    if file.filename and not file.filename.lower().endswith(".csv"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File must be a CSV")
    raw = await file.read()
    if not raw:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file provided")
    text = raw.decode("utf-8-sig", errors="replace")
    return service.import_csv(text, current["id"])


@router.get("/{product_id}")
async def get_product(
    product_id: str,
    service: ProductService = Depends(get_product_service)
):
    return {"success": True, "data": service.get_product(product_id)}


@router.post("", response_model=ProductResponse, status_code=201)
async def create_product(
    product: ProductCreate,
    current: Dict = Depends(require_roles(*ADMIN_ROLES)),
    service: ProductService = Depends(get_product_service)
):
    return service.create_product(product.model_dump(exclude_none=True), current["id"])


@router.put("/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: str,
    product: ProductUpdate,
    current: Dict = Depends(require_roles(*ADMIN_ROLES)),
    service: ProductService = Depends(get_product_service)
):
    return service.update_product(product_id, product.model_dump(exclude_unset=True), current["id"])


@router.delete("/{product_id}")
async def delete_product(
    product_id: str,
    current: Dict = Depends(require_roles(*ADMIN_ROLES)),
    service: ProductService = Depends(get_product_service)
):
    return service.delete_product(product_id)
