import logging
import math
from supabase import Client
from fastapi import HTTPException, status
from typing import Any, Dict, List, Optional

from app.core.timeutils import utc_now_iso
from app.modules.products.csv_import import ProductImporter, build_export_csv, build_template_csv

logger = logging.getLogger(__name__)


class ProductService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def list_products(
        self,
        page: int = 1,
        limit: int = 20,
        status_filter: Optional[str] = None,
        vendor: Optional[str] = None,
        search: Optional[str] = None,
        category: Optional[str] = None
    ) -> Dict[str, Any]:
        """Paged product listing with variants and options"""
        offset = (page - 1) * limit
        try:
            query = self.supabase.table("products")\
                .select("*, product_variants(*), product_options(*)", count="exact")
            if status_filter:
                query = query.eq("status", status_filter)
            if vendor:
                query = query.eq("vendor", vendor)
            if category:
                query = query.eq("category", category)
            if search:
                query = query.or_(f"title.ilike.%{search}%,description.ilike.%{search}%")
            result = query.order("created_at", desc=True)\
                .range(offset, offset + limit - 1)\
                .execute()
        except Exception as e:
            logger.error(f"Error fetching products: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch products")

        total = result.count or 0
        return {
            "success": True,
            "data": result.data or [],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit) if limit else 0
            }
        }

    def get_product(self, product_id: str) -> Dict[str, Any]:
        try:
            result = self.supabase.table("products")\
                .select("*, product_variants(*), product_options(*)")\
                .eq("id", product_id)\
                .limit(1)\
                .execute()
        except Exception as e:
            logger.error(f"Error fetching product {product_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch product")

        if not result.data:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")

        product = result.data[0]
        for key in ("product_variants", "product_options"):
            product[key] = sorted(product.get(key) or [], key=lambda r: r.get("position") or 0)
        return product

    def _product_row(self, data: Dict[str, Any]) -> Dict[str, Any]:
        row = {k: v for k, v in data.items() if k not in ("options", "variants") and v is not None}
        if row.get("images") and not row.get("image"):
            row["image"] = row["images"][0]
        if row.get("title") and not row.get("name"):
            row["name"] = row["title"]
        return row

    def _replace_children(self, product_id: str, options, variants) -> List[str]:
        """Replace options/variants when given. Failures come back as warnings."""
        warnings = []
        if options is not None:
            try:
                self.supabase.table("product_options").delete().eq("product_id", product_id).execute()
                if options:
                    self.supabase.table("product_options").insert([
                        {"product_id": product_id, "name": o["name"], "values": o.get("values") or [],
                         "position": position}
                        for position, o in enumerate(options, start=1)
                    ]).execute()
            except Exception as e:
                logger.error(f"Replacing options for {product_id} failed: {e}")
                warnings.append("Failed to save product options")
        if variants is not None:
            try:
                self.supabase.table("product_variants").delete().eq("product_id", product_id).execute()
                if variants:
                    self.supabase.table("product_variants").insert([
                        {**v, "product_id": product_id, "position": position}
                        for position, v in enumerate(variants, start=1)
                    ]).execute()
            except Exception as e:
                logger.error(f"Replacing variants for {product_id} failed: {e}")
                warnings.append("Failed to save product variants")
        return warnings

    def create_product(self, data: Dict[str, Any], user_id: str) -> Dict[str, Any]:
        now = utc_now_iso()
        row = {**self._product_row(data), "created_by": user_id, "updated_by": user_id,
               "created_at": now, "updated_at": now}
        try:
            if row.get("handle"):
                result = self.supabase.table("products")\
                    .upsert(row, on_conflict="handle")\
                    .execute()
            else:
                result = self.supabase.table("products").insert(row).execute()
        except Exception as e:
            if not row.get("handle"):
                logger.error(f"Error creating product: {e}")
                raise HTTPException(status_code=500, detail="Failed to create product")
            # older tables have no unique handle; plain insert without it
            logger.warning(f"Upsert on handle failed, inserting without handle: {e}")
            row.pop("handle")
            try:
                result = self.supabase.table("products").insert(row).execute()
            except Exception as e2:
                logger.error(f"Error creating product: {e2}")
                raise HTTPException(status_code=500, detail="Failed to create product")

        if not result.data:
            raise HTTPException(status_code=500, detail="Failed to create product")

        product = result.data[0]
        warnings = self._replace_children(product["id"], data.get("options"), data.get("variants"))
        logger.info(f"Product {product['id']} created by {user_id}")
        return {"success": True, "message": "Product created successfully", "data": product,
                "warnings": warnings or None}

    def update_product(self, product_id: str, data: Dict[str, Any], user_id: str) -> Dict[str, Any]:
        row = {**self._product_row(data), "updated_by": user_id, "updated_at": utc_now_iso()}
        try:
            result = self.supabase.table("products")\
                .update(row)\
                .eq("id", product_id)\
                .execute()
        except Exception as e:
            logger.error(f"Error updating product {product_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to update product")

        if not result.data:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")

        warnings = self._replace_children(product_id, data.get("options"), data.get("variants"))
        return {"success": True, "message": "Product updated successfully", "data": result.data[0],
                "warnings": warnings or None}

    def delete_product(self, product_id: str) -> Dict[str, Any]:
        try:
            self.supabase.table("products")\
                .delete()\
                .eq("id", product_id)\
                .execute()
        except Exception as e:
            logger.error(f"Error deleting product {product_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to delete product")
        return {"success": True, "message": "Product deleted successfully"}

    def import_csv(self, text: str, user_id: str) -> Dict[str, Any]:
        return ProductImporter(self.supabase, user_id).run(text)

    def export_csv(self) -> str:
        try:
            result = self.supabase.table("products")\
                .select("*, product_variants(*), product_options(*)")\
                .order("created_at", desc=True)\
                .execute()
        except Exception as e:
            logger.error(f"Error exporting products: {e}")
            raise HTTPException(status_code=500, detail="Failed to export products")
        return build_export_csv(result.data or [])

    @staticmethod
    def template_csv() -> str:
        return build_template_csv()
