"""
Product CSV import/export.

The import format is one "product" row per handle followed by any number of
"variant" rows for the same handle. Header names are matched through an alias
table so Shopify/Wix style exports import without editing. The products table
has drifted between deployments, so the importer reads its columns from
information_schema, drops keys the table does not have, and retries the upsert
with progressively smaller payloads before giving up on a row.
"""
import csv
import io
import logging
import re
import threading
from supabase import Client
from typing import Any, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 20000

EXPORT_HEADERS = [
    "handle", "title", "description", "vendor", "product_type", "tags", "entry_type",
    "variant_title", "variant_sku", "variant_barcode", "variant_price",
    "variant_compare_price", "variant_cost", "variant_weight", "variant_inventory",
    "option1_name", "option1_value", "option2_name", "option2_value",
    "option3_name", "option3_value", "image_urls", "status",
]

TEMPLATE_ROWS = [
    'del123,Mouse M16,Gaming mouse with RGB lighting,Dell,Electronics,"gaming,mouse",product,,,,,,,,,Color,,Size,,,,https://example.com/mouse.jpg,active',
    'del123,Mouse M16 Black,Gaming mouse with RGB lighting,Dell,Electronics,"gaming,mouse",variant,Black Mouse,DEL123-BLK,1234567890,99.99,129.99,60.00,0.2,50,Color,Black,Size,Medium,,,https://example.com/mouse-black.jpg,active',
    'del123,Mouse M16 White,Gaming mouse with RGB lighting,Dell,Electronics,"gaming,mouse",variant,White Mouse,DEL123-WHT,1234567891,99.99,129.99,60.00,0.2,30,Color,White,Size,Medium,,,https://example.com/mouse-white.jpg,active',
]

HEADER_ALIASES = {
    "handle": "handle", "product_handle": "handle", "handleid": "handle",
    "title": "title", "product_title": "title", "name": "title",
    "description": "description", "body_html": "description",
    "vendor": "vendor", "brand": "vendor",
    "product_type": "product_type", "type": "product_type",
    "category": "product_type", "collection": "product_type",
    "tags": "tags", "tag": "tags",
    "entry_type": "entry_type", "row_type": "entry_type", "kind": "entry_type", "fieldtype": "entry_type",
    "variant_title": "variant_title", "v_title": "variant_title",
    "variant_sku": "variant_sku", "sku": "variant_sku", "v_sku": "variant_sku",
    "variant_barcode": "variant_barcode", "barcode": "variant_barcode",
    "variant_price": "variant_price", "price": "variant_price", "v_price": "variant_price",
    "variant_compare_price": "variant_compare_price", "compare_at_price": "variant_compare_price",
    "compare_price": "variant_compare_price",
    "variant_cost": "variant_cost", "cost": "variant_cost", "cost_per_item": "variant_cost",
    "variant_weight": "variant_weight", "weight": "variant_weight",
    "variant_inventory": "variant_inventory", "inventory": "variant_inventory",
    "inventory_quantity": "variant_inventory",
    "option1_name": "option1_name", "option1": "option1_name",
    "option1_name/values": "option1_name", "productoptionname1": "option1_name",
    "option1_value": "option1_value", "option1val": "option1_value", "option1_value/values": "option1_value",
    "option2_name": "option2_name", "option2": "option2_name", "productoptionname2": "option2_name",
    "option2_value": "option2_value",
    "option3_name": "option3_name", "option3": "option3_name", "productoptionname3": "option3_name",
    "option3_value": "option3_value",
    "productoptionname4": "option4_name", "productoptionname5": "option5_name",
    "productoptionname6": "option6_name",
    "image_urls": "image_urls", "images": "image_urls", "image": "image_urls",
    "image_url": "image_urls", "productimageurl": "image_urls",
    "status": "status", "visible": "status",
}

ACTIVE_STATUS_VALUES = {"true", "1", "active", "yes", "published", "visible"}
DRAFT_STATUS_VALUES = {"false", "0", "inactive", "no", "unpublished", "hidden"}

# Dropped one group at a time when the full payload is rejected; price is never dropped
FALLBACK_FIELD_GROUPS = [
    ["images", "image"],
    ["tags"],
    ["vendor", "product_type"],
    ["description"],
]

_ALLOWED_TAGS = {"a", "b", "strong", "i", "em", "u", "ul", "ol", "li", "p", "br", "span"}
_ALLOWED_ATTRS = {"href", "title", "target", "rel", "class"}
_DANGEROUS_BLOCK = re.compile(r"<(script|style|iframe)[\s\S]*?>[\s\S]*?</\1>", re.IGNORECASE)
_DANGEROUS_CLOSE = re.compile(r"</(script|style|iframe)[^>]*>", re.IGNORECASE)
_EVENT_HANDLERS = [
    re.compile(r" on[a-z]+\s*=\s*\"[^\"]*\"", re.IGNORECASE),
    re.compile(r" on[a-z]+\s*=\s*'[^']*'", re.IGNORECASE),
    re.compile(r" on[a-z]+\s*=\s*[^\s>]+", re.IGNORECASE),
]
_OPEN_TAG = re.compile(r"<([^\s>/]+)([^>]*)>")
_CLOSE_TAG = re.compile(r"</([^\s>]+)\s*>")
_ATTR = re.compile(r"([a-zA-Z:-]+)=(\"[^\"]*\"|'[^']*'|[^\s>]+)")

_columns_lock = threading.Lock()
_product_columns: Optional[Dict[str, Dict[str, Any]]] = None


def sanitize_html(value: Optional[str]) -> str:
    """Keep a small set of formatting tags; strip scripts, event handlers and js: URLs."""
    if not value:
        return ""
    out = _DANGEROUS_BLOCK.sub("", value)
    out = _DANGEROUS_CLOSE.sub("", out)
    for pattern in _EVENT_HANDLERS:
        out = pattern.sub("", out)
    out = re.sub(r"javascript:\s*", "", out, flags=re.IGNORECASE)
    out = re.sub(r"data:text/html", "", out, flags=re.IGNORECASE)

    def _open(match):
        tag = match.group(1).lower()
        if tag not in _ALLOWED_TAGS:
            return ""
        attrs = []
        for name, attr_value in _ATTR.findall(match.group(2)):
            name = name.lower()
            if name not in _ALLOWED_ATTRS:
                continue
            if name == "target":
                attrs.append('target="_blank" rel="noopener noreferrer"')
            else:
                attrs.append(f"{name}={attr_value}")
        return f"<{tag}{' ' + ' '.join(attrs) if attrs else ''}>"

    def _close(match):
        return match.group(0) if match.group(1).lower() in _ALLOWED_TAGS else ""

    out = _CLOSE_TAG.sub(_close, out)
    return _OPEN_TAG.sub(_open, out)


def split_csv_records(text: str) -> List[str]:
    """Split CSV text into records, keeping newlines that sit inside quotes.

    Quotes are kept for parse_csv_line; CR characters are dropped and blank
    records skipped.
    """
    records = []
    current = []
    in_quotes = False
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == '"':
            if in_quotes and i + 1 < len(text) and text[i + 1] == '"':
                current.append('""')
                i += 1
            else:
                in_quotes = not in_quotes
                current.append(ch)
        elif ch == "\n" and not in_quotes:
            record = "".join(current)
            if record.strip():
                records.append(record)
            current = []
        elif ch != "\r":
            current.append(ch)
        i += 1
    record = "".join(current)
    if record.strip():
        records.append(record)
    return records


def parse_csv_line(line: str) -> List[str]:
    """Fields of one record; doubled quotes unescape, every field is trimmed."""
    fields = []
    current = []
    in_quotes = False
    i = 0
    while i < len(line):
        ch = line[i]
        if ch == '"':
            if in_quotes and i + 1 < len(line) and line[i + 1] == '"':
                current.append('"')
                i += 1
            else:
                in_quotes = not in_quotes
        elif ch == "," and not in_quotes:
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
        i += 1
    fields.append("".join(current).strip())
    return fields


def clean_header(header: str) -> str:
    return header.replace("\ufeff", "").strip()


def map_row(headers: List[str], values: List[str]) -> Dict[str, str]:
    """Row dict keyed by canonical field name; unknown headers keep their own name."""
    row = {}
    for index, header in enumerate(headers):
        value = values[index].strip() if index < len(values) else ""
        canonical = HEADER_ALIASES.get(header.lower())
        row[canonical or header] = value
    return row


def normalize_entry_type(value: Optional[str]) -> str:
    entry_type = (value or "").strip().lower()
    return entry_type if entry_type in ("product", "variant") else ""


def normalize_status(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    status = value.strip().lower()
    if status in ACTIVE_STATUS_VALUES:
        return "active"
    if status in DRAFT_STATUS_VALUES:
        return "draft"
    return value


def parse_float(value: Optional[str]) -> Optional[float]:
    if value is None or str(value).strip() == "":
        return None
    try:
        return float(value)
    except ValueError:
        return None


def parse_int(value: Optional[str], default: int = 0) -> int:
    number = parse_float(value)
    return int(number) if number is not None else default


def split_list(value: Optional[str]) -> List[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


def first_variant_prices(headers: List[str], records: List[str]) -> Dict[str, float]:
    """Price of the first priced variant row per handle."""
    prices: Dict[str, float] = {}
    for record in records:
        row = map_row(headers, parse_csv_line(record))
        if normalize_entry_type(row.get("entry_type")) != "variant":
            continue
        handle = row.get("handle")
        price = parse_float(row.get("variant_price"))
        if handle and price is not None and price >= 0 and handle not in prices:
            prices[handle] = price
    return prices


def get_product_columns(supabase: Client) -> Dict[str, Dict[str, Any]]:
    """products columns from information_schema, cached for the process. Empty when the lookup fails."""
    global _product_columns
    with _columns_lock:
        if _product_columns is not None:
            return _product_columns
    try:
        result = supabase.table("information_schema.columns")\
            .select("column_name,is_nullable,data_type")\
            .eq("table_name", "products")\
            .execute()
        columns = {
            c["column_name"]: {"nullable": c.get("is_nullable") == "YES", "data_type": c.get("data_type")}
            for c in result.data or []
        }
    except Exception as e:
        logger.warning(f"Could not read products columns: {e}")
        columns = {}
    with _columns_lock:
        _product_columns = columns
    return columns


def reset_column_cache() -> None:
    global _product_columns
    with _columns_lock:
        _product_columns = None


def _error_message(error: Exception) -> str:
    return getattr(error, "message", None) or str(error)


def _csv_cell(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def build_export_csv(products: List[Dict[str, Any]]) -> str:
    """One product row per product followed by its variant rows; every data cell is quoted."""
    buffer = io.StringIO()
    buffer.write(",".join(EXPORT_HEADERS) + "\n")
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for product in products:
        options = sorted(product.get("product_options") or [], key=lambda o: o.get("position") or 0)
        option_names = [(options[i].get("name") if i < len(options) else "") or "" for i in range(3)]
        images = ",".join(
            img if isinstance(img, str) else (img or {}).get("url", "")
            for img in product.get("images") or []
        )
        shared = [
            product.get("handle"),
            product.get("title") or product.get("name"),
            product.get("description"),
            product.get("vendor"),
            product.get("product_type"),
            ",".join(product.get("tags") or []),
        ]
        writer.writerow([_csv_cell(v) for v in shared + [
            "product", "", "", "", "", "", "", "", "",
            option_names[0], "", option_names[1], "", option_names[2], "",
            images, product.get("status"),
        ]])
        for variant in product.get("product_variants") or []:
            writer.writerow([_csv_cell(v) for v in shared + [
                "variant",
                variant.get("title"),
                variant.get("sku"),
                variant.get("barcode"),
                variant.get("price"),
                variant.get("compare_at_price"),
                variant.get("cost_per_item"),
                variant.get("weight"),
                variant.get("inventory_quantity"),
                option_names[0], variant.get("option1"),
                option_names[1], variant.get("option2"),
                option_names[2], variant.get("option3"),
                "",
                variant.get("status"),
            ]])
    return buffer.getvalue().rstrip("\n")


def build_template_csv() -> str:
    return "\n".join([",".join(EXPORT_HEADERS)] + TEMPLATE_ROWS)


class ProductImporter:
    """Runs one CSV import for one user. Not shared between requests."""

    def __init__(self, supabase: Client, user_id: str):
        self.supabase = supabase
        self.user_id = user_id
        self.columns: Dict[str, Dict[str, Any]] = {}
        self.errors: List[Dict[str, Any]] = []
        self.created: List[str] = []
        self.updated: List[str] = []
        self.success = 0
        self.skipped = 0
        self.product_ids: Dict[str, str] = {}
        self.option_values: Dict[str, Dict[str, List[str]]] = {}
        self.existing_handles: Set[str] = set()
        self.counters = {"product_rows": 0, "variant_rows": 0, "product_fallbacks": 0, "product_final_failures": 0}

    def _error(self, row: int, field: str, message: str) -> None:
        self.errors.append({"row": row, "field": field, "message": message})

    @property
    def conflict_column(self) -> str:
        if not self.columns or "handle" in self.columns:
            return "handle"
        if "title" in self.columns:
            return "title"
        return "name" if "name" in self.columns else "handle"

    def _has(self, column: str) -> bool:
        # no columns means the schema is unknown; keep everything
        return not self.columns or column in self.columns

    def run(self, text: str) -> Dict[str, Any]:
        records = split_csv_records(text)
        if not records:
            return self._result(records, [], "Import completed. 0 items processed.")
        headers = [clean_header(h) for h in parse_csv_line(records[0])]
        data_records = records[1:]
        first_prices = first_variant_prices(headers, data_records)
        self.columns = get_product_columns(self.supabase)
        self._load_existing_handles(headers, data_records)

        for index, record in enumerate(data_records, start=1):
            try:
                self._process_row(index, map_row(headers, parse_csv_line(record)), first_prices)
            except Exception as e:
                logger.error(f"Import row {index} failed: {e}")
                self._error(index, "general", _error_message(e))

        self._apply_option_values()

        message = f"Import completed. {self.success} items processed."
        if self.success == 0 and not self.errors:
            message += ' No valid product rows found. Make sure your CSV has "handle" and "title" columns with data.'
        if self.skipped:
            message += f" {self.skipped} line(s) skipped."
        logger.info(f"CSV import by {self.user_id}: {self.success} processed, {len(self.errors)} messages")
        return self._result(records, headers, message)

    def _result(self, records: List[str], headers: List[str], message: str) -> Dict[str, Any]:
        return {
            "success": True,
            "message": message,
            "results": {
                "success": self.success,
                "errors": self.errors,
                "created_products": self.created,
                "updated_products": self.updated,
            },
            "debug": {
                "total_lines": len(records),
                "headers": headers,
                **self.counters,
                "product_table_columns": sorted(self.columns),
            },
        }

    def _load_existing_handles(self, headers: List[str], records: List[str]) -> None:
        handles = {map_row(headers, parse_csv_line(r)).get("handle") for r in records}
        handles.discard(None)
        handles.discard("")
        if not handles:
            return
        try:
            result = self.supabase.table("products")\
                .select("id, handle")\
                .in_("handle", sorted(handles))\
                .execute()
        except Exception as e:
            logger.warning(f"Existing handle lookup failed: {e}")
            return
        for product in result.data or []:
            self.existing_handles.add(product["handle"])
            self.product_ids[product["handle"]] = product["id"]

    def _process_row(self, index: int, row: Dict[str, str], first_prices: Dict[str, float]) -> None:
        entry_type = normalize_entry_type(row.get("entry_type"))
        row["entry_type"] = entry_type
        if "status" in row:
            row["status"] = normalize_status(row["status"])

        handle, title = row.get("handle"), row.get("title")
        if handle and title and handle.lower() == "handle" and title.lower() == "title":
            self.skipped += 1
            self._error(index, "skip", "Skipped repeated header row")
            return

        if entry_type == "product" or (not entry_type and handle and title):
            self.counters["product_rows"] += 1
            self._import_product(index, row, first_prices)
        elif entry_type == "variant":
            self.counters["variant_rows"] += 1
            self._import_variant(index, row)
        else:
            self.skipped += 1
            self._error(
                index, "skip",
                f"Skipped: entry_type='{entry_type}' handle='{handle or ''}' title='{title or ''}'"
            )

    def build_product_payload(self, row: Dict[str, str], first_prices: Dict[str, float], warnings: List[str]) -> Dict[str, Any]:
        description = row.get("description") or ""
        sanitized = sanitize_html(description)
        if description and sanitized != description:
            warnings.append("description sanitized")
        if len(sanitized) > MAX_DESCRIPTION_LENGTH:
            sanitized = sanitized[:MAX_DESCRIPTION_LENGTH]
            warnings.append("description truncated")

        images = split_list(row.get("image_urls"))
        price = parse_float(row.get("variant_price"))
        if price is not None and price >= 0:
            warnings.append("price from same row variant")
        elif row["handle"] in first_prices:
            price = first_prices[row["handle"]]
            warnings.append("price derived from first variant")
        else:
            price = 0
            warnings.append("price defaulted to 0")

        payload = {
            "handle": row["handle"],
            "title": row["title"],
            "name": row["title"] or row["handle"],
            "description": sanitized,
            "vendor": row.get("vendor"),
            "product_type": row.get("product_type"),
            "tags": split_list(row.get("tags")),
            "status": row.get("status") or "active",
            "image": images[0] if images else None,
            "images": images,
            "created_by": self.user_id,
            "updated_by": self.user_id,
            "price": price,
        }

        if self.columns:
            for column in ("created_by", "updated_by", "tags", "images", "description"):
                if column not in self.columns:
                    payload.pop(column, None)
                    warnings.append(f"{column} missing; omitted")
            if "image" not in self.columns:
                payload.pop("image", None)
            if "base_price" in self.columns:
                payload["base_price"] = payload["price"]
                if "price" not in self.columns:
                    payload.pop("price")
                    warnings.append("using base_price (no price column)")
                else:
                    warnings.append("mirrored price to base_price")
        return payload

    def _upsert(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        result = self.supabase.table("products")\
            .upsert(payload, on_conflict=self.conflict_column)\
            .execute()
        if not result.data:
            raise RuntimeError("Upsert returned no row")
        return result.data[0]

    def upsert_with_fallbacks(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Full payload first, then smaller ones. Raises the last error when every attempt fails."""
        try:
            return self._upsert(payload)
        except Exception as e:
            last_error = e
            logger.warning(f"Upsert of {payload.get('handle')} failed, trying fallbacks: {_error_message(e)}")

        if 'null value in column "price"' in _error_message(last_error).lower():
            if self._has("price"):
                payload["price"] = payload.get("price") or 0
            elif "base_price" in self.columns:
                payload["base_price"] = payload.get("base_price") or 0
            try:
                return self._upsert(payload)
            except Exception as e:
                last_error = e

        self.counters["product_fallbacks"] += 1
        reduced = dict(payload)
        for group in FALLBACK_FIELD_GROUPS:
            for key in group:
                reduced.pop(key, None)
            try:
                return self._upsert(reduced)
            except Exception as e:
                last_error = e

        minimal = {
            "handle": payload["handle"],
            "title": payload["title"],
            "name": payload.get("name") or payload["title"],
            "status": payload.get("status") or "active",
        }
        if self._has("price"):
            minimal["price"] = 0
        try:
            return self._upsert(minimal)
        except Exception as e:
            last_error = e
        raise last_error

    def _import_product(self, index: int, row: Dict[str, str], first_prices: Dict[str, float]) -> None:
        if not row.get("handle") or not row.get("title"):
            self._error(index, "required", "Missing required fields: handle or title")
            return

        warnings: List[str] = []
        payload = self.build_product_payload(row, first_prices, warnings)
        try:
            product = self.upsert_with_fallbacks(payload)
        except Exception as e:
            self.counters["product_final_failures"] += 1
            logger.error(f"Product {row['handle']} failed after fallbacks: {_error_message(e)}")
            self._error(index, "product", f"Failed to create product {row['handle']}: {_error_message(e)}")
            return

        self.product_ids[row["handle"]] = product["id"]
        if warnings:
            self._error(index, "warning", "; ".join(warnings))

        if row.get("variant_sku") or row.get("variant_price"):
            self._insert_variant(index, product["id"], row, default_title="Default")

        option_names = [row.get(f"option{n}_name") for n in (1, 2, 3)]
        if option_names[0]:
            self._replace_options(product["id"], option_names)

        if row["handle"] in self.existing_handles:
            self.updated.append(row["handle"])
        else:
            self.created.append(row["handle"])
            self.existing_handles.add(row["handle"])
        self.success += 1

    def _replace_options(self, product_id: str, names: List[Optional[str]]) -> None:
        self.supabase.table("product_options")\
            .delete()\
            .eq("product_id", product_id)\
            .execute()
        for position, name in enumerate(names, start=1):
            if not name:
                continue
            try:
                self.supabase.table("product_options").insert({
                    "product_id": product_id,
                    "name": name,
                    "values": [],
                    "position": position
                }).execute()
            except Exception as e:
                logger.error(f"Creating option {name} for {product_id} failed: {e}")

    def _variant_payload(self, product_id: str, row: Dict[str, str], default_title: Optional[str]) -> Dict[str, Any]:
        return {
            "product_id": product_id,
            "title": row.get("variant_title") or default_title,
            "sku": row.get("variant_sku") or None,
            "barcode": row.get("variant_barcode") or None,
            "price": parse_float(row.get("variant_price")) or 0,
            "compare_at_price": parse_float(row.get("variant_compare_price")),
            "cost_per_item": parse_float(row.get("variant_cost")),
            "weight": parse_float(row.get("variant_weight")),
            "inventory_quantity": parse_int(row.get("variant_inventory")),
            "option1": row.get("option1_value") or None,
            "option2": row.get("option2_value") or None,
            "option3": row.get("option3_value") or None,
            "status": "active",
        }

    def _insert_variant(self, index: int, product_id: str, row: Dict[str, str], default_title=None) -> bool:
        try:
            self.supabase.table("product_variants")\
                .insert(self._variant_payload(product_id, row, default_title))\
                .execute()
            return True
        except Exception as e:
            logger.error(f"Variant insert failed on row {index}: {e}")
            self._error(index, "variant", f"Failed to create variant: {_error_message(e)}")
            return False

    def _import_variant(self, index: int, row: Dict[str, str]) -> None:
        handle = row.get("handle")
        product_id = self.product_ids.get(handle) if handle else None
        if product_id is None and handle:
            result = self.supabase.table("products")\
                .select("id")\
                .eq("handle", handle)\
                .limit(1)\
                .execute()
            if result.data:
                product_id = result.data[0]["id"]
                self.product_ids[handle] = product_id
        if product_id is None:
            self._error(index, "handle", f"Product with handle {handle} not found for variant")
            return

        if not self._insert_variant(index, product_id, row):
            return

        values = self.option_values.setdefault(product_id, {})
        for n in (1, 2, 3):
            name, value = row.get(f"option{n}_name"), row.get(f"option{n}_value")
            if name and value:
                bucket = values.setdefault(name, [])
                if value not in bucket:
                    bucket.append(value)
        self.success += 1

    def _apply_option_values(self) -> None:
        for product_id, options in self.option_values.items():
            for name, values in options.items():
                try:
                    self.supabase.table("product_options")\
                        .update({"values": values})\
                        .eq("product_id", product_id)\
                        .eq("name", name)\
                        .execute()
                except Exception as e:
                    logger.error(f"Updating option values for {product_id}/{name} failed: {e}")
