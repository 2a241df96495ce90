# Supabase tables: products, product_variants, product_options
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py / csv_import.py

"""
Expected Supabase table structure:

products:
- id: uuid (primary key)
- handle: text (unique) - URL slug, also the CSV import key
- title: text (not null)
- name: text - legacy title column, still NOT NULL on older deployments
- description: text (nullable, sanitized HTML)
- vendor: text (nullable)
- product_type: text (nullable)
- category: text (nullable)
- brand: text (nullable)
- tags: text[] (nullable)
- status: text (default: 'active') - active | draft
- image: text (nullable) - first image URL
- images: text[] (nullable)
- price: numeric (not null on most deployments)
- base_price: numeric (some deployments use it instead of / next to price)
- mrp, offer_price: numeric (nullable)
- stock_quantity: integer (default: 0)
- sku: text (nullable)
- zoho_item_id: text (nullable)
- seo_title, seo_description: text (nullable)
- created_by / updated_by: uuid (nullable)
- created_at / updated_at: timestamptz

Columns differ between deployments; the importer reads
information_schema.columns and drops keys the table does not have.

product_variants:
- id: uuid, product_id: uuid (references products.id)
- title, sku, barcode: text
- price, compare_at_price, cost_per_item, weight: numeric
- inventory_quantity: integer
- option1, option2, option3: text
- position: integer, status: text

product_options:
- id: uuid, product_id: uuid (references products.id)
- name: text, values: text[], position: integer (1..3)
"""
