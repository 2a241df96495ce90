# Supabase table: product_pricing
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:
- id: uuid (primary key)
- product_id: uuid (foreign key to products.id, not null)
- customer_type: text (not null) - B2C | B2B
- customer_category: text (nullable) - Normal | Standard | Premium | Bronze | Silver | Gold
- price: numeric (not null)
- min_quantity: integer (nullable)
- max_quantity: integer (nullable)
- valid_from: timestamptz (nullable)
- valid_to: timestamptz (nullable)
- is_active: boolean (default: true)
- created_at: timestamp (default: now())

Pricing also reads these profiles columns: customer_type, customer_category,
b2b_category, gst_verified, gstin, gst_verification_date, business_name,
business_address.
"""
