# Supabase tables: offers, offer_usage, auto_offers, coupons
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py / discounts.py

"""
Expected Supabase table structure:

offers (current layout):
- id: uuid (primary key)
- title: text (not null)
- description: text (nullable)
- offer_code: text (unique, nullable)
- discount_type: text - percentage | fixed_amount | buy_x_get_y | free_shipping
- discount_value: numeric (nullable)
- minimum_purchase_amount: numeric (nullable)
- maximum_discount_amount: numeric (nullable)
- start_date / end_date: timestamptz (not null, end after start)
- is_active: boolean (default: true)
- is_featured: boolean (default: false)
- display_on_homepage: boolean (default: false)
- priority: integer (default: 0)
- banner_text: text (nullable)
- banner_color: text (default: '#dc2626')
- applicable_categories: text[] (nullable)
- applicable_products: uuid[] (nullable)
- usage_limit / usage_limit_per_customer: integer (nullable)
- usage_count: integer (default: 0)
- customer_eligibility: text (default: 'all') - all | new_customers | existing_customers | vip_customers
- created_by: uuid (nullable)
- created_at / updated_at: timestamptz

Older deployments still carry the first offers layout:
- type: offer_type enum (category_discount | customer_tier | minimum_order | seasonal | product_specific)
- discount_percentage / discount_amount: numeric
- minimum_order_amount: numeric
- category: text, customer_tier: text, product_ids: uuid[]
Rows from either layout are normalized into one shape before they are returned.

offer_usage:
- id: uuid, offer_id: uuid (references offers.id), user_id: uuid, order_id: uuid,
  discount_amount: numeric, created_at: timestamptz

coupons:
- id: uuid, code: text (unique, stored upper-case), title: text, description: text,
  type: text - percentage | fixed, value: numeric,
  min_purchase: numeric (nullable), max_discount_amount: numeric (nullable),
  applicable_category: text (nullable), applicable_product_id: uuid (nullable),
  usage_limit: integer (nullable), used_count: integer (default: 0),
  status: text (default: 'active'), start_date / expiry_date: timestamptz (nullable)

auto_offers:
- id: uuid, title: text, description: text
- discount_type: text - percentage | fixed_amount, discount_value: numeric
- max_discount_amount: numeric (nullable)
- conditions: jsonb - customer_category[], minimum_order_value, applicable_categories[],
  applicable_product_ids[], valid_from, valid_to
- is_active: boolean, auto_apply: boolean, priority: integer
"""
