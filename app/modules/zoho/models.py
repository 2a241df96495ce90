# Supabase tables: zoho_config, stock_movements (products.zoho_item_id / zoho_synced_at)
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in token_manager.py / sync_service.py

"""
Expected Supabase table structure:

zoho_config:
- config_key: text (primary key) - client_id | client_secret | organization_id |
  redirect_uri | access_token | refresh_token
- config_value: text
- encrypted: boolean (default: false)
- expires_at: timestamptz (nullable, access_token only)
- updated_at: timestamptz

stock_movements:
- id: uuid (primary key)
- product_id: uuid (references products.id)
- movement_type: text - in | out
- quantity: integer
- reason: text
- created_at: timestamptz

products carries zoho_item_id (text) and zoho_synced_at (timestamptz).
Values missing from zoho_config fall back to the ZOHO_* environment settings.
"""
