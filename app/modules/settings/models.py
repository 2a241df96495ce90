# Supabase table: settings
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:

settings:
- id: uuid (primary key)
- key: text (unique, not null)
- value: jsonb (older rows may hold a JSON-encoded string)
- description: text (nullable)
- created_at: timestamptz
- updated_at: timestamptz

Public keys (readable without signing in): site_branding, payment_phonepe_public,
payment_razorpay_public, feature_flags_public.

Payment methods are stored one row per method under payment_<method_id>, e.g.
payment_paytm = {"id": "paytm", "name": "Paytm", "type": "online", "enabled": true, "config": {...}}
"""
