# Supabase tables: profiles, auth.users
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py
# Authentication is handled by Supabase Auth (auth.users table)

"""
Expected Supabase table structure:

profiles:
- id: uuid (primary key, references auth.users.id, cascade delete)
- email: text
- name: text
- full_name: text (nullable)
- mobile / phone: text (nullable)
- role: text - customer | sales | service_engineer | accounts | manager | admin | superadmin
- is_active: boolean (default: true)
- customer_type: text - B2C | B2B
- customer_category: text - Normal | Standard | Premium
- discount_percentage: numeric (nullable)
- address: jsonb (nullable)
- gstin / gst_verified / business_name / b2b_category: B2B fields (see pricing)
- two_factor_*: see two_factor module
- created_at: timestamptz
- updated_at: timestamptz

Note: Passwords and sessions live in auth.users, managed by Supabase Auth.
Deleting the auth user removes the profile through the foreign key.
"""
