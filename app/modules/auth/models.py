# Supabase Auth + profiles
# Authentication is handled by Supabase Auth (auth.users table)
# Store-specific user data lives in public.profiles

"""
Supabase Auth provides:
- auth.sign_in_with_password() - Authenticate users
- auth.get_user() - Get current user from JWT token
- auth.refresh_session() - Exchange a refresh token for a new session
- auth.admin.create_user() - Create a confirmed user after OTP verification

profiles:
- id: uuid (primary key, references auth.users.id)
- email: text
- name / full_name: text (nullable)
- phone / mobile: text (nullable)
- role: text (default: 'customer') - customer | sales | service_engineer | accounts | manager | admin | superadmin
- customer_type: text (default: 'B2C') - B2C | B2B
- customer_category: text (nullable) - Normal | Standard | Premium (B2C), Bronze | Silver | Gold (B2B)
- discount_percentage: numeric (nullable)
- gstin: text (nullable)
- gst_verified: boolean (default: false)
- business_name: text (nullable)
- is_active: boolean (default: true)
- two_factor_enabled: boolean (default: false)
- two_factor_secret: text (nullable)
- two_factor_method: text (nullable)
- two_factor_backup_codes: text[] (nullable)
- two_factor_backup_codes_used: text[] (nullable)
- two_factor_setup_at: timestamp (nullable)
- created_at: timestamp (default: now())
- updated_at: timestamp (nullable)

Signup is two-step: /auth/signup only sends a registration OTP; the auth user
and profile are created by /auth/complete-signup once that OTP is verified.
"""
