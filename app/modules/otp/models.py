# Supabase table: otp_verifications
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:

otp_verifications:
- id: uuid (primary key, default: gen_random_uuid())
- code: text (not null) - 4 digit code
- phone: text (nullable)
- email: text (nullable)
- purpose: text (not null) - login | registration | password_reset | transaction | agent_order
- channel: text (not null) - sms | email | whatsapp, the channel that delivered the code
- attempts: integer (default: 0)
- max_attempts: integer (default: 3)
- verified: boolean (default: false)
- verified_at: timestamp (nullable)
- expires_at: timestamp (not null)
- user_id: uuid (nullable)
- order_id: text (nullable) - set for agent_order codes
- fallback_channels: text[] (default: '{}')
- last_attempt_at: timestamp (nullable)
- created_at: timestamp (default: now()) - reset on every resend, drives the resend cooldown

When Supabase is not configured the same records are kept in process memory.
"""
