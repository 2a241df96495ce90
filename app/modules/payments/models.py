# Supabase tables: payment_transactions (gateway config lives in settings)
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:

payment_transactions:
- id: uuid (primary key)
- order_id: uuid (references orders.id)
- transaction_id: text (unique) - our id sent to the gateway, e.g. PAYTM_<order>_<ms>
- payment_method: text - paytm | razorpay
- amount: numeric
- status: text - initiated | pending | success | failed | refunded
- gateway_transaction_id: text (nullable)
- gateway_response: jsonb (nullable)
- response_code: text (nullable)
- created_at: timestamptz
- updated_at: timestamptz

settings rows read here:
- payment_paytm: {"enabled": bool, "config": {"merchantId", "merchantKey", "websiteName",
                  "industryType", "channelId", "environment": "staging" | "production"}}
- payment_razorpay: {"enabled": bool, "config": {"keyId", "keySecret"}}
"""
