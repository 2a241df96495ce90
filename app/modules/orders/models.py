# Supabase tables: orders, order_items
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:

orders:
- id: uuid (primary key)
- customer_id: uuid (nullable, references profiles.id)
- customer_name: text (not null)
- customer_email: text (nullable)
- customer_phone: text (nullable)
- status: text - Pending | Awaiting Payment | Payment Confirmed | Confirmed | Processing |
          Ready to Ship | Shipped | Ready for Pickup | Completed | Delivered | Cancelled | Rejected
- type: text - Delivery | Pickup | Walk-in
- subtotal: numeric
- gst_amount: numeric
- total: numeric
- payment_method: text (nullable)
- payment_status: text (nullable) - pending | paid | failed | refunded
- notes: text (nullable)
- items: jsonb (online orders keep the cart and delivery details here)
- processed_by: uuid (nullable)
- created_at: timestamptz
- updated_at: timestamptz

order_items:
- id: uuid (primary key)
- order_id: uuid (references orders.id, cascade delete)
- product_id: uuid (nullable)
- name: text
- quantity: integer
- price: numeric
- gst_rate: numeric (walk-in items are always 18)
"""
