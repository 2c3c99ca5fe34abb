# Supabase Auth + table: profiles
# Authentication is delegated to Supabase Auth (auth.users).
# Each auth user has one row in profiles, created on registration.

"""
Supabase Auth provides:
- auth.sign_up() - Register new users
- auth.sign_in_with_password() - Authenticate users (also used to verify the current password)
- auth.get_user() - Get current user from JWT token
- auth.sign_out() - Logout users
- auth.admin.update_user_by_id() - Password changes (service role key)

Expected Supabase table structure (profiles):
- id: uuid (primary key, equals auth.users.id)
- email: text
- full_name: text (nullable)
- subscription_tier: text (free | pro | enterprise, default: free)
- api_credits: integer (default: 1000)
- metadata: jsonb (notification settings, payment methods, billing history, subscription)
- created_at: timestamp (default: now())
- updated_at: timestamp (nullable)
"""
