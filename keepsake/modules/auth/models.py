# Supabase Auth
# Sign-up and sign-in happen in the client apps; this service only resolves
# bearer tokens to users via auth.get_user().

"""
Supabase Auth provides:
- auth.get_user() - Get current user from JWT token

User profile data (name, email) used in member listings lives in the public
profiles table, keyed by auth.users.id.
"""
