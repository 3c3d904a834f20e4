# Supabase tables: memories, memory_media, memory_groups
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in store.py

"""
Expected Supabase table structure:

memories:
- id: uuid (primary key)
- user_id: uuid (foreign key to profiles.id, not null) - owner
- title: text (not null)
- body: text (nullable)
- year: integer (nullable)
- category: text (nullable)
- visibility: text (not null) - values: everyone, private, scheduled, group
- release_at: timestamp (nullable) - set for every scheduled memory, later than created_at
- created_at: timestamp (default: now())

There is no opened/ready column. Readiness is derived from release_at on
every read.

memory_media:
- id: uuid (primary key)
- memory_id: uuid (foreign key to memories.id, not null)
- media_url: text (not null) - store-relative filename or URL
- media_type: text (not null) - values: image, audio
- sort_order: integer (not null, default: 0)
- created_at: timestamp (default: now())

memory_groups:
- memory_id: uuid (foreign key to memories.id, not null)
- group_id: uuid (foreign key to groups.id, not null)
- shared_by: uuid (foreign key to profiles.id, not null) - the memory owner at share time
- created_at: timestamp (default: now())
- unique constraint on (memory_id, group_id)

A memory is visible to a group through its memory_groups rows, whatever its
visibility. Capsules scheduled for groups are linked the same way.
"""
