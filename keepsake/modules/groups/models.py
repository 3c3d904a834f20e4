# Supabase tables: groups, group_members, join_requests
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in store.py

"""
Expected Supabase table structure:

groups:
- id: uuid (primary key)
- name: text (not null)
- code: text (not null, unique) - 6 characters from A-Z0-9
- admin_id: uuid (foreign key to profiles.id, not null) - primary admin pointer
- created_by: uuid (foreign key to profiles.id, not null)
- created_at: timestamp (default: now())

group_members:
- group_id: uuid (foreign key to groups.id, not null)
- user_id: uuid (foreign key to profiles.id, not null)
- is_admin: boolean (not null, default: false)
- joined_at: timestamp (default: now())
- unique constraint on (group_id, user_id)

join_requests:
- id: uuid (primary key)
- group_id: uuid (foreign key to groups.id, not null)
- user_id: uuid (foreign key to profiles.id, not null)
- status: text (not null, default: 'pending') - values: pending, approved, rejected
- requested_at: timestamp (default: now())
- reviewed_at: timestamp (nullable)
- reviewed_by: uuid (nullable)

profiles:
- id: uuid (primary key, matches auth.users.id)
- name: text
- email: text

Database functions (called through supabase.rpc). Both lock the groups row,
so a transfer and a member removal on the same group run one after the other.

create or replace function transfer_group_admin(
    p_group_id uuid, p_leaving_user_id uuid, p_target_user_id uuid
) returns text language plpgsql as $$
declare
    v_admin uuid;
begin
    select admin_id into v_admin from groups where id = p_group_id for update;
    if not found then
        return 'group_missing';
    end if;
    if v_admin is distinct from p_leaving_user_id and v_admin is distinct from p_target_user_id then
        return 'admin_changed';
    end if;
    update group_members set is_admin = true
        where group_id = p_group_id and user_id = p_target_user_id;
    if not found then
        return 'target_missing';
    end if;
    update groups set admin_id = p_target_user_id where id = p_group_id;
    delete from group_members where group_id = p_group_id and user_id = p_leaving_user_id;
    return 'ok';
end;
$$;

create or replace function remove_group_member(p_group_id uuid, p_user_id uuid)
returns boolean language plpgsql as $$
begin
    perform 1 from groups
        where id = p_group_id and admin_id is distinct from p_user_id
        for update;
    if not found then
        return false;
    end if;
    delete from group_members where group_id = p_group_id and user_id = p_user_id;
    return found;
end;
$$;
"""
