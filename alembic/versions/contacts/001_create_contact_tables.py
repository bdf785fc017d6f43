"""create_contact_tables

Revision ID: contacts_001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from __future__ import annotations

from alembic import op

# revision identifiers, used by Alembic.
revision = "contacts_001"
down_revision = None
branch_labels = ("contacts",)
depends_on = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS contacts (
            id BIGSERIAL PRIMARY KEY,
            contact_type TEXT NOT NULL
                CHECK (contact_type IN ('Individual', 'Organization', 'Household')),
            external_identifier TEXT UNIQUE,
            first_name TEXT,
            middle_name TEXT,
            last_name TEXT,
            prefix TEXT,
            suffix TEXT,
            gender TEXT,
            birth_date DATE,
            job_title TEXT,
            organization_name TEXT,
            legal_name TEXT,
            sic_code TEXT,
            household_name TEXT,
            nick_name TEXT,
            note TEXT,
            display_name TEXT NOT NULL DEFAULT '',
            sort_name TEXT NOT NULL DEFAULT '',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_contacts_type_sort_name
        ON contacts (contact_type, sort_name)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS contact_emails (
            id BIGSERIAL PRIMARY KEY,
            contact_id BIGINT NOT NULL REFERENCES contacts (id) ON DELETE CASCADE,
            email TEXT NOT NULL,
            is_primary BOOLEAN NOT NULL DEFAULT false
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_contact_emails_lower_email
        ON contact_emails (lower(trim(email)))
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS contact_phones (
            id BIGSERIAL PRIMARY KEY,
            contact_id BIGINT NOT NULL REFERENCES contacts (id) ON DELETE CASCADE,
            phone TEXT NOT NULL,
            is_primary BOOLEAN NOT NULL DEFAULT false
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS contact_addresses (
            id BIGSERIAL PRIMARY KEY,
            contact_id BIGINT NOT NULL REFERENCES contacts (id) ON DELETE CASCADE,
            street_address TEXT,
            supplemental_address_1 TEXT,
            supplemental_address_2 TEXT,
            city TEXT,
            postal_code TEXT,
            state_province TEXT,
            country TEXT,
            is_primary BOOLEAN NOT NULL DEFAULT false
        )
    """)

    for table in ("contact_emails", "contact_phones", "contact_addresses"):
        op.execute(f"""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_{table}_primary
            ON {table} (contact_id) WHERE is_primary
        """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS groups (
            id BIGSERIAL PRIMARY KEY,
            name TEXT NOT NULL UNIQUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS group_contacts (
            group_id BIGINT NOT NULL REFERENCES groups (id) ON DELETE CASCADE,
            contact_id BIGINT NOT NULL REFERENCES contacts (id) ON DELETE CASCADE,
            added_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (group_id, contact_id)
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS tags (
            id BIGSERIAL PRIMARY KEY,
            name TEXT NOT NULL UNIQUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS entity_tags (
            tag_id BIGINT NOT NULL REFERENCES tags (id) ON DELETE CASCADE,
            contact_id BIGINT NOT NULL REFERENCES contacts (id) ON DELETE CASCADE,
            PRIMARY KEY (tag_id, contact_id)
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS import_mappings (
            id BIGSERIAL PRIMARY KEY,
            name TEXT NOT NULL,
            contact_type TEXT NOT NULL,
            fields JSONB NOT NULL DEFAULT '[]',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            UNIQUE (name, contact_type)
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS import_jobs (
            id UUID PRIMARY KEY,
            contact_type TEXT NOT NULL,
            mode TEXT NOT NULL,
            source_name TEXT NOT NULL,
            mapping_name TEXT,
            status TEXT NOT NULL,
            total_rows INTEGER NOT NULL DEFAULT 0,
            created INTEGER NOT NULL DEFAULT 0,
            updated INTEGER NOT NULL DEFAULT 0,
            unchanged INTEGER NOT NULL DEFAULT 0,
            duplicates INTEGER NOT NULL DEFAULT 0,
            errors INTEGER NOT NULL DEFAULT 0,
            started_at TIMESTAMPTZ NOT NULL,
            completed_at TIMESTAMPTZ
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS import_jobs")
    op.execute("DROP TABLE IF EXISTS import_mappings")
    op.execute("DROP TABLE IF EXISTS entity_tags")
    op.execute("DROP TABLE IF EXISTS tags")
    op.execute("DROP TABLE IF EXISTS group_contacts")
    op.execute("DROP TABLE IF EXISTS groups")
    op.execute("DROP TABLE IF EXISTS contact_addresses")
    op.execute("DROP TABLE IF EXISTS contact_phones")
    op.execute("DROP TABLE IF EXISTS contact_emails")
    op.execute("DROP TABLE IF EXISTS contacts")
