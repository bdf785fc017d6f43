"""Contact persistence for the import engine.

``ContactRepository`` is the contract the engine depends on.
``PostgresContactRepository`` implements it on asyncpg against the tables
created by the ``contacts_001`` Alembic revision.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, Protocol

import asyncpg

from .errors import RepositoryError
from .mapping import FieldMapping
from .models import LOCATION_FIELDS, Contact, ContactType

if TYPE_CHECKING:
    from .report import ImportResult

logger = logging.getLogger(__name__)

CORE_COLUMNS: tuple[str, ...] = (
    "external_identifier",
    "first_name",
    "middle_name",
    "last_name",
    "prefix",
    "suffix",
    "gender",
    "birth_date",
    "job_title",
    "organization_name",
    "legal_name",
    "sic_code",
    "household_name",
    "nick_name",
    "note",
)
ADDRESS_COLUMNS: tuple[str, ...] = (
    "street_address",
    "supplemental_address_1",
    "supplemental_address_2",
    "city",
    "postal_code",
    "state_province",
    "country",
)

# SQL expression for each field inside _SELECT_CONTACT.
_FIELD_SQL: dict[str, str] = {name: f"c.{name}" for name in CORE_COLUMNS}
_FIELD_SQL["birth_date"] = "c.birth_date::text"
_FIELD_SQL["email"] = "e.email"
_FIELD_SQL["phone"] = "p.phone"
_FIELD_SQL.update({name: f"a.{name}" for name in ADDRESS_COLUMNS})

_SELECT_CONTACT = f"""
    SELECT
        c.id,
        c.contact_type,
        {", ".join(f"c.{col}" for col in CORE_COLUMNS)},
        e.email,
        p.phone,
        {", ".join(f"a.{col}" for col in ADDRESS_COLUMNS)},
        COALESCE(
            (
                SELECT array_agg(g.name ORDER BY g.name)
                FROM group_contacts gc
                JOIN groups g ON g.id = gc.group_id
                WHERE gc.contact_id = c.id
            ),
            '{{}}'
        ) AS groups,
        COALESCE(
            (
                SELECT array_agg(t.name ORDER BY t.name)
                FROM entity_tags et
                JOIN tags t ON t.id = et.tag_id
                WHERE et.contact_id = c.id
            ),
            '{{}}'
        ) AS tags
    FROM contacts c
    LEFT JOIN contact_emails e ON e.contact_id = c.id AND e.is_primary
    LEFT JOIN contact_phones p ON p.contact_id = c.id AND p.is_primary
    LEFT JOIN contact_addresses a ON a.contact_id = c.id AND a.is_primary
"""


class RowRejectedError(RepositoryError):
    """PostgreSQL refused one row's values; the rest of the job can go on."""


class DuplicateIdentifierError(RowRejectedError):
    """Raised when a write would reuse another contact's External Identifier."""


# Value-level rejections (bad encoding, NUL bytes, out-of-range dates, CHECK
# constraints). Unique violations are reported as DuplicateIdentifierError.
_ROW_DATA_ERRORS = (asyncpg.DataError, asyncpg.IntegrityConstraintViolationError)


class ContactRepository(Protocol):
    """Persistence contract for contact import."""

    async def get(self, contact_id: int) -> Contact | None: ...

    async def find_by_external_identifier(self, external_identifier: str) -> Contact | None: ...

    async def find_candidates(
        self,
        contact_type: ContactType,
        values: Mapping[str, Any],
        fields: Iterable[str],
    ) -> list[Contact]:
        """Contacts of *contact_type* sharing at least one of *fields* with *values*."""
        ...

    async def create(self, contact_type: ContactType, values: Mapping[str, Any]) -> Contact: ...

    async def update(self, contact_id: int, changes: Mapping[str, Any]) -> Contact: ...

    async def find_group(self, name: str) -> int | None: ...

    async def create_group(self, name: str) -> int: ...

    async def find_tag(self, name: str) -> int | None: ...

    async def create_tag(self, name: str) -> int: ...

    async def add_to_group(self, group_id: int, contact_ids: Sequence[int]) -> None: ...

    async def add_tag(self, tag_id: int, contact_ids: Sequence[int]) -> None: ...

    async def save_mapping(self, name: str, mapping: FieldMapping) -> None: ...

    async def load_mapping(self, name: str, contact_type: ContactType) -> FieldMapping | None: ...

    async def list_mappings(
        self, contact_type: ContactType | None = None
    ) -> list[tuple[str, FieldMapping]]: ...

    async def record_job(self, result: ImportResult) -> None: ...


def _row_to_contact(row: asyncpg.Record) -> Contact:
    data = dict(row)
    data["groups"] = list(data.get("groups") or [])
    data["tags"] = list(data.get("tags") or [])
    return Contact(**data)


def _display_names(contact_type: ContactType, values: Mapping[str, Any]) -> tuple[str, str]:
    draft = Contact(
        id=0,
        contact_type=contact_type,
        **{k: v for k, v in values.items() if k in Contact.model_fields},
    )
    return draft.display_name, draft.sort_name


class PostgresContactRepository:
    """asyncpg-backed :class:`ContactRepository`."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get(self, contact_id: int) -> Contact | None:
        row = await self._pool.fetchrow(f"{_SELECT_CONTACT} WHERE c.id = $1", contact_id)
        return _row_to_contact(row) if row is not None else None

    async def find_by_external_identifier(self, external_identifier: str) -> Contact | None:
        row = await self._pool.fetchrow(
            f"{_SELECT_CONTACT} WHERE c.external_identifier = $1",
            external_identifier,
        )
        return _row_to_contact(row) if row is not None else None

    async def find_candidates(
        self,
        contact_type: ContactType,
        values: Mapping[str, Any],
        fields: Iterable[str],
    ) -> list[Contact]:
        clauses: list[str] = []
        args: list[Any] = [contact_type.value]
        for name in fields:
            value = values.get(name)
            if value is None or not str(value).strip():
                continue
            args.append(str(value).strip().lower())
            clauses.append(f"lower(trim({_FIELD_SQL[name]})) = ${len(args)}")
        if not clauses:
            return []
        rows = await self._pool.fetch(
            f"{_SELECT_CONTACT} WHERE c.contact_type = $1 AND ({' OR '.join(clauses)}) "
            "ORDER BY c.id",
            *args,
        )
        return [_row_to_contact(row) for row in rows]

    async def create(self, contact_type: ContactType, values: Mapping[str, Any]) -> Contact:
        display_name, sort_name = _display_names(contact_type, values)
        core = {col: values[col] for col in CORE_COLUMNS if values.get(col) is not None}
        columns = ["contact_type", "display_name", "sort_name", *core]
        params = [contact_type.value, display_name, sort_name, *core.values()]
        placeholders = ", ".join(f"${idx}" for idx in range(1, len(params) + 1))

        try:
            async with self._pool.acquire() as conn, conn.transaction():
                contact_id = await conn.fetchval(
                    f"INSERT INTO contacts ({', '.join(columns)}) "
                    f"VALUES ({placeholders}) RETURNING id",
                    *params,
                )
                await self._write_location(conn, contact_id, values)
                row = await conn.fetchrow(f"{_SELECT_CONTACT} WHERE c.id = $1", contact_id)
        except asyncpg.UniqueViolationError as exc:
            raise DuplicateIdentifierError(
                f"External Identifier {values.get('external_identifier')!r} is already in use"
            ) from exc
        except _ROW_DATA_ERRORS as exc:
            raise RowRejectedError(f"Contact could not be stored: {exc}") from exc

        contact = _row_to_contact(row)
        logger.debug("Created %s contact %s", contact_type.value, contact.id)
        return contact

    async def update(self, contact_id: int, changes: Mapping[str, Any]) -> Contact:
        core = {col: changes[col] for col in CORE_COLUMNS if col in changes}

        try:
            async with self._pool.acquire() as conn, conn.transaction():
                contact = await self._update_in(conn, contact_id, core, changes)
        except asyncpg.UniqueViolationError as exc:
            raise DuplicateIdentifierError(
                f"External Identifier {changes.get('external_identifier')!r} is already in use"
            ) from exc
        except _ROW_DATA_ERRORS as exc:
            raise RowRejectedError(f"Contact {contact_id} could not be updated: {exc}") from exc
        logger.debug("Updated contact %s fields=%s", contact_id, sorted(changes))
        return contact

    async def _update_in(
        self,
        conn: asyncpg.Connection,
        contact_id: int,
        core: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> Contact:
        if core:
            assignments = ", ".join(f"{col} = ${idx}" for idx, col in enumerate(core, start=2))
            status = await conn.execute(
                f"UPDATE contacts SET {assignments}, updated_at = now() WHERE id = $1",
                contact_id,
                *core.values(),
            )
            if status == "UPDATE 0":
                raise RepositoryError(f"Contact {contact_id} does not exist")
        await self._write_location(conn, contact_id, changes)

        row = await conn.fetchrow(f"{_SELECT_CONTACT} WHERE c.id = $1", contact_id)
        if row is None:
            raise RepositoryError(f"Contact {contact_id} does not exist")
        contact = _row_to_contact(row)
        await conn.execute(
            "UPDATE contacts SET display_name = $2, sort_name = $3, updated_at = now() "
            "WHERE id = $1",
            contact_id,
            contact.display_name,
            contact.sort_name,
        )
        return contact

    async def _write_location(
        self,
        conn: asyncpg.Connection,
        contact_id: int,
        values: Mapping[str, Any],
    ) -> None:
        """Upsert the primary email/phone/address rows for the fields in *values*."""
        if not any(values.get(name) is not None for name in LOCATION_FIELDS):
            return

        for table, column in (("contact_emails", "email"), ("contact_phones", "phone")):
            value = values.get(column)
            if value is None:
                continue
            status = await conn.execute(
                f"UPDATE {table} SET {column} = $2 WHERE contact_id = $1 AND is_primary",
                contact_id,
                value,
            )
            if status == "UPDATE 0":
                await conn.execute(
                    f"INSERT INTO {table} (contact_id, {column}, is_primary) VALUES ($1, $2, true)",
                    contact_id,
                    value,
                )

        address = {col: values[col] for col in ADDRESS_COLUMNS if values.get(col) is not None}
        if not address:
            return
        assignments = ", ".join(f"{col} = ${idx}" for idx, col in enumerate(address, start=2))
        status = await conn.execute(
            f"UPDATE contact_addresses SET {assignments} WHERE contact_id = $1 AND is_primary",
            contact_id,
            *address.values(),
        )
        if status == "UPDATE 0":
            cols = ", ".join(address)
            placeholders = ", ".join(f"${idx}" for idx in range(2, len(address) + 2))
            await conn.execute(
                f"INSERT INTO contact_addresses (contact_id, is_primary, {cols}) "
                f"VALUES ($1, true, {placeholders})",
                contact_id,
                *address.values(),
            )

    # -- Groups and tags ---------------------------------------------------

    async def find_group(self, name: str) -> int | None:
        return await self._pool.fetchval("SELECT id FROM groups WHERE name = $1", name)

    async def create_group(self, name: str) -> int:
        return await self._pool.fetchval(
            """
            INSERT INTO groups (name) VALUES ($1)
            ON CONFLICT (name) DO UPDATE SET name = EXCLUDED.name
            RETURNING id
            """,
            name,
        )

    async def find_tag(self, name: str) -> int | None:
        return await self._pool.fetchval("SELECT id FROM tags WHERE name = $1", name)

    async def create_tag(self, name: str) -> int:
        return await self._pool.fetchval(
            """
            INSERT INTO tags (name) VALUES ($1)
            ON CONFLICT (name) DO UPDATE SET name = EXCLUDED.name
            RETURNING id
            """,
            name,
        )

    async def add_to_group(self, group_id: int, contact_ids: Sequence[int]) -> None:
        if not contact_ids:
            return
        await self._pool.execute(
            """
            INSERT INTO group_contacts (group_id, contact_id)
            SELECT $1, unnest($2::bigint[])
            ON CONFLICT DO NOTHING
            """,
            group_id,
            list(contact_ids),
        )

    async def add_tag(self, tag_id: int, contact_ids: Sequence[int]) -> None:
        if not contact_ids:
            return
        await self._pool.execute(
            """
            INSERT INTO entity_tags (tag_id, contact_id)
            SELECT $1, unnest($2::bigint[])
            ON CONFLICT DO NOTHING
            """,
            tag_id,
            list(contact_ids),
        )

    # -- Saved mappings ----------------------------------------------------

    async def save_mapping(self, name: str, mapping: FieldMapping) -> None:
        await self._pool.execute(
            """
            INSERT INTO import_mappings (name, contact_type, fields)
            VALUES ($1, $2, $3::jsonb)
            ON CONFLICT (name, contact_type)
            DO UPDATE SET fields = EXCLUDED.fields, updated_at = now()
            """,
            name,
            mapping.contact_type.value,
            json.dumps(mapping.fields),
        )
        logger.info("Saved %s import mapping %r", mapping.contact_type.value, name)

    async def load_mapping(self, name: str, contact_type: ContactType) -> FieldMapping | None:
        raw = await self._pool.fetchval(
            "SELECT fields FROM import_mappings WHERE name = $1 AND contact_type = $2",
            name,
            contact_type.value,
        )
        if raw is None:
            return None
        fields = json.loads(raw) if isinstance(raw, str) else raw
        return FieldMapping(contact_type=contact_type, fields=list(fields))

    async def list_mappings(
        self, contact_type: ContactType | None = None
    ) -> list[tuple[str, FieldMapping]]:
        if contact_type is None:
            rows = await self._pool.fetch(
                "SELECT name, contact_type, fields FROM import_mappings ORDER BY contact_type, name"
            )
        else:
            rows = await self._pool.fetch(
                "SELECT name, contact_type, fields FROM import_mappings "
                "WHERE contact_type = $1 ORDER BY name",
                contact_type.value,
            )
        result: list[tuple[str, FieldMapping]] = []
        for row in rows:
            fields = row["fields"]
            if isinstance(fields, str):
                fields = json.loads(fields)
            result.append(
                (
                    row["name"],
                    FieldMapping(contact_type=ContactType(row["contact_type"]), fields=fields),
                )
            )
        return result

    # -- Job history -------------------------------------------------------

    async def record_job(self, result: ImportResult) -> None:
        counts = result.counts()
        await self._pool.execute(
            """
            INSERT INTO import_jobs (
                id, contact_type, mode, source_name, mapping_name, status,
                total_rows, created, updated, unchanged, duplicates, errors,
                started_at, completed_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)
            """,
            result.job_id,
            result.contact_type.value,
            result.mode.value,
            result.source_name,
            result.mapping_name,
            result.status,
            result.total_rows,
            counts["created"],
            counts["updated"] + counts["filled"],
            counts["unchanged"],
            counts["duplicate"],
            counts["error"],
            result.started_at,
            result.completed_at,
        )
