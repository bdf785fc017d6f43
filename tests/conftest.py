"""Shared test fixtures for the crmimport test suite."""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
import uuid
from collections.abc import AsyncIterator, Callable, Iterator, Mapping, Sequence
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest

from crmimport.importer import (
    Contact,
    ContactType,
    DuplicateIdentifierError,
    FieldMapping,
    ImportResult,
    RepositoryError,
)

if TYPE_CHECKING:
    from asyncpg.pool import Pool
    from testcontainers.postgres import PostgresContainer

docker_available = shutil.which("docker") is not None
logger = logging.getLogger(__name__)

_TESTCONTAINER_STOP_RETRY_ATTEMPTS = 4
_TESTCONTAINER_STOP_BASE_DELAY_SECONDS = 0.1
_TRANSIENT_DOCKER_TEARDOWN_ERROR_MARKERS = (
    "did not receive an exit event",
    "no such container",
    "is already in progress",
    "is dead or marked for removal",
)


# ---------------------------------------------------------------------------
# In-memory contact store
# ---------------------------------------------------------------------------


class InMemoryContactRepository:
    """Dict-backed ContactRepository used by engine and CLI tests."""

    def __init__(self) -> None:
        self.contacts: dict[int, Contact] = {}
        self.groups: dict[str, int] = {}
        self.group_members: dict[int, set[int]] = {}
        self.tags: dict[str, int] = {}
        self.tagged: dict[int, set[int]] = {}
        self.mappings: dict[tuple[str, ContactType], FieldMapping] = {}
        self.jobs: list[ImportResult] = []
        self._next_id = 1

    def seed(self, contact_type: ContactType, **values: Any) -> Contact:
        """Store a contact directly, bypassing the import path."""
        contact = Contact(id=self._next_id, contact_type=contact_type, **values)
        self.contacts[contact.id] = contact
        self._next_id += 1
        return contact

    def _with_memberships(self, contact: Contact) -> Contact:
        groups = sorted(
            n for n, gid in self.groups.items() if contact.id in self.group_members[gid]
        )
        tags = sorted(n for n, tid in self.tags.items() if contact.id in self.tagged[tid])
        return contact.model_copy(update={"groups": groups, "tags": tags})

    def _check_external(self, external: Any, contact_id: int | None = None) -> None:
        if external is None:
            return
        for other in self.contacts.values():
            if other.external_identifier == external and other.id != contact_id:
                raise DuplicateIdentifierError(
                    f"External Identifier {external!r} is already in use"
                )

    async def get(self, contact_id: int) -> Contact | None:
        contact = self.contacts.get(contact_id)
        return self._with_memberships(contact) if contact is not None else None

    async def find_by_external_identifier(self, external_identifier: str) -> Contact | None:
        for contact in self.contacts.values():
            if contact.external_identifier == external_identifier:
                return self._with_memberships(contact)
        return None

    async def find_candidates(
        self, contact_type: ContactType, values: Mapping[str, Any], fields: Any
    ) -> list[Contact]:
        wanted = {
            name: str(values[name]).strip().lower()
            for name in fields
            if values.get(name) is not None and str(values[name]).strip()
        }
        found = []
        for contact in self.contacts.values():
            if contact.contact_type is not contact_type:
                continue
            for name, value in wanted.items():
                stored = contact.value(name)
                if stored is not None and str(stored).strip().lower() == value:
                    found.append(contact)
                    break
        return sorted(found, key=lambda c: c.id)

    async def create(self, contact_type: ContactType, values: Mapping[str, Any]) -> Contact:
        self._check_external(values.get("external_identifier"))
        return self.seed(contact_type, **values)

    async def update(self, contact_id: int, changes: Mapping[str, Any]) -> Contact:
        if contact_id not in self.contacts:
            raise RepositoryError(f"Contact {contact_id} does not exist")
        self._check_external(changes.get("external_identifier"), contact_id)
        updated = self.contacts[contact_id].model_copy(update=dict(changes))
        self.contacts[contact_id] = updated
        return updated

    async def find_group(self, name: str) -> int | None:
        return self.groups.get(name)

    async def create_group(self, name: str) -> int:
        if name not in self.groups:
            self.groups[name] = len(self.groups) + 1
            self.group_members[self.groups[name]] = set()
        return self.groups[name]

    async def find_tag(self, name: str) -> int | None:
        return self.tags.get(name)

    async def create_tag(self, name: str) -> int:
        if name not in self.tags:
            self.tags[name] = len(self.tags) + 1
            self.tagged[self.tags[name]] = set()
        return self.tags[name]

    async def add_to_group(self, group_id: int, contact_ids: Sequence[int]) -> None:
        self.group_members[group_id].update(contact_ids)

    async def add_tag(self, tag_id: int, contact_ids: Sequence[int]) -> None:
        self.tagged[tag_id].update(contact_ids)

    async def save_mapping(self, name: str, mapping: FieldMapping) -> None:
        self.mappings[(name, mapping.contact_type)] = mapping

    async def load_mapping(self, name: str, contact_type: ContactType) -> FieldMapping | None:
        return self.mappings.get((name, contact_type))

    async def list_mappings(
        self, contact_type: ContactType | None = None
    ) -> list[tuple[str, FieldMapping]]:
        found = [
            (name, mapping)
            for (name, ctype), mapping in self.mappings.items()
            if contact_type is None or ctype is contact_type
        ]
        return sorted(found, key=lambda item: (item[1].contact_type.value, item[0]))

    async def record_job(self, result: ImportResult) -> None:
        self.jobs.append(result)


@pytest.fixture
def repository() -> InMemoryContactRepository:
    return InMemoryContactRepository()


@pytest.fixture
def write_csv(tmp_path: Path) -> Callable[..., Path]:
    """Write rows to a CSV file under tmp_path and return its path."""

    def _write(rows: Sequence[Sequence[str]], name: str = "contacts.csv", sep: str = ",") -> Path:
        path = tmp_path / name
        lines = [sep.join(row) for row in rows]
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return _write


# ---------------------------------------------------------------------------
# PostgreSQL testcontainer
# ---------------------------------------------------------------------------


def _is_transient_docker_teardown_error(exc: BaseException) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _TRANSIENT_DOCKER_TEARDOWN_ERROR_MARKERS)


def _retry_testcontainer_stop(
    stop_call: Callable[[], None],
    *,
    max_attempts: int = _TESTCONTAINER_STOP_RETRY_ATTEMPTS,
    base_delay_seconds: float = _TESTCONTAINER_STOP_BASE_DELAY_SECONDS,
) -> None:
    """Retry transient Docker teardown races with bounded backoff."""
    delay = base_delay_seconds
    for attempt in range(1, max_attempts + 1):
        try:
            stop_call()
            return
        except Exception as exc:
            if attempt >= max_attempts or not _is_transient_docker_teardown_error(exc):
                raise
            logger.warning(
                "Transient Docker API teardown race (attempt %s/%s): %s",
                attempt,
                max_attempts,
                exc,
            )
            time.sleep(delay)
            delay *= 2


def _unique_test_db_name() -> str:
    return f"test_{uuid.uuid4().hex[:12]}"


@pytest.fixture(scope="session")
def postgres_container() -> Iterator[PostgresContainer]:
    """Shared Postgres testcontainer for all DB-backed tests in this session.

    Each ``provisioned_postgres_pool`` usage gets its own freshly migrated
    database, so rows never leak between tests.
    """
    from testcontainers.postgres import PostgresContainer

    container = PostgresContainer("postgres:16")
    container.start()
    try:
        yield container
    finally:
        _retry_testcontainer_stop(container.stop)


@pytest.fixture
def provisioned_postgres_pool(
    postgres_container: PostgresContainer,
) -> Callable[..., AbstractAsyncContextManager[Pool]]:
    """Create a fresh, migrated database and asyncpg pool for one test.

    Tests should use this as:
        async with provisioned_postgres_pool() as pool:
            ...
    """
    from crmimport.db import Database
    from crmimport.migrations import run_migrations

    @asynccontextmanager
    async def _provision(
        *,
        schema: str | None = None,
        min_pool_size: int = 1,
        max_pool_size: int = 3,
    ) -> AsyncIterator[Pool]:
        db = Database(
            db_name=_unique_test_db_name(),
            schema=schema,
            host=postgres_container.get_container_host_ip(),
            port=int(postgres_container.get_exposed_port(5432)),
            user=postgres_container.username,
            password=postgres_container.password,
            min_pool_size=min_pool_size,
            max_pool_size=max_pool_size,
        )
        await db.provision()
        await asyncio.to_thread(run_migrations, db.sqlalchemy_url(), schema)
        pool = await db.connect()
        try:
            yield pool
        finally:
            await db.close()

    return _provision
