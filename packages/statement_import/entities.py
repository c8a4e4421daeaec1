# ruff: noqa: I001
"""Entity registry access and entity creation.

``SqlEntityDirectory`` reads the ``si_entities`` table into the two in-memory
maps the matcher needs (``name -> id`` and ``alias -> name``). Aliases are
stored per entity as a comma-separated string.

``create_entity`` writes the external mirror first and only persists locally
once the mirror accepted the page; a local failure archives the page again so
callers never observe a half-created entity.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import func, select

from db.client import session_scope
from db.models.imports import SiEntity
from .errors import EntityConflictError, ImportValidationError
from .interfaces import EntityDirectory, MirrorClient
from .logging_setup import get_logger
from .models import CreatedEntity

_log = get_logger("statement_import.entities")


def parse_aliases(raw: str | None) -> list[str]:
    """Split the stored alias list; tokens keep their spacing (``"WOW "`` is not ``"WOW"``)."""

    if not raw:
        return []
    return [a for a in raw.split(",") if a.strip()]


class SqlEntityDirectory:
    """``EntityDirectory`` backed by ``si_entities``."""

    def __init__(self, *, database_url: str | None = None) -> None:
        self._database_url = database_url

    def list_entities(self) -> dict[str, str]:
        with session_scope(database_url=self._database_url) as session:
            rows = session.execute(select(SiEntity.name, SiEntity.id).order_by(SiEntity.name))
            return {name: entity_id for name, entity_id in rows}

    def list_aliases(self) -> dict[str, str]:
        out: dict[str, str] = {}
        with session_scope(database_url=self._database_url) as session:
            rows = session.execute(
                select(SiEntity.name, SiEntity.aliases)
                .where(SiEntity.aliases.is_not(None))
                .order_by(SiEntity.name)
            )
            for name, raw in rows:
                for alias in parse_aliases(raw):
                    out[alias] = name
        return out

    def find_by_name(self, name: str) -> str | None:
        with session_scope(database_url=self._database_url) as session:
            return session.scalars(
                select(SiEntity.id).where(func.lower(SiEntity.name) == name.strip().lower())
            ).first()

    def add_entity(
        self,
        entity_id: str,
        name: str,
        url: str,
        *,
        aliases: Iterable[str] = (),
        default_transaction_type: str | None = None,
    ) -> None:
        joined = ",".join(a for a in aliases if a.strip()) or None
        with session_scope(database_url=self._database_url) as session:
            session.add(
                SiEntity(
                    id=entity_id,
                    name=name,
                    url=url,
                    aliases=joined,
                    default_transaction_type=default_transaction_type,
                )
            )


def create_entity(
    name: str, *, directory: EntityDirectory, mirror: MirrorClient
) -> CreatedEntity:
    """Create an entity in the mirror and the local registry, or in neither.

    Raises ``ImportValidationError`` for a blank name, ``EntityConflictError``
    when the name exists (case-insensitive), ``MirrorError`` when the mirror
    rejects the page, and re-raises any local persistence error after archiving
    the mirrored page.
    """

    clean = " ".join(name.split())
    if not clean:
        raise ImportValidationError("entity name must not be blank")
    if directory.find_by_name(clean) is not None:
        raise EntityConflictError(f"Entity {clean!r} already exists")

    mirrored = mirror.create_entity_page(clean)
    try:
        directory.add_entity(mirrored.page_id, clean, mirrored.url)
    except Exception:
        _log.error("create_entity:persist_failed page_id=%s name=%s", mirrored.page_id, clean)
        try:
            mirror.archive_page(mirrored.page_id)
        except Exception as archive_exc:  # noqa: BLE001
            _log.error(
                "create_entity:compensation_failed page_id=%s error=%s",
                mirrored.page_id,
                archive_exc,
            )
        raise

    _log.info("create_entity:done entity_id=%s name=%s", mirrored.page_id, clean)
    return CreatedEntity(entity_id=mirrored.page_id, entity_name=clean, entity_url=mirrored.url)


__all__ = ["SqlEntityDirectory", "create_entity", "parse_aliases"]
