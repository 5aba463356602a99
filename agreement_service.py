"""Agreement data gateway: point lookups and the pdf_url update."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from errors import DataAccessError
from models import Agreement, AuditEvent, Client

logger = logging.getLogger(__name__)


@dataclass
class ClientDetails:
    """Public client fields embedded in the rendered document."""
    id: str
    company_name: str = ""
    contact_name: str = ""
    email: str = ""
    role_title: str = ""
    logo_url: Optional[str] = None


@dataclass
class AgreementRenderRecord:
    id: str
    client_id: str
    terms_version: str
    signed_at: Optional[datetime]
    signer_name: Optional[str]
    signer_ip: Optional[str]
    signature_hash: Optional[str]
    client: ClientDetails = field(default_factory=lambda: ClientDetails(id=""))

    @property
    def is_signed(self) -> bool:
        return self.signed_at is not None and bool(self.signer_name)


class AgreementStore(Protocol):
    async def fetch_agreement_for_rendering(self, agreement_id: str) -> Optional[AgreementRenderRecord]: ...

    async def record_rendered_url(self, agreement_id: str, url: str) -> None: ...

    async def record_audit_event(self, client_id: str, actor: str, action: str, payload: dict) -> None: ...

    async def close(self) -> None: ...


def _to_record(agreement: Agreement, client: Client) -> AgreementRenderRecord:
    return AgreementRenderRecord(
        id=agreement.id,
        client_id=agreement.client_id,
        terms_version=agreement.terms_version or "",
        signed_at=agreement.signed_at,
        signer_name=agreement.signer_name,
        signer_ip=agreement.signer_ip,
        signature_hash=agreement.signature_hash,
        client=ClientDetails(
            id=client.id,
            company_name=client.company_name or "",
            contact_name=client.contact_name or "",
            email=client.email or "",
            role_title=client.role_title or "",
            logo_url=client.logo_url,
        ),
    )


class SqlAgreementStore:
    """
    AgreementStore backed by a SQLAlchemy session.

    One session per instance (per request). The synchronous driver calls run
    in a worker thread so the pipeline can await them, one at a time. close()
    waits for a call still in flight, releases the connection and is safe to
    call more than once.
    """

    def __init__(self, session_factory: sessionmaker):
        self._db: Optional[Session] = session_factory()
        self._closed = False
        self._lock = asyncio.Lock()

    def _session(self) -> Session:
        if self._db is None:
            raise DataAccessError("Agreement store is closed")
        return self._db

    def _fetch(self, agreement_id: str) -> Optional[AgreementRenderRecord]:
        db = self._session()
        try:
            row = db.execute(
                select(Agreement, Client)
                .join(Client, Client.id == Agreement.client_id)
                .where(Agreement.id == agreement_id)
            ).first()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error fetching agreement data: {e}")
            raise DataAccessError(f"Failed to fetch agreement: {e}") from e
        if row is None:
            return None
        agreement, client = row
        return _to_record(agreement, client)

    def _update_url(self, agreement_id: str, url: str) -> None:
        db = self._session()
        try:
            db.execute(update(Agreement).where(Agreement.id == agreement_id).values(pdf_url=url))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error updating agreement PDF URL: {e}")
            raise DataAccessError(f"Failed to update agreement PDF URL: {e}") from e

    def _insert_audit(self, client_id: str, actor: str, action: str, payload: dict) -> None:
        db = self._session()
        try:
            db.add(AuditEvent(client_id=client_id, actor=actor, action=action, payload=payload))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise DataAccessError(f"Failed to record audit event: {e}") from e

    async def _run(self, func, *args):
        async with self._lock:
            return await asyncio.to_thread(func, *args)

    async def fetch_agreement_for_rendering(self, agreement_id: str) -> Optional[AgreementRenderRecord]:
        """Agreement joined with its client's public fields, or None when absent."""
        return await self._run(self._fetch, agreement_id)

    async def record_rendered_url(self, agreement_id: str, url: str) -> None:
        await self._run(self._update_url, agreement_id, url)

    async def record_audit_event(self, client_id: str, actor: str, action: str, payload: dict) -> None:
        await self._run(self._insert_audit, client_id, actor, action, payload)

    async def close(self) -> None:
        # waits for a driver call still running in its thread (e.g. after a timeout)
        async with self._lock:
            if self._closed:
                return
            self._closed = True
            db, self._db = self._db, None
            if db is not None:
                await asyncio.to_thread(db.close)


def audit_payload(agreement_id: str, pdf_url: str) -> dict[str, Any]:
    return {"agreement_id": agreement_id, "pdf_url": pdf_url}
