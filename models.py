"""SQLAlchemy models for the client onboarding schema."""
from datetime import datetime
import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, JSON, String, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class Client(Base):
    """Prospective client registered by an operator."""
    __tablename__ = "clients"

    id = Column(String(36), primary_key=True, default=_uuid)
    company_name = Column(String(255), nullable=False)
    contact_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    role_title = Column(String(255), nullable=False, default="")
    notes = Column(Text, nullable=True)
    logo_url = Column(String(1024), nullable=True)
    status = Column(String(32), nullable=False, default="pending")  # pending | activated
    created_by = Column(String(36), nullable=False)
    activation_token = Column(String(255), nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    agreements = relationship("Agreement", back_populates="client")


class Agreement(Base):
    """
    A client's electronic acceptance of a terms version.

    signed_at and signer_name stay nullable here so unsigned rows are
    representable; the PDF pipeline rejects them instead of the database.
    pdf_url is written only by the PDF pipeline.
    """
    __tablename__ = "agreements"

    id = Column(String(36), primary_key=True, default=_uuid)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False)
    terms_version = Column(String(32), nullable=False)
    pdf_url = Column(String(2048), nullable=True)
    signed_at = Column(DateTime(timezone=True), nullable=True)
    signer_name = Column(String(255), nullable=True)
    signer_ip = Column(String(64), nullable=True)
    signature_hash = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)

    client = relationship("Client", back_populates="agreements")


class AuditEvent(Base):
    """Append-only audit trail of actions taken on a client."""
    __tablename__ = "audit_events"

    id = Column(String(36), primary_key=True, default=_uuid)
    client_id = Column(String(36), nullable=False)
    actor = Column(String(255), nullable=False)
    action = Column(String(128), nullable=False)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)


class WebhookEndpoint(Base):
    """Outbound webhook subscriber; secret signs every delivery."""
    __tablename__ = "webhook_endpoints"

    id = Column(String(36), primary_key=True, default=_uuid)
    url = Column(String(2048), nullable=False)
    secret = Column(String(255), nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)
