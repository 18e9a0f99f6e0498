"""
Разрешение тенанта и контакта для задачи сообщения.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from clientflow_automation.common.errors import ContactNotFound, TenantNotFound
from clientflow_automation.contracts.jobs import MessagePayload
from clientflow_automation.storage.repositories import ContactRepository, TenantRepository


@dataclass(frozen=True)
class ResolvedContact:
    contact_id: str | None
    first_name: str | None
    last_name: str | None
    phone: str | None
    email: str | None

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p).strip()


@dataclass(frozen=True)
class ResolvedTarget:
    tenant_id: str
    org_name: str
    contact: ResolvedContact


def resolve_target(session: Session, tenant_id: str, payload: MessagePayload) -> ResolvedTarget:
    """
    contact_id ищется только внутри тенанта; иначе используется inline-контакт.
    """
    org = TenantRepository(session).get(tenant_id)
    if org is None:
        raise TenantNotFound(details={"tenant_id": tenant_id})

    if payload.contact_id is not None:
        row = ContactRepository(session).resolve(tenant_id, payload.contact_id)
        if row is None:
            raise ContactNotFound(details={"contact_id": payload.contact_id})
        contact = ResolvedContact(
            contact_id=row.id,
            first_name=row.first_name,
            last_name=row.last_name,
            phone=row.phone,
            email=row.email,
        )
    else:
        inline = payload.contact
        contact = ResolvedContact(
            contact_id=None,
            first_name=inline.first_name,
            last_name=inline.last_name,
            phone=inline.phone,
            email=inline.email,
        )
    return ResolvedTarget(tenant_id=tenant_id, org_name=org.name, contact=contact)
