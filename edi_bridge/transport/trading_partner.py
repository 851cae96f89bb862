"""
EDI Bridge - Trading Partner Service

A trading partner aggregates the transport profiles used to reach one
counterparty. Creating, updating and deleting a partner keeps the AS2 and
SFTP registries in step with it.
"""

import asyncio
import copy
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
import logging

from ..core.exceptions import ValidationError
from .as2_client import As2Client
from .sftp_client import SftpClient
from .types import (
    As2PartnerProfile,
    ConnectionHealth,
    SftpPartnerProfile,
    TransportProtocol,
    utcnow,
)

logger = logging.getLogger(__name__)


@dataclass
class TradingPartner:
    id: str
    tenant_id: str
    code: str
    name: str
    protocols: List[TransportProtocol]
    as2_profile: Optional[As2PartnerProfile] = None
    sftp_profile: Optional[SftpPartnerProfile] = None
    description: Optional[str] = None
    is_active: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


_UNSET: Any = object()


class TradingPartnerService:
    """Tenant-scoped partner store that registers profiles with the transports."""

    def __init__(self, as2_client: As2Client, sftp_client: SftpClient):
        self.as2_client = as2_client
        self.sftp_client = sftp_client
        self._partners: Dict[str, TradingPartner] = {}
        self._by_code: Dict[Tuple[str, str], str] = {}
        self._lock = threading.RLock()

    @staticmethod
    def _check_profiles(
        protocols: List[TransportProtocol],
        as2_profile: Optional[As2PartnerProfile],
        sftp_profile: Optional[SftpPartnerProfile],
    ) -> None:
        if not protocols:
            raise ValidationError("A trading partner needs at least one protocol", field_name="protocols")
        if TransportProtocol.AS2 in protocols and as2_profile is None:
            raise ValidationError("AS2 protocol requires an AS2 profile", field_name="as2_profile")
        if TransportProtocol.SFTP in protocols and sftp_profile is None:
            raise ValidationError("SFTP protocol requires an SFTP profile", field_name="sftp_profile")

    def _sync_transports(self, partner: TradingPartner) -> None:
        """Make the transport registries reflect ``partner``."""
        if partner.as2_profile is not None and TransportProtocol.AS2 in partner.protocols:
            self.as2_client.register_partner(partner.as2_profile)
        else:
            self.as2_client.remove_partner(partner.id)

        if partner.sftp_profile is not None and TransportProtocol.SFTP in partner.protocols:
            self.sftp_client.register_partner(partner.sftp_profile)
        else:
            self.sftp_client.remove_partner(partner.id)

    def create(
        self,
        tenant_id: str,
        code: str,
        name: str,
        protocols: List[TransportProtocol],
        as2_profile: Optional[As2PartnerProfile] = None,
        sftp_profile: Optional[SftpPartnerProfile] = None,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TradingPartner:
        """
        Create a trading partner and register its transport profiles.

        The profiles' ``partner_id`` and ``partner_name`` are set from the new
        partner.

        Raises:
            ValidationError: If the code is already used in the tenant, or a
                listed protocol has no profile
        """
        protocols = [TransportProtocol(p) for p in protocols]
        self._check_profiles(protocols, as2_profile, sftp_profile)

        partner_id = str(uuid.uuid4())
        partner = TradingPartner(
            id=partner_id,
            tenant_id=tenant_id,
            code=code,
            name=name,
            protocols=protocols,
            as2_profile=replace(as2_profile, partner_id=partner_id, partner_name=name, is_active=True)
            if as2_profile
            else None,
            sftp_profile=replace(sftp_profile, partner_id=partner_id, partner_name=name, is_active=True)
            if sftp_profile
            else None,
            description=description,
            metadata=metadata or {},
        )

        with self._lock:
            if (tenant_id, code) in self._by_code:
                raise ValidationError(
                    f"Trading partner code already exists in tenant: {code}", field_name="code"
                )
            self._partners[partner_id] = partner
            self._by_code[(tenant_id, code)] = partner_id
            self._sync_transports(partner)

        logger.info(f"Created trading partner: {name} ({code})")
        return copy.deepcopy(partner)

    def get(self, partner_id: str, tenant_id: Optional[str] = None) -> Optional[TradingPartner]:
        with self._lock:
            partner = self._partners.get(partner_id)
            if partner is None or (tenant_id is not None and partner.tenant_id != tenant_id):
                return None
            return copy.deepcopy(partner)

    def get_by_code(self, tenant_id: str, code: str) -> Optional[TradingPartner]:
        with self._lock:
            partner_id = self._by_code.get((tenant_id, code))
            return copy.deepcopy(self._partners[partner_id]) if partner_id else None

    def list_partners(
        self,
        tenant_id: str,
        protocol: Optional[TransportProtocol] = None,
        is_active: Optional[bool] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Tuple[List[TradingPartner], int]:
        """Partners of a tenant and the total before pagination."""
        with self._lock:
            partners = [
                copy.deepcopy(p)
                for p in self._partners.values()
                if p.tenant_id == tenant_id
                and (protocol is None or protocol in p.protocols)
                and (is_active is None or p.is_active == is_active)
            ]
        total = len(partners)
        if page is not None and limit is not None:
            offset = (max(page, 1) - 1) * limit
            partners = partners[offset : offset + limit]
        return partners, total

    def update(
        self,
        partner_id: str,
        name: Optional[str] = None,
        description: Any = _UNSET,
        protocols: Optional[List[TransportProtocol]] = None,
        as2_profile: Any = _UNSET,
        sftp_profile: Any = _UNSET,
        is_active: Optional[bool] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[TradingPartner]:
        """
        Replace the given attributes and re-register the transport profiles.

        A profile passed here replaces the stored one wholesale; passing None
        drops it. The partner's active flag is carried onto both profiles.
        """
        with self._lock:
            current = self._partners.get(partner_id)
            if current is None:
                return None

            updated = copy.deepcopy(current)
            if name is not None:
                updated.name = name
            if description is not _UNSET:
                updated.description = description
            if protocols is not None:
                updated.protocols = [TransportProtocol(p) for p in protocols]
            if as2_profile is not _UNSET:
                updated.as2_profile = as2_profile
            if sftp_profile is not _UNSET:
                updated.sftp_profile = sftp_profile
            if is_active is not None:
                updated.is_active = is_active
            if metadata is not None:
                updated.metadata = metadata

            self._check_profiles(updated.protocols, updated.as2_profile, updated.sftp_profile)

            if updated.as2_profile is not None:
                updated.as2_profile = replace(
                    updated.as2_profile,
                    partner_id=partner_id,
                    partner_name=updated.name,
                    is_active=updated.is_active,
                )
            if updated.sftp_profile is not None:
                updated.sftp_profile = replace(
                    updated.sftp_profile,
                    partner_id=partner_id,
                    partner_name=updated.name,
                    is_active=updated.is_active,
                )
            updated.updated_at = utcnow()

            self._partners[partner_id] = updated
            self._sync_transports(updated)

        logger.info(f"Updated trading partner: {updated.name} ({updated.code})")
        return copy.deepcopy(updated)

    def deactivate(self, partner_id: str) -> Optional[TradingPartner]:
        return self.update(partner_id, is_active=False)

    def delete(self, partner_id: str) -> bool:
        with self._lock:
            partner = self._partners.pop(partner_id, None)
            if partner is None:
                return False
            self._by_code.pop((partner.tenant_id, partner.code), None)
            self.as2_client.remove_partner(partner_id)
            self.sftp_client.remove_partner(partner_id)

        logger.info(f"Deleted trading partner: {partner.name} ({partner.code})")
        return True

    async def test_connection(self, partner_id: str, protocol: TransportProtocol) -> ConnectionHealth:
        """Run the transport's connectivity check; stored state is left untouched."""
        protocol = TransportProtocol(protocol)
        partner = self.get(partner_id)
        if partner is None:
            return ConnectionHealth(partner_id, protocol, False, error="Partner not found")

        if protocol == TransportProtocol.AS2 and partner.as2_profile is not None:
            return await self.as2_client.test_connection(partner_id)
        if protocol == TransportProtocol.SFTP and partner.sftp_profile is not None:
            return await self.sftp_client.test_connection(partner_id)

        return ConnectionHealth(
            partner_id, protocol, False, error=f"Protocol {protocol.value} not configured for partner"
        )

    async def get_health_status(self, tenant_id: str) -> Dict[str, List[ConnectionHealth]]:
        """Check every protocol of every active partner in the tenant."""
        partners, _ = self.list_partners(tenant_id, is_active=True)

        async def check(partner: TradingPartner) -> List[ConnectionHealth]:
            return list(
                await asyncio.gather(*(self.test_connection(partner.id, p) for p in partner.protocols))
            )

        results = await asyncio.gather(*(check(p) for p in partners))
        return {partner.id: checks for partner, checks in zip(partners, results)}
