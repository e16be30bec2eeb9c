from __future__ import annotations

from dataclasses import dataclass

from facilitydesk.directory import Directory, create_equipment, create_principal, create_site, create_tenant
from facilitydesk.domain.contracts import QuoteCreateInput
from facilitydesk.tenant import RequestContext


TENANT = "tenant-north"
SUB_TENANT = "tenant-north-depot"
OTHER_TENANT = "tenant-south"


@dataclass
class World:
    requester: int
    manager: int
    admin: int
    superadmin: int
    r1: int
    r2: int
    r3: int
    outsider: int
    site: int
    sub_site: int
    other_site: int
    annex: int
    equipment: int
    other_site_equipment: int


def seed_world(db) -> World:
    """Two unrelated tenants, one with a sub-tenant, and a principal per role."""
    with db.transaction():
        create_tenant(db, TENANT, "North Facilities")
        create_tenant(db, SUB_TENANT, "North Depot", parent_tenant_id=TENANT)
        create_tenant(db, OTHER_TENANT, "South Facilities")

        site = create_site(db, tenant_id=TENANT, name="Main office")
        sub_site = create_site(db, tenant_id=SUB_TENANT, name="Depot")
        other_site = create_site(db, tenant_id=OTHER_TENANT, name="South office")
        second_site = create_site(db, tenant_id=TENANT, name="Annex")
        return World(
            requester=create_principal(db, email="requester@north.test", role="business_manager", tenant_id=TENANT),
            manager=create_principal(db, email="manager@north.test", role="business_manager", tenant_id=TENANT),
            admin=create_principal(db, email="admin@north.test", role="client_admin", tenant_id=TENANT),
            superadmin=create_principal(db, email="root@platform.test", role="superadmin", tenant_id=None),
            r1=create_principal(db, email="r1@north.test", role="technician", tenant_id=TENANT),
            r2=create_principal(db, email="r2@north.test", role="external_maintainer", tenant_id=TENANT),
            r3=create_principal(db, email="r3@north.test", role="subcontractor", tenant_id=TENANT),
            outsider=create_principal(db, email="tech@south.test", role="technician", tenant_id=OTHER_TENANT),
            site=site,
            sub_site=sub_site,
            other_site=other_site,
            annex=second_site,
            equipment=create_equipment(db, tenant_id=TENANT, site_id=site, name="Boiler", category="hvac"),
            other_site_equipment=create_equipment(db, tenant_id=TENANT, site_id=second_site, name="Lift"),
        )


def ctx_for(db, principal_id: int) -> RequestContext:
    principal = Directory().resolve_principal(db, principal_id)
    return RequestContext(
        principal_id=int(principal["id"]),
        role=str(principal["role"]),
        tenant_id=principal.get("tenant_id"),
        email=principal.get("email"),
    )


def create_input(world: World, **overrides) -> QuoteCreateInput:
    values = {
        "recipient_ids": [world.r1, world.r2, world.r3],
        "site_id": world.site,
        "equipment_id": world.equipment,
        "work_type": "repair",
        "urgency": "high",
        "description": "Boiler pressure drops overnight.",
        "title": "Boiler repair",
    }
    values.update(overrides)
    return QuoteCreateInput(**values)
