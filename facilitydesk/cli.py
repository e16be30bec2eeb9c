from __future__ import annotations

import click
from flask import Flask

from facilitydesk.db import get_db
from facilitydesk.directory import create_equipment, create_principal, create_site, create_tenant
from facilitydesk.notifications import build_email_sender, process_notification_outbox


DEMO_PARENT_TENANT = "tenant-acme"
DEMO_CHILD_TENANT = "tenant-acme-north"


def seed_demo_data(db) -> dict:
    """Two related tenants with one principal per role, sites and equipment.

    Returns ``{"created": False}`` when the demo tenant already exists.
    """
    existing = db.execute("SELECT id FROM tenants WHERE id = ?", (DEMO_PARENT_TENANT,)).fetchone()
    if existing:
        return {"created": False}

    with db.transaction():
        create_tenant(db, DEMO_PARENT_TENANT, "Acme Facilities")
        create_tenant(db, DEMO_CHILD_TENANT, "Acme North", parent_tenant_id=DEMO_PARENT_TENANT)

        principals = {
            "superadmin": create_principal(db, email="root@facilitydesk.local", role="superadmin", tenant_id=None),
            "client_admin": create_principal(
                db, email="admin@acme.local", role="client_admin", tenant_id=DEMO_PARENT_TENANT
            ),
            "business_manager": create_principal(
                db, email="manager@acme.local", role="business_manager", tenant_id=DEMO_PARENT_TENANT
            ),
            "technician": create_principal(
                db, email="tech@acme.local", role="technician", tenant_id=DEMO_PARENT_TENANT
            ),
            "external_maintainer": create_principal(
                db, email="maintainer@partner.local", role="external_maintainer", tenant_id=DEMO_PARENT_TENANT
            ),
            "subcontractor": create_principal(
                db, email="sub@partner.local", role="subcontractor", tenant_id=DEMO_PARENT_TENANT
            ),
        }
        hq = create_site(db, tenant_id=DEMO_PARENT_TENANT, name="Headquarters", address="1 Main Street")
        north = create_site(db, tenant_id=DEMO_CHILD_TENANT, name="North warehouse", address="9 Dock Road")
        create_equipment(db, tenant_id=DEMO_PARENT_TENANT, site_id=hq, name="Rooftop HVAC unit", category="hvac")
        create_equipment(db, tenant_id=DEMO_PARENT_TENANT, site_id=hq, name="Passenger lift A", category="elevator")
        create_equipment(db, tenant_id=DEMO_CHILD_TENANT, site_id=north, name="Loading dock door", category="door")

    return {"created": True, "principals": principals, "sites": [hq, north]}


def register_cli(app: Flask) -> None:
    @app.cli.command("seed-demo")
    def seed_demo() -> None:
        """Create demo tenants, principals, sites and equipment."""
        result = seed_demo_data(get_db())
        if not result["created"]:
            click.echo("Demo data already present.")
            return
        for role, principal_id in result["principals"].items():
            click.echo(f"{role}: principal_id={principal_id}")

    @app.cli.group("notifications")
    def notifications_group() -> None:
        """Notification outbox."""

    @notifications_group.command("send")
    @click.option("--limit", type=int, default=0, help="Maximum entries to process.")
    def notifications_send(limit: int) -> None:
        batch = int(limit or app.config.get("NOTIFICATION_WORKER_BATCH_SIZE", 25) or 25)
        summary = process_notification_outbox(
            get_db(),
            sender=build_email_sender(app.config),
            limit=max(1, batch),
            max_attempts=int(app.config.get("NOTIFICATION_MAX_ATTEMPTS", 5) or 5),
        )
        click.echo(
            f"processed={summary['processed']} sent={summary['sent']} "
            f"retried={summary['retried']} failed={summary['failed']}"
        )
