from __future__ import annotations

from facilitydesk.infrastructure.repositories.base import BaseRepository
from facilitydesk.quotes.aggregate import to_iso


class OrderRepository(BaseRepository):
    def get_by_quote(self, db, quote_id: int) -> dict | None:
        clause, params = self.tenant_clause()
        row = db.execute(
            f"""
            SELECT *
            FROM orders
            WHERE quote_id = ? AND {clause}
            LIMIT 1
            """,
            (int(quote_id), *params),
        ).fetchone()
        return dict(row) if row else None

    def create(
        self,
        db,
        *,
        number: str,
        tenant_id: str,
        quote_id: int,
        supplier_id: int,
        requester_id: int,
        site_id: int,
        amount_before_tax: float,
        tax_amount: float,
        amount_total: float,
        currency: str,
        now,
    ) -> dict:
        stamp = to_iso(now)
        cursor = db.execute(
            """
            INSERT INTO orders (
                number, tenant_id, quote_id, supplier_id, requester_id, site_id,
                amount_before_tax, tax_amount, amount_total, currency, status, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'created', ?)
            RETURNING id
            """,
            (
                number,
                tenant_id,
                int(quote_id),
                int(supplier_id),
                int(requester_id),
                int(site_id),
                amount_before_tax,
                tax_amount,
                amount_total,
                currency,
                stamp,
            ),
        )
        order_id = self.inserted_id(cursor)
        return {
            "id": order_id,
            "number": number,
            "tenant_id": tenant_id,
            "quote_id": int(quote_id),
            "supplier_id": int(supplier_id),
            "requester_id": int(requester_id),
            "site_id": int(site_id),
            "amount_before_tax": amount_before_tax,
            "tax_amount": tax_amount,
            "amount_total": amount_total,
            "currency": currency,
            "status": "created",
            "created_at": stamp,
        }

    def delete_for_quote(self, db, quote_id: int) -> int:
        cursor = db.execute("DELETE FROM orders WHERE quote_id = ?", (int(quote_id),))
        return int(cursor.rowcount or 0)
