from __future__ import annotations

from sqlalchemy.orm import Session

from fulfillment.core.money import to_display
from fulfillment.domain.dispatch.audit import list_load_audit
from fulfillment.domain.orders.projections import iso
from fulfillment.persistence.models import LoadingSheetModel
from fulfillment.reconciliation.rules import DispatchStats, LoadReconciliation, reconcile_load


def reconciliation_view(reconciliation: LoadReconciliation) -> dict:
    return {
        "total_orders": reconciliation.total_orders,
        "sent": to_display(reconciliation.sent_cents),
        "final": to_display(reconciliation.final_cents),
        "difference": to_display(reconciliation.difference_cents),
    }


def load_summary(load: LoadingSheetModel) -> dict:
    reconciliation = reconcile_load(load.entries)
    return {
        "id": load.id,
        "load_number": load.load_number,
        "loading_date": load.loading_date.isoformat(),
        "vehicle_ref": load.vehicle_ref,
        "driver_ref": load.driver_ref,
        "helper_name": load.helper_name,
        "location_id": load.location_id,
        "status": load.status,
        "version": load.version,
        "total_items": sum(
            item.quantity + item.free_quantity
            for entry in load.entries
            for item in entry.order.items
        ),
        **reconciliation_view(reconciliation),
    }


def load_detail(session: Session, load: LoadingSheetModel) -> dict:
    reconciliation = reconcile_load(load.entries)
    by_order = {item.order_id: item for item in reconciliation.orders}
    orders = []
    for entry in load.entries:
        order = entry.order
        line = by_order[entry.order_id]
        orders.append(
            {
                "order_id": order.id,
                "order_number": order.order_number,
                "invoice_number": order.invoice_number,
                "customer_ref": order.customer_ref,
                "status": order.status,
                "payment_status": order.payment_status,
                "original_amount": to_display(line.original_cents),
                "final_amount": to_display(line.final_cents),
                "difference": to_display(line.difference_cents),
                "settled": line.settled,
            }
        )
    audit = [
        {
            "action": row.action,
            "actor": {"type": row.actor_type, "id": row.actor_id},
            "changes": row.changes,
            "reason": row.reason,
            "created_at": iso(row.created_at),
        }
        for row in list_load_audit(session, load.id)
    ]
    return {
        **load_summary(load),
        "orders": orders,
        "audit": audit,
        "created_at": iso(load.created_at),
        "updated_at": iso(load.updated_at),
    }


def stats_view(stats: DispatchStats) -> dict:
    return {
        "loads": stats.loads,
        "orders": stats.orders,
        "sent": to_display(stats.sent_cents),
        "final": to_display(stats.final_cents),
        "difference": to_display(stats.difference_cents),
        "shortage_orders": stats.shortage_orders,
        "surplus_orders": stats.surplus_orders,
    }
