"""Role -> action table behind the yes/no capability check used by the services."""

ROLE_ACTIONS: dict[str, set[str]] = {
    "ops": {
        "receipt.approve",
        "receipt.reject",
        "ticket.check_in",
        "manual_sale.create",
        "cash.remit",
    },
    "finance": {
        "receipt.approve",
        "receipt.reject",
        "receipt.rollback",
        "reconciliation.run",
        "gnpl.manage",
        "cash.remit",
    },
    "admin": {
        "receipt.approve",
        "receipt.reject",
        "receipt.rollback",
        "ticket.check_in",
        "manual_sale.create",
        "voucher.manage",
        "trip.manage",
        "gnpl.manage",
        "reconciliation.run",
        "settings.manage",
        "cash.remit",
    },
}


def can(actor, action: str) -> bool:
    """True when the actor's role grants `action`. Superadmins can do everything."""
    if actor is None or not getattr(actor, "is_active", False):
        return False
    role = getattr(actor, "role", "") or ""
    if role == "superadmin":
        return True
    return action in ROLE_ACTIONS.get(role, set())
