"""
Central registry of allowed actions per role.
"""
ROLE_SCOPES = {
    "consumer": {"checkout", "cancel_order", "pay_order"},
    "seller": {"checkout", "cancel_order", "pay_order", "fulfill_order", "update_order_status"},
    "admin": {"*"},
}


def role_has_scope(role: str, action: str) -> bool:
    scopes = ROLE_SCOPES.get(role, set())
    return "*" in scopes or action in scopes
