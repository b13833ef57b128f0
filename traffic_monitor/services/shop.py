"""
Demo shop handlers whose traffic the monitor records.

Passwords are plain text and payments are simulated: these exist only to
generate login and checkout traffic.
"""

import random
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

DEMO_USERS: List[Dict[str, Any]] = [
    {"id": 1, "name": "Demo User", "email": "user@example.com", "password": "K4sad@!"},
    {"id": 2, "name": "Admin User", "email": "admin@example.com", "password": "K4sad@!"},
]


def authenticate(email: str, password: str) -> Optional[Dict[str, Any]]:
    """Public user fields on success, None otherwise"""
    for user in DEMO_USERS:
        if user["email"] == email and user["password"] == password:
            return {k: v for k, v in user.items() if k != "password"}
    return None


def validate_checkout(body: Dict[str, Any]) -> Optional[str]:
    """Error message for an invalid checkout body, None if valid"""
    items = body.get("items")
    if not items or not isinstance(items, list):
        return "Cart items are required"
    if not body.get("shippingAddress"):
        return "Shipping address is required"
    if not body.get("paymentMethod"):
        return "Payment method is required"
    return None


def place_order(body: Dict[str, Any]) -> Dict[str, Any]:
    items = body["items"]
    total = sum(float(i.get("price", 0)) * int(i.get("quantity", 1)) for i in items)
    now = datetime.now(timezone.utc)
    return {
        "id": f"ORDER-{int(now.timestamp() * 1000)}-{random.randint(0, 999)}",
        "items": items,
        "shippingAddress": body["shippingAddress"],
        "paymentMethod": body["paymentMethod"],
        "total": round(total, 2),
        "status": "processing",
        "createdAt": now.isoformat(),
    }


def login_response(body: Any) -> Tuple[int, Dict[str, Any]]:
    """(status, payload) for a login attempt"""
    if not isinstance(body, dict) or not body.get("email") or not body.get("password"):
        return 400, {"message": "Email and password are required"}

    user = authenticate(body["email"], body["password"])
    if user is None:
        return 401, {"message": "Invalid email or password"}
    return 200, {"message": "Login successful", "user": user}


def checkout_response(body: Any) -> Tuple[int, Dict[str, Any]]:
    """(status, payload) for a checkout attempt"""
    if not isinstance(body, dict):
        return 400, {"message": "Cart items are required"}

    error = validate_checkout(body)
    if error:
        return 400, {"message": error}
    return 200, {"message": "Order placed successfully", "order": place_order(body)}
