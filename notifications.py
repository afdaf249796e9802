"""
Transactional email

Mail goes out through the Resend HTTP API. send_email() raises
NotificationError on any failure; notify() wraps it for the best-effort
notifications whose failure must never undo the state change that triggered
them.
"""

import html
from string import Template
from typing import Iterable, Union

import requests
import structlog

from config import Settings
from errors import ServiceError

logger = structlog.get_logger(__name__)

RESEND_URL = "https://api.resend.com/emails"
TIMEOUT = 10


class NotificationError(ServiceError):
    default_message = "Failed to send email"


_LAYOUT = Template("""\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px; border: 1px solid #e0e0e0; border-radius: 10px;">
  <h1 style="color: #f97316; text-align: center; margin: 0;">TifinCart</h1>
  <p style="color: #6b7280; font-size: 14px; text-align: center;">$heading</p>
  $body
  <p style="color: #6b7280; font-size: 12px; margin-top: 30px; text-align: center;">Thank you for choosing TifinCart!</p>
</div>""")

TEMPLATES = {
    "verification": (
        "TifinCart - Email Verification",
        "Verify your email",
        "<p>Hello $name,</p><p>Your verification code is</p>"
        "<p style=\"font-size: 28px; letter-spacing: 6px; font-weight: bold;\">$code</p>"
        "<p>The code expires in 10 minutes.</p>",
    ),
    "password_reset": (
        "TifinCart - Password Reset",
        "Reset your password",
        "<p>Hello $name,</p><p>Use this code to reset your password:</p>"
        "<p style=\"font-size: 28px; letter-spacing: 6px; font-weight: bold;\">$code</p>"
        "<p>The code expires in 10 minutes. If you did not ask for a reset you can ignore this email.</p>",
    ),
    "kitchen_submitted": (
        "New kitchen awaiting approval: $kitchen_name",
        "Kitchen approval request",
        "<p>$owner_name ($owner_email) submitted the kitchen <strong>$kitchen_name</strong> in $city.</p>"
        "<p><a href=\"$base_url/admin/kitchens\">Review pending kitchens</a></p>",
    ),
    "kitchen_status": (
        "Your Kitchen Application Status: $kitchen_name",
        "Kitchen application update",
        "<p>Hello $owner_name,</p><p>Your kitchen \"$kitchen_name\" is now <strong>$status</strong>.</p>"
        "$remarks_block$next_steps",
    ),
    "order_delivered": (
        "Your order #$short_id has been delivered!",
        "Order delivered",
        "<p>Hello $customer_name,</p><p>Your order from <strong>$kitchen_name</strong> has been delivered.</p>"
        "<ul>$items</ul><p>Total paid: &#8377;$total</p>"
        "<p><a href=\"$base_url/customer/orders/$order_id\">Rate your meal</a></p>",
    ),
    "new_order": (
        "New order #$short_id for $kitchen_name",
        "New order received",
        "<p>You received a new order worth &#8377;$total.</p><ul>$items</ul>"
        "<p>Deliver to: $address</p>",
    ),
    "contact_confirmation": (
        "We received your message: $subject",
        "Contact confirmation",
        "<p>Hello $name,</p><p>Thanks for contacting us about \"$subject\". We'll get back to you within 24 hours.</p>",
    ),
    "contact_admin": (
        "[$priority] New contact message: $subject",
        "Contact form submission",
        "<p>From: $name ($email)</p><p>Category: $category</p><p>$message</p>",
    ),
    "contact_status": (
        "Update on your message: $subject",
        "Contact status update",
        "<p>Hello $name,</p><p>Your message \"$subject\" is now <strong>$status</strong>.</p><p>$notes</p>",
    ),
}


def render(template_name: str, raw: Iterable[str] = (), **values) -> tuple:
    """Return (subject, html) for a template. Keys listed in `raw` are inserted unescaped."""
    subject_t, heading, body_t = TEMPLATES[template_name]
    safe = {k: (v if k in raw else html.escape(str(v))) for k, v in values.items()}
    subject = Template(subject_t).safe_substitute({k: str(v) for k, v in values.items()})
    body = Template(body_t).safe_substitute(safe)
    return subject, _LAYOUT.substitute(heading=heading, body=body)


def send_email(settings: Settings, to: Union[str, list], subject: str, html_body: str) -> dict:
    if not settings.resend_api_key:
        raise NotificationError("Email provider is not configured")
    recipients = to if isinstance(to, list) else [to]
    try:
        resp = requests.post(
            RESEND_URL,
            json={"from": settings.email_from, "to": recipients, "subject": subject, "html": html_body},
            headers={"Authorization": f"Bearer {settings.resend_api_key}"},
            timeout=TIMEOUT,
        )
    except requests.RequestException as e:
        raise NotificationError(f"Failed to send email: {e}")
    if resp.status_code >= 400:
        raise NotificationError(f"Email provider rejected message ({resp.status_code})")
    return resp.json()


def send_template(settings: Settings, to: Union[str, list], template_name: str, raw: Iterable[str] = (), **values) -> dict:
    subject, html_body = render(template_name, raw=raw, **values)
    result = send_email(settings, to, subject, html_body)
    logger.info("email_sent", template=template_name, to=to)
    return result


def notify(settings: Settings, to: Union[str, list], template_name: str, raw: Iterable[str] = (), **values) -> bool:
    """Best-effort send: failures are logged and reported as False."""
    if not to:
        logger.warning("notification_skipped", template=template_name, reason="no recipient")
        return False
    try:
        send_template(settings, to, template_name, raw=raw, **values)
        return True
    except NotificationError as e:
        logger.warning("notification_failed", template=template_name, to=to, error=e.message)
        return False


# Convenience senders used by the route modules

def _item_list(items: list) -> str:
    return "".join(
        f"<li>{html.escape(str(i['name']))} &times; {i['quantity']} &mdash; &#8377;{i['price']}</li>" for i in items
    )


def send_verification_email(settings: Settings, to: str, name: str, code: str) -> dict:
    return send_template(settings, to, "verification", name=name, code=code)


def send_password_reset_email(settings: Settings, to: str, name: str, code: str) -> dict:
    return send_template(settings, to, "password_reset", name=name, code=code)


def notify_kitchen_submitted(settings: Settings, kitchen: dict, owner: dict) -> bool:
    return notify(settings, settings.admin_email, "kitchen_submitted",
                  kitchen_name=kitchen["name"], owner_name=owner["name"], owner_email=owner["email"],
                  city=kitchen["address"]["city"], base_url=settings.base_url)


def notify_kitchen_status(settings: Settings, kitchen: dict, owner: dict, status: str, remarks: str) -> bool:
    remarks_block = f"<p><em><strong>Admin remarks:</strong> {html.escape(remarks)}</em></p>" if remarks else ""
    if status == "approved":
        next_steps = (f"<p>Congratulations! You can now set up your menu and accept orders.</p>"
                      f"<p><a href=\"{settings.base_url}/seller/kitchens\">Go to My Kitchens</a></p>")
    else:
        next_steps = "<p>If you have any questions please contact our support team.</p>"
    return notify(settings, owner.get("email"), "kitchen_status", raw=("remarks_block", "next_steps"),
                  owner_name=owner.get("name") or "Kitchen Owner", kitchen_name=kitchen["name"],
                  status=status, remarks_block=remarks_block, next_steps=next_steps)


def notify_order_delivered(settings: Settings, order: dict, customer: dict, kitchen_name: str) -> bool:
    return notify(settings, customer.get("email"), "order_delivered", raw=("items",),
                  customer_name=customer.get("name", ""), kitchen_name=kitchen_name,
                  items=_item_list(order["items"]), total=order["total_amount"],
                  order_id=order["_id"], short_id=order["_id"][-8:].upper(), base_url=settings.base_url)


def notify_new_order(settings: Settings, order: dict, seller: dict, kitchen_name: str) -> bool:
    return notify(settings, seller.get("email"), "new_order", raw=("items",),
                  kitchen_name=kitchen_name, items=_item_list(order["items"]), total=order["total_amount"],
                  address=order["delivery_address"], short_id=order["_id"][-8:].upper())
