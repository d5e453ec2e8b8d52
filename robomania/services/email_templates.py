"""Email subjects and HTML bodies, keyed by notification kind."""
from __future__ import annotations

from html import escape

from robomania.services.pricing import display_name

_WRAPPER = """
  <div style="font-family: 'Segoe UI', Tahoma, sans-serif; max-width: 600px; margin: 0 auto; padding: 16px;">
    <div style="text-align: center; padding: 24px; background: linear-gradient(135deg, #f97316, #f59e0b); border-radius: 12px;">
      <h1 style="color: #fff; margin: 0; font-size: 22px;">{title}</h1>
    </div>
    <div style="padding: 24px 8px;">{body}</div>
    <p style="color: #6b7280; font-size: 12px; text-align: center;">RoboMania 2025</p>
  </div>
"""


def _page(title: str, body: str) -> str:
    return _WRAPPER.format(title=escape(title), body=body)


def _competition_list(competitions) -> str:
    return escape(", ".join(display_name(c) for c in competitions))


def _button(url: str, label: str) -> str:
    return (
        f'<p style="margin: 16px 0;"><a href="{escape(url)}" style="display: inline-block; padding: 12px 20px; '
        f'border-radius: 10px; background: #f97316; color: #fff; text-decoration: none;">{escape(label)}</a></p>'
    )


def registration_started(team_name, leader_name, competitions, total_amount, app_url="", **_):
    cta = _button(app_url + "/dashboard", "Complete payment") if app_url else ""
    body = f"""
      <p>Hi {escape(leader_name or 'Team Leader')},</p>
      <p>Your registration for <strong>{escape(team_name)}</strong> is saved and awaiting payment.</p>
      <p>Competitions: <strong>{_competition_list(competitions)}</strong><br>Amount due: <strong>&#8377;{int(total_amount)}</strong></p>
      {cta}
    """
    return "Registration started - payment pending", _page("Registration Started", body)


def payment_confirmed(team_name, competitions, amount, merchant_order_id, transaction_id=None, **_):
    reference = escape(merchant_order_id)
    if transaction_id:
        reference += " / transaction " + escape(transaction_id)
    body = f"""
      <p>Payment received for <strong>{escape(team_name)}</strong>.</p>
      <p>Competitions: <strong>{_competition_list(competitions)}</strong><br>Amount paid: <strong>&#8377;{int(amount)}</strong></p>
      <p style="color: #6b7280; font-size: 13px;">Order {reference}</p>
    """
    return "Registration confirmed - RoboMania 2025", _page("You're In!", body)


def payment_failed(team_name, merchant_order_id, reason="", retry_url="", **_):
    reason_html = "<p>Reason: " + escape(reason) + "</p>" if reason else ""
    cta = _button(retry_url, "Retry payment") if retry_url else ""
    body = f"""
      <p>The payment for <strong>{escape(team_name)}</strong> (order {escape(merchant_order_id)}) did not go through.</p>
      {reason_html}
      <p>Your registration is saved. You can retry the payment at any time.</p>
      {cta}
    """
    return "Payment failed - RoboMania 2025", _page("Payment Failed", body)


def status_update(team_name, status, message="", **_):
    message_html = "<p>" + escape(message) + "</p>" if message else ""
    body = f"""
      <p>The status of <strong>{escape(team_name)}</strong> is now <strong>{escape(status)}</strong>.</p>
      {message_html}
    """
    return f"Team status updated: {status}", _page("Status Update", body)


def payment_reminder(team_name, leader_name, competitions, total_amount, days_pending, app_url="", **_):
    cta = _button(app_url + "/dashboard", "Pay now") if app_url else ""
    body = f"""
      <p>Hi {escape(leader_name or 'Team Leader')},</p>
      <p>The registration for <strong>{escape(team_name)}</strong> has been waiting for payment for {int(days_pending)} day(s).</p>
      <p>Competitions: <strong>{_competition_list(competitions)}</strong><br>Amount due: <strong>&#8377;{int(total_amount)}</strong></p>
      {cta}
    """
    return "Payment reminder - RoboMania 2025", _page("Payment Reminder", body)


TEMPLATES = {
    "registration_started": registration_started,
    "payment_confirmed": payment_confirmed,
    "payment_failed": payment_failed,
    "status_update": status_update,
    "payment_reminder": payment_reminder,
}


def render(kind: str, data: dict) -> tuple[str, str]:
    """Return (subject, html) for a notification kind."""
    try:
        template = TEMPLATES[kind]
    except KeyError:
        raise ValueError(f"Unknown notification kind: {kind}")
    return template(**data)
