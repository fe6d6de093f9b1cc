"""
Payment reminder email content (subject, plain text, HTML).
"""
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from jinja2 import Environment, select_autoescape

from subtracker.domain.subscription import Subscription


_text_env = Environment(autoescape=False, keep_trailing_newline=True)
_html_env = Environment(autoescape=select_autoescape(default_for_string=True))

CYCLE_LABELS = {
    "monthly": "Monthly",
    "quarterly": "Quarterly",
    "yearly": "Yearly",
}

_TEXT_TEMPLATE = _text_env.from_string("""\
Hello {{ full_name }},

{% if overdue -%}
Your subscription "{{ sub.service_name }}" is overdue by {{ -days }} day(s)!
{%- else -%}
Your subscription "{{ sub.service_name }}" is due in {{ days }} day(s).
{%- endif %}

Details:
- Service: {{ sub.service_name }}
- Cost: {{ cost }}
- Billing cycle: {{ cycle }}
- Payment date: {{ due_date }}

Sign in to {{ app_url }} to renew or update the subscription.

Subscription Tracker
""")

_HTML_TEMPLATE = _html_env.from_string("""\
<!DOCTYPE html>
<html>
<body style="font-family: Segoe UI, Tahoma, sans-serif; background-color: #f5f5f5;">
  <div style="max-width: 600px; margin: 20px auto; background: #ffffff; border-radius: 12px;">
    <div style="background: #667eea; color: #ffffff; padding: 24px; text-align: center;">
      <h1 style="margin: 0;">Payment reminder</h1>
    </div>
    <div style="padding: 24px;">
      <p>Hello {{ full_name }},</p>
      <div style="border-left: 4px solid {{ color }}; padding: 16px;">
        <h2 style="color: {{ color }}; margin: 0;">{{ sub.service_name }}</h2>
        <span style="background: {{ color }}; color: #ffffff; padding: 6px 14px; border-radius: 20px;">
          {{ status }}
        </span>
      </div>
      <table style="width: 100%; margin-top: 20px;">
        <tr><td>Cost</td><td><strong>{{ cost }}</strong></td></tr>
        <tr><td>Billing cycle</td><td>{{ cycle }}</td></tr>
        <tr><td>Payment date</td><td>{{ due_date }}</td></tr>
        {% if sub.description %}<tr><td>Description</td><td>{{ sub.description }}</td></tr>{% endif %}
      </table>
      <p><a href="{{ app_url }}">Open Subscription Tracker</a></p>
    </div>
  </div>
</body>
</html>
""")


def format_money(amount: Decimal, currency: str) -> str:
    """
    >>> format_money(Decimal("199000"), "VND")
    '199.000 ₫'
    >>> format_money(Decimal("9.9"), "USD")
    '$9.90'
    >>> format_money(Decimal("1234.5"), "EUR")
    '1.234,50 €'
    """
    amount = Decimal(amount)
    if currency == "VND":
        whole = amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return f"{whole:,}".replace(",", ".") + " ₫"
    if currency == "USD":
        return f"${amount.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP):,}"
    if currency == "EUR":
        s = f"{amount.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP):,}"
        return s.replace(",", " ").replace(".", ",").replace(" ", ".") + " €"
    return f"{amount} {currency}"


def _status(days: int) -> tuple[str, str]:
    """(badge text, color)"""
    if days < 0:
        return "OVERDUE", "#dc2626"
    if days <= 3:
        return f"{days} DAYS LEFT", "#ea580c"
    return f"{days} DAYS LEFT", "#059669"


def reminder_subject(subscription: Subscription, today: date) -> str:
    days = subscription.days_until_payment(today)
    if days < 0:
        return f"⚠️ [OVERDUE] {subscription.service_name} - payment required"
    return f"🔔 [REMINDER] {subscription.service_name} - {days} day(s) left"


def render_reminder(full_name: str, subscription: Subscription, today: date, app_url: str) -> tuple[str, str]:
    """Returns (plain text, html)"""
    days = subscription.days_until_payment(today)
    status, color = _status(days)
    context = {
        "full_name": full_name,
        "sub": subscription,
        "days": days,
        "overdue": days < 0,
        "status": status,
        "color": color,
        "cost": format_money(subscription.cost, subscription.currency),
        "cycle": CYCLE_LABELS.get(subscription.billing_cycle, subscription.billing_cycle),
        "due_date": subscription.next_payment_date.strftime("%d.%m.%Y"),
        "app_url": app_url,
    }
    return _TEXT_TEMPLATE.render(**context), _HTML_TEMPLATE.render(**context)
