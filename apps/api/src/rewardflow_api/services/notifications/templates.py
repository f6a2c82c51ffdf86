"""Notification templates for reward and condition events."""

from __future__ import annotations

import html
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Sequence

DEFAULT_GIFT_CARD_SMS = "Congratulations {first_name}! Here is your ${value} {brand} gift card: {code}"
DEFAULT_GIFT_CARD_EMAIL_SUBJECT = "Your ${value} {brand} gift card"

_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass
class RenderedTemplate:
    subject: str
    text_body: str
    html_body: str


def format_value(amount: Decimal | float | int | None) -> str:
    """Render a denomination without trailing cents for whole amounts."""

    if amount is None:
        return ""
    value = Decimal(str(amount))
    if value == value.to_integral_value():
        return str(value.quantize(Decimal(1)))
    return f"{value:.2f}"


def render_message(template: str, variables: Mapping[str, Any]) -> str:
    """Substitute ``{name}`` placeholders, matching names case-insensitively.

    Known names with no value render as an empty string; unknown placeholders
    are left in place so literal braces in a template survive.
    """

    if not template:
        return ""
    lookup = {key.lower(): value for key, value in variables.items()}

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1).lower()
        if name not in lookup:
            return match.group(0)
        value = lookup[name]
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(_replace, template)


def gift_card_variables(
    *,
    code: str,
    value: Decimal,
    brand: str,
    provider: str | None,
    first_name: str | None,
    last_name: str | None = None,
    card_number: str | None = None,
) -> dict[str, Any]:
    return {
        "code": code,
        "value": format_value(value),
        "brand": brand,
        "provider": provider or brand,
        "first_name": first_name or "",
        "last_name": last_name or "",
        "card_number": card_number or "",
    }


def render_gift_card_sms(template: str | None, variables: Mapping[str, Any]) -> str:
    return render_message(template or DEFAULT_GIFT_CARD_SMS, variables)


def render_gift_card_email(
    *,
    subject_template: str | None,
    body_template: str | None,
    variables: Mapping[str, Any],
    brand_display_name: str,
) -> RenderedTemplate:
    subject = render_message(subject_template or DEFAULT_GIFT_CARD_EMAIL_SUBJECT, variables)
    if body_template:
        body = render_message(body_template, variables)
    else:
        greeting = f"Hi {variables.get('first_name')}," if variables.get("first_name") else "Hi there,"
        lines = [
            greeting,
            "",
            f"Thanks for taking part. Here is your ${variables.get('value')} {variables.get('brand')} gift card.",
            "",
            f"Code: {variables.get('code')}",
        ]
        if variables.get("card_number"):
            lines.append(f"Card number: {variables.get('card_number')}")
        lines.extend(["", "Thanks,", f"The {brand_display_name} Team"])
        body = "\n".join(lines)
    return RenderedTemplate(subject=subject, text_body=body, html_body=_text_to_html(body))


def render_condition_email(
    *,
    subject_template: str | None,
    body_template: str | None,
    variables: Mapping[str, Any],
    condition_label: str,
    brand_display_name: str,
) -> RenderedTemplate:
    subject = render_message(subject_template, variables) if subject_template else f"Update: {condition_label}"
    if body_template:
        body = render_message(body_template, variables)
    else:
        greeting = f"Hi {variables.get('first_name')}," if variables.get("first_name") else "Hi there,"
        body = "\n".join(
            [
                greeting,
                "",
                f"Thanks! We have recorded: {condition_label}.",
                "",
                "Thanks,",
                f"The {brand_display_name} Team",
            ]
        )
    return RenderedTemplate(subject=subject, text_body=body, html_body=_text_to_html(body))


def render_inventory_alert(
    *,
    pool_id: str,
    pool_name: str | None,
    campaign_id: str,
    condition_number: int | None,
    remediation: str | None,
    brand_display_name: str,
) -> RenderedTemplate:
    label = pool_name or pool_id
    subject = f"Gift card pool '{label}' is out of inventory"
    lines: Sequence[str] = [
        f"A gift card claim failed because pool {label} ({pool_id}) has no available cards.",
        "",
        f"Campaign: {campaign_id}",
        f"Condition: {condition_number if condition_number is not None else 'unknown'}",
        "",
        remediation or "Restock the pool to resume reward delivery.",
        "",
        f"{brand_display_name} condition engine",
    ]
    body = "\n".join(lines)
    return RenderedTemplate(subject=subject, text_body=body, html_body=_text_to_html(body))


def _text_to_html(body: str) -> str:
    paragraphs = [html.escape(chunk).replace("\n", "<br />") for chunk in body.split("\n\n")]
    return "".join(f"<p>{paragraph}</p>" for paragraph in paragraphs)


__all__ = [
    "DEFAULT_GIFT_CARD_EMAIL_SUBJECT",
    "DEFAULT_GIFT_CARD_SMS",
    "RenderedTemplate",
    "format_value",
    "gift_card_variables",
    "render_condition_email",
    "render_gift_card_email",
    "render_gift_card_sms",
    "render_inventory_alert",
    "render_message",
]
