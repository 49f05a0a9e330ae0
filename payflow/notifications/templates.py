"""Subject and body templates for workflow notifications.

Templates are Jinja strings with ``{{ variable }}`` placeholders. Unknown
placeholders are left in place so that a typo in a node's
``message_template`` is visible in the delivered message rather than
silently dropped.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, Optional, Tuple

from jinja2 import DebugUndefined, Environment, Template, TemplateSyntaxError

from .base import FinalStatus, NotificationIntent

logger = logging.getLogger(__name__)

SUBJECTS = {
    NotificationIntent.APPROVAL_REQUEST: "[{{organization}}] Approval Required: {{request_title}}",
    NotificationIntent.APPROVAL_UPDATE: "[{{organization}}] Payment Request {{status}}: {{request_title}}",
    NotificationIntent.REMINDER: "[{{organization}}] REMINDER: Approval Required - {{request_title}}",
    NotificationIntent.FINAL_STATUS: "[{{organization}}] Payment {{status}}: {{request_title}}",
    NotificationIntent.CUSTOM: "[{{organization}}] {{step_name}}: {{request_title}}",
}

APPROVAL_REQUEST_BODY = """\
Dear {{recipient_name}},

You have a new payment request requiring your approval:

Request Details:
- Title: {{request_title}}
- Amount: {{amount}}
- Requested by: {{requester}}
- Category: {{category}}
- Urgency: {{urgency}}
- Description: {{description}}

Approval Step: {{step_name}} (Step {{step_number}})

Please review the request here:
{{approval_url}}

Best regards,
{{organization}} Payment System"""

APPROVED_BODY = """\
Dear {{recipient_name}},

Your payment request has been approved at the {{step_name}} level.

Request Details:
- Title: {{request_title}}
- Amount: {{amount}}
- Status: {{status}}

Your request is now moving to the next approval step or payment processing.

View full status: {{status_url}}

Best regards,
{{organization}} Payment System"""

REJECTED_BODY = """\
Dear {{recipient_name}},

Your payment request has been rejected at the {{step_name}} level.

Request Details:
- Title: {{request_title}}
- Amount: {{amount}}
- Status: {{status}}
- Comments: {{comments}}

Please review the feedback and resubmit if necessary.

View full details: {{status_url}}

Best regards,
{{organization}} Payment System"""

REMINDER_BODY = """\
Dear {{recipient_name}},

REMINDER: You have a pending payment approval that requires your attention.

Request Details:
- Title: {{request_title}}
- Amount: {{amount}}
- Approval Step: {{step_name}}
- Waiting for: {{hours_waiting}} hours (reminder {{reminder_number}})

Please review the request as soon as possible:
{{approval_url}}

This is an automated reminder from {{organization}} Payment System."""

_FINAL_STATUS_MESSAGES = {
    FinalStatus.PROCESSED: "has been successfully processed and payment has been completed.",
    FinalStatus.FAILED: "processing has failed. Please contact support for assistance.",
    FinalStatus.REJECTED: "has been rejected and will not be paid.",
}

FINAL_STATUS_BODY = """\
Dear Team,

Payment Request Status Update:

Request Details:
- Title: {{request_title}}
- Amount: {{amount}}
- Status: {{status}}
- Processed Date: {{processed_date}}

The payment request {{request_title}} {{status_message}}

View full details: {{status_url}}

Best regards,
{{organization}} Payment System"""

CUSTOM_BODY = """\
Dear {{recipient_name}},

Update on payment request {{request_title}} ({{amount}}).

View full details: {{status_url}}

Best regards,
{{organization}} Payment System"""


_env = Environment(autoescape=False, undefined=DebugUndefined)


@lru_cache(maxsize=256)
def _compile(source: str) -> Template:
    return _env.from_string(source)


def render(template: str, variables: Dict[str, Any]) -> str:
    """Render a Jinja ``template`` with ``variables``.

    Missing or ``None`` variables render as their placeholder. A template
    that does not parse is returned unrendered.
    """
    try:
        compiled = _compile(template)
    except TemplateSyntaxError as e:
        logger.warning(f"Notification template does not parse, sending it as-is: {e}")
        return template
    return compiled.render({k: v for k, v in variables.items() if v is not None})


def default_body(intent: NotificationIntent, variables: Dict[str, Any]) -> str:
    if intent == NotificationIntent.APPROVAL_REQUEST:
        return APPROVAL_REQUEST_BODY
    if intent == NotificationIntent.APPROVAL_UPDATE:
        return APPROVED_BODY if variables.get("approved") else REJECTED_BODY
    if intent == NotificationIntent.REMINDER:
        return REMINDER_BODY
    if intent == NotificationIntent.FINAL_STATUS:
        return FINAL_STATUS_BODY
    return CUSTOM_BODY


def build_message(
    intent: NotificationIntent,
    variables: Dict[str, Any],
    template: Optional[str] = None,
) -> Tuple[str, str]:
    """Return ``(subject, body)`` for ``intent``.

    A node-supplied ``template`` replaces the default body for approval
    requests, reminders and custom notifications.
    """
    variables = dict(variables)
    status = variables.get("status")
    if intent == NotificationIntent.FINAL_STATUS and status is not None:
        variables.setdefault(
            "status_message", _FINAL_STATUS_MESSAGES.get(FinalStatus(status), "")
        )
    use_template = template and intent in {
        NotificationIntent.APPROVAL_REQUEST,
        NotificationIntent.REMINDER,
        NotificationIntent.CUSTOM,
    }
    body = template if use_template else default_body(intent, variables)
    return render(SUBJECTS[intent], variables), render(body, variables)
