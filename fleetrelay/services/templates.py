"""
Message templates used by the dispatch engine.

Templates are plain ``str.format`` strings. Variables missing from the call
site are left as their ``{placeholder}`` so a bad call never blocks a send.
"""
from collections import namedtuple

MessageTemplate = namedtuple('MessageTemplate', ['name', 'text', 'subject'])


class _SafeDict(dict):
    def __missing__(self, key):
        return '{' + key + '}'


def render(template, variables=None):
    """Render a template's body (and subject, for email) with ``variables``."""
    values = _SafeDict({k: ('' if v is None else v) for k, v in (variables or {}).items()})
    body = template.text.format_map(values)
    subject = template.subject.format_map(values) if template.subject else None
    return subject, body


# ---------------------------------------------------------------------------
# Driver offers
# ---------------------------------------------------------------------------
JOB_OFFER = MessageTemplate(
    'job_offer',
    'New delivery job for {formatted_date}: {total_stops} stop(s) near {delivery_area}. '
    'Est. {estimated_distance}, {estimated_duration}, about {payout_estimate}. '
    'Reply YES to accept or NO to decline, or open {offer_url}. '
    'This offer expires in {timeout_minutes} minutes.',
    None,
)

AMBIGUOUS_REPLY = MessageTemplate(
    'ambiguous_reply',
    "Sorry, we didn't understand that. Reply YES to accept the {formatted_date} job "
    'or NO to decline it.',
    None,
)

OFFER_ACCEPTED = MessageTemplate(
    'offer_accepted',
    "You're confirmed for the {formatted_date} job ({total_stops} stop(s)). "
    'Start times and addresses will appear in your driver app.',
    None,
)

OFFER_DECLINED = MessageTemplate(
    'offer_declined',
    "No problem, we've released the {formatted_date} job. Thanks for letting us know.",
    None,
)

OFFER_UNAVAILABLE = MessageTemplate(
    'offer_unavailable',
    'This job offer is no longer available. We will text you when new work comes up.',
    None,
)

# ---------------------------------------------------------------------------
# Completion and settlement
# ---------------------------------------------------------------------------
COMPLETION_FEEDBACK = MessageTemplate(
    'completion_feedback',
    'Your delivery is complete! {driver_name} dropped off your order. '
    'Tell us how we did: {feedback_url}',
    None,
)

ROUTE_PAYOUT = MessageTemplate(
    'route_payout',
    'Route completed! You earned {amount} for completing route {route_id} '
    '({total_stops} stops). Payment will arrive in 2-3 business days.',
    None,
)

INDIVIDUAL_PAYOUT = MessageTemplate(
    'individual_payout',
    'Delivery completed! You earned {amount} for job {job_id}. '
    'Payment will arrive in 2-3 business days.',
    None,
)

# ---------------------------------------------------------------------------
# Operator alerts
# ---------------------------------------------------------------------------
NO_DRIVER_ALERT = MessageTemplate(
    'no_driver_alert',
    'No driver available for {subject_type} {subject_id} on {delivery_date} '
    '({total_stops} stop(s)). Reason: {reason_text}. Manual assignment required.',
    'Action required: no driver for {subject_type} {subject_id} ({delivery_date})',
)

SYSTEM_FAILURE = MessageTemplate(
    'system_failure',
    'Operation "{operation}" failed for {subject_type} {subject_id}. '
    'Error: {error}. Time: {timestamp}.',
    'System failure: {operation}',
)

TEMPLATES = {t.name: t for t in (
    JOB_OFFER,
    AMBIGUOUS_REPLY,
    OFFER_ACCEPTED,
    OFFER_DECLINED,
    OFFER_UNAVAILABLE,
    COMPLETION_FEEDBACK,
    ROUTE_PAYOUT,
    INDIVIDUAL_PAYOUT,
    NO_DRIVER_ALERT,
    SYSTEM_FAILURE,
)}


def get_template(template):
    """Accept a template object or its name."""
    if isinstance(template, MessageTemplate):
        return template
    return TEMPLATES[template]
