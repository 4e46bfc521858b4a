"""
Event normalizer

Turns a raw dispatch-platform webhook body into a ``DispatchEvent``. Only the
structural minimum (trigger, task reference, numeric time) is required; every
optional field degrades to ``None`` so downstream code decides what matters.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from fleetrelay.services.exceptions import InvalidPayloadError
from fleetrelay.utils.helpers import safe_float, safe_int

logger = logging.getLogger(__name__)

TRIGGER_STARTED = 'started'
TRIGGER_ARRIVAL = 'arrival'
TRIGGER_COMPLETED = 'completed'
TRIGGER_FAILED = 'failed'

TRIGGER_ALIASES = {
    'taskStarted': TRIGGER_STARTED,
    'started': TRIGGER_STARTED,
    'taskArrival': TRIGGER_ARRIVAL,
    'arrival': TRIGGER_ARRIVAL,
    'arrived': TRIGGER_ARRIVAL,
    'taskCompleted': TRIGGER_COMPLETED,
    'completed': TRIGGER_COMPLETED,
    'taskFailed': TRIGGER_FAILED,
    'failed': TRIGGER_FAILED,
}

# 1e9 seconds (2001-09-09) expressed in milliseconds. Anything smaller is seconds.
MILLISECONDS_THRESHOLD = 10 ** 12

DEFAULT_PHOTO_URL_TEMPLATE = 'https://d15p8tr8p0vffz.cloudfront.net/{id}/800x.png'
DEFAULT_WORKER_NAME = 'Driver'


@dataclass(frozen=True)
class DispatchEvent:
    """Canonical webhook event."""
    trigger: str
    task_id: Optional[str]
    short_id: Optional[str]
    occurred_at: datetime
    worker_name: Optional[str] = None
    photo_url: Optional[str] = None
    photo_urls: Tuple[str, ...] = ()
    driving_distance_meters: Optional[float] = None
    driving_time_seconds: Optional[float] = None
    is_success: Optional[bool] = None
    failure_reason: Optional[str] = None
    failure_notes: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def gallery_photo_urls(self):
        return list(self.photo_urls[1:])

    @property
    def task_ref(self):
        return self.short_id or self.task_id

    @property
    def order_id(self):
        return self.metadata.get('order_id')

    @property
    def job_type(self):
        return self.metadata.get('job_type')

    @property
    def step(self):
        return safe_int(self.metadata.get('step'), default=None)


def normalize_timestamp(value):
    """Interpret a provider timestamp as seconds or milliseconds since the epoch."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidPayloadError('time must be a unix timestamp')
    seconds = value / 1000.0 if value >= MILLISECONDS_THRESHOLD else float(value)
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        raise InvalidPayloadError('time is out of range')


def _as_dict(value):
    return value if isinstance(value, dict) else {}


def _number(value):
    if value is None or isinstance(value, bool):
        return None
    return safe_float(value, default=None)


def parse_metadata(metadata):
    """Flatten ``[{name, value}]`` metadata (or a plain object) into a dict."""
    if isinstance(metadata, dict):
        return dict(metadata)
    result = {}
    if isinstance(metadata, list):
        for entry in metadata:
            if isinstance(entry, dict) and entry.get('name'):
                result[entry['name']] = entry.get('value')
    return result


def photo_url_for(photo_id, template=DEFAULT_PHOTO_URL_TEMPLATE):
    return template.format(id=photo_id)


def extract_photo_urls(completion_details, template=DEFAULT_PHOTO_URL_TEMPLATE):
    """
    Collect photo URLs from any of the three encodings the provider uses

    Args:
        completion_details (dict): ``completionDetails`` block
        template (str): URL pattern with an ``{id}`` placeholder

    Returns:
        list: ordered, de-duplicated URLs (empty when there are no photos)
    """
    details = _as_dict(completion_details)
    ids = []

    single = details.get('photoUploadId')
    if isinstance(single, str) and single:
        ids.append(single)

    many = details.get('photoUploadIds')
    if isinstance(many, list):
        ids.extend(i for i in many if isinstance(i, str) and i)

    attachments = details.get('unavailableAttachments')
    if isinstance(attachments, list):
        for attachment in attachments:
            if not isinstance(attachment, dict):
                continue
            if attachment.get('attachmentType') != 'PHOTO':
                continue
            attachment_id = attachment.get('attachmentId')
            if isinstance(attachment_id, str) and attachment_id:
                ids.append(attachment_id)

    urls = []
    for photo_id in ids:
        url = photo_url_for(photo_id, template)
        if url not in urls:
            urls.append(url)
    return urls


def resolve_worker_name(event, assigned_driver=None):
    """Worker-supplied name, then the assigned driver's name, then a generic label."""
    if event.worker_name:
        return event.worker_name
    if assigned_driver is not None and assigned_driver.full_name:
        return assigned_driver.full_name
    return DEFAULT_WORKER_NAME


def normalize_webhook(payload, photo_url_template=DEFAULT_PHOTO_URL_TEMPLATE):
    """
    Build a ``DispatchEvent`` from a webhook body

    Raises:
        InvalidPayloadError: trigger, task reference or time is missing or malformed
    """
    if not isinstance(payload, dict):
        raise InvalidPayloadError('payload must be a JSON object')

    trigger = TRIGGER_ALIASES.get(payload.get('triggerName'))
    if trigger is None:
        raise InvalidPayloadError('unknown triggerName: {!r}'.format(payload.get('triggerName')))

    data = _as_dict(payload.get('data'))
    task = _as_dict(data.get('task'))

    task_id = payload.get('taskId') or task.get('id')
    short_id = task.get('shortId')
    if not task_id and not short_id:
        raise InvalidPayloadError('missing task reference')

    if 'time' not in payload:
        raise InvalidPayloadError('missing time')
    occurred_at = normalize_timestamp(payload.get('time'))

    worker = _as_dict(data.get('worker')) or _as_dict(task.get('worker'))
    worker_name = worker.get('name') or None

    event = dict(
        trigger=trigger,
        task_id=task_id,
        short_id=short_id,
        occurred_at=occurred_at,
        worker_name=worker_name,
        metadata=parse_metadata(task.get('metadata')),
    )

    details = _as_dict(task.get('completionDetails'))
    if trigger == TRIGGER_COMPLETED:
        urls = extract_photo_urls(details, photo_url_template)
        event.update(
            photo_url=urls[0] if urls else None,
            photo_urls=tuple(urls),
            driving_distance_meters=_number(details.get('drivingDistance')),
            driving_time_seconds=_number(details.get('drivingTime')),
            is_success=details.get('success', True) is not False,
        )
    elif trigger == TRIGGER_FAILED:
        event.update(
            is_success=False,
            failure_reason=details.get('failureReason'),
            failure_notes=details.get('failureNotes') or details.get('notes'),
        )

    logger.debug("Normalized %s event for task %s", trigger, short_id or task_id)
    return DispatchEvent(**event)
