"""
Webhook normalization tests
Trigger aliases, timestamps, photo extraction and metadata
"""
from datetime import datetime, timezone

import pytest

from fleetrelay.services.event_normalizer import (
    DEFAULT_WORKER_NAME, extract_photo_urls, normalize_timestamp, normalize_webhook,
    parse_metadata, resolve_worker_name,
)
from fleetrelay.services.exceptions import InvalidPayloadError

TEMPLATE = 'https://photos.test/{id}.png'


def _payload(trigger='taskCompleted', ts=1780000000, **task):
    task.setdefault('shortId', 'abc123')
    return {'taskId': 'T1', 'time': ts, 'triggerName': trigger, 'data': {'task': task}}


class TestTimestamps:
    """Test seconds/milliseconds disambiguation"""

    def test_seconds(self):
        assert normalize_timestamp(1780000000) == datetime.fromtimestamp(1780000000, tz=timezone.utc)

    def test_milliseconds(self):
        assert normalize_timestamp(1780000000123) == datetime.fromtimestamp(1780000000.123, tz=timezone.utc)

    def test_seconds_and_milliseconds_agree(self):
        """The same instant sent both ways normalizes to within a second"""
        as_seconds = normalize_timestamp(1780000000)
        as_millis = normalize_timestamp(1780000000 * 1000 + 400)
        assert abs((as_millis - as_seconds).total_seconds()) < 1

    def test_rejects_non_numbers(self):
        with pytest.raises(InvalidPayloadError):
            normalize_timestamp('yesterday')
        with pytest.raises(InvalidPayloadError):
            normalize_timestamp(True)


class TestPhotoExtraction:
    """Test the three completion-details photo encodings"""

    def test_single_id(self):
        assert extract_photo_urls({'photoUploadId': 'p1'}, TEMPLATE) == ['https://photos.test/p1.png']

    def test_id_list(self):
        assert extract_photo_urls({'photoUploadIds': ['p1']}, TEMPLATE) == ['https://photos.test/p1.png']

    def test_attachment_fallback(self):
        details = {'unavailableAttachments': [
            {'attachmentType': 'SIGNATURE', 'attachmentId': 'sig'},
            {'attachmentType': 'PHOTO', 'attachmentId': 'p1'},
        ]}
        assert extract_photo_urls(details, TEMPLATE) == ['https://photos.test/p1.png']

    def test_no_photos(self):
        assert extract_photo_urls({}, TEMPLATE) == []
        assert extract_photo_urls(None, TEMPLATE) == []

    def test_combined_shapes_are_ordered_and_deduplicated(self):
        details = {
            'photoUploadId': 'p1',
            'photoUploadIds': ['p1', 'p2'],
            'unavailableAttachments': [{'attachmentType': 'PHOTO', 'attachmentId': 'p3'}],
        }
        assert extract_photo_urls(details, TEMPLATE) == [
            'https://photos.test/p1.png',
            'https://photos.test/p2.png',
            'https://photos.test/p3.png',
        ]


class TestNormalizeWebhook:
    """Test building canonical events from webhook bodies"""

    def test_completed_event(self):
        event = normalize_webhook(_payload(
            completionDetails={'photoUploadIds': ['p1', 'p2'], 'drivingDistance': 1609.34, 'drivingTime': 900},
            worker={'name': 'Ana Ruiz'},
        ), TEMPLATE)

        assert event.trigger == 'completed'
        assert event.short_id == 'abc123'
        assert event.photo_url == 'https://photos.test/p1.png'
        assert event.gallery_photo_urls == ['https://photos.test/p2.png']
        assert event.driving_distance_meters == 1609.34
        assert event.driving_time_seconds == 900
        assert event.worker_name == 'Ana Ruiz'

    def test_in_flight_metrics_are_null(self):
        event = normalize_webhook(_payload(completionDetails={'drivingDistance': None}), TEMPLATE)
        assert event.driving_distance_meters is None
        assert event.driving_time_seconds is None
        assert event.photo_url is None

    def test_photos_ignored_outside_completion(self):
        event = normalize_webhook(_payload('taskArrival', completionDetails={'photoUploadId': 'p1'}), TEMPLATE)
        assert event.trigger == 'arrival'
        assert event.photo_url is None
        assert event.photo_urls == ()

    def test_failed_event(self):
        event = normalize_webhook(_payload('taskFailed', completionDetails={
            'failureReason': 'CUSTOMER_UNAVAILABLE', 'photoUploadId': 'p1'}), TEMPLATE)
        assert event.trigger == 'failed'
        assert event.is_success is False
        assert event.failure_reason == 'CUSTOMER_UNAVAILABLE'
        assert event.photo_url is None

    @pytest.mark.parametrize('name,trigger', [
        ('started', 'started'), ('taskStarted', 'started'),
        ('arrived', 'arrival'), ('taskArrival', 'arrival'),
        ('completed', 'completed'), ('taskFailed', 'failed'),
    ])
    def test_trigger_aliases(self, name, trigger):
        assert normalize_webhook(_payload(name), TEMPLATE).trigger == trigger

    def test_metadata_list(self):
        event = normalize_webhook(_payload(metadata=[
            {'name': 'order_id', 'value': 'o-1'},
            {'name': 'job_type', 'value': 'delivery'},
            {'name': 'step', 'value': '2'},
        ]), TEMPLATE)
        assert event.order_id == 'o-1'
        assert event.job_type == 'delivery'
        assert event.step == 2

    def test_metadata_object(self):
        assert parse_metadata({'order_id': 'o-1'}) == {'order_id': 'o-1'}
        assert parse_metadata(None) == {}

    @pytest.mark.parametrize('payload', [
        None,
        [],
        {'time': 1, 'triggerName': 'taskDeleted', 'taskId': 'x'},
        {'time': 1, 'triggerName': 'taskStarted'},
        {'triggerName': 'taskStarted', 'taskId': 'x'},
        {'time': 'soon', 'triggerName': 'taskStarted', 'taskId': 'x'},
    ])
    def test_structurally_invalid(self, payload):
        with pytest.raises(InvalidPayloadError):
            normalize_webhook(payload, TEMPLATE)


class TestWorkerName:
    """Test worker display name fallback"""

    def test_fallbacks(self, driver_factory):
        driver = driver_factory(first_name='Sam', last_name='Lee')
        named = normalize_webhook(_payload(worker={'name': 'Ana'}), TEMPLATE)
        unnamed = normalize_webhook(_payload(), TEMPLATE)

        assert resolve_worker_name(named, driver) == 'Ana'
        assert resolve_worker_name(unnamed, driver) == 'Sam Lee'
        assert resolve_worker_name(unnamed, None) == DEFAULT_WORKER_NAME
