"""Processing of invitation events delivered as SNS notifications."""

from __future__ import annotations

import json
import logging
import random
import time
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass
from typing import Any

from lockbox.errors import (
    BoxNotFound,
    EventError,
    EventInternalError,
    GuardianNotFound,
    MissingFieldError,
    StoreError,
    event_error_from_exception,
    event_error_from_invitation_error,
)
from lockbox.models import GuardianStatus, now_str

log = logging.getLogger(__name__)

MAX_RETRIES = 5

Sleep = Callable[[float], None]


@dataclass
class InvitationEvent:
    event_type: str
    invitation_id: str
    box_id: str
    timestamp: str
    invite_code: str
    user_id: str | None = None

    @classmethod
    def from_json(cls, text: str) -> InvitationEvent:
        """Parse an event; raises ValueError if the text is not a valid event."""
        data = json.loads(text)
        if not isinstance(data, Mapping):
            raise ValueError("expected a JSON object")
        values: dict[str, Any] = {}
        for name in ("event_type", "invitation_id", "box_id", "timestamp", "invite_code"):
            value = data.get(name)
            if not isinstance(value, str):
                raise ValueError(f"missing or invalid field `{name}`")
            values[name] = value
        user_id = data.get("user_id")
        if user_id is not None and not isinstance(user_id, str):
            raise ValueError("invalid type for field `user_id`")
        return cls(user_id=user_id, **values)

    def to_json(self) -> str:
        return json.dumps(asdict(self))


def handle_invitation_created(store, event: InvitationEvent) -> None:
    """Record that an invitation was created; nothing in the box changes."""
    log.info("Processing invitation_created event for box_id=%s", event.box_id)


def handle_invitation_opened(
    store, event: InvitationEvent, sleep: Sleep = time.sleep
) -> None:
    """Link the viewing user to the guardian slot; ignore missing boxes or guardians."""
    log.info("Processing invitation_opened event for box_id=%s", event.box_id)
    if event.user_id is None:
        log.error("User ID is missing in the event")
        raise event_error_from_invitation_error(MissingFieldError("user_id"))

    try:
        process_invitation_viewing(
            store, event.box_id, event.invitation_id, event.user_id, sleep
        )
    except GuardianNotFound as err:
        log.warning("Ignoring event for non-existent guardian: %s", err.message)
    except BoxNotFound as err:
        log.warning("Ignoring event for non-existent box: %s", err.message)


def _update_specific_guardian(
    store, box_id: str, invitation_id: str, user_id: str
) -> None:
    record = store.get_box(box_id)
    guardian = next(
        (g for g in record.guardians if g.invitation_id == invitation_id), None
    )
    if guardian is None:
        raise GuardianNotFound(f"No guardian found with invitation ID: {invitation_id}")

    if guardian.status is GuardianStatus.VIEWED and guardian.id == user_id:
        log.info(
            "Guardian already updated, skipping: box_id=%s, invitation_id=%s, user_id=%s",
            box_id,
            invitation_id,
            user_id,
        )
        return

    if guardian.status is not GuardianStatus.INVITED:
        log.info(
            "Guardian already in state %s, not updating: box_id=%s, invitation_id=%s",
            guardian.status,
            box_id,
            invitation_id,
        )
        return

    guardian.id = user_id
    guardian.status = GuardianStatus.VIEWED
    record.updated_at = now_str()
    try:
        store.update_box(record)
    except StoreError as err:
        log.error(
            "Failed to update guardian: box_id=%s, invitation_id=%s, error=%s",
            box_id,
            invitation_id,
            err,
        )
        raise


def process_invitation_viewing(
    store,
    box_id: str,
    invitation_id: str,
    user_id: str,
    sleep: Sleep = time.sleep,
) -> None:
    """Mark the guardian invited under ``invitation_id`` as viewed by ``user_id``.

    Retries with exponential back-off and jitter; raises an EventError on failure.
    """
    log.info(
        "Processing invitation viewing: box_id=%s, invitation_id=%s, user_id=%s",
        box_id,
        invitation_id,
        user_id,
    )
    if not user_id:
        raise EventInternalError("User ID cannot be empty")

    try:
        store.get_box(box_id)
    except StoreError as err:
        raise BoxNotFound(f"Box not found: {box_id}, error: {err}") from err

    last_error: Exception | None = None
    for attempt in range(1, MAX_RETRIES + 1):
        try:
            _update_specific_guardian(store, box_id, invitation_id, user_id)
        except (StoreError, EventError) as err:
            last_error = err
            base_delay_ms = 50 * (1 << attempt)
            jitter = int(attempt * 0.1 * base_delay_ms)
            delay_ms = base_delay_ms + random.randint(0, jitter)
            log.info(
                "Error updating guardian (retry %d/%d): box_id=%s, invitation_id=%s, "
                "waiting %dms",
                attempt,
                MAX_RETRIES,
                box_id,
                invitation_id,
                delay_ms,
            )
            sleep(delay_ms / 1000)
        else:
            log.info(
                "Successfully updated guardian for invitation: box_id=%s, "
                "invitation_id=%s, user_id=%s",
                box_id,
                invitation_id,
                user_id,
            )
            return

    log.error(
        "Failed to update guardian after %d retries: box_id=%s, invitation_id=%s, "
        "user_id=%s",
        MAX_RETRIES,
        box_id,
        invitation_id,
        user_id,
    )
    try:
        record = store.get_box(box_id)
    except StoreError as err:
        log.error("Failed to retrieve current box state: %s", err)
    else:
        guardian = next(
            (g for g in record.guardians if g.invitation_id == invitation_id), None
        )
        if guardian is None:
            log.error("Guardian with invitation_id=%s not found in box", invitation_id)
        elif guardian.id == user_id and guardian.status is GuardianStatus.VIEWED:
            log.info(
                "Guardian was actually updated by another process: box_id=%s, "
                "invitation_id=%s, user_id=%s",
                box_id,
                invitation_id,
                user_id,
            )
            return
        else:
            log.error(
                "Current guardian state: id=%s, status=%s, invitation_id=%s",
                guardian.id,
                guardian.status,
                guardian.invitation_id,
            )

    if last_error is None:
        raise EventInternalError("Failed to update guardian after max retries")
    raise event_error_from_exception(last_error) from last_error


def handle_sns_event(event: Mapping[str, Any], store, sleep: Sleep = time.sleep) -> None:
    """Process every record of an SNS notification; unparseable records are skipped."""
    for record in event.get("Records") or []:
        sns = record.get("Sns") if isinstance(record, Mapping) else None
        message = sns.get("Message") if isinstance(sns, Mapping) else None
        try:
            if not isinstance(message, str):
                raise ValueError("record carries no message")
            invitation_event = InvitationEvent.from_json(message)
        except ValueError:
            log.error("Failed to parse SNS message: %s", message)
            continue

        if invitation_event.event_type == "invitation_created":
            handle_invitation_created(store, invitation_event)
        elif invitation_event.event_type == "invitation_viewed":
            handle_invitation_opened(store, invitation_event, sleep)
        else:
            log.error("Unknown event type: %s", invitation_event.event_type)