"""Handlers for the endpoints a guardian uses to see and act on boxes.

Handlers return the JSON body of the response and raise
:class:`lockbox.errors.AppError` on failure.  A body that does not have the
expected shape raises :class:`ValueError` before the store is touched.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from lockbox.errors import (
    BadRequestError,
    InternalServerError,
    StoreError,
    UnauthorizedError,
    app_error_from_store,
)
from lockbox.models import (
    BoxRecord,
    GuardianResponseRequest,
    GuardianStatus,
    UnlockRequest,
    UnlockRequestStatus,
    convert_to_guardian_box,
    guardian_box_response,
    now_str,
)

log = logging.getLogger(__name__)


@contextmanager
def _store_errors() -> Iterator[None]:
    """Re-raise store failures as the HTTP errors they map to."""
    try:
        yield
    except StoreError as err:
        raise app_error_from_store(err) from err


def _payload_value(payload: Any, key: str, kind: type) -> Any:
    if not isinstance(payload, Mapping):
        raise ValueError("expected a JSON object")
    if key not in payload:
        raise ValueError(f"missing field `{key}`")
    value = payload[key]
    if not isinstance(value, kind):
        raise ValueError(f"invalid type for field `{key}`: expected {kind.__name__}")
    return value


def _is_active_guardian(record: BoxRecord, user_id: str) -> bool:
    return any(
        g.id == user_id and g.status is not GuardianStatus.REJECTED
        for g in record.guardians
    )


def _render(record: BoxRecord, user_id: str) -> dict[str, Any]:
    guard_box = convert_to_guardian_box(record, user_id)
    if guard_box is None:
        raise InternalServerError("Failed to render guardian box")
    return guardian_box_response(guard_box)


def _save(store, record: BoxRecord) -> BoxRecord:
    record.updated_at = now_str()
    with _store_errors():
        return store.update_box(record)


def get_guardian_boxes(store, user_id: str) -> dict[str, Any]:
    """GET /boxes/guardian: every box the user guards; store failures give none."""
    try:
        records = store.get_boxes_by_guardian_id(user_id)
    except StoreError as err:
        log.warning("Failed to list guardian boxes for %s: %s", user_id, err)
        records = []
    views = (convert_to_guardian_box(r, user_id) for r in records)
    return {"boxes": [guardian_box_response(v) for v in views if v is not None]}


def get_guardian_box(store, box_id: str, user_id: str) -> dict[str, Any]:
    """GET /boxes/guardian/{id}: one box as seen by one of its guardians."""
    log.debug("Fetching guardian box with id: %s", box_id)
    with _store_errors():
        record = store.get_box(box_id)
    guard_box = convert_to_guardian_box(record, user_id)
    if guard_box is None:
        raise UnauthorizedError("Unauthorized or Box not found")
    return {"box": guardian_box_response(guard_box)}


def request_unlock(store, box_id: str, user_id: str, payload: Any) -> dict[str, Any]:
    """PATCH /boxes/guardian/{id}/request: a lead guardian asks to unlock a box."""
    message = _payload_value(payload, "message", str)
    with _store_errors():
        record = store.get_box(box_id)

    if not _is_active_guardian(record, user_id):
        log.warning("User %s is not a guardian for box %s", user_id, box_id)
        raise UnauthorizedError("Not a guardian for this box")

    if not any(g.id == user_id and g.lead_guardian for g in record.guardians):
        raise BadRequestError("User is not a lead guardian for this box")

    record.unlock_request = UnlockRequest(
        id=str(uuid.uuid4()),
        requested_at=now_str(),
        status=UnlockRequestStatus.REQUESTED,
        message=message,
        initiated_by=user_id,
    )
    updated = _save(store, record)
    return {"box": _render(updated, user_id)}


def respond_to_unlock_request(
    store, box_id: str, user_id: str, payload: Any
) -> dict[str, Any]:
    """PATCH /boxes/guardian/{id}/respond: approve or reject a pending unlock."""
    response = GuardianResponseRequest.from_dict(payload)
    with _store_errors():
        record = store.get_box(box_id)

    if not _is_active_guardian(record, user_id):
        raise UnauthorizedError("Not a guardian for this box")

    unlock = record.unlock_request
    if unlock is None:
        raise BadRequestError("No unlock request exists to update")

    updated = False
    if response.approve and user_id not in unlock.approved_by:
        unlock.approved_by.append(user_id)
        updated = True
    if response.reject and user_id not in unlock.rejected_by:
        unlock.rejected_by.append(user_id)
        updated = True
    if not updated:
        raise BadRequestError("No valid update field provided")

    saved = _save(store, record)
    return {"box": _render(saved, user_id)}


def respond_to_invitation(
    store, box_id: str, user_id: str, payload: Any
) -> dict[str, Any]:
    """PATCH /boxes/guardian/{id}/invitation: accept or reject an invitation."""
    accept = _payload_value(payload, "accept", bool)
    with _store_errors():
        record = store.get_box(box_id)

    guardian = next(
        (
            g
            for g in record.guardians
            if g.id == user_id and g.status is GuardianStatus.INVITED
        ),
        None,
    )
    if guardian is None:
        raise BadRequestError("No pending invitation found for this user")

    if accept:
        guardian.status = GuardianStatus.ACCEPTED
        updated = _save(store, record)
        return {
            "message": "Guardian invitation accepted successfully",
            "box": _render(updated, user_id),
        }

    guardian.status = GuardianStatus.REJECTED
    _save(store, record)
    return {"message": "Guardian invitation rejected successfully"}