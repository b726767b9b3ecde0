"""Handlers for the endpoints a box owner uses to manage their boxes.

Each handler takes the store, the path parameters, the authenticated user and,
where the endpoint has one, the decoded JSON body.  It returns the JSON body of
the response.  Failures are raised as :class:`lockbox.errors.AppError`.  A body
that does not have the expected shape raises :class:`ValueError` before the
store is touched.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from lockbox.errors import (
    InternalServerError,
    NotFoundError,
    StoreError,
    UnauthorizedError,
    app_error_from_store,
)
from lockbox.models import (
    BoxRecord,
    CreateBoxRequest,
    Document,
    Guardian,
    UpdateBoxRequest,
    box_response,
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


def _payload_member(payload: Any, key: str) -> Any:
    if not isinstance(payload, Mapping) or key not in payload:
        raise ValueError(f"missing field `{key}`")
    return payload[key]


def _owned_box(store, box_id: str, owner_id: str, action: str) -> BoxRecord:
    """Fetch a box and make sure ``owner_id`` owns it."""
    with _store_errors():
        record = store.get_box(box_id)
    if record.owner_id != owner_id:
        raise UnauthorizedError(f"You don't have permission to {action} this box")
    return record


def _save(store, record: BoxRecord) -> BoxRecord:
    record.updated_at = now_str()
    with _store_errors():
        return store.update_box(record)


def _guardian_update_response(guardian: Guardian, record: BoxRecord) -> dict[str, Any]:
    return {
        "id": guardian.id,
        "name": guardian.name,
        "status": str(guardian.status),
        "leadGuardian": guardian.lead_guardian,
        "addedAt": guardian.added_at,
        "invitationId": guardian.invitation_id,
        "allGuardians": [g.to_dict() for g in record.guardians],
        "updatedAt": record.updated_at,
    }


def _document_update_response(record: BoxRecord) -> dict[str, Any]:
    return {
        "documents": [d.to_dict() for d in record.documents],
        "updatedAt": record.updated_at,
    }


def _replace_or_append(items: list, item, key) -> None:
    for index, existing in enumerate(items):
        if key(existing) == key(item):
            items[index] = item
            return
    items.append(item)


def get_boxes(store, user_id: str) -> dict[str, Any]:
    """GET /boxes/owned: every box the user owns."""
    with _store_errors():
        boxes = store.get_boxes_by_owner(user_id)
    return {"boxes": [box_response(b) for b in boxes]}


def get_box(store, box_id: str, user_id: str) -> dict[str, Any]:
    """GET /boxes/owned/{id}: one box, for its owner only."""
    record = _owned_box(store, box_id, user_id, "view")
    return {"box": box_response(record)}


def create_box(store, user_id: str, payload: Any) -> tuple[int, dict[str, Any]]:
    """POST /boxes/owned: create a box; returns status 201 and the new box."""
    request = CreateBoxRequest.from_dict(payload)
    now = now_str()
    record = BoxRecord(
        id=str(uuid.uuid4()),
        name=request.name,
        description=request.description,
        is_locked=False,
        created_at=now,
        updated_at=now,
        owner_id=user_id,
    )
    with _store_errors():
        created = store.create_box(record)
    return 201, {"box": box_response(created)}


def update_box(store, box_id: str, user_id: str, payload: Any) -> dict[str, Any]:
    """PATCH /boxes/owned/{id}: change the fields present in the payload."""
    request = UpdateBoxRequest.from_dict(payload)
    record = _owned_box(store, box_id, user_id, "update")

    if request.name is not None:
        record.name = request.name
    if request.description is not None:
        record.description = request.description
    if request.has_unlock_instructions:
        record.unlock_instructions = request.unlock_instructions
    if request.is_locked is not None:
        record.is_locked = request.is_locked

    return {"box": box_response(_save(store, record))}


def delete_box(store, box_id: str, user_id: str) -> dict[str, Any]:
    """DELETE /boxes/owned/{id}: remove a box owned by the user."""
    _owned_box(store, box_id, user_id, "delete")
    with _store_errors():
        store.delete_box(box_id)
    return {"message": "Box deleted successfully."}


def update_guardian(store, box_id: str, user_id: str, payload: Any) -> dict[str, Any]:
    """PATCH /boxes/owned/{id}/guardian: add a guardian or replace one by id."""
    guardian = Guardian.from_dict(_payload_member(payload, "guardian"))
    record = _owned_box(store, box_id, user_id, "update")
    _replace_or_append(record.guardians, guardian, key=lambda g: g.id)
    updated = _save(store, record)

    stored = next((g for g in updated.guardians if g.id == guardian.id), None)
    if stored is None:
        raise InternalServerError("Updated guardian not found in response")
    return {"guardian": _guardian_update_response(stored, updated)}


def update_document(store, box_id: str, user_id: str, payload: Any) -> dict[str, Any]:
    """PATCH /boxes/owned/{id}/document: add a document or replace one by id."""
    document = Document.from_dict(_payload_member(payload, "document"))
    record = _owned_box(store, box_id, user_id, "update")
    _replace_or_append(record.documents, document, key=lambda d: d.id)
    updated = _save(store, record)
    return {"document": _document_update_response(updated)}


def delete_document(
    store, box_id: str, document_id: str, user_id: str
) -> dict[str, Any]:
    """DELETE /boxes/owned/{id}/document/{document_id}."""
    record = _owned_box(store, box_id, user_id, "delete documents from")
    remaining = [d for d in record.documents if d.id != document_id]
    if len(remaining) == len(record.documents):
        raise NotFoundError(
            f"Document with ID {document_id} not found in box {box_id}"
        )
    record.documents = remaining
    updated = _save(store, record)
    return {
        "message": "Document deleted successfully",
        "document": _document_update_response(updated),
    }


def delete_guardian(
    store, box_id: str, guardian_id: str, user_id: str
) -> dict[str, Any]:
    """DELETE /boxes/owned/{id}/guardian/{guardian_id}."""
    with _store_errors():
        before = store.get_box(box_id)
    removed = next((g for g in before.guardians if g.id == guardian_id), None)
    if removed is None:
        raise NotFoundError(f"Guardian with ID {guardian_id} not found")

    record = _owned_box(store, box_id, user_id, "delete guardians from")
    remaining = [g for g in record.guardians if g.id != guardian_id]
    if len(remaining) == len(record.guardians):
        raise NotFoundError(
            f"Guardian with ID {guardian_id} not found in box {box_id}"
        )
    record.guardians = remaining
    updated = _save(store, record)
    return {
        "message": "Guardian deleted successfully",
        "guardian": _guardian_update_response(removed, updated),
    }