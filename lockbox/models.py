"""Box records, request payloads, response shapes and an in-memory box store."""

from __future__ import annotations

import copy
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from lockbox.errors import (
    StoreNotFoundError,
    StoreValidationError,
    VersionConflictError,
)

_MISSING = object()


def _mapping(data: Any) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValueError("expected a JSON object")
    return data


def _typed(key: str, value: Any, kind: type) -> Any:
    if kind is bool:
        ok = isinstance(value, bool)
    elif kind is int:
        ok = isinstance(value, int) and not isinstance(value, bool)
    else:
        ok = isinstance(value, kind)
    if not ok:
        raise ValueError(f"invalid type for field `{key}`: expected {kind.__name__}")
    return value


def _required(data: Mapping[str, Any], key: str, kind: type) -> Any:
    if key not in data:
        raise ValueError(f"missing field `{key}`")
    return _typed(key, data[key], kind)


def _optional(data: Mapping[str, Any], key: str, kind: type) -> Any:
    value = data.get(key)
    return None if value is None else _typed(key, value, kind)


def _string_list(data: Mapping[str, Any], key: str) -> list[str]:
    values = data.get(key)
    if values is None:
        return []
    if not isinstance(values, list):
        raise ValueError(f"invalid type for field `{key}`: expected list")
    return [_typed(key, v, str) for v in values]


def _records(data: Mapping[str, Any], key: str, parse) -> list:
    values = data.get(key)
    if values is None:
        return []
    if not isinstance(values, list):
        raise ValueError(f"invalid type for field `{key}`: expected list")
    return [parse(v) for v in values]


def now_str() -> str:
    """Current UTC time as an RFC 3339 string."""
    return datetime.now(timezone.utc).isoformat()


class GuardianStatus(str, Enum):
    INVITED = "invited"
    VIEWED = "viewed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    def __str__(self) -> str:
        return self.value


class UnlockRequestStatus(str, Enum):
    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"

    def __str__(self) -> str:
        return self.value


@dataclass
class Document:
    id: str
    title: str
    content: str
    created_at: str

    @classmethod
    def from_dict(cls, data: Any) -> Document:
        data = _mapping(data)
        return cls(
            id=_required(data, "id", str),
            title=_required(data, "title", str),
            content=_required(data, "content", str),
            created_at=_required(data, "createdAt", str),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "createdAt": self.created_at,
        }


@dataclass
class Guardian:
    id: str
    name: str
    lead_guardian: bool
    status: GuardianStatus
    added_at: str
    invitation_id: str

    @classmethod
    def from_dict(cls, data: Any) -> Guardian:
        data = _mapping(data)
        return cls(
            id=_required(data, "id", str),
            name=_required(data, "name", str),
            lead_guardian=_required(data, "leadGuardian", bool),
            status=GuardianStatus(_required(data, "status", str)),
            added_at=_required(data, "addedAt", str),
            invitation_id=_required(data, "invitationId", str),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "leadGuardian": self.lead_guardian,
            "status": self.status.value,
            "addedAt": self.added_at,
            "invitationId": self.invitation_id,
        }


@dataclass
class UnlockRequest:
    id: str
    requested_at: str
    status: UnlockRequestStatus
    message: str | None = None
    initiated_by: str | None = None
    approved_by: list[str] = field(default_factory=list)
    rejected_by: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> UnlockRequest:
        data = _mapping(data)
        return cls(
            id=_required(data, "id", str),
            requested_at=_required(data, "requestedAt", str),
            status=UnlockRequestStatus(_required(data, "status", str)),
            message=_optional(data, "message", str),
            initiated_by=_optional(data, "initiatedBy", str),
            approved_by=_string_list(data, "approvedBy"),
            rejected_by=_string_list(data, "rejectedBy"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "requestedAt": self.requested_at,
            "status": self.status.value,
            "message": self.message,
            "initiatedBy": self.initiated_by,
            "approvedBy": list(self.approved_by),
            "rejectedBy": list(self.rejected_by),
        }


@dataclass
class BoxRecord:
    id: str
    name: str
    description: str
    is_locked: bool
    created_at: str
    updated_at: str
    owner_id: str
    owner_name: str | None = None
    documents: list[Document] = field(default_factory=list)
    guardians: list[Guardian] = field(default_factory=list)
    unlock_instructions: str | None = None
    unlock_request: UnlockRequest | None = None
    version: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> BoxRecord:
        data = _mapping(data)
        unlock = data.get("unlockRequest")
        return cls(
            id=_required(data, "id", str),
            name=_required(data, "name", str),
            description=_required(data, "description", str),
            is_locked=_required(data, "isLocked", bool),
            created_at=_required(data, "createdAt", str),
            updated_at=_required(data, "updatedAt", str),
            owner_id=_required(data, "ownerId", str),
            owner_name=_optional(data, "ownerName", str),
            documents=_records(data, "documents", Document.from_dict),
            guardians=_records(data, "guardians", Guardian.from_dict),
            unlock_instructions=_optional(data, "unlockInstructions", str),
            unlock_request=None if unlock is None else UnlockRequest.from_dict(unlock),
            version=_optional(data, "version", int) or 0,
        )

    def to_dict(self) -> dict[str, Any]:
        return {**box_response(self), "version": self.version}


@dataclass
class GuardianBox:
    """A box as seen by one of its guardians."""

    id: str
    name: str
    description: str
    is_locked: bool
    created_at: str
    updated_at: str
    owner_id: str
    owner_name: str | None
    unlock_instructions: str | None
    unlock_request: UnlockRequest | None
    pending_guardian_approval: bool | None
    guardians_count: int
    is_lead_guardian: bool
    documents: list[Document]
    guardians: list[Guardian]


@dataclass
class CreateBoxRequest:
    name: str
    description: str

    @classmethod
    def from_dict(cls, data: Any) -> CreateBoxRequest:
        data = _mapping(data)
        return cls(
            name=_required(data, "name", str),
            description=_required(data, "description", str),
        )


@dataclass
class UpdateBoxRequest:
    """Partial update of a box.

    ``has_unlock_instructions`` tells an explicit ``null`` (clear) apart from an
    absent field (leave unchanged).
    """

    name: str | None = None
    description: str | None = None
    unlock_instructions: str | None = None
    has_unlock_instructions: bool = False
    is_locked: bool | None = None

    @classmethod
    def from_dict(cls, data: Any) -> UpdateBoxRequest:
        data = _mapping(data)
        return cls(
            name=_optional(data, "name", str),
            description=_optional(data, "description", str),
            unlock_instructions=_optional(data, "unlockInstructions", str),
            has_unlock_instructions="unlockInstructions" in data,
            is_locked=_optional(data, "isLocked", bool),
        )


@dataclass
class GuardianResponseRequest:
    approve: bool | None = None
    reject: bool | None = None

    @classmethod
    def from_dict(cls, data: Any) -> GuardianResponseRequest:
        data = _mapping(data)
        return cls(
            approve=_optional(data, "approve", bool),
            reject=_optional(data, "reject", bool),
        )


def box_response(record: BoxRecord) -> dict[str, Any]:
    """The JSON shape of a box as returned to its owner."""
    return {
        "id": record.id,
        "name": record.name,
        "description": record.description,
        "createdAt": record.created_at,
        "updatedAt": record.updated_at,
        "unlockInstructions": record.unlock_instructions,
        "isLocked": record.is_locked,
        "documents": [d.to_dict() for d in record.documents],
        "guardians": [g.to_dict() for g in record.guardians],
        "ownerId": record.owner_id,
        "ownerName": record.owner_name,
        "unlockRequest": (
            None if record.unlock_request is None else record.unlock_request.to_dict()
        ),
    }


def guardian_box_response(guard_box: GuardianBox) -> dict[str, Any]:
    """The JSON shape of a box as returned to a guardian."""
    return {
        "id": guard_box.id,
        "name": guard_box.name,
        "description": guard_box.description,
        "isLocked": guard_box.is_locked,
        "createdAt": guard_box.created_at,
        "updatedAt": guard_box.updated_at,
        "ownerId": guard_box.owner_id,
        "ownerName": guard_box.owner_name,
        "unlockInstructions": guard_box.unlock_instructions,
        "unlockRequest": (
            None if guard_box.unlock_request is None else guard_box.unlock_request.to_dict()
        ),
        "pendingGuardianApproval": guard_box.pending_guardian_approval,
        "guardiansCount": guard_box.guardians_count,
        "isLeadGuardian": guard_box.is_lead_guardian,
        "documents": [d.to_dict() for d in guard_box.documents],
        "guardians": [g.to_dict() for g in guard_box.guardians],
    }


def convert_to_guardian_box(record: BoxRecord, user_id: str) -> GuardianBox | None:
    """Return the guardian's view of a box, or None if the user is not its guardian."""
    guardian = next(
        (
            g
            for g in record.guardians
            if g.id == user_id and g.status is not GuardianStatus.REJECTED
        ),
        None,
    )
    if guardian is None:
        return None

    request = record.unlock_request
    pending = None
    if request is not None:
        pending = (
            request.status is UnlockRequestStatus.REQUESTED
            and user_id not in request.approved_by
            and user_id not in request.rejected_by
        )

    return GuardianBox(
        id=record.id,
        name=record.name,
        description=record.description,
        is_locked=record.is_locked,
        created_at=record.created_at,
        updated_at=record.updated_at,
        owner_id=record.owner_id,
        owner_name=record.owner_name,
        unlock_instructions=record.unlock_instructions,
        unlock_request=copy.deepcopy(request),
        pending_guardian_approval=pending,
        guardians_count=len(record.guardians),
        is_lead_guardian=guardian.lead_guardian,
        documents=copy.deepcopy(record.documents),
        guardians=copy.deepcopy(record.guardians),
    )


class InMemoryBoxStore:
    """Thread-safe box store kept in memory, with optimistic version checks."""

    def __init__(self) -> None:
        self._boxes: dict[str, BoxRecord] = {}
        self._lock = threading.Lock()

    def get_box(self, box_id: str) -> BoxRecord:
        with self._lock:
            try:
                return copy.deepcopy(self._boxes[box_id])
            except KeyError:
                raise StoreNotFoundError(f"Box with ID {box_id} not found") from None

    def get_boxes_by_owner(self, owner_id: str) -> list[BoxRecord]:
        with self._lock:
            return [
                copy.deepcopy(b) for b in self._boxes.values() if b.owner_id == owner_id
            ]

    def get_boxes_by_guardian_id(self, guardian_id: str) -> list[BoxRecord]:
        with self._lock:
            return [
                copy.deepcopy(b)
                for b in self._boxes.values()
                if any(g.id == guardian_id for g in b.guardians)
            ]

    def create_box(self, record: BoxRecord) -> BoxRecord:
        with self._lock:
            if record.id in self._boxes:
                raise StoreValidationError(f"Box with ID {record.id} already exists")
            self._boxes[record.id] = copy.deepcopy(record)
            return copy.deepcopy(record)

    def update_box(self, record: BoxRecord) -> BoxRecord:
        with self._lock:
            current = self._boxes.get(record.id)
            if current is None:
                raise StoreNotFoundError(f"Box with ID {record.id} not found")
            if current.version != record.version:
                raise VersionConflictError(
                    f"Box {record.id} was modified: expected version "
                    f"{record.version}, found {current.version}"
                )
            stored = copy.deepcopy(record)
            stored.version = current.version + 1
            self._boxes[record.id] = stored
            return copy.deepcopy(stored)

    def delete_box(self, box_id: str) -> None:
        with self._lock:
            if self._boxes.pop(box_id, None) is None:
                raise StoreNotFoundError(f"Box with ID {box_id} not found")