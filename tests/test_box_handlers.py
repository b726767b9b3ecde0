import pytest

from lockbox import box_handlers
from lockbox.errors import NotFoundError, StoreNotFoundError, UnauthorizedError
from lockbox.models import (
    BoxRecord,
    Guardian,
    GuardianStatus,
    InMemoryBoxStore,
    now_str,
)


def _box(box_id, name, description, owner_id, owner_name):
    now = now_str()
    return BoxRecord(
        id=box_id,
        name=name,
        description=description,
        is_locked=False,
        created_at=now,
        updated_at=now,
        owner_id=owner_id,
        owner_name=owner_name,
    )


@pytest.fixture
def empty_store():
    return InMemoryBoxStore()


@pytest.fixture
def store():
    s = InMemoryBoxStore()
    s.create_box(_box("box_1", "Test Box 1", "First test box", "user_1", "User One"))
    s.create_box(_box("box_2", "Test Box 2", "Second test box", "user_2", "User Two"))
    return s


def _document(doc_id, title, content):
    return {
        "document": {
            "id": doc_id,
            "title": title,
            "content": content,
            "createdAt": "2023-01-01T12:00:00Z",
        }
    }


def test_get_boxes(store):
    body = box_handlers.get_boxes(store, "user_1")
    ids = [b["id"] for b in body["boxes"]]
    store_ids = [b.id for b in store.get_boxes_by_owner("user_1")]
    assert ids == store_ids == ["box_1"]


def test_get_boxes_empty_for_unknown_owner(store):
    assert box_handlers.get_boxes(store, "nobody") == {"boxes": []}


def test_get_box_success(store):
    body = box_handlers.get_box(store, "box_1", "user_1")
    stored = store.get_box("box_1")
    assert body["box"]["id"] == stored.id == "box_1"
    assert body["box"]["name"] == stored.name
    assert body["box"]["description"] == stored.description
    assert body["box"]["ownerId"] == stored.owner_id


def test_get_box_not_found(empty_store):
    with pytest.raises(NotFoundError) as info:
        box_handlers.get_box(empty_store, "missing-box", "user_1")
    assert info.value.to_response()[0] == 404


def test_create_box(empty_store):
    status, body = box_handlers.create_box(
        empty_store,
        "new_user",
        {"name": "New Test Box", "description": "Created during test"},
    )
    assert status == 201
    assert body["box"]["name"] == "New Test Box"
    stored = empty_store.get_box(body["box"]["id"])
    assert stored.name == "New Test Box"
    assert stored.description == "Created during test"
    assert stored.owner_id == "new_user"
    assert stored.is_locked is False


def test_create_box_invalid_payload(empty_store):
    with pytest.raises(ValueError):
        box_handlers.create_box(
            empty_store, "test_user", {"description": "Missing name field"}
        )
    assert empty_store.get_boxes_by_owner("test_user") == []


def test_get_box_not_owned(store):
    with pytest.raises(UnauthorizedError) as info:
        box_handlers.get_box(store, "box_2", "user_1")
    status, body = info.value.to_response()
    assert status == 401
    assert "error" in body


def test_update_box(store):
    body = box_handlers.update_box(
        store,
        "box_1",
        "user_1",
        {
            "name": "Updated Box Name",
            "description": "This description has been updated",
            "isLocked": True,
        },
    )
    assert body["box"]["name"] == "Updated Box Name"
    assert body["box"]["description"] == "This description has been updated"
    assert body["box"]["isLocked"] is True
    stored = store.get_box("box_1")
    assert stored.name == "Updated Box Name"
    assert stored.description == "This description has been updated"
    assert stored.is_locked is True


def test_update_box_partial(store):
    initial_description = store.get_box("box_1").description
    box_handlers.update_box(store, "box_1", "user_1", {"name": "Updated Box Name"})
    stored = store.get_box("box_1")
    assert stored.name == "Updated Box Name"
    assert stored.description == initial_description


def test_update_box_not_owned(store):
    initial = store.get_box("box_1")
    with pytest.raises(UnauthorizedError):
        box_handlers.update_box(
            store,
            "box_1",
            "user_2",
            {
                "name": "Should Not Update",
                "description": "This update should be forbidden",
            },
        )
    final = store.get_box("box_1")
    assert final.name == initial.name
    assert final.description == initial.description


def test_delete_box(store):
    body = box_handlers.delete_box(store, "box_1", "user_1")
    assert body == {"message": "Box deleted successfully."}
    with pytest.raises(StoreNotFoundError):
        store.get_box("box_1")


def test_delete_box_not_owned_or_missing(empty_store):
    with pytest.raises(NotFoundError) as info:
        box_handlers.delete_box(empty_store, "box_1", "other_user")
    assert 400 <= info.value.to_response()[0] < 500


def test_delete_box_by_other_user(store):
    with pytest.raises(UnauthorizedError):
        box_handlers.delete_box(store, "box_1", "other_user")
    assert store.get_box("box_1").id == "box_1"


def test_update_box_add_documents(store):
    box_handlers.update_document(
        store,
        "box_1",
        "user_1",
        _document("test_doc_1", "Test Document", "This is a test document content"),
    )
    docs = store.get_box("box_1").documents
    added = [d for d in docs if d.id == "test_doc_1"]
    assert len(added) == 1
    assert added[0].title == "Test Document"
    assert added[0].content == "This is a test document content"


def test_update_box_add_guardians_with_bad_status(store):
    payload = {
        "guardian": {
            "id": "test_guardian_1",
            "name": "Test Guardian",
            "leadGuardian": False,
            "status": "Invited",
            "addedAt": "2023-01-01T12:00:00Z",
            "invitationId": "inv-test-guardian-1",
        }
    }
    with pytest.raises(ValueError):
        box_handlers.update_guardian(store, "box_1", "user_1", payload)
    assert store.get_box("box_1").guardians == []


def test_update_box_lock(store):
    box_handlers.update_box(store, "box_1", "user_1", {"isLocked": True})
    assert store.get_box("box_1").is_locked is True


def test_update_box_unlock_instructions(store):
    instructions = (
        "New instructions: Contact all guardians via email and provide them "
        "with the death certificate."
    )
    box_handlers.update_box(
        store, "box_1", "user_1", {"unlockInstructions": instructions}
    )
    assert store.get_box("box_1").unlock_instructions == instructions


def test_update_box_clear_unlock_instructions(store):
    record = store.get_box("box_1")
    record.unlock_instructions = "Initial instructions"
    store.update_box(record)
    assert store.get_box("box_1").unlock_instructions == "Initial instructions"

    box_handlers.update_box(store, "box_1", "user_1", {"unlockInstructions": None})
    assert store.get_box("box_1").unlock_instructions is None


def test_update_box_without_instructions_keeps_them(store):
    record = store.get_box("box_1")
    record.unlock_instructions = "Keep me"
    store.update_box(record)
    box_handlers.update_box(store, "box_1", "user_1", {"name": "Renamed"})
    assert store.get_box("box_1").unlock_instructions == "Keep me"


def test_update_single_guardian_with_bad_status(store):
    record = store.get_box("box_1")
    record.guardians.append(
        Guardian(
            id="guardian_a",
            name="Guardian A",
            lead_guardian=False,
            status=GuardianStatus.INVITED,
            added_at="2023-01-01T12:00:00Z",
            invitation_id="inv-guardian-a",
        )
    )
    store.update_box(record)
    assert store.get_box("box_1").guardians[0].status is GuardianStatus.INVITED

    payload = {
        "guardian": {
            "id": "guardian_a",
            "name": "Guardian A",
            "leadGuardian": False,
            "status": "Accepted",
            "addedAt": "2023-01-01T12:00:00Z",
            "invitationId": "inv-guardian-a",
        }
    }
    with pytest.raises(ValueError):
        box_handlers.update_guardian(store, "box_1", "user_1", payload)
    assert store.get_box("box_1").guardians[0].status is GuardianStatus.INVITED


def test_update_guardian_adds_then_replaces(store):
    guardian = {
        "id": "guardian_a",
        "name": "Guardian A",
        "leadGuardian": False,
        "status": "invited",
        "addedAt": "2023-01-01T12:00:00Z",
        "invitationId": "inv-guardian-a",
    }
    body = box_handlers.update_guardian(store, "box_1", "user_1", {"guardian": guardian})
    assert body["guardian"]["status"] == "invited"
    assert len(body["guardian"]["allGuardians"]) == 1

    body = box_handlers.update_guardian(
        store, "box_1", "user_1", {"guardian": {**guardian, "leadGuardian": True}}
    )
    assert body["guardian"]["leadGuardian"] is True
    assert body["guardian"]["invitationId"] == "inv-guardian-a"
    stored = store.get_box("box_1").guardians
    assert len(stored) == 1
    assert stored[0].lead_guardian is True


def test_update_guardian_invalid_payload(empty_store):
    with pytest.raises(ValueError):
        box_handlers.update_guardian(
            empty_store, "box_1", "user_1", {"some_other_field": "value"}
        )


def test_update_document_invalid_payload(empty_store):
    with pytest.raises(ValueError):
        box_handlers.update_document(
            empty_store, "box_1", "user_1", {"some_other_field": "value"}
        )


def test_update_existing_document(store):
    box_handlers.update_document(
        store,
        "box_1",
        "user_1",
        _document("doc_to_update", "Initial Title", "Initial content"),
    )
    body = box_handlers.update_document(
        store,
        "box_1",
        "user_1",
        _document(
            "doc_to_update", "Updated Title", "Updated content with more information"
        ),
    )
    docs = [d for d in body["document"]["documents"] if d["id"] == "doc_to_update"]
    assert len(docs) == 1
    assert docs[0]["title"] == "Updated Title"
    assert docs[0]["content"] == "Updated content with more information"


def test_update_document_unauthorized(store):
    with pytest.raises(UnauthorizedError):
        box_handlers.update_document(
            store,
            "box_2",
            "user_1",
            _document("unauthorized_doc", "Unauthorized Document", "This should fail"),
        )
    assert store.get_box("box_2").documents == []


def test_delete_document(store):
    box_handlers.update_document(
        store,
        "box_1",
        "user_1",
        _document("doc_to_delete", "Document to Delete", "This document will be deleted"),
    )
    body = box_handlers.delete_document(store, "box_1", "doc_to_delete", "user_1")
    assert body["message"] == "Document deleted successfully"
    assert body["document"]["documents"] == []

    fetched = box_handlers.get_box(store, "box_1", "user_1")
    assert all(d["id"] != "doc_to_delete" for d in fetched["box"]["documents"])


def test_delete_document_nonexistent_box(empty_store):
    with pytest.raises(NotFoundError):
        box_handlers.delete_document(empty_store, "box_1", "nonexistent_doc", "user_1")


def test_delete_document_nonexistent_in_existing_box(store):
    with pytest.raises(NotFoundError) as info:
        box_handlers.delete_document(store, "box_1", "nonexistent_doc", "user_1")
    assert info.value.message == "Document with ID nonexistent_doc not found in box box_1"


def test_delete_document_unauthorized(store):
    box_handlers.update_document(
        store,
        "box_2",
        "user_2",
        _document(
            "doc_in_box_2", "Document in Box 2", "This document belongs to user_2's box"
        ),
    )
    with pytest.raises(UnauthorizedError):
        box_handlers.delete_document(store, "box_2", "doc_in_box_2", "user_1")
    assert [d.id for d in store.get_box("box_2").documents] == ["doc_in_box_2"]


def test_delete_guardian(store):
    for gid in ("g1", "g2"):
        box_handlers.update_guardian(
            store,
            "box_1",
            "user_1",
            {
                "guardian": {
                    "id": gid,
                    "name": gid.upper(),
                    "leadGuardian": False,
                    "status": "accepted",
                    "addedAt": "2023-01-01T12:00:00Z",
                    "invitationId": f"inv-{gid}",
                }
            },
        )
    body = box_handlers.delete_guardian(store, "box_1", "g1", "user_1")
    assert body["message"] == "Guardian deleted successfully"
    assert body["guardian"]["id"] == "g1"
    assert body["guardian"]["status"] == "accepted"
    assert [g["id"] for g in body["guardian"]["allGuardians"]] == ["g2"]
    assert [g.id for g in store.get_box("box_1").guardians] == ["g2"]


def test_delete_guardian_missing(store):
    with pytest.raises(NotFoundError) as info:
        box_handlers.delete_guardian(store, "box_1", "ghost", "user_1")
    assert info.value.message == "Guardian with ID ghost not found"


def test_get_box_by_id(store):
    listing = box_handlers.get_boxes(store, "user_1")
    assert listing["boxes"]
    box_id = listing["boxes"][0]["id"]

    box_obj = box_handlers.get_box(store, box_id, "user_1")["box"]
    assert box_obj["id"] == box_id
    for key in (
        "name",
        "description",
        "createdAt",
        "updatedAt",
        "isLocked",
        "documents",
        "guardians",
        "ownerId",
    ):
        assert key in box_obj