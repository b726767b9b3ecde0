# lockbox

A small library for keeping "boxes": collections of documents that an owner
locks away and that a group of guardians can later ask to unlock.

What it covers:

- **Owned boxes**: list, create, read, update and delete your own boxes;
  add, replace and remove documents and guardians in them.
- **Guardian boxes**: guardians see the boxes they watch over. A lead
  guardian can start an unlock request, and every active guardian can approve
  or reject it. An invited guardian can accept or turn down the invitation.
- **Invitation events**: when a guardian opens an invitation, the matching
  guardian in the box is linked to that user and marked as viewed. Updates
  that fail are retried with exponential backoff and jitter.

The package has no third-party dependencies. The tests use pytest
(`pip install .[test]`).

## Modules

- `lockbox.models`: the records (`BoxRecord`, `Document`, `Guardian`,
  `UnlockRequest`, `GuardianBox`), the statuses (`GuardianStatus`,
  `UnlockRequestStatus`), the request payloads (`CreateBoxRequest`,
  `UpdateBoxRequest`, `GuardianResponseRequest`), the JSON shapes
  (`box_response`, `guardian_box_response`), `convert_to_guardian_box`,
  `now_str` and `InMemoryBoxStore`.
- `lockbox.box_handlers` and `lockbox.guardian_handlers`: one function per
  endpoint.
- `lockbox.routes`: `Router`, `Response` and `create_router`.
- `lockbox.events`: `InvitationEvent` and the event handlers.
- `lockbox.errors`: the exception classes and the functions that translate
  store errors into HTTP and event errors.

## Routing requests

`create_router(store, prefix)` builds a `Router` over a box store.
`Router.handle(method, path, user_id, body)` takes the HTTP method, the path,
the id of the authenticated user and the body, and returns a `Response` with
`status`, `body` and `headers` (permissive CORS headers on every response).
The body may be a decoded JSON value or a JSON string or bytes.

Pass `""` as the prefix to serve paths as they are, or a prefix such as
`"/Prod"` to mount them under it. With no prefix given, `create_router` uses
`"/Prod"` unless the environment variable `REMOVE_BASE_PATH` is `true`.

```python
from lockbox.models import InMemoryBoxStore
from lockbox.routes import create_router

store = InMemoryBoxStore()
router = create_router(store, "")

created = router.handle(
    "POST",
    "/boxes/owned",
    "user_1",
    {"name": "Family papers", "description": "Wills and deeds"},
)
assert created.status == 201
listing = router.handle("GET", "/boxes/owned", "user_1", None)
```

Routes:

| Method | Path | Purpose |
| --- | --- | --- |
| GET, POST | `/boxes/owned` | list or create your boxes |
| GET, PATCH, DELETE | `/boxes/owned/{id}` | read, update or delete a box |
| PATCH | `/boxes/owned/{id}/guardian` | add or replace a guardian |
| DELETE | `/boxes/owned/{id}/guardian/{guardian_id}` | remove a guardian |
| PATCH | `/boxes/owned/{id}/document` | add or replace a document |
| DELETE | `/boxes/owned/{id}/document/{document_id}` | remove a document |
| GET | `/boxes/guardian` | boxes you are a guardian of |
| GET | `/boxes/guardian/{id}` | one of those boxes |
| PATCH | `/boxes/guardian/{id}/request` | lead guardian starts an unlock request |
| PATCH | `/boxes/guardian/{id}/respond` | approve or reject an unlock request |
| PATCH | `/boxes/guardian/{id}/invitation` | accept or reject an invitation |

Status codes the router produces on its own:

- `OPTIONS` on any path: 200.
- A path that matches no route: 404 with a plain-text message.
- A matching path with no user: 401.
- A method the route does not have: 405.
- A route that needs a body but got none: 415; a string body that is not
  JSON: 400; a body of the wrong shape: 422.

Errors raised by the handlers become their status code and a
`{"error": ...}` body.

In `PATCH /boxes/owned/{id}`, only the fields present are changed;
`"unlockInstructions": null` clears the instructions, while leaving the field
out keeps them.

## Calling the handlers directly

The functions in `lockbox.box_handlers` and `lockbox.guardian_handlers` take
the store, the ids and the decoded payload, and return the JSON document that
the route would send (`create_box` returns `(201, body)`). They raise
subclasses of `lockbox.errors.AppError` such as `UnauthorizedError`,
`NotFoundError` and `BadRequestError`; `AppError.to_response()` returns the
status code and error body. A payload of the wrong shape raises `ValueError`.

```python
from lockbox.box_handlers import create_box, get_box
from lockbox.errors import UnauthorizedError

status, result = create_box(store, "user_1", {"name": "Keys", "description": "Spare keys"})
box_id = result["box"]["id"]

try:
    get_box(store, box_id, "someone_else")
except UnauthorizedError as err:
    status, body = err.to_response()  # 401, {"error": "..."}
```

## Invitation events

`lockbox.events.InvitationEvent` reads and writes the JSON event messages
(`from_json`, `to_json`).

`handle_sns_event(event, store, sleep)` goes through `event["Records"]` and
reads each record's `["Sns"]["Message"]`:

- `invitation_viewed` events link the guardian with the event's invitation id
  to the event's user and mark it viewed; a missing box or guardian is logged
  and ignored, and an event without a user id raises `EventInternalError`.
- `invitation_created` events are acknowledged and change nothing.
- Messages that cannot be parsed, and unknown event types, are logged and
  skipped.

`process_invitation_viewing` does the update with up to five attempts. The
`sleep` callable (default `time.sleep`, given seconds) is used between
attempts, so tests can pass one that does not wait.

## Stores

`InMemoryBoxStore` keeps boxes in memory behind a lock and checks record
versions on update, so a stale write raises `VersionConflictError`; each
successful update bumps the version. Any object with the same methods
(`get_box`, `get_boxes_by_owner`, `get_boxes_by_guardian_id`, `create_box`,
`update_box`, `delete_box`) and the same `StoreError` subclasses can be used
in its place.

## What it does not do

- It does not listen on a network port. `Router.handle` is called with a
  request already taken apart; wiring it to an HTTP server is up to you.
- It does not authenticate anyone. The caller passes the user id that has
  already been established.
- It stores nothing on disk. `InMemoryBoxStore` is the only store included,
  and its contents are lost when the process ends.
- It does not receive notifications by itself. `handle_sns_event` is given
  the notification as a mapping.