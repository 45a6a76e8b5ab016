"""Tests for the fulfillment-request lifecycle."""

import pytest

from conftest import make_account
from postcraft.db.models import FulfillmentRequest, QuotaRecord
from postcraft.errors import InvalidTransition, NotFound, QuotaExceeded
from postcraft.services import fulfillment as ff_svc
from postcraft.services.notify import set_notify_hook

FILE = {
    "url": "/media/abc.png",
    "filename": "abc.png",
    "original_name": "brand.png",
    "mime_type": "image/png",
    "size_bytes": 1234,
}


@pytest.fixture
def notifications():
    sent = []
    set_notify_hook(lambda account_id, event, payload: sent.append((event, payload)))
    yield sent
    set_notify_hook(None)


def _payload(**overrides):
    data = {
        "title": "Q3 launch carousel",
        "description": "Blue palette",
        "content_snapshot": "Slide one\n\nSlide two",
        "files": [FILE],
    }
    data.update(overrides)
    return ff_svc.RequestPayload(**data)


def _count(db, account):
    db.expire_all()
    return db.get(QuotaRecord, account.id).count


def test_submit_spends_a_credit_and_starts_pending(db, notifications):
    account = make_account(db, plan_id="basic", limit=10)
    req = ff_svc.submit_request(db, account, _payload())

    assert req.status == "pending"
    assert req.resend_count == 0
    assert req.was_modified is False
    assert req.original_content is None
    assert req.uploaded_files == [FILE]
    assert _count(db, account) == 1
    assert notifications[0][0] == "request_submitted"


def test_submit_without_credits_creates_nothing(db):
    account = make_account(db, plan_id="basic", limit=2, count=2)
    with pytest.raises(QuotaExceeded):
        ff_svc.submit_request(db, account, _payload())

    assert _count(db, account) == 2
    assert db.query(FulfillmentRequest).filter(FulfillmentRequest.account_id == account.id).count() == 0


def test_failed_insert_rolls_back_the_credit(db, monkeypatch):
    account = make_account(db, plan_id="basic", limit=10)

    def _broken(req, payload):
        raise RuntimeError("disk full")

    monkeypatch.setattr(ff_svc, "_apply_payload", _broken)
    with pytest.raises(RuntimeError):
        ff_svc.submit_request(db, account, _payload())

    assert _count(db, account) == 0
    assert db.query(FulfillmentRequest).filter(FulfillmentRequest.account_id == account.id).count() == 0


def test_unknown_carousel_type_is_rejected_before_billing(db):
    account = make_account(db, plan_id="basic", limit=10)
    with pytest.raises(ValueError):
        ff_svc.submit_request(db, account, _payload(carousel_type="neon"))
    assert _count(db, account) == 0


def test_original_content_is_captured_once(db):
    account = make_account(db, plan_id="basic", limit=10)
    req = ff_svc.submit_request(db, account, _payload())

    ff_svc.set_request_status(db, req, "rejected", notes="Need the logo")
    req = ff_svc.resubmit_request(db, req, _payload(content_snapshot="Second version"))
    ff_svc.set_request_status(db, req, "rejected")
    req = ff_svc.resubmit_request(db, req, _payload(content_snapshot="Third version", files=[]))

    assert req.status == "pending"
    assert req.resend_count == 2
    assert req.was_modified is True
    assert req.original_content["content_snapshot"] == "Slide one\n\nSlide two"
    assert req.original_content["files"] == [FILE]
    assert req.content_snapshot == "Third version"
    assert _count(db, account) == 1


def test_resubmit_is_refused_once_work_started(db):
    account = make_account(db, plan_id="basic", limit=10)
    req = ff_svc.submit_request(db, account, _payload())
    ff_svc.set_request_status(db, req, "in_progress", operator="opsadmin")

    with pytest.raises(InvalidTransition):
        ff_svc.resubmit_request(db, req, _payload(title="Changed"))
    assert req.title == "Q3 launch carousel"


@pytest.mark.parametrize(
    "path, target",
    [
        (["rejected"], "completed"),
        (["rejected"], "in_progress"),
        (["in_progress"], "pending"),
        (["in_progress", "completed"], "rejected"),
        ([], "pending"),
        ([], "archived"),
    ],
)
def test_transitions_outside_the_table_are_refused(db, path, target):
    account = make_account(db, plan_id="basic", limit=10)
    req = ff_svc.submit_request(db, account, _payload())
    for status in path:
        ff_svc.set_request_status(db, req, status)

    before = req.status
    with pytest.raises(InvalidTransition):
        ff_svc.set_request_status(db, req, target)
    db.refresh(req)
    assert req.status == before


def test_complete_attaches_files(db, notifications):
    account = make_account(db, plan_id="basic", limit=10)
    req = ff_svc.submit_request(db, account, _payload())
    ff_svc.set_request_status(db, req, "in_progress", operator="opsadmin")

    req = ff_svc.complete_request(db, req, [FILE], notes="Enjoy", operator="opsadmin")

    assert req.status == "completed"
    assert req.completed_files == [FILE]
    assert req.admin_notes == "Enjoy"
    assert req.assigned_operator == "opsadmin"
    assert notifications[-1][0] == "request_completed"

    with pytest.raises(InvalidTransition):
        ff_svc.complete_request(db, req, [FILE])


def test_complete_requires_files(db):
    account = make_account(db, plan_id="basic", limit=10)
    req = ff_svc.submit_request(db, account, _payload())
    with pytest.raises(ValueError):
        ff_svc.complete_request(db, req, [])


def test_views_read_from_a_single_snapshot(db):
    account = make_account(db, plan_id="basic", limit=10)
    req = ff_svc.submit_request(db, account, _payload())

    with pytest.raises(NotFound):
        ff_svc.request_view(req, "original")

    req = ff_svc.resubmit_request(db, req, _payload(title="New title", content_snapshot="Edited", files=[]))
    current = ff_svc.request_view(req, "current")
    original = ff_svc.request_view(req, "original")

    assert (current["title"], current["content_snapshot"], current["files"]) == ("New title", "Edited", [])
    assert (original["title"], original["content_snapshot"], original["files"]) == (
        "Q3 launch carousel",
        "Slide one\n\nSlide two",
        [FILE],
    )
    assert original["status"] == current["status"] == "pending"


def test_notification_failure_does_not_fail_the_operation(db):
    set_notify_hook(lambda *args: (_ for _ in ()).throw(RuntimeError("smtp down")))
    try:
        account = make_account(db, plan_id="basic", limit=10)
        req = ff_svc.submit_request(db, account, _payload())
    finally:
        set_notify_hook(None)
    assert req.status == "pending"
