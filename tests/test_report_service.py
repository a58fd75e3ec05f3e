import asyncio

import pytest

from sadakchain.errors import DataStoreError, SubmissionInProgress, UploadError, ValidationError
from sadakchain.gateway.base import Backend, DataStore, ObjectStorage
from sadakchain.schemas import DraftReport
from sadakchain.services.guard import BusyGuard
from sadakchain.services.report_service import MediaFile, ReportService, media_path


class RecordingStore(DataStore):
    def __init__(self, inner, fail_upsert=False):
        self.inner = inner
        self.fail_upsert = fail_upsert
        self.calls = []

    async def select(self, table, columns="*", filters=None, single=False):
        self.calls.append(("select", table))
        return await self.inner.select(table, columns, filters, single)

    async def insert(self, table, rows):
        self.calls.append(("insert", table))
        return await self.inner.insert(table, rows)

    async def update(self, table, values, filters):
        self.calls.append(("update", table))
        return await self.inner.update(table, values, filters)

    async def upsert(self, table, rows, on_conflict):
        self.calls.append(("upsert", table))
        if self.fail_upsert:
            raise DataStoreError("duplicate key value violates unique constraint", status=409)
        return await self.inner.upsert(table, rows, on_conflict)


class FlakyStorage(ObjectStorage):
    def __init__(self, inner, failing):
        self.inner = inner
        self.failing = set(failing)
        self.uploaded = []

    async def upload(self, bucket, path, data, content_type=None, cache_control="3600", upsert=False):
        if path.endswith(tuple(self.failing)):
            raise UploadError("The object exceeded the maximum allowed size")
        self.uploaded.append(path)
        return await self.inner.upload(bucket, path, data, content_type, cache_control, upsert)

    def get_public_url(self, bucket, path):
        return self.inner.get_public_url(bucket, path)


def _wrap(backend, store=None, storage=None):
    return Backend(backend.auth, store or backend.store, storage or backend.storage, backend.admin)


def _submit(service, uid, vote="good", files=(), **kwargs):
    return asyncio.run(service.submit_report(uid, "MG Road, Mumbai", "400001", vote, list(files), **kwargs))


def test_media_path_layout():
    path = media_path("u-1", None, "pothole.jpg")
    user, report, name = path.split("/")
    assert (user, report) == ("u-1", "draft")
    assert name.endswith("-pothole.jpg")
    assert media_path("u-1", "r-9", "a.png").startswith("u-1/r-9/")


def test_missing_vote_makes_no_backend_call(backend, drafts, make_user):
    uid = make_user()
    store = RecordingStore(backend.store)
    service = ReportService(_wrap(backend, store=store), drafts)
    with pytest.raises(ValidationError) as exc:
        _submit(service, uid, vote="")
    assert exc.value.message == "Please vote for the road condition"
    assert store.calls == []


def test_unknown_vote_rejected(backend, drafts, make_user):
    service = ReportService(backend, drafts)
    with pytest.raises(ValidationError):
        _submit(service, make_user(), vote="terrible")


def test_not_logged_in(backend, drafts):
    service = ReportService(backend, drafts)
    with pytest.raises(ValidationError) as exc:
        _submit(service, None)
    assert exc.value.message == "Not logged in."


def test_confirmed_submit_upserts_one_row_and_clears_draft(backend, drafts, make_user):
    uid = make_user(confirmed=True)
    drafts.update(vote="good", files_names=["a.jpg"])
    service = ReportService(backend, drafts)

    first = _submit(service, uid, vote="good", files=[MediaFile("a.jpg", b"img", "image/jpeg")])
    second = _submit(service, uid, vote="poor")

    assert first.table == second.table == "reports"
    assert first.confirmed and not first.pending
    assert len(first.files) == 1 and first.files[0].startswith("http://testserver/media/reports_media/")
    rows = asyncio.run(backend.store.select("reports", filters={"id": uid}))
    assert len(rows) == 1
    assert rows[0]["vote"] == "poor"
    assert asyncio.run(backend.store.select("reports_unconfirmed")) == []
    assert drafts.load() is None


def test_unconfirmed_submit_goes_to_pending_table_and_keeps_draft(backend, drafts, storage, make_user):
    uid = make_user(confirmed=False)
    storage["locationPincode"] = "400050"
    service = ReportService(backend, drafts)

    result = _submit(service, uid, vote="fair", files=[MediaFile("crack.png", b"png")])

    assert result.pending and result.table == "reports_unconfirmed"
    row = asyncio.run(backend.store.select("reports_unconfirmed", filters={"id": uid}, single=True))
    assert row["vote"] == "fair"
    assert row["user_pincode"] == "400050"
    assert row["report_pincode"] == "400001"
    assert asyncio.run(backend.store.select("reports")) == []

    draft = drafts.load()
    assert draft.report_id == uid
    assert draft.vote == "fair"
    assert draft.files_names == ["crack.png"]


def test_partial_upload_failure_still_saves_report(backend, drafts, make_user):
    uid = make_user()
    flaky = FlakyStorage(backend.storage, failing=["b.jpg"])
    service = ReportService(_wrap(backend, storage=flaky), drafts)

    result = _submit(
        service,
        uid,
        files=[MediaFile("a.jpg", b"1"), MediaFile("b.jpg", b"2"), MediaFile("c.jpg", b"3")],
    )

    assert result.warnings == ["Failed to upload b.jpg. Report saving, but missing media."]
    assert len(result.files) == 2
    assert flaky.uploaded[0].endswith("-a.jpg") and flaky.uploaded[1].endswith("-c.jpg")
    row = asyncio.run(backend.store.select("reports", filters={"id": uid}, single=True))
    assert row["files"] == result.files


def test_store_failure_keeps_draft(backend, drafts, make_user):
    uid = make_user()
    drafts.save(DraftReport(vote="good", files_names=["a.jpg"]))
    store = RecordingStore(backend.store, fail_upsert=True)
    service = ReportService(_wrap(backend, store=store), drafts)

    with pytest.raises(DataStoreError) as exc:
        _submit(service, uid)
    assert exc.value.message.startswith("Database update failed:")
    assert drafts.load().vote == "good"


def test_second_submit_while_busy_is_rejected(backend, drafts, make_user):
    uid = make_user()
    guard = BusyGuard()
    service = ReportService(backend, drafts, guard=guard)
    with guard.hold(("report", uid)):
        with pytest.raises(SubmissionInProgress):
            _submit(service, uid)
    assert not guard.is_busy(("report", uid))


def test_unconfirmed_resubmit_updates_the_same_pending_row(backend, drafts, make_user):
    uid = make_user(confirmed=False)
    service = ReportService(backend, drafts)

    first = _submit(service, uid, vote="good")
    second = _submit(service, uid, vote="poor", report_id=drafts.load().report_id)

    assert first.report_id == second.report_id == uid
    rows = asyncio.run(backend.store.select("reports_unconfirmed"))
    assert [(r["id"], r["vote"]) for r in rows] == [(uid, "poor")]
    assert asyncio.run(backend.store.select("reports")) == []
    assert drafts.load().vote == "poor"


def test_configured_bucket_is_used(backend, drafts, make_user):
    uid = make_user()
    service = ReportService(backend, drafts, bucket="road_media")
    result = _submit(service, uid, files=[MediaFile("a.jpg", b"1")])
    assert "/media/road_media/" in result.files[0]
