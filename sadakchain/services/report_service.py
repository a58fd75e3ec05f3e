"""
Report submission: media upload, confirmation routing and the id-keyed
upsert into `reports` / `reports_unconfirmed`.
"""
import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from ..errors import DataStoreError, UploadError, ValidationError
from ..gateway.base import Backend
from ..schemas import VOTES, DraftReport, ReportResult
from .confirmation import report_table, resolve_confirmation
from .drafts import DraftStore
from .guard import BusyGuard

logger = logging.getLogger(__name__)

MEDIA_BUCKET = "reports_media"


@dataclass
class MediaFile:
    name: str
    data: bytes
    content_type: Optional[str] = None


def media_path(user_id: str, report_id: Optional[str], file_name: str) -> str:
    return f"{user_id}/{report_id or 'draft'}/{int(time.time() * 1000)}-{file_name}"


class ReportService:
    def __init__(self, backend: Backend, drafts: DraftStore, guard: Optional[BusyGuard] = None, bucket: str = MEDIA_BUCKET):
        self.backend = backend
        self.drafts = drafts
        self.guard = guard or BusyGuard()
        self.bucket = bucket

    async def upload_media(self, user_id: str, report_id: Optional[str], files: List[MediaFile]):
        """Upload in insertion order; a failed file is reported and skipped."""
        urls: List[str] = []
        warnings: List[str] = []
        for media in files:
            path = media_path(user_id, report_id, media.name)
            try:
                await self.backend.storage.upload(
                    self.bucket, path, media.data, content_type=media.content_type, cache_control="3600", upsert=False
                )
            except UploadError as e:
                logger.warning(f"Storage upload failed for {media.name}: {e.message}")
                warnings.append(f"Failed to upload {media.name}. Report saving, but missing media.")
                continue
            urls.append(self.backend.storage.get_public_url(self.bucket, path))
        return urls, warnings

    async def submit_report(
        self,
        user_id: Optional[str],
        location: Optional[str],
        pincode: Optional[str],
        vote: Optional[str],
        files: List[MediaFile],
        questionnaire_completed: bool = False,
        report_id: Optional[str] = None,
    ) -> ReportResult:
        if not vote:
            raise ValidationError("Please vote for the road condition")
        if vote not in VOTES:
            raise ValidationError(f"Unknown vote '{vote}'")
        if not user_id:
            raise ValidationError("Not logged in.")

        with self.guard.hold(("report", user_id)):
            urls, warnings = await self.upload_media(user_id, report_id, files)
            confirmed = await resolve_confirmation(self.backend.store, user_id)
            table = report_table(confirmed)

            record = {
                "id": user_id,
                "files": urls,
                "vote": vote,
                "qsn_answered": bool(questionnaire_completed),
                "location": location or None,
                "report_pincode": pincode or None,
                "user_pincode": self.drafts.user_pincode(),
            }
            try:
                rows = await self.backend.store.upsert(table, [record], on_conflict="id")
            except DataStoreError as e:
                logger.error(f"Report upsert into {table} failed for {user_id}: {e.message}")
                raise DataStoreError(f"Database update failed: {e.message}", detail=e.detail, status=e.status) from e
            logger.info(f"Report for {user_id} saved in {table} with {len(urls)} media file(s)")

        if confirmed:
            self.drafts.clear()
        else:
            # the final report waits for email confirmation; keep the draft loaded
            self.drafts.save(
                DraftReport(
                    files_names=[f.name for f in files],
                    vote=vote,
                    questionnaire_completed=bool(questionnaire_completed),
                    location=location,
                    report_pincode=pincode,
                    user_pincode=record["user_pincode"],
                    report_id=user_id,
                )
            )

        return ReportResult(
            report_id=user_id,
            table=table,
            confirmed=confirmed,
            pending=not confirmed,
            files=urls,
            warnings=warnings,
            row=rows[0] if rows else record,
        )
