"""Error taxonomy shared by services and the HTTP layer.

Every error carries a stable ``code``, a user-facing ``message``, a
``retryable`` flag and the HTTP status the API answers with. Services raise
these; transport errors from httpx / OpenAI never leave a component boundary
unwrapped.
"""

from __future__ import annotations


class PostcraftError(Exception):
    code = "processing_failed"
    status_code = 500
    retryable = False

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        payload = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.context:
            payload["context"] = self.context
        return payload


class NotFound(PostcraftError):
    code = "not_found"
    status_code = 404


# ── Transcripts ──────────────────────────────────────────────────────────────


class TranscriptUnavailable(PostcraftError):
    """Every transcript strategy failed. A manual retry re-runs the list."""

    code = "transcript_unavailable"
    status_code = 502
    retryable = True

    def __init__(self, errors: list[str]):
        hint = (
            "Could not fetch a transcript for this video. The video may have no "
            "captions, the creator may have disabled them, or the transcript "
            "service is down. Try again later or pick another video."
        )
        detail = "; ".join(errors) if errors else "no transcript strategies configured"
        super().__init__(f"{hint} Details: {detail}", errors=list(errors))
        self.errors = list(errors)


class TranscriptMissing(PostcraftError):
    code = "transcript_missing"
    status_code = 409


# ── Generation ───────────────────────────────────────────────────────────────


class GenerationFailed(PostcraftError):
    code = "generation_failed"
    status_code = 502
    retryable = True


# ── Quota ────────────────────────────────────────────────────────────────────


class QuotaExceeded(PostcraftError):
    code = "quota_exceeded"
    status_code = 402

    def __init__(self, limit: int, count: int):
        super().__init__(
            f"You have used all {limit} credits of your plan. "
            "Upgrade your plan to keep creating content.",
            limit=limit,
            count=count,
        )


class PlanExpired(PostcraftError):
    code = "plan_expired"
    status_code = 402

    def __init__(self, plan_id: str):
        super().__init__(
            "Your plan has expired or is inactive. Choose a plan to continue.",
            plan_id=plan_id,
        )


class QuotaAdjustmentRejected(PostcraftError):
    code = "quota_adjustment_rejected"
    status_code = 400


# ── Fulfillment requests ─────────────────────────────────────────────────────


class InvalidTransition(PostcraftError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot move a request from '{current}' to '{target}'. "
            "Refresh the request and try again.",
            current=current,
            target=target,
        )


# ── Uploads ──────────────────────────────────────────────────────────────────


class IncompleteUpload(PostcraftError):
    code = "incomplete_upload"
    status_code = 409

    def __init__(self, file_id: str, missing: list[int]):
        super().__init__(
            f"Upload {file_id} is incomplete: chunks {missing} were never received. "
            "Restart the upload of this file.",
            file_id=file_id,
            missing=missing,
        )
        self.missing = missing


class PayloadTooLarge(PostcraftError):
    code = "payload_too_large"
    status_code = 413


class UploadFailed(PostcraftError):
    """Raised client-side when a chunk still fails after its retries."""

    code = "upload_failed"
    status_code = 502

    def __init__(self, message: str, chunk_index: int | None = None):
        super().__init__(message, chunk_index=chunk_index)
        self.chunk_index = chunk_index
