"""Fetch -> render -> upload -> persist, run as one retried unit under a timeout."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from agreement_service import AgreementRenderRecord, AgreementStore
from errors import (
    NON_RETRYABLE,
    AgreementNotFoundError,
    InvalidAgreementStateError,
    OperationTimeoutError,
    RenderError,
    StorageError,
)
from generate_pdf import generate_agreement_pdf
from storage_service import BlobStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

OPERATION_TIMEOUT = 30.0
MAX_RETRIES = 2
RETRY_BASE_DELAY = 1.0


@dataclass(frozen=True)
class GeneratedDocument:
    agreement_id: str
    client_id: str
    pdf_url: str


def _discard_late_result(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.info(f"Ignoring failure that arrived after timeout: {exc}")
    else:
        logger.info("Ignoring result that arrived after timeout")


async def with_timeout(aw: Awaitable[T], timeout: float) -> T:
    """
    Race aw against a wall-clock timer.

    On timeout the in-flight operation is left running, not cancelled; its
    eventual result or error is discarded.
    """
    task = asyncio.ensure_future(aw)
    done, _ = await asyncio.wait({task}, timeout=timeout)
    if task in done:
        return task.result()
    task.add_done_callback(_discard_late_result)
    raise OperationTimeoutError(timeout)


def is_retryable(exc: BaseException) -> bool:
    return not isinstance(exc, NON_RETRYABLE)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int,
    base_delay: float = RETRY_BASE_DELAY,
    should_retry: Callable[[BaseException], bool] = is_retryable,
) -> T:
    """Run operation up to max_retries + 1 times with exponential backoff (1s, 2s, 4s, ...)."""
    if max_retries < 0:
        raise ValueError(f"max_retries must not be negative, got {max_retries}")
    last_error: Optional[Exception] = None
    for attempt in range(max_retries + 1):
        try:
            return await operation()
        except Exception as e:
            last_error = e
            logger.warning(f"Attempt {attempt + 1} failed: {e}")
            if attempt == max_retries or not should_retry(e):
                break
            await asyncio.sleep(base_delay * (2 ** attempt))
    raise last_error


def ensure_renderable(record: Optional[AgreementRenderRecord], agreement_id: str) -> AgreementRenderRecord:
    if record is None:
        raise AgreementNotFoundError(agreement_id)
    if not record.is_signed:
        raise InvalidAgreementStateError()
    return record


async def generate_and_store(
    agreement_id: str,
    store: AgreementStore,
    blob_store: BlobStore,
    render: Callable[[AgreementRenderRecord], bytes] = generate_agreement_pdf,
) -> GeneratedDocument:
    """One pass of the pipeline. Storage is never touched for a missing or unsigned agreement."""
    record = ensure_renderable(await store.fetch_agreement_for_rendering(agreement_id), agreement_id)

    pdf_bytes = await asyncio.to_thread(render, record)
    if not pdf_bytes:
        raise RenderError("PDF generation produced empty result")

    pdf_url = await blob_store.upload(agreement_id, pdf_bytes)
    if not pdf_url:
        raise StorageError("Storage upload returned empty URL")

    await store.record_rendered_url(agreement_id, pdf_url)
    return GeneratedDocument(agreement_id=agreement_id, client_id=record.client_id, pdf_url=pdf_url)


class PdfGenerationService:
    """Runs generate_and_store under the retry policy, all attempts inside one timeout."""

    def __init__(
        self,
        store: AgreementStore,
        blob_store: BlobStore,
        timeout: float = OPERATION_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        retry_base_delay: float = RETRY_BASE_DELAY,
        render: Callable[[AgreementRenderRecord], bytes] = generate_agreement_pdf,
    ):
        self.store = store
        self.blob_store = blob_store
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.render = render

    async def generate(self, agreement_id: str) -> GeneratedDocument:
        return await with_timeout(
            with_retry(
                lambda: generate_and_store(agreement_id, self.store, self.blob_store, self.render),
                self.max_retries,
                self.retry_base_delay,
            ),
            self.timeout,
        )
