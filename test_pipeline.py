"""Tests for the timeout/retry wrappers and the generate-and-store pipeline."""

import asyncio
import threading
import time
import unittest
from datetime import datetime, timezone

from agreement_service import AgreementRenderRecord, ClientDetails
from errors import (
    INTERNAL,
    INVALID_STATE,
    NOT_FOUND,
    TIMEOUT,
    AgreementNotFoundError,
    DataAccessError,
    InvalidAgreementStateError,
    OperationTimeoutError,
    StorageError,
    classify_error,
)
from pipeline import PdfGenerationService, generate_and_store, with_retry, with_timeout

AGREEMENT_ID = "40000000-0000-4000-8000-000000000001"


def signed_record(**overrides):
    values = dict(
        id=AGREEMENT_ID,
        client_id="10000000-0000-4000-8000-000000000001",
        terms_version="1.1",
        signed_at=datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc),
        signer_name="David Rodriguez",
        signer_ip="10.0.0.50",
        signature_hash="f" * 64,
        client=ClientDetails(id="10000000-0000-4000-8000-000000000001", company_name="Innovation Hub"),
    )
    values.update(overrides)
    return AgreementRenderRecord(**values)


class FakeStore:
    def __init__(self, record=None, fetch_errors=0):
        self.record = record
        self.fetch_errors = fetch_errors
        self.fetch_calls = 0
        self.updates = []
        self.closed = 0

    async def fetch_agreement_for_rendering(self, agreement_id):
        self.fetch_calls += 1
        if self.fetch_errors:
            self.fetch_errors -= 1
            raise DataAccessError("Failed to fetch agreement: connection reset")
        return self.record

    async def record_rendered_url(self, agreement_id, url):
        self.updates.append((agreement_id, url))

    async def record_audit_event(self, client_id, actor, action, payload):
        pass

    async def close(self):
        self.closed += 1


class FakeBlobStore:
    def __init__(self, fail=False):
        self.fail = fail
        self.uploads = []

    async def upload(self, agreement_id, data):
        if self.fail:
            raise StorageError("Storage upload failed: bucket missing")
        self.uploads.append((agreement_id, data))
        return f"https://storage.example/agreements/agreement-{agreement_id}-{len(self.uploads)}.pdf"

    async def delete(self, key):
        pass


class TestWithTimeout(unittest.IsolatedAsyncioTestCase):

    async def test_completes_under_timeout(self):
        async def fast():
            await asyncio.sleep(0.01)
            return "success"

        self.assertEqual(await with_timeout(fast(), 0.5), "success")

    async def test_exceeding_timeout_raises(self):
        async def slow():
            await asyncio.sleep(0.5)
            return "too late"

        with self.assertRaises(OperationTimeoutError) as ctx:
            await with_timeout(slow(), 0.02)
        self.assertIn("timed out", str(ctx.exception))

    async def test_late_result_is_ignored_not_cancelled(self):
        finished = asyncio.Event()

        async def slow():
            await asyncio.sleep(0.05)
            finished.set()
            raise RuntimeError("late failure")

        with self.assertRaises(OperationTimeoutError):
            await with_timeout(slow(), 0.01)

        # The operation keeps running and its error is swallowed by the discard callback
        await asyncio.wait_for(finished.wait(), 1.0)
        await asyncio.sleep(0)


class TestWithRetry(unittest.IsolatedAsyncioTestCase):

    async def test_flaky_operation_succeeds_on_third_attempt(self):
        attempts = 0

        async def flaky():
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise RuntimeError("Temporary failure")
            return "success"

        result = await with_retry(flaky, max_retries=2, base_delay=0)
        self.assertEqual(result, "success")
        self.assertEqual(attempts, 3)

    async def test_exhausted_retries_raise_last_error(self):
        attempts = 0

        async def always_fails():
            nonlocal attempts
            attempts += 1
            raise RuntimeError(f"failure {attempts}")

        with self.assertRaises(RuntimeError) as ctx:
            await with_retry(always_fails, max_retries=2, base_delay=0)
        self.assertEqual(attempts, 3)
        self.assertEqual(str(ctx.exception), "failure 3")

    async def test_not_found_is_not_retried(self):
        attempts = 0

        async def missing():
            nonlocal attempts
            attempts += 1
            raise AgreementNotFoundError(AGREEMENT_ID)

        with self.assertRaises(AgreementNotFoundError):
            await with_retry(missing, max_retries=2, base_delay=0)
        self.assertEqual(attempts, 1)

    async def test_negative_max_retries_rejected(self):
        async def never_called():
            raise AssertionError("operation must not run")

        with self.assertRaises(ValueError):
            await with_retry(never_called, max_retries=-1, base_delay=0)


class TestGenerateAndStore(unittest.IsolatedAsyncioTestCase):

    async def test_signed_agreement_yields_url_and_single_update(self):
        store, blobs = FakeStore(signed_record()), FakeBlobStore()

        doc = await generate_and_store(AGREEMENT_ID, store, blobs)

        self.assertTrue(doc.pdf_url.startswith("https://storage.example/"))
        self.assertEqual(store.updates, [(AGREEMENT_ID, doc.pdf_url)])
        self.assertEqual(len(blobs.uploads), 1)
        self.assertTrue(blobs.uploads[0][1].startswith(b"%PDF"))

    async def test_missing_agreement_skips_upload_and_persist(self):
        store, blobs = FakeStore(None), FakeBlobStore()

        with self.assertRaises(AgreementNotFoundError):
            await generate_and_store(AGREEMENT_ID, store, blobs)
        self.assertEqual(blobs.uploads, [])
        self.assertEqual(store.updates, [])

    async def test_unsigned_agreement_skips_storage(self):
        store, blobs = FakeStore(signed_record(signed_at=None)), FakeBlobStore()

        with self.assertRaises(InvalidAgreementStateError):
            await generate_and_store(AGREEMENT_ID, store, blobs)
        self.assertEqual(blobs.uploads, [])

    async def test_missing_signer_name_is_invalid_state(self):
        store, blobs = FakeStore(signed_record(signer_name="")), FakeBlobStore()

        with self.assertRaises(InvalidAgreementStateError):
            await generate_and_store(AGREEMENT_ID, store, blobs)

    async def test_empty_render_is_an_error(self):
        store, blobs = FakeStore(signed_record()), FakeBlobStore()

        with self.assertRaises(Exception) as ctx:
            await generate_and_store(AGREEMENT_ID, store, blobs, render=lambda record: b"")
        self.assertIn("empty result", str(ctx.exception))
        self.assertEqual(blobs.uploads, [])

    async def test_render_runs_off_the_event_loop(self):
        store, blobs = FakeStore(signed_record()), FakeBlobStore()
        render_threads = []

        def render(record):
            render_threads.append(threading.current_thread())
            return b"%PDF-1.4"

        await generate_and_store(AGREEMENT_ID, store, blobs, render=render)
        self.assertIsNot(render_threads[0], threading.current_thread())

    async def test_slow_render_does_not_block_timeout(self):
        def slow_render(record):
            time.sleep(0.5)
            return b"%PDF-1.4"

        store, blobs = FakeStore(signed_record()), FakeBlobStore()
        service = PdfGenerationService(store, blobs, timeout=0.05, max_retries=0, render=slow_render)

        started = time.monotonic()
        with self.assertRaises(OperationTimeoutError):
            await service.generate(AGREEMENT_ID)
        self.assertLess(time.monotonic() - started, 0.4)


class TestPdfGenerationService(unittest.IsolatedAsyncioTestCase):

    async def test_transient_fetch_failures_are_retried(self):
        store, blobs = FakeStore(signed_record(), fetch_errors=2), FakeBlobStore()
        service = PdfGenerationService(store, blobs, timeout=5, max_retries=2, retry_base_delay=0)

        doc = await service.generate(AGREEMENT_ID)

        self.assertEqual(store.fetch_calls, 3)
        self.assertEqual(store.updates, [(AGREEMENT_ID, doc.pdf_url)])

    async def test_storage_failure_exhausts_retries(self):
        store, blobs = FakeStore(signed_record()), FakeBlobStore(fail=True)
        service = PdfGenerationService(store, blobs, timeout=5, max_retries=2, retry_base_delay=0)

        with self.assertRaises(StorageError):
            await service.generate(AGREEMENT_ID)
        self.assertEqual(store.fetch_calls, 3)
        self.assertEqual(store.updates, [])

    async def test_timeout_spans_all_attempts(self):
        store, blobs = FakeStore(signed_record(), fetch_errors=10), FakeBlobStore()
        service = PdfGenerationService(store, blobs, timeout=0.05, max_retries=5, retry_base_delay=0.1)

        with self.assertRaises(OperationTimeoutError):
            await service.generate(AGREEMENT_ID)


class TestClassifyError(unittest.TestCase):

    def test_typed_errors(self):
        self.assertIs(classify_error(AgreementNotFoundError(AGREEMENT_ID)), NOT_FOUND)
        self.assertIs(classify_error(InvalidAgreementStateError()), INVALID_STATE)
        self.assertIs(classify_error(OperationTimeoutError(30)), TIMEOUT)
        self.assertIs(classify_error(StorageError("Storage upload failed")), INTERNAL)

    def test_message_fallback(self):
        self.assertIs(classify_error(RuntimeError("Agreement not found: x")), NOT_FOUND)
        self.assertIs(classify_error(RuntimeError("Agreement is not properly signed")), INVALID_STATE)
        self.assertIs(classify_error(RuntimeError("Operation timed out")), TIMEOUT)
        self.assertIs(classify_error(RuntimeError("boom")), INTERNAL)

    def test_status_codes(self):
        self.assertEqual(NOT_FOUND.status_code, 404)
        self.assertEqual(INVALID_STATE.status_code, 400)
        self.assertEqual(TIMEOUT.status_code, 408)
        self.assertEqual(INTERNAL.status_code, 500)


if __name__ == "__main__":
    unittest.main()
