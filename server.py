"""FastAPI application exposing the agreement PDF generation function."""
import asyncio
import logging
import re
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from agreement_service import AgreementStore, SqlAgreementStore, audit_payload
from auth_service import Authenticator, SupabaseAuthenticator
from config import ConfigurationError, Settings
from database import check_connection, create_db_engine, make_session_factory
from errors import AuthenticationError, classify_error
from pipeline import PdfGenerationService
from storage_service import BlobStore, SupabaseBlobStore
from webhooks import PDF_GENERATED

logger = logging.getLogger(__name__)

GENERATE_PDF_PATH = "/functions/v1/generate-pdf"
ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]

AGREEMENT_ID_RE = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}",
    re.IGNORECASE,
)


def cors_headers(origin: str) -> dict:
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
        "Access-Control-Allow-Methods": "POST, OPTIONS",
    }


def is_valid_agreement_id(value) -> bool:
    return isinstance(value, str) and bool(AGREEMENT_ID_RE.fullmatch(value))


def _enqueue_webhooks(event: str, data: dict) -> None:
    from worker import notify_webhooks
    notify_webhooks.delay(event, data)


def create_app(
    settings: Optional[Settings] = None,
    *,
    store_factory: Optional[Callable[[], AgreementStore]] = None,
    blob_store_factory: Optional[Callable[[str], BlobStore]] = None,
    authenticator: Optional[Authenticator] = None,
    notify: Optional[Callable[[str, dict], None]] = _enqueue_webhooks,
    load_env: bool = True,
) -> FastAPI:
    """
    Build the app around an explicit Settings object.

    Collaborators default to the Postgres/Supabase implementations and can be
    swapped for fakes. When settings are absent (and cannot be loaded from the
    environment) the app still serves CORS and health, but generation answers
    500 "Server configuration error".
    """
    if settings is None and load_env:
        try:
            settings = Settings.from_env()
        except ConfigurationError as e:
            logger.error(f"Server configuration error: {e}")
            settings = None

    engine = None
    if settings is not None:
        if store_factory is None:
            engine = create_db_engine(settings.database_url)
            session_factory = make_session_factory(engine)
            store_factory = lambda: SqlAgreementStore(session_factory)  # noqa: E731
        if blob_store_factory is None:
            blob_store_factory = lambda authorization: SupabaseBlobStore(  # noqa: E731
                settings.supabase_url,
                settings.supabase_key,
                authorization,
                bucket=settings.storage_bucket,
                signed_url_expires_in=settings.signed_url_expires_in,
            )
        if authenticator is None:
            authenticator = SupabaseAuthenticator(settings.supabase_url, settings.supabase_key)

    cors = cors_headers(settings.cors_origin if settings else Settings.cors_origin)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(level=settings.log_level if settings else "INFO")
        yield
        if engine is not None:
            try:
                engine.dispose()
                logger.info("Database connection pool disposed")
            except Exception as e:
                logger.warning(f"Error disposing database connection pool: {e}")

    app = FastAPI(title="Agreement PDF Generation", lifespan=lifespan)

    def error_response(status_code: int, error: str, details: str) -> JSONResponse:
        return JSONResponse({"error": error, "details": details}, status_code=status_code, headers=cors)

    @app.api_route(GENERATE_PDF_PATH, methods=ALL_METHODS)
    async def generate_pdf(request: Request):
        """
        POST {"agreementId": uuid} with an Authorization header.

        Responds {"pdfUrl": ...} on success; every failure is {"error", "details"}.
        """
        if request.method == "OPTIONS":
            return PlainTextResponse("ok", headers=cors)

        if request.method != "POST":
            return error_response(405, "Method not allowed", f"{request.method} is not supported")

        if settings is None:
            return error_response(500, "Server configuration error", "Missing required environment variables")

        try:
            body = await request.json()
        except ValueError as e:
            return error_response(400, "Invalid JSON in request body", str(e))

        agreement_id = body.get("agreementId") if isinstance(body, dict) else None
        if not agreement_id or not isinstance(agreement_id, str):
            return error_response(400, "Missing or invalid agreementId parameter", "agreementId must be a non-empty string")
        if not is_valid_agreement_id(agreement_id):
            return error_response(400, "Missing or invalid agreementId parameter", "Invalid agreementId format")

        authorization = request.headers.get("Authorization")
        if not authorization:
            return error_response(401, "Missing authorization header", "Authorization header is required")

        try:
            subject = await authenticator.authenticate(authorization)
        except AuthenticationError as e:
            logger.warning(f"Authentication failed: {e}")
            return error_response(401, "Unauthorized", str(e))
        except Exception as e:
            logger.error(f"Authentication check failed: {e}")
            kind = classify_error(e)
            return error_response(kind.status_code, kind.message, str(e) or type(e).__name__)

        store = None
        try:
            store = store_factory()
            service = PdfGenerationService(
                store,
                blob_store_factory(authorization),
                timeout=settings.timeout_seconds,
                max_retries=settings.max_retries,
                retry_base_delay=settings.retry_base_delay,
            )
            document = await service.generate(agreement_id)
            logger.info(f"PDF generated successfully for agreement {agreement_id}")

            payload = audit_payload(agreement_id, document.pdf_url)
            try:
                await store.record_audit_event(document.client_id, subject, PDF_GENERATED, payload)
            except Exception as e:
                logger.warning(f"Failed to record audit event for agreement {agreement_id}: {e}")
            if notify is not None:
                try:
                    await asyncio.to_thread(notify, PDF_GENERATED, payload)
                except Exception as e:
                    logger.warning(f"Failed to enqueue webhook notification for agreement {agreement_id}: {e}")

            return JSONResponse({"pdfUrl": document.pdf_url}, status_code=200, headers=cors)
        except Exception as e:
            kind = classify_error(e)
            logger.error(f"PDF generation error for agreement {agreement_id} ({kind.name}): {e}")
            return error_response(kind.status_code, kind.message, str(e) or type(e).__name__)
        finally:
            if store is not None:
                try:
                    await store.close()
                except Exception as e:
                    logger.warning(f"Error disconnecting from database: {e}")

    @app.get("/health")
    def health():
        """Health check for the hosting platform."""
        if engine is None:
            database = "unconfigured"
        else:
            database = "connected" if check_connection(engine, retry_count=1) else "disconnected"
        return {"status": "healthy", "database": database}

    return app


app = create_app()
