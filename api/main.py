"""
FastAPI main application for the Boipoka Ebook API.
"""

import json
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Type

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, Response, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from motor.motor_asyncio import AsyncIOMotorClient
from pydantic import BaseModel, ValidationError

from api.auth import SessionIssuer, require_admin
from api.config import config
from api.database import APIDatabaseService
from api.dependencies import get_db_service, get_session_issuer, get_storage
from api.models import (
    BookMetadata, BookResponse, BookUpdate, DeleteResult,
    ErrorResponse, HealthResponse, MessageResponse,
    ReadingStateRequest, ReadingStateResponse, SessionRequest,
    SuccessResponse, UpdateResult, UserResponse, UserUpdate, UserUpsert
)
from api.reading_state import ReadingStateConflict
from api.storage import DriveStorageGateway, StorageError
from utilities.logger import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file,
        debug=config.debug
    )
    logger.info("Starting Boipoka Ebook API", environment=config.environment)

    # A missing signing secret stops startup here
    app.state.session_issuer = SessionIssuer(
        config.secret_key,
        algorithm=config.algorithm,
        expire_days=config.access_token_expire_days
    )

    client = AsyncIOMotorClient(config.mongodb_url)
    try:
        database = client[config.mongodb_database]
        await database.command("ping")
        logger.info("Database connection established", database=config.mongodb_database)

        db_service = APIDatabaseService(
            database,
            books_collection=config.books_collection,
            users_collection=config.users_collection,
            reading_states_collection=config.reading_states_collection
        )
        await db_service.create_indexes()
        app.state.db_service = db_service

    except Exception as e:
        logger.error("Failed to connect to database", error=str(e))
        client.close()
        raise

    service_account_info = config.get_service_account_info()
    if service_account_info:
        app.state.storage = DriveStorageGateway.from_service_account_info(
            service_account_info, config.google_drive_folder_id
        )
    else:
        logger.warning("Google Drive credentials not configured, uploads disabled")
        app.state.storage = None

    yield

    logger.info("Shutting down Boipoka Ebook API")
    client.close()


app = FastAPI(
    title=config.api_title,
    description=config.api_description,
    version=config.api_version,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=config.cors_allow_credentials,
    allow_methods=config.cors_allow_methods,
    allow_headers=config.cors_allow_headers,
)


# Exception handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.detail,
            status_code=exc.status_code
        ).model_dump(),
        headers=exc.headers
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc: Exception):
    """Handle general exceptions."""
    logger.error("Unhandled exception", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="Internal server error",
            detail=str(exc) if config.debug else None,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        ).model_dump()
    )


def _parse_book_data(raw: Optional[str], model: Type[BaseModel]) -> BaseModel:
    try:
        payload = json.loads(raw) if raw else {}
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid bookData JSON: {exc}") from exc

    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid book metadata: {exc.errors()[0]['msg']}") from exc


def _stored_filename(filename: str) -> str:
    stem = Path(filename).stem or "book"
    safe_stem = "".join(char if char.isalnum() or char in "-_" else "-" for char in stem)
    safe_stem = safe_stem.strip("-_") or "book"
    return f"{int(time.time() * 1000)}-{safe_stem}.pdf"


async def _read_pdf(pdf: Optional[UploadFile]) -> Optional[bytes]:
    """Return the uploaded PDF bytes, or None when no file accompanies the request."""
    if pdf is None:
        return None

    content = await pdf.read()
    await pdf.close()
    if not content:
        return None

    filename = pdf.filename or ""
    if not filename.lower().endswith(".pdf") and (pdf.content_type or "") != "application/pdf":
        raise HTTPException(status_code=400, detail="Only PDF uploads are supported")
    return content


async def _store_pdf(storage: Optional[DriveStorageGateway], pdf: UploadFile, content: bytes) -> str:
    if storage is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="File storage not configured"
        )
    try:
        return await storage.upload(content, _stored_filename(pdf.filename or ""), "application/pdf")
    except StorageError as e:
        logger.error("Failed to store PDF", filename=pdf.filename, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to upload file"
        )


@app.get("/", response_class=PlainTextResponse, tags=["Health"])
async def root():
    return "Boipoka Ebook Server is running..."


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(request: Request):
    """Health check endpoint."""
    db_status = "unavailable"
    db_service = getattr(request.app.state, "db_service", None)
    if db_service:
        health_info = await db_service.health_check()
        db_status = health_info.get("status", "unknown")

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=config.api_version,
        database_status=db_status
    )


# Session endpoints
@app.post("/jwt", response_model=SuccessResponse, tags=["Auth"])
async def issue_token(
    body: SessionRequest,
    response: Response,
    issuer: SessionIssuer = Depends(get_session_issuer)
):
    """Issue a session token for the given identity as an HttpOnly cookie."""
    token = issuer.issue(body.model_dump(mode="json"))
    response.set_cookie(
        config.cookie_name,
        token,
        max_age=issuer.expire_days * 24 * 60 * 60,
        **config.cookie_options()
    )
    return SuccessResponse()


@app.post("/logout", response_model=SuccessResponse, tags=["Auth"])
async def logout(response: Response):
    """Clear the session cookie."""
    response.delete_cookie(config.cookie_name, **config.cookie_options())
    return SuccessResponse()


# Books endpoints
@app.post("/books", response_model=BookResponse, status_code=status.HTTP_201_CREATED, tags=["Books"])
async def create_book(
    book_data: str = Form("", alias="bookData"),
    pdf: Optional[UploadFile] = File(None),
    db: APIDatabaseService = Depends(get_db_service),
    storage: Optional[DriveStorageGateway] = Depends(get_storage)
):
    """
    Upload a new book.

    - **bookData**: JSON object with title, author and description
    - **pdf**: the book file
    """
    content = await _read_pdf(pdf)
    if content is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="PDF file is required")

    metadata = _parse_book_data(book_data, BookMetadata)
    file_url = await _store_pdf(storage, pdf, content)

    try:
        return await db.books.create_book(metadata.model_dump(), file_url)
    except Exception as e:
        # The uploaded file stays in Drive without a catalog entry
        logger.error("Failed to save book after upload", file_url=file_url, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save book"
        )


@app.get("/books", response_model=List[BookResponse], tags=["Books"])
async def list_books(db: APIDatabaseService = Depends(get_db_service)):
    """Get all books, newest first."""
    try:
        return await db.books.list_books()
    except Exception as e:
        logger.error("Failed to get books", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve books"
        )


@app.get("/book/{book_id}", response_model=Optional[BookResponse], tags=["Books"])
async def get_book(book_id: str, db: APIDatabaseService = Depends(get_db_service)):
    """Get a single book by ID; null when no book matches."""
    try:
        return await db.books.get_book(book_id)
    except Exception as e:
        logger.error("Failed to get book", book_id=book_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve book"
        )


@app.delete("/book/{book_id}", response_model=DeleteResult, tags=["Books"])
async def delete_book(
    book_id: str,
    admin: Dict[str, Any] = Depends(require_admin),
    db: APIDatabaseService = Depends(get_db_service)
):
    """Delete a book. Admin only."""
    try:
        return await db.books.delete_book(book_id)
    except Exception as e:
        logger.error("Failed to delete book", book_id=book_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete book"
        )


@app.patch("/book/{book_id}", response_model=BookResponse, tags=["Books"])
async def update_book(
    book_id: str,
    book_data: str = Form("", alias="bookData"),
    pdf: Optional[UploadFile] = File(None),
    admin: Dict[str, Any] = Depends(require_admin),
    db: APIDatabaseService = Depends(get_db_service),
    storage: Optional[DriveStorageGateway] = Depends(get_storage)
):
    """
    Update a book. Admin only.

    Only the fields present in **bookData** are replaced. The stored file link
    changes only when a new **pdf** is attached.
    """
    changes = _parse_book_data(book_data, BookUpdate).model_dump(exclude_unset=True, exclude_none=True)
    content = await _read_pdf(pdf)
    if not changes and content is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")

    try:
        existing = await db.books.get_book(book_id)
    except Exception as e:
        logger.error("Failed to get book", book_id=book_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update book"
        )
    if existing is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Book not found")

    file_url = None
    if content is not None:
        file_url = await _store_pdf(storage, pdf, content)

    try:
        book = await db.books.update_book(book_id, changes, file_url)
    except Exception as e:
        logger.error("Failed to update book", book_id=book_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update book"
        )
    if book is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Book not found")
    return book


# Reading list endpoints
@app.put("/my-books", response_model=MessageResponse, tags=["Reading list"])
async def save_reading_state(body: ReadingStateRequest, db: APIDatabaseService = Depends(get_db_service)):
    """Add a book to a user's wishlist or mark it as read."""
    try:
        message = await db.reading_states.save_status(body.email, body.book_id, body.status)
    except ReadingStateConflict as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.error("Failed to save reading state", email=body.email, book_id=body.book_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save reading state"
        )
    return MessageResponse(message=message)


@app.get("/my-books/{email}", response_model=List[ReadingStateResponse], tags=["Reading list"])
async def list_reading_states(email: str, db: APIDatabaseService = Depends(get_db_service)):
    """Get every reading state of a user."""
    try:
        return await db.reading_states.list_for_user(email)
    except Exception as e:
        logger.error("Failed to get reading states", email=email, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve reading states"
        )


# User endpoints
@app.put("/user", tags=["Users"])
async def login_user(body: UserUpsert, db: APIDatabaseService = Depends(get_db_service)):
    """
    Create the user on first login.

    Later logins return the stored user unchanged, unless the payload carries
    status "Requested", in which case only the status is updated.
    """
    try:
        return await db.users.upsert_user(body.model_dump(mode="json", exclude_none=True))
    except Exception as e:
        logger.error("Failed to save user", email=body.email, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save user"
        )


@app.get("/users", response_model=List[UserResponse], tags=["Users"])
async def list_users(
    admin: Dict[str, Any] = Depends(require_admin),
    db: APIDatabaseService = Depends(get_db_service)
):
    """Get all users. Admin only."""
    try:
        return await db.users.list_users()
    except Exception as e:
        logger.error("Failed to get users", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve users"
        )


@app.get("/user/{email}", response_model=Optional[UserResponse], tags=["Users"])
async def get_user(email: str, db: APIDatabaseService = Depends(get_db_service)):
    """Get a single user by email; null when unknown."""
    try:
        return await db.users.get_user(email)
    except Exception as e:
        logger.error("Failed to get user", email=email, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve user"
        )


@app.patch("/users/update/{email}", response_model=UpdateResult, tags=["Users"])
async def update_user(
    email: str,
    body: UserUpdate,
    admin: Dict[str, Any] = Depends(require_admin),
    db: APIDatabaseService = Depends(get_db_service)
):
    """Change a user's role or profile fields. Admin only."""
    fields = body.model_dump(mode="json", exclude_unset=True)
    if not fields:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")

    try:
        result = await db.users.update_user(email, fields)
    except Exception as e:
        logger.error("Failed to update user", email=email, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update user"
        )
    logger.info("User updated by admin", email=email, admin=admin["email"])
    return result
