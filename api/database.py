"""
Database service layer for the FastAPI application.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from api.models import (
    BookResponse, DeleteResult, InsertResult, ReadingStateResponse,
    ReadingStatus, UpdateResult, UserResponse, UserStatus
)
from api.reading_state import TransitionAction, apply_status, success_message

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_object_id(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def _book_from_doc(doc: Dict[str, Any]) -> BookResponse:
    # Records from the earlier local-disk uploader carry pdfPath and no uploadedAt
    return BookResponse(
        id=str(doc["_id"]),
        title=doc.get("title") or "",
        author=doc.get("author") or "",
        description=doc.get("description") or "",
        fileUrl=doc.get("fileUrl") or doc.get("pdfPath") or "",
        uploadedAt=doc.get("uploadedAt"),
    )


def _user_from_doc(doc: Dict[str, Any]) -> UserResponse:
    doc = {key: value for key, value in doc.items() if key != "_id"}
    return UserResponse(**doc)


class BookRepository:
    """CRUD over the books collection."""

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    async def create_book(self, metadata: Dict[str, Any], file_url: str) -> BookResponse:
        """
        Insert a new book.

        Args:
            metadata: Title, author and description
            file_url: Public link to the uploaded PDF

        Returns:
            The stored book
        """
        document = {**metadata, "fileUrl": file_url, "uploadedAt": utcnow()}
        try:
            result = await self.collection.insert_one(document)
        except Exception as e:
            logger.error("Failed to insert book", title=metadata.get("title"), error=str(e))
            raise

        document["_id"] = result.inserted_id
        logger.info("Book created", book_id=str(result.inserted_id), title=metadata.get("title"))
        return _book_from_doc(document)

    async def list_books(self) -> List[BookResponse]:
        """Get all books, newest upload first."""
        try:
            cursor = self.collection.find({}).sort("uploadedAt", -1)
            docs = await cursor.to_list(length=None)
        except Exception as e:
            logger.error("Failed to list books", error=str(e))
            raise
        return [_book_from_doc(doc) for doc in docs]

    async def get_book(self, book_id: str) -> Optional[BookResponse]:
        """
        Get a single book by ID.

        Args:
            book_id: Book identifier (MongoDB ObjectId)

        Returns:
            BookResponse if found, None otherwise
        """
        object_id = _to_object_id(book_id)
        if object_id is None:
            return None

        try:
            doc = await self.collection.find_one({"_id": object_id})
        except Exception as e:
            logger.error("Failed to get book by ID", book_id=book_id, error=str(e))
            raise
        return _book_from_doc(doc) if doc else None

    async def update_book(
        self,
        book_id: str,
        fields: Dict[str, Any],
        file_url: Optional[str] = None
    ) -> Optional[BookResponse]:
        """
        Replace the supplied fields of a book in place.

        The stored fileUrl is only replaced when ``file_url`` is given.

        Returns:
            The updated book, or None if no book has this ID
        """
        object_id = _to_object_id(book_id)
        if object_id is None:
            return None

        changes = dict(fields)
        if file_url is not None:
            changes["fileUrl"] = file_url

        try:
            doc = await self.collection.find_one_and_update(
                {"_id": object_id},
                {"$set": changes},
                return_document=ReturnDocument.AFTER
            )
        except Exception as e:
            logger.error("Failed to update book", book_id=book_id, error=str(e))
            raise

        if doc:
            logger.info("Book updated", book_id=book_id, fields=sorted(changes))
        return _book_from_doc(doc) if doc else None

    async def delete_book(self, book_id: str) -> DeleteResult:
        """Delete a book; an unknown or malformed ID deletes nothing."""
        object_id = _to_object_id(book_id)
        if object_id is None:
            return DeleteResult(deletedCount=0)

        try:
            result = await self.collection.delete_one({"_id": object_id})
        except Exception as e:
            logger.error("Failed to delete book", book_id=book_id, error=str(e))
            raise

        logger.info("Book deleted", book_id=book_id, deleted_count=result.deleted_count)
        return DeleteResult(acknowledged=result.acknowledged, deletedCount=result.deleted_count)


class UserRepository:
    """User profiles keyed by email."""

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    async def get_user(self, email: str) -> Optional[UserResponse]:
        try:
            doc = await self.collection.find_one({"email": email})
        except Exception as e:
            logger.error("Failed to get user", email=email, error=str(e))
            raise
        return _user_from_doc(doc) if doc else None

    async def list_users(self) -> List[UserResponse]:
        try:
            docs = await self.collection.find({}).to_list(length=None)
        except Exception as e:
            logger.error("Failed to list users", error=str(e))
            raise
        return [_user_from_doc(doc) for doc in docs]

    async def upsert_user(
        self,
        record: Dict[str, Any]
    ) -> Union[InsertResult, UpdateResult, UserResponse]:
        """
        Create a user on first login, otherwise merge only what login may change.

        - No stored user: insert the full record plus a timestamp.
        - Stored user and status "Requested": set only the status.
        - Stored user otherwise: no write, return the stored user.

        Args:
            record: Login payload; must contain ``email``

        Returns:
            InsertResult, UpdateResult or the existing UserResponse
        """
        email = record["email"]
        try:
            existing = await self.collection.find_one({"email": email})

            if existing is None:
                document = {**record, "timestamp": utcnow()}
                result = await self.collection.insert_one(document)
                logger.info("User created", email=email)
                return InsertResult(insertedId=str(result.inserted_id))

            if record.get("status") == UserStatus.REQUESTED.value:
                result = await self.collection.update_one(
                    {"email": email},
                    {"$set": {"status": UserStatus.REQUESTED.value}}
                )
                logger.info("Role upgrade requested", email=email)
                return UpdateResult(
                    acknowledged=result.acknowledged,
                    matchedCount=result.matched_count,
                    modifiedCount=result.modified_count
                )

        except Exception as e:
            logger.error("Failed to upsert user", email=email, error=str(e))
            raise

        return _user_from_doc(existing)

    async def update_user(self, email: str, fields: Dict[str, Any]) -> UpdateResult:
        """Set the given fields on a user and refresh its timestamp."""
        changes = {**fields, "timestamp": utcnow()}
        try:
            result = await self.collection.update_one({"email": email}, {"$set": changes})
        except Exception as e:
            logger.error("Failed to update user", email=email, error=str(e))
            raise

        logger.info("User updated", email=email, fields=sorted(fields), matched=result.matched_count)
        return UpdateResult(
            acknowledged=result.acknowledged,
            matchedCount=result.matched_count,
            modifiedCount=result.modified_count
        )


class ReadingStateRepository:
    """Per-user reading states, at most one per (email, bookId)."""

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    async def _current_status(self, email: str, book_id: str) -> Optional[ReadingStatus]:
        try:
            doc = await self.collection.find_one({"email": email, "bookId": book_id})
        except Exception as e:
            logger.error("Failed to get reading state", email=email, book_id=book_id, error=str(e))
            raise
        return ReadingStatus(doc["status"]) if doc else None

    async def save_status(self, email: str, book_id: str, status: ReadingStatus) -> str:
        """
        Move a (email, bookId) pair to ``status``.

        Args:
            email: User email
            book_id: Book identifier
            status: Requested reading status

        Returns:
            Success message

        Raises:
            ReadingStateConflict: If the transition is rejected
        """
        current = await self._current_status(email, book_id)
        action = apply_status(current, status)

        if action == TransitionAction.CREATE:
            try:
                await self.collection.insert_one(
                    {"email": email, "bookId": book_id, "status": status.value}
                )
            except DuplicateKeyError:
                # Lost a race with another create for the same pair
                current = await self._current_status(email, book_id)
                logger.warning("Concurrent reading state create", email=email, book_id=book_id)
                action = apply_status(current, status)
                if action == TransitionAction.CREATE:
                    raise
                return await self._update_status(email, book_id, status, action)
        else:
            return await self._update_status(email, book_id, status, action)

        logger.info("Reading state created", email=email, book_id=book_id, status=status.value)
        return success_message(action, status)

    async def _update_status(
        self,
        email: str,
        book_id: str,
        status: ReadingStatus,
        action: TransitionAction
    ) -> str:
        try:
            await self.collection.update_one(
                {"email": email, "bookId": book_id},
                {"$set": {"status": status.value}}
            )
        except Exception as e:
            logger.error("Failed to update reading state", email=email, book_id=book_id, error=str(e))
            raise
        logger.info("Reading state updated", email=email, book_id=book_id, status=status.value)
        return success_message(action, status)

    async def list_for_user(self, email: str) -> List[ReadingStateResponse]:
        try:
            docs = await self.collection.find({"email": email}).to_list(length=None)
        except Exception as e:
            logger.error("Failed to list reading states", email=email, error=str(e))
            raise
        return [
            ReadingStateResponse(email=doc["email"], bookId=doc["bookId"], status=doc["status"])
            for doc in docs
        ]


class APIDatabaseService:
    """Database service for API operations."""

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        books_collection: str = "books",
        users_collection: str = "users",
        reading_states_collection: str = "my-books"
    ):
        self.database = database
        self.books = BookRepository(database[books_collection])
        self.users = UserRepository(database[users_collection])
        self.reading_states = ReadingStateRepository(database[reading_states_collection])

    async def create_indexes(self) -> None:
        """Create the unique keys the stores rely on."""
        try:
            await self.users.collection.create_index("email", unique=True)
            await self.reading_states.collection.create_index(
                [("email", 1), ("bookId", 1)], unique=True
            )
            await self.books.collection.create_index([("uploadedAt", -1)])
            logger.info("Successfully created MongoDB indexes")
        except Exception as e:
            logger.error("Failed to create indexes", error=str(e))
            raise

    async def health_check(self) -> Dict:
        """
        Perform database health check.

        Returns:
            Dictionary with health status
        """
        try:
            await self.database.command("ping")
            books_count = await self.books.collection.count_documents({})
            users_count = await self.users.collection.count_documents({})

            return {
                "status": "healthy",
                "books_count": books_count,
                "users_count": users_count
            }
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e)
            }
