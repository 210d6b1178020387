"""
API models and schemas for the FastAPI application.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ReadingStatus(str, Enum):
    """Per-user reading state of a book."""
    WISHLIST = "wishlist"
    READ = "read"


class UserRole(str, Enum):
    """User role enumeration."""
    USER = "user"
    ADMIN = "admin"
    REQUESTED = "requested"


class UserStatus(str, Enum):
    """User status enumeration."""
    REQUESTED = "Requested"
    VERIFIED = "Verified"


# Books

class BookMetadata(BaseModel):
    """Metadata submitted alongside a PDF upload."""
    title: str = Field(..., min_length=1, description="Book title")
    author: str = Field(..., min_length=1, description="Book author")
    description: str = Field("", description="Book description")


class BookUpdate(BaseModel):
    """Partial book update; only supplied fields are replaced."""
    title: Optional[str] = Field(None, min_length=1, description="Book title")
    author: Optional[str] = Field(None, min_length=1, description="Book author")
    description: Optional[str] = Field(None, description="Book description")


class BookResponse(BaseModel):
    """Book response model for API."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Unique book identifier")
    title: str = Field(..., description="Book title")
    author: str = Field(..., description="Book author")
    description: str = Field("", description="Book description")
    file_url: str = Field(..., alias="fileUrl", description="Public link to the stored PDF")
    uploaded_at: Optional[datetime] = Field(None, alias="uploadedAt", description="Upload timestamp")


# Users

class UserUpsert(BaseModel):
    """Login payload; unknown profile fields are stored as submitted."""
    model_config = ConfigDict(extra="allow")

    email: str = Field(..., min_length=3, description="User email (natural key)")
    name: Optional[str] = Field(None, description="Display name")
    role: UserRole = Field(UserRole.USER, description="Requested role")
    status: Optional[UserStatus] = Field(None, description="Role-upgrade request marker")

    @field_validator("role")
    @classmethod
    def validate_role(cls, v):
        """Admin can only be granted through the privileged update path."""
        if v == UserRole.ADMIN:
            raise ValueError("admin role cannot be assigned at login")
        return v


class UserUpdate(BaseModel):
    """Privileged user update."""
    name: Optional[str] = Field(None, description="Display name")
    role: Optional[UserRole] = Field(None, description="New role")
    status: Optional[UserStatus] = Field(None, description="New status")


class UserResponse(BaseModel):
    """User response model for API."""
    model_config = ConfigDict(extra="allow")

    email: str = Field(..., description="User email")
    name: Optional[str] = Field(None, description="Display name")
    # Stored values are not restricted to the enums accepted on input
    role: Optional[str] = Field(UserRole.USER.value, description="User role")
    status: Optional[str] = Field(None, description="User status")
    timestamp: Optional[datetime] = Field(None, description="Last write time")


# Reading states

class ReadingStateRequest(BaseModel):
    """Request to place a book on a user's shelf."""
    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(..., min_length=3, description="User email")
    book_id: str = Field(..., alias="bookId", min_length=1, description="Book identifier")
    status: ReadingStatus = Field(..., description="Requested reading status")


class ReadingStateResponse(BaseModel):
    """Reading state of one book for one user."""
    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(..., description="User email")
    book_id: str = Field(..., alias="bookId", description="Book identifier")
    status: ReadingStatus = Field(..., description="Reading status")


# Sessions

class SessionRequest(BaseModel):
    """Identity claim to sign into a session token."""
    model_config = ConfigDict(extra="allow")

    email: str = Field(..., min_length=3, description="User email")


# Write results

class InsertResult(BaseModel):
    """Result of a document insert."""
    model_config = ConfigDict(populate_by_name=True)

    acknowledged: bool = True
    inserted_id: str = Field(..., alias="insertedId")


class UpdateResult(BaseModel):
    """Result of a document update."""
    model_config = ConfigDict(populate_by_name=True)

    acknowledged: bool = True
    matched_count: int = Field(..., alias="matchedCount")
    modified_count: int = Field(..., alias="modifiedCount")


class DeleteResult(BaseModel):
    """Result of a document delete."""
    model_config = ConfigDict(populate_by_name=True)

    acknowledged: bool = True
    deleted_count: int = Field(..., alias="deletedCount")


class MessageResponse(BaseModel):
    """Plain message envelope."""
    message: str = Field(..., description="Human-readable outcome")


class SuccessResponse(BaseModel):
    """Session endpoint response."""
    success: bool = True


class ErrorResponse(BaseModel):
    """Error response model."""
    error: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Additional error details")
    status_code: int = Field(..., description="HTTP status code")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current timestamp")
    version: str = Field(..., description="API version")
    database_status: str = Field(..., description="Database connection status")
