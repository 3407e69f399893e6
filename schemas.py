"""
Database Schemas for the Book Management API

MongoDB collections are defined below using Pydantic models. Each class name is
converted to lowercase for the collection name (Book -> "book").

We will use these collections:
- book: catalogue entries owned by a user, with embedded reviews
- user: accounts (user, moderator, admin) with preferences and activity log
- analytics: one document holding system/user/book metrics, errors and backups
"""

from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Genre(str, Enum):
    FICTION = "Fiction"
    NON_FICTION = "Non-Fiction"
    SCIENCE_FICTION = "Science Fiction"
    FANTASY = "Fantasy"
    MYSTERY = "Mystery"
    THRILLER = "Thriller"
    ROMANCE = "Romance"
    HORROR = "Horror"
    BIOGRAPHY = "Biography"
    HISTORY = "History"
    SCIENCE = "Science"
    TECHNOLOGY = "Technology"
    SELF_HELP = "Self-Help"
    POETRY = "Poetry"
    DRAMA = "Drama"
    CHILDREN = "Children"
    OTHER = "Other"


class ReadingStatus(str, Enum):
    WANT_TO_READ = "Want to Read"
    CURRENTLY_READING = "Currently Reading"
    READ = "Read"


class Role(str, Enum):
    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"


class Capability(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    MANAGE = "manage"


ROLE_CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.ADMIN: frozenset(Capability),
    Role.MODERATOR: frozenset({Capability.CREATE, Capability.READ, Capability.UPDATE}),
    Role.USER: frozenset({Capability.CREATE, Capability.READ, Capability.UPDATE}),
}


class CoverImage(BaseModel):
    url: str
    publicId: Optional[str] = None


class Review(BaseModel):
    user: str = Field(..., description="Reference to user _id")
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)
    createdAt: Optional[datetime] = None


class Book(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    title: str = Field(..., min_length=1)
    author: str = Field(..., min_length=1)
    publishYear: int
    owner: str = Field(..., description="Reference to user _id (owner)")
    isbn: Optional[str] = None
    genres: List[Genre] = Field(default_factory=list)
    coverImage: Optional[CoverImage] = None
    description: str = ""
    pageCount: Optional[int] = Field(None, ge=1)
    readingStatus: ReadingStatus = ReadingStatus.WANT_TO_READ
    readingProgress: int = Field(0, ge=0, le=100)
    estimatedReadingTime: Optional[int] = Field(None, description="Minutes, derived from pageCount")
    reviews: List[Review] = Field(default_factory=list)
    averageRating: float = 0
    totalReviews: int = 0


class Preferences(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    favoriteGenres: List[Genre] = Field(default_factory=list)


class ActivityEntry(BaseModel):
    action: str
    bookId: Optional[str] = None
    details: Dict = Field(default_factory=dict)
    timestamp: Optional[datetime] = None


class User(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., description="BCrypt hash of password")
    role: Role = Role.USER
    preferences: Preferences = Field(default_factory=Preferences)
    activityLog: List[ActivityEntry] = Field(default_factory=list)


class SystemMetric(BaseModel):
    timestamp: datetime
    cpu: Dict[str, Optional[float]]
    memory: Dict[str, int]
    disk: Dict[str, int]
    requests: Dict[str, int]


class GenreCount(BaseModel):
    genre: str
    count: int


class UserMetric(BaseModel):
    date: datetime
    activeUsers: int
    newUsers: int
    totalUsers: int


class BookMetric(BaseModel):
    date: datetime
    totalBooks: int
    booksAdded: int
    mostPopularGenres: List[GenreCount] = Field(default_factory=list)
    averageRating: float = 0
    totalReviews: int = 0


class ErrorEntry(BaseModel):
    timestamp: datetime
    code: str
    message: Optional[str] = None
    endpoint: Optional[str] = None
    userId: Optional[str] = None


class BackupEntry(BaseModel):
    timestamp: datetime
    status: str = Field(..., pattern="^(pending|completed|failed)$")
    location: Optional[str] = None
    size: Optional[int] = None
    error: Optional[str] = None
