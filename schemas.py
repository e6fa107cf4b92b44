from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import ApplicationStatus, Role


class Caller(BaseModel):
    """The acting identity handed explicitly to every service operation."""

    user_id: int
    role: Role
    email: Optional[str] = None
    is_admin: bool = False

    @property
    def is_employer(self) -> bool:
        return self.role == Role.EMPLOYER


class FileUpload(BaseModel):
    """An uploaded file already read into memory."""

    filename: str
    content_type: Optional[str] = None
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        if "." not in self.filename:
            return ""
        return self.filename.rsplit(".", 1)[1].lower()


# --- Users ---
class UserCreate(BaseModel):
    email: str
    name: str
    lastname: Optional[str] = None
    role: Role = Role.EMPLOYEE
    city_id: Optional[int] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class User(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: str
    lastname: Optional[str] = None
    role: Role
    city_id: Optional[int] = None


# --- Lookups ---
class CityCreate(BaseModel):
    name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class City(CityCreate):
    model_config = ConfigDict(from_attributes=True)

    id: int


class CategoryCreate(BaseModel):
    name: str


class Category(CategoryCreate):
    model_config = ConfigDict(from_attributes=True)

    id: int


# --- Companies ---
class CompanyCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str
    address: str
    phone: str
    website: str
    email: str


class CompanyUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    email: Optional[str] = None


class Company(CompanyCreate):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    image: str


# --- Posts ---
class PostCreate(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = ""
    type: Optional[str] = None
    salary: Optional[str] = None
    nr_workers: int = Field(default=1, ge=0)
    category_id: Optional[int] = None
    location_id: Optional[int] = None
    expiration_date: Optional[date] = None


class Post(PostCreate):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    company_id: int
    created_at: Optional[datetime] = None


class SavedPost(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    post_id: int
    user_id: int


# --- Applications ---
class ApplicationCreate(BaseModel):
    post_id: int


class Application(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    post_id: int
    status: ApplicationStatus
    created_at: Optional[datetime] = None


# --- CVs ---
class CV(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    file: str
    original_filename: Optional[str] = None
    uploaded_at: Optional[datetime] = None


# --- Admin ---
class Stats(BaseModel):
    employees: int
    employers: int
    posts: int
    applications: int
    accepted: int
    rejected: int
    pending: int
