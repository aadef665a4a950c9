from typing import Optional
from datetime import datetime
from enum import Enum
from sqlmodel import Field, SQLModel, Column
from sqlalchemy import JSON

class UserRole(str, Enum):
    BUYER = "buyer"
    FARMER = "farmer"
    ADMIN = "admin"

class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    # Basic Info
    name: str
    email: str = Field(unique=True, index=True)
    phone: Optional[str] = None
    address: Optional[str] = None  # Free-form delivery address
    password_hash: str

    # Access
    role: UserRole = Field(default=UserRole.BUYER, index=True)
    is_active: bool = Field(default=True)

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class FarmerProfile(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    farmer_id: int = Field(foreign_key="user.id", unique=True, index=True)

    farm_name: Optional[str] = None
    farm_size: Optional[float] = None  # Acres
    farming_experience: Optional[int] = None  # Years
    certifications: list = Field(default=[], sa_column=Column(JSON))
    farming_methods: list = Field(default=[], sa_column=Column(JSON))
    bio: Optional[str] = None

    updated_at: datetime = Field(default_factory=datetime.utcnow)
