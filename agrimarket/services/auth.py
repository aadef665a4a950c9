from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy import delete, update
from sqlmodel import Session, select
from passlib.context import CryptContext
from jose import jwt

import structlog

from agrimarket.core.config import settings
from agrimarket.core.exceptions import AuthError, ConflictError, ForbiddenError, ValidationError
from agrimarket.models.cart import CartItem
from agrimarket.models.product import Product
from agrimarket.models.subscription import Subscription
from agrimarket.models.user import User, UserRole, FarmerProfile

logger = structlog.get_logger(__name__)

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "phone": user.phone,
        "address": user.address,
        "role": user.role.value,
        "isActive": user.is_active,
        "createdAt": user.created_at,
    }

class AuthService:
    def __init__(self, session: Session):
        self.session = session

    def get_password_hash(self, password: str) -> str:
        return pwd_context.hash(password)

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        return pwd_context.verify(plain_password, hashed_password)

    def create_access_token(self, user: User, expires_delta: Optional[timedelta] = None) -> str:
        to_encode = {"sub": str(user.id), "role": user.role.value}
        if expires_delta:
            expire = datetime.utcnow() + expires_delta
        else:
            expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        to_encode.update({"exp": expire})
        return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.session.exec(select(User).where(User.email == email.lower())).first()

    def register_user(self, name: str, email: str, password: str, role: UserRole = UserRole.BUYER,
                      phone: str = None, address: str = None) -> User:
        if role == UserRole.ADMIN:
            raise ForbiddenError("Admin accounts cannot be self-registered")
        if self.get_user_by_email(email):
            raise ConflictError("User with this email already exists", field="email")

        user = User(
            name=name,
            email=email.lower(),
            password_hash=self.get_password_hash(password),
            phone=phone,
            address=address,
            role=role,
        )
        self.session.add(user)
        self.session.flush()

        if role == UserRole.FARMER:
            self.session.add(FarmerProfile(farmer_id=user.id))

        self.session.commit()
        self.session.refresh(user)
        logger.info("user_registered", user_id=user.id, role=user.role.value)
        return user

    def authenticate_user(self, email: str, password: str) -> User:
        user = self.get_user_by_email(email)
        if not user or not self.verify_password(password, user.password_hash):
            raise AuthError("Invalid email or password")
        if not user.is_active:
            raise ForbiddenError("Account has been suspended")
        return user

    def update_profile(self, user: User, **fields) -> User:
        for key, value in fields.items():
            if value is not None:
                setattr(user, key, value)
        user.updated_at = datetime.utcnow()
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def change_password(self, user: User, current_password: str, new_password: str) -> None:
        if not self.verify_password(current_password, user.password_hash):
            raise ValidationError("Current password is incorrect", field="currentPassword")
        user.password_hash = self.get_password_hash(new_password)
        user.updated_at = datetime.utcnow()
        self.session.add(user)
        self.session.commit()
        logger.info("password_changed", user_id=user.id)

    def delete_account(self, user: User) -> None:
        """Soft-delete: the row stays for order history, personal data does not."""
        if user.role == UserRole.ADMIN:
            raise ForbiddenError("Admin accounts cannot be deleted")

        now = datetime.utcnow()
        if user.role == UserRole.FARMER:
            self.session.exec(
                update(Product).where(Product.farmer_id == user.id).values(is_active=False, updated_at=now)
            )
        else:
            self.session.exec(delete(CartItem).where(CartItem.buyer_id == user.id))
            self.session.exec(
                update(Subscription).where(Subscription.buyer_id == user.id).values(is_active=False, updated_at=now)
            )

        user.is_active = False
        user.name = "Deleted User"
        user.email = f"deleted_{user.id}@agrimarket.local"
        user.phone = None
        user.address = None
        user.updated_at = now
        self.session.add(user)
        self.session.commit()
        logger.info("account_deleted", user_id=user.id, role=user.role.value)
