from typing import Optional
from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import EmailStr, Field
from sqlmodel import Session

from agrimarket.core.config import settings
from agrimarket.core.exceptions import AuthError, ForbiddenError
from agrimarket.core.responses import success
from agrimarket.core.schemas import CamelModel
from agrimarket.db.session import get_session
from agrimarket.models.user import User, UserRole
from agrimarket.services.auth import AuthService, serialize_user

router = APIRouter()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/v1/auth/login", auto_error=False)


class UserCreate(CamelModel):
    name: str = Field(min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(min_length=6)
    role: UserRole = UserRole.BUYER
    phone: Optional[str] = Field(default=None, max_length=20)
    address: Optional[str] = Field(default=None, max_length=500)

class UserLogin(CamelModel):
    email: EmailStr
    password: str

class ProfileUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    phone: Optional[str] = Field(default=None, max_length=20)
    address: Optional[str] = Field(default=None, max_length=500)

class PasswordChange(CamelModel):
    current_password: str
    new_password: str = Field(min_length=6)

def get_auth_service(session: Session = Depends(get_session)) -> AuthService:
    return AuthService(session)

async def get_current_user(token: Optional[str] = Depends(oauth2_scheme), session: Session = Depends(get_session)) -> User:
    if not token:
        raise AuthError("Access token required")
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id = payload.get("sub")
        if user_id is None:
            raise AuthError("Invalid token")
    except JWTError:
        raise AuthError("Invalid or expired token")

    user = session.get(User, int(user_id)) if str(user_id).isdigit() else None
    if user is None:
        raise AuthError("Invalid token")
    if not user.is_active:
        raise ForbiddenError("Account has been suspended")
    return user

def require_role(*roles: UserRole):
    """Dependency that lets through only users holding one of ``roles``."""
    async def checker(current_user: User = Depends(get_current_user)) -> User:
        # Role is read from the stored user, not trusted from the token claim
        if current_user.role not in roles:
            raise ForbiddenError("Insufficient permissions")
        return current_user
    return checker

@router.post("/register", status_code=201)
def register(user_in: UserCreate, service: AuthService = Depends(get_auth_service)):
    user = service.register_user(
        name=user_in.name,
        email=user_in.email,
        password=user_in.password,
        role=user_in.role,
        phone=user_in.phone,
        address=user_in.address,
    )
    token = service.create_access_token(user)
    return success({"user": serialize_user(user), "token": token}, "User registered successfully")

@router.post("/login")
def login(credentials: UserLogin, service: AuthService = Depends(get_auth_service)):
    user = service.authenticate_user(credentials.email, credentials.password)
    token = service.create_access_token(user)
    return success({"user": serialize_user(user), "token": token}, "Login successful")

@router.get("/profile")
def read_profile(current_user: User = Depends(get_current_user)):
    return success(serialize_user(current_user))

@router.put("/profile")
def update_profile(
    data: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service)
):
    user = service.update_profile(current_user, **data.model_dump(exclude_unset=True))
    return success(serialize_user(user), "Profile updated successfully")

@router.post("/change-password")
def change_password(
    data: PasswordChange,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service)
):
    service.change_password(current_user, data.current_password, data.new_password)
    return success(message="Password changed successfully")

@router.post("/refresh")
def refresh_token(current_user: User = Depends(get_current_user), service: AuthService = Depends(get_auth_service)):
    return success({"token": service.create_access_token(current_user)}, "Token refreshed")

@router.delete("/account")
def delete_account(current_user: User = Depends(get_current_user), service: AuthService = Depends(get_auth_service)):
    service.delete_account(current_user)
    return success(message="Account deleted successfully")
