# auth.py — Identity context for the issue tracker
# Features:
# - Company signup with collision-checked company codes
# - User registration into a company (by id or company code)
# - JWT sessions whose JTI must be active in user_tokens
# - Logout revokes the session; expired sessions are pruned when presented
# - CurrentUser dependency carrying id, company and role

import os
import uuid
import secrets
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Tuple

import bcrypt
from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import HTTPException, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr, field_validator
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from errors import ConflictError, InvalidInputError, NotFoundError
from models import Company, User, UserToken, UserRole

logger = logging.getLogger("issue-tracker.auth")

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY or SECRET_KEY == "change-this-to-a-secure-random-key-in-production":
    SECRET_KEY = secrets.token_urlsafe(64)
    logger.warning(
        "JWT_SECRET_KEY not set or insecure. Generated ephemeral key. "
        "Set JWT_SECRET_KEY in production!"
    )

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24 * 7)))
MIN_PASSWORD_LENGTH = 8

# No I, O, 0 or 1
COMPANY_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
COMPANY_CODE_LENGTH = 8
MAX_COMPANY_CODE_ATTEMPTS = 10

security = HTTPBearer()


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class CompanyCreate(BaseModel):
    name: str
    email: EmailStr

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Company name is required")
        return v.strip()


class UserRegister(BaseModel):
    name: str
    email: EmailStr
    password: str
    role: UserRole = UserRole.DEVELOPER
    company_id: Optional[str] = None
    company_code: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Name is required")
        return v.strip()

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        return v


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class CurrentUser(BaseModel):
    id: str
    email: str
    name: str
    company_id: str
    role: str
    token_id: Optional[str] = None


def is_admin(user: CurrentUser) -> bool:
    return user.role == UserRole.ADMIN.value


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    """Companies, users and revocable session tokens"""

    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=12)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))

    @staticmethod
    def create_access_token(
        user_id: str, expires_delta: Optional[timedelta] = None,
    ) -> Tuple[str, str, datetime]:
        """Returns (token, jti, expires_at)"""
        now = datetime.now(timezone.utc)
        expires_at = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
        jti = str(uuid.uuid4())
        to_encode = {
            "sub": user_id,
            "exp": expires_at,
            "iat": now,
            "type": "access",
            "jti": jti,
        }
        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM), jti, expires_at

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise
        except JWTError:
            raise HTTPException(status_code=401, detail="Invalid token")

    @staticmethod
    def generate_company_code() -> str:
        return "".join(secrets.choice(COMPANY_CODE_ALPHABET) for _ in range(COMPANY_CODE_LENGTH))

    @staticmethod
    async def register_company(data: CompanyCreate, db: AsyncSession) -> Company:
        email = data.email.lower()
        existing = await db.execute(select(Company).where(Company.email == email))
        if existing.scalar_one_or_none():
            raise ConflictError("A company with this email already exists", error_type="Duplicate company")

        for _ in range(MAX_COMPANY_CODE_ATTEMPTS):
            code = AuthService.generate_company_code()
            taken = await db.execute(select(Company.id).where(Company.company_code == code))
            if taken.scalar_one_or_none() is None:
                break
        else:
            raise ConflictError("Could not allocate a unique company code", error_type="Company code exhausted")

        company = Company(name=data.name, email=email, company_code=code)
        db.add(company)
        await db.commit()
        await db.refresh(company)
        logger.info(f"Company registered: {company.id} code={company.company_code}")
        return company

    @staticmethod
    async def get_company_by_code(code: str, db: AsyncSession) -> Company:
        result = await db.execute(select(Company).where(Company.company_code == code.upper()))
        company = result.scalar_one_or_none()
        if not company:
            raise NotFoundError("Company not found", error_type="Company not found")
        return company

    @staticmethod
    async def register_user(data: UserRegister, db: AsyncSession) -> User:
        if data.company_id:
            company = await db.get(Company, data.company_id)
            if not company:
                raise NotFoundError("Company not found", error_type="Company not found")
        elif data.company_code:
            company = await AuthService.get_company_by_code(data.company_code, db)
        else:
            raise InvalidInputError(
                "company_id or company_code is required",
                error_type="Missing company",
            )

        email = data.email.lower()
        existing = await db.execute(select(User).where(User.email == email))
        if existing.scalar_one_or_none():
            raise ConflictError("A user with this email already exists", error_type="Duplicate user")

        new_user = User(
            company_id=company.id,
            name=data.name,
            email=email,
            password_hash=AuthService.hash_password(data.password),
            role=data.role,
        )
        db.add(new_user)
        await db.commit()
        await db.refresh(new_user)
        logger.info(f"User registered: {new_user.id} company={company.id} role={new_user.role.value}")
        return new_user

    @staticmethod
    async def authenticate_user(email: str, password: str, db: AsyncSession) -> Optional[User]:
        result = await db.execute(select(User).where(User.email == email.lower()))
        user = result.scalar_one_or_none()
        if not user or not AuthService.verify_password(password, user.password_hash):
            return None
        return user

    @staticmethod
    async def issue_session_token(
        user: User, db: AsyncSession, expires_delta: Optional[timedelta] = None,
    ) -> str:
        token, jti, expires_at = AuthService.create_access_token(user.id, expires_delta)
        db.add(UserToken(user_id=user.id, jti=jti, expires_at=expires_at))
        await db.commit()
        return token

    @staticmethod
    async def revoke_session_token(jti: str, db: AsyncSession) -> None:
        await db.execute(delete(UserToken).where(UserToken.jti == jti))
        await db.commit()

    @staticmethod
    async def is_token_active(jti: str, user_id: str, db: AsyncSession) -> bool:
        stmt = select(UserToken.id).where(UserToken.jti == jti, UserToken.user_id == user_id)
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None


def user_to_dict(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "company_id": user.company_id,
        "name": user.name,
        "email": user.email,
        "role": user.role.value if isinstance(user.role, UserRole) else user.role,
        "avatar": user.avatar,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> CurrentUser:
    token = credentials.credentials
    try:
        payload = AuthService.verify_token(token)
    except ExpiredSignatureError:
        # Expired sessions are removed when presented
        claims = jwt.get_unverified_claims(token)
        if claims.get("jti"):
            await AuthService.revoke_session_token(claims["jti"], db)
        raise HTTPException(status_code=401, detail="Token expired")

    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type")

    user_id = payload.get("sub")
    jti = payload.get("jti")
    if not user_id or not jti:
        raise HTTPException(status_code=401, detail="Invalid token")

    if not await AuthService.is_token_active(jti, user_id, db):
        raise HTTPException(status_code=401, detail="Token has been revoked")

    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    return CurrentUser(
        id=user.id,
        email=user.email,
        name=user.name,
        company_id=user.company_id,
        role=user.role.value if isinstance(user.role, UserRole) else user.role,
        token_id=jti,
    )
