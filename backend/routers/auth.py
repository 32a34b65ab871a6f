# routers/auth.py — Company signup, registration and session endpoints
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    AuthService, CompanyCreate, UserRegister, UserLogin,
    get_current_user, CurrentUser, user_to_dict,
)
from database import get_db_session
from models import Company
from responses import success_response

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


def _company_to_dict(company: Company) -> dict:
    return {
        "id": company.id,
        "name": company.name,
        "email": company.email,
        "company_code": company.company_code,
        "created_at": company.created_at.isoformat() if company.created_at else None,
    }


@router.post("/companies", status_code=201)
async def create_company(
    data: CompanyCreate,
    db: AsyncSession = Depends(get_db_session),
):
    """Register a company and hand back its join code"""
    company = await AuthService.register_company(data, db)
    return success_response(
        "Company created",
        "Company has been registered successfully",
        data=_company_to_dict(company),
        details={"company_code": company.company_code},
        status_code=201,
    )


@router.get("/companies/{code}")
async def get_company_by_code(
    code: str,
    db: AsyncSession = Depends(get_db_session),
):
    """Look up a company by its join code"""
    company = await AuthService.get_company_by_code(code, db)
    return success_response("Company retrieved", "Company found", data=_company_to_dict(company))


@router.post("/register", status_code=201)
async def register(
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db_session),
):
    """Register a user into a company and start a session"""
    user = await AuthService.register_user(user_data, db)
    token = await AuthService.issue_session_token(user, db)
    return success_response(
        "User registered",
        "Account created successfully",
        data={"user": user_to_dict(user), "token": token},
        status_code=201,
    )


@router.post("/login")
async def login(
    credentials: UserLogin,
    db: AsyncSession = Depends(get_db_session),
):
    """Authenticate and receive a session token"""
    user = await AuthService.authenticate_user(credentials.email, credentials.password, db)
    if not user:
        raise HTTPException(status_code=401, detail="Unable to login")
    token = await AuthService.issue_session_token(user, db)
    return success_response(
        "Login successful",
        "Authenticated successfully",
        data={"user": user_to_dict(user), "token": token},
    )


@router.post("/logout")
async def logout(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Revoke the session token used for this request"""
    await AuthService.revoke_session_token(user.token_id, db)
    return success_response("Logged out", "Session terminated")


@router.get("/me")
async def get_current_user_info(user: CurrentUser = Depends(get_current_user)):
    """Get current authenticated user information"""
    return success_response(
        "Profile retrieved",
        "Current user retrieved",
        data=user.model_dump(exclude={"token_id"}),
    )
