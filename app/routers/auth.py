import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.user import User
from app.schemas.auth import (
    AdminCheckResponse,
    EmailVerifiedResponse,
    UserRegister,
    UserLogin,
    TokenResponse,
    RefreshTokenRequest,
    VerificationSentResponse,
    VerifyEmailRequest,
)
from app.auth.dependencies import get_current_user, get_optional_user, is_admin
from app.auth.security import (
    hash_password,
    verify_password,
    create_access_token,
    create_refresh_token,
    token_user_id,
    verify_token,
)
from app.auth.rate_limiter import STRICT, get_login_limiter, rate_limit
from app.services.account_linking import link_orders_for_user
from app.services.email_verification import (
    InvalidVerificationTokenError,
    confirm_email,
    send_verification_email,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


def _issue_tokens(user: User, orders_linked: int = 0) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(user.id),
        refresh_token=create_refresh_token(user.id),
        orders_linked=orders_linked,
    )


@router.post(
    "/register",
    response_model=TokenResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("register", STRICT))],
)
async def register(user_data: UserRegister, db: Session = Depends(get_db)):
    """Register a new account. Guest orders are claimed once the email is verified."""
    email = user_data.email.strip().lower()
    existing_user = db.query(User).filter(func.lower(User.email) == email).first()
    if existing_user:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )

    new_user = User(
        email=email,
        password_hash=hash_password(user_data.password),
        display_name=user_data.display_name,
        last_login_at=datetime.now(timezone.utc),
    )
    db.add(new_user)
    db.commit()
    db.refresh(new_user)

    send_verification_email(new_user)
    return _issue_tokens(new_user)


@router.post(
    "/verify-email/send",
    response_model=VerificationSentResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(rate_limit("verify-email", STRICT))],
)
async def resend_verification(current_user: User = Depends(get_current_user)):
    if current_user.email_verified:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already verified"
        )
    send_verification_email(current_user)
    return VerificationSentResponse()


@router.post(
    "/verify-email",
    response_model=EmailVerifiedResponse,
    dependencies=[Depends(rate_limit("verify-email", STRICT))],
)
async def verify_email(body: VerifyEmailRequest, db: Session = Depends(get_db)):
    """Confirm the address from a verification link and claim orders paid with it"""
    try:
        _, linked = confirm_email(db, body.token)
    except InvalidVerificationTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    return EmailVerifiedResponse(orders_linked=linked)


@router.post("/login", response_model=TokenResponse)
async def login(credentials: UserLogin, db: Session = Depends(get_db)):
    """Authenticate and return JWT tokens. Verified accounts claim guest orders on login."""
    limiter = get_login_limiter()
    if limiter.is_blocked(credentials.email):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Too many failed attempts. Please try again in {limiter.window_seconds // 60} minutes."
        )

    user = db.query(User).filter(func.lower(User.email) == credentials.email.strip().lower()).first()

    if user is None or not verify_password(credentials.password, user.password_hash):
        attempts = limiter.record_failed_attempt(credentials.email)
        remaining = limiter.max_attempts - attempts
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"X-Remaining-Attempts": str(max(0, remaining))}
        )

    limiter.reset(credentials.email)
    user.last_login_at = datetime.now(timezone.utc)
    db.commit()

    linked = link_orders_for_user(db, user)
    return _issue_tokens(user, linked)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(request: RefreshTokenRequest, db: Session = Depends(get_db)):
    payload = verify_token(request.refresh_token, expected_type="refresh")
    user_id = token_user_id(payload) if payload else None
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token"
        )

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )

    return _issue_tokens(user)


@router.get("/check-admin", response_model=AdminCheckResponse)
async def check_admin(current_user: User = Depends(get_optional_user)):
    """Anonymous callers are simply not admins"""
    return AdminCheckResponse(is_admin=is_admin(current_user))
