from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.deps import get_current_user
from app.core.limiter import limiter
from app.core.security import create_access_token
from app.db.session import get_sync_session
from app.models.user import User
from app.rules.roles import password_expired
from app.schemas.auth import ChangePasswordRequest, Token, UserOut
from app.services import audit as audit_svc
from app.services import users as users_svc

router = APIRouter()


@router.post("/login", response_model=Token)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
def login(
    request: Request,
    form: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_sync_session),
):
    user = users_svc.authenticate(db, form.username, form.password)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account disabled")

    token = create_access_token(subject=str(user.id), role=user.role)
    must_change = user.is_first_login or password_expired(user, datetime.now(timezone.utc))

    audit_svc.log(
        db,
        action="user.login",
        entity_type="user",
        entity_id=user.id,
        actor=user,
        after={"email": user.email, "role": user.role, "must_change_password": must_change},
        notes=f"Login from IP {request.client.host if request.client else 'unknown'}",
    )
    db.commit()

    return {"access_token": token, "token_type": "bearer", "must_change_password": must_change}


@router.get("/me", response_model=UserOut)
async def me(current_user: User = Depends(get_current_user)):
    return current_user


@router.post("/change-password", response_model=UserOut)
def change_password(
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_sync_session),
):
    # current_user belongs to the async session; re-load it on the sync one.
    user = users_svc.get_user_or_404(db, current_user.id)
    return users_svc.change_password(db, user, body.current_password, body.new_password)
