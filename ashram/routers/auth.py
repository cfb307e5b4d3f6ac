# ashram/routers/auth.py
from fastapi import APIRouter, Depends, Request, Response
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from .. import crud, schemas, security, models
from ..audit_logger import audit_trail
from ..config import get_settings
from ..database import get_db
from ..errors import AuthenticationError, AuthorizationError
from ..limiter import limiter
from ..responses import success_response

import logging

logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/auth",
    tags=["Authentication"]
)


@router.post("/token", response_model=schemas.Token)
@limiter.limit("10/minute")
def login_for_access_token(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    form_data: OAuth2PasswordRequestForm = Depends(),
):
    """Password login; username is the account email or phone number."""
    user = crud.get_user_by_identifier(db, identifier=form_data.username)
    if not user or not security.verify_password(form_data.password, user.password_hash):
        logger.warning(f"Failed login attempt for: {form_data.username}")
        raise AuthenticationError("Incorrect username or password")
    if not user.is_active:
        raise AuthorizationError("User account is inactive")

    audit_trail.record(db, user.id, "LOGIN", "USER", user.id, request=request)
    db.commit()

    access_token = security.create_user_token(user)
    response.set_cookie(
        security.SESSION_COOKIE_NAME,
        access_token,
        httponly=True,
        secure=get_settings().is_production,
        samesite="lax",
        max_age=get_settings().access_token_expire_minutes * 60,
    )
    logger.info(f"User {user.id} authenticated")
    return {"access_token": access_token, "token_type": "bearer", "user": user}


@router.get("/me")
async def read_users_me(current_user: models.User = Depends(security.get_current_user)):
    return success_response(schemas.UserResponse.model_validate(current_user))
