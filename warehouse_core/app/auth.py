import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from . import models, schemas
from .security import (
    get_db, verify_password, get_password_hash, create_access_token,
    PasswordPolicy, RateLimiter, SecurityAuditLog, sanitize_input
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=schemas.Token)
async def login(request: Request, db: Session = Depends(get_db)):
    """Accept either form-encoded (OAuth2) login or JSON {username,password}."""
    ctype = (request.headers.get("content-type") or "").lower()
    username = None
    password = None

    if "application/json" in ctype:
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Malformed JSON body")
        if isinstance(body, dict):
            username = body.get("username")
            password = body.get("password")
    else:
        form = await request.form()
        username = form.get("username")
        password = form.get("password")

    if not username or not password:
        raise HTTPException(status_code=400, detail="Missing username or password")

    username = sanitize_input(username)
    client_ip = request.client.host if request.client else None
    limit_key = f"login:{client_ip}:{username}"

    allowed, _ = RateLimiter.check_rate_limit(limit_key)
    if not allowed:
        raise HTTPException(status_code=429, detail="Too many login attempts. Try again later.")

    user = db.query(models.User).filter(models.User.username == username).first()
    if not user or not verify_password(password, user.password_hash):
        RateLimiter.record_attempt(limit_key)
        SecurityAuditLog.log_login_attempt(
            db, username, False, ip_address=client_ip, failure_reason="bad credentials"
        )
        raise HTTPException(status_code=400, detail="Incorrect username or password")

    if not user.is_active:
        raise HTTPException(status_code=400, detail="User account is disabled")

    RateLimiter.reset(limit_key)
    SecurityAuditLog.log_login_attempt(db, username, True, ip_address=client_ip)

    access_token = create_access_token({"sub": user.username, "role": user.role})
    return {"access_token": access_token, "token_type": "bearer", "role": user.role}


@router.post("/signup", response_model=schemas.UserOut, status_code=201)
def signup(user_in: schemas.SignupIn, db: Session = Depends(get_db)):
    username = sanitize_input(user_in.username)
    existing = db.query(models.User).filter(
        (models.User.username == username) | (models.User.email == user_in.email)
    ).first()
    if existing:
        raise HTTPException(status_code=400, detail="User with that username or email already exists")

    valid, errors = PasswordPolicy.validate(user_in.password)
    if not valid:
        raise HTTPException(status_code=400, detail=errors)

    user = models.User(
        full_name=sanitize_input(user_in.full_name),
        email=user_in.email,
        username=username,
        password_hash=get_password_hash(user_in.password),
        role=user_in.role.value,
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info("User %s signed up as %s", user.username, user.role)
    return user
