"""Principal registration, profile and credential rotation endpoints"""
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tokencart.api.deps import PrincipalContext, get_services, require_principal
from tokencart.database import get_db
from tokencart.errors import ForbiddenError
from tokencart.middleware.rate_limit import get_rate_limit, limiter
from tokencart.models.principal import Principal
from tokencart.schemas.principal import PasswordChange, PrincipalCreate, PrincipalResponse
from tokencart.services import Services
from tokencart.utils.logger import logger
from tokencart.utils.policy import PRINCIPAL_PASSWORD, PRINCIPAL_REGISTER

router = APIRouter(prefix="/auth", tags=["principals"])


@router.post("/register", response_model=PrincipalResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(get_rate_limit("register"))
def register(
    request: Request,
    data: PrincipalCreate,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    """
    Register a new principal.

    The secret is hashed before storage and never returned. Self-registered
    principals always get the default role; elevated roles are granted
    directly in the database.
    """
    if not services.settings.ALLOW_REGISTRATION:
        raise ForbiddenError(data.identifier, PRINCIPAL_REGISTER, data.identifier)

    existing = db.query(Principal).filter(Principal.principal_id == data.identifier).first()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Principal {data.identifier} already exists",
        )

    hashed = services.hasher.hash(data.secret)
    principal = Principal(
        principal_id=data.identifier,
        display_name=data.display_name,
        password_hash=hashed.hash_value,
        password_salt=hashed.salt,
        role=services.settings.DEFAULT_ROLE,
        is_active=True,
    )
    db.add(principal)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Principal {data.identifier} already exists",
        )
    db.refresh(principal)

    logger.info(
        f"Registered principal: {principal.principal_id}",
        extra={"principal_id": principal.principal_id, "action": "register"},
    )
    return principal


@router.get("/me", response_model=PrincipalResponse)
def me(
    principal: PrincipalContext = Depends(require_principal),
    db: Session = Depends(get_db),
):
    """Return the caller's principal record"""
    record = db.query(Principal).filter(Principal.principal_id == principal.principal_id).first()
    if not record:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Principal {principal.principal_id} not found",
        )
    return record


@router.post("/password", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(get_rate_limit("password"))
def change_password(
    request: Request,
    data: PasswordChange,
    principal: PrincipalContext = Depends(require_principal),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    """Rotate the caller's secret. Existing tokens stay valid until they expire or are revoked."""
    record = db.query(Principal).filter(Principal.principal_id == principal.principal_id).first()
    if not record:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Principal {principal.principal_id} not found",
        )

    if not services.hasher.verify(data.current_secret, record.password_hash, record.password_salt):
        raise ForbiddenError(principal.principal_id, PRINCIPAL_PASSWORD, principal.principal_id)

    hashed = services.hasher.hash(data.new_secret)
    record.password_hash = hashed.hash_value
    record.password_salt = hashed.salt
    record.password_changed_at = datetime.utcnow()
    db.commit()

    logger.info(
        f"Credential rotated for {principal.principal_id}",
        extra={"principal_id": principal.principal_id, "action": "change_password"},
    )
    return None
