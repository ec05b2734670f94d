from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime
import logging

from chatcall.db import get_db
from chatcall.db_models import User
from chatcall.routers.friendships import related_user_ids
from chatcall.schemas import UserCreate, UserRead, UserStatusRead, UserStatusUpdate

router = APIRouter(prefix="/users", tags=["users"])
logger = logging.getLogger(__name__)


@router.post("", response_model=UserRead, status_code=201)
def create_user(payload: UserCreate, db: Session = Depends(get_db)):
    email = payload.email.strip().lower()
    username = payload.username.strip()
    if not email or not username:
        raise HTTPException(status_code=400, detail="Email and username are required")

    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=409, detail="User already exists")
    if db.query(User).filter(User.username == username).first():
        raise HTTPException(status_code=409, detail="Username already taken")

    user = User(
        email=email,
        username=username,
        full_name=payload.full_name,
        avatar_url=payload.avatar_url,
        country=payload.country,
    )
    try:
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info("Created user %s (%s)", user.id, user.username)
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Failed to create user: %s", e)
        raise HTTPException(status_code=500, detail="Database error while creating user")
    return user


@router.get("", response_model=list[UserRead])
def list_users(
    q: str | None = Query(None, description="Match username, full name or email"),
    country: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    query = db.query(User)
    if q:
        pattern = f"%{q}%"
        query = query.filter(or_(User.username.ilike(pattern), User.full_name.ilike(pattern), User.email.ilike(pattern)))
    elif country:
        query = query.filter(User.country == country)
    return query.order_by(User.username).limit(limit).all()


@router.get("/suggestions", response_model=list[UserRead])
def suggest_friends(
    user_id: str = Query(..., alias="userId"),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """People the user is not yet friends with and has no open request with."""
    if not db.get(User, user_id):
        raise HTTPException(status_code=404, detail="User not found")
    excluded = related_user_ids(db, user_id) | {user_id}
    return db.query(User).filter(User.id.notin_(excluded)).order_by(User.username).limit(limit).all()


@router.get("/find-by-email", response_model=UserRead)
def find_by_email(email: str = Query(..., min_length=3), db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == email.strip().lower()).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("/status", response_model=UserStatusRead)
def get_status(user_id: str = Query(..., alias="userId"), db: Session = Depends(get_db)):
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return UserStatusRead(is_online=user.is_online, last_seen_at=user.last_seen_at)


@router.post("/status", response_model=UserRead)
def update_status(payload: UserStatusUpdate, db: Session = Depends(get_db)):
    user = db.get(User, payload.user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    user.is_online = payload.is_online
    user.last_seen_at = datetime.utcnow()
    try:
        db.commit()
        db.refresh(user)
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Failed to update status for %s: %s", payload.user_id, e)
        raise HTTPException(status_code=500, detail="Database error while updating status")
    return user
