from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
import logging

from chatcall.db import get_db
from chatcall.db_models import Friendship, User
from chatcall.schemas import FriendRequestCreate, FriendshipOverview, FriendshipRead, FriendshipUpdate

router = APIRouter(prefix="/friendships", tags=["friendships"])
logger = logging.getLogger(__name__)


def _between(db: Session, user_a: str, user_b: str, status: str | None = None) -> Friendship | None:
    query = db.query(Friendship).filter(
        or_(
            and_(Friendship.requester_id == user_a, Friendship.receiver_id == user_b),
            and_(Friendship.requester_id == user_b, Friendship.receiver_id == user_a),
        )
    )
    if status:
        query = query.filter(Friendship.status == status)
    return query.first()


def pending_requests(db: Session, user_id: str) -> list[Friendship]:
    """Requests waiting for ``user_id`` to answer, newest first."""
    return (
        db.query(Friendship)
        .filter(Friendship.receiver_id == user_id, Friendship.status == "pending")
        .order_by(Friendship.created_at.desc())
        .all()
    )


def accepted_friendships(db: Session, user_id: str) -> list[Friendship]:
    return (
        db.query(Friendship)
        .filter(
            Friendship.status == "accepted",
            or_(Friendship.requester_id == user_id, Friendship.receiver_id == user_id),
        )
        .order_by(Friendship.created_at)
        .all()
    )


def related_user_ids(db: Session, user_id: str) -> set[str]:
    """Everyone ``user_id`` is friends with or has a request open with, in either direction."""
    rows = (
        db.query(Friendship.requester_id, Friendship.receiver_id)
        .filter(or_(Friendship.requester_id == user_id, Friendship.receiver_id == user_id))
        .all()
    )
    return {receiver if requester == user_id else requester for requester, receiver in rows}


@router.post("", response_model=FriendshipRead, status_code=201)
def send_friend_request(payload: FriendRequestCreate, db: Session = Depends(get_db)):
    if payload.requester_id == payload.receiver_id:
        raise HTTPException(status_code=400, detail="Cannot send friend request to yourself")
    for user_id in (payload.requester_id, payload.receiver_id):
        if not db.get(User, user_id):
            raise HTTPException(status_code=404, detail=f"User with ID {user_id} not found")
    if _between(db, payload.requester_id, payload.receiver_id):
        raise HTTPException(status_code=409, detail="Friendship request already exists")

    friendship = Friendship(requester_id=payload.requester_id, receiver_id=payload.receiver_id)
    try:
        db.add(friendship)
        db.commit()
        db.refresh(friendship)
        logger.info("Friend request %s: %s -> %s", friendship.id, friendship.requester_id, friendship.receiver_id)
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Failed to send friend request: %s", e)
        raise HTTPException(status_code=500, detail="Database error while sending friend request")
    return friendship


@router.patch("/{friendship_id}")
def respond_to_request(friendship_id: str, payload: FriendshipUpdate, db: Session = Depends(get_db)):
    friendship = db.get(Friendship, friendship_id)
    if not friendship:
        raise HTTPException(status_code=404, detail="Friendship request not found")
    if payload.action not in ("accept", "reject"):
        raise HTTPException(status_code=400, detail='Invalid action. Use "accept" or "reject"')
    if friendship.receiver_id != payload.user_id:
        raise HTTPException(status_code=403, detail="You can only respond to friend requests sent to you")
    if friendship.status != "pending":
        raise HTTPException(status_code=409, detail="Friend request was already answered")

    try:
        if payload.action == "accept":
            friendship.status = "accepted"
            db.commit()
            db.refresh(friendship)
        else:
            db.delete(friendship)
            db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Failed to %s friend request %s: %s", payload.action, friendship_id, e)
        raise HTTPException(status_code=500, detail="Database error while updating friendship")

    logger.info("Friend request %s %sed by %s", friendship_id, payload.action, payload.user_id)
    if payload.action == "accept":
        return FriendshipRead.model_validate(friendship)
    return {"message": "Friend request rejected"}


@router.get("")
def list_friendships(
    user_id: str = Query(..., alias="userId"),
    kind: str | None = Query(None, alias="type", description="pending, accepted or all"),
    db: Session = Depends(get_db),
):
    if kind not in (None, "all", "pending", "accepted"):
        raise HTTPException(status_code=400, detail="type must be pending, accepted or all")

    pending = [FriendshipRead.model_validate(f) for f in pending_requests(db, user_id)]
    if kind == "pending":
        return pending
    accepted = [FriendshipRead.model_validate(f) for f in accepted_friendships(db, user_id)]
    if kind == "accepted":
        return accepted
    return FriendshipOverview(pending=pending, accepted=accepted)


@router.delete("")
def remove_friend(
    user_id1: str = Query(..., alias="userId1"),
    user_id2: str = Query(..., alias="userId2"),
    db: Session = Depends(get_db),
):
    friendship = _between(db, user_id1, user_id2, status="accepted")
    if not friendship:
        raise HTTPException(status_code=404, detail="No friendship found")
    try:
        db.delete(friendship)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Failed to remove friendship %s: %s", friendship.id, e)
        raise HTTPException(status_code=500, detail="Database error while removing friend")
    return {"message": "Friend removed"}
