from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
import logging

from chatcall.db import get_db
from chatcall.db_models import PrivateMessage, User
from chatcall.schemas import PrivateMessageCreate, PrivateMessageRead

router = APIRouter(prefix="/messages", tags=["messages"])
logger = logging.getLogger(__name__)


@router.post("/private", response_model=PrivateMessageRead, status_code=201)
def send_private_message(payload: PrivateMessageCreate, db: Session = Depends(get_db)):
    if not payload.content.strip():
        raise HTTPException(status_code=400, detail="Message content is empty")
    if not db.get(User, payload.sender_id):
        raise HTTPException(status_code=404, detail=f"Sender user with ID {payload.sender_id} not found")
    if not db.get(User, payload.receiver_id):
        raise HTTPException(status_code=404, detail=f"Receiver user with ID {payload.receiver_id} not found")

    message = PrivateMessage(
        sender_id=payload.sender_id,
        receiver_id=payload.receiver_id,
        content=payload.content.strip(),
        message_type=payload.message_type,
        file_url=payload.file_url,
    )
    try:
        db.add(message)
        db.commit()
        db.refresh(message)
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Failed to save private message: %s", e)
        raise HTTPException(status_code=500, detail="Database error while saving private message")
    return message


@router.get("/private", response_model=list[PrivateMessageRead])
def list_private_messages(
    user_id1: str = Query(..., alias="userId1"),
    user_id2: str = Query(..., alias="userId2"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    rows = (
        db.query(PrivateMessage)
        .filter(
            or_(
                and_(PrivateMessage.sender_id == user_id1, PrivateMessage.receiver_id == user_id2),
                and_(PrivateMessage.sender_id == user_id2, PrivateMessage.receiver_id == user_id1),
            )
        )
        .order_by(PrivateMessage.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return list(reversed(rows))
