# clubhouse/routers/threads.py
from __future__ import annotations

import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func
from sqlalchemy.orm import Session, selectinload

from clubhouse import schemas
from clubhouse.access import require_access, require_admin
from clubhouse.database import get_db
from clubhouse.models import Comment, Thread, User, THREAD_CATEGORIES, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["threads"])

PAGE_SIZE = 20


def _thread_out(thread: Thread, comment_count: Optional[int] = None) -> dict:
    d = schemas.ThreadOut.model_validate(thread).model_dump(mode="json")
    if comment_count is not None:
        d["comment_count"] = int(comment_count)
    return d


def _comment_out(comment: Comment) -> dict:
    return schemas.CommentOut.model_validate(comment).model_dump(mode="json")


def _get_thread(db: Session, thread_id: int, include_deleted: bool = False) -> Thread:
    thread = db.get(Thread, thread_id)
    if not thread or (thread.is_deleted and not include_deleted):
        raise HTTPException(status_code=404, detail="Thread not found")
    return thread


def _require_owner_or_admin(user: User, author_id: str) -> None:
    if user.id != author_id and not user.is_admin:
        raise HTTPException(status_code=403, detail="Forbidden")


# -----------------------------
# Threads
# -----------------------------
@router.get("/threads")
def list_threads(
    category: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    db: Session = Depends(get_db),
    user: User = Depends(require_access()),
):
    filters = [Thread.is_deleted == False]  # noqa: E712
    if category and category != "all":
        if category not in THREAD_CATEGORIES:
            raise HTTPException(status_code=400, detail="Invalid category")
        filters.append(Thread.category == category)

    total = db.scalar(select(func.count(Thread.id)).where(*filters)) or 0

    comment_counts = (
        select(Comment.thread_id, func.count(Comment.id).label("n"))
        .where(Comment.is_deleted == False)  # noqa: E712
        .group_by(Comment.thread_id)
        .subquery()
    )

    rows = db.execute(
        select(Thread, func.coalesce(comment_counts.c.n, 0))
        .outerjoin(comment_counts, comment_counts.c.thread_id == Thread.id)
        .where(*filters)
        .options(selectinload(Thread.author))
        .order_by(Thread.is_pinned.desc(), Thread.last_activity_at.desc(), Thread.id.desc())
        .offset((page - 1) * PAGE_SIZE)
        .limit(PAGE_SIZE)
    ).all()

    return {
        "data": {
            "threads": [_thread_out(t, n) for t, n in rows],
            "pagination": {
                "page": page,
                "limit": PAGE_SIZE,
                "total": total,
                "totalPages": math.ceil(total / PAGE_SIZE),
            },
        }
    }


@router.post("/threads")
def create_thread(
    payload: schemas.ThreadCreateIn,
    db: Session = Depends(get_db),
    user: User = Depends(require_access()),
):
    if payload.category == "announcements" and not user.is_admin:
        raise HTTPException(status_code=403, detail="Only admins can post announcements")

    thread = Thread(
        author_id=user.id,
        title=payload.title,
        content=payload.content,
        category=payload.category,
        last_activity_at=utcnow(),
    )
    db.add(thread)
    db.commit()
    db.refresh(thread)

    logger.info("THREAD %s created by %s (%s)", thread.id, user.id, thread.category)
    return {"data": _thread_out(thread, 0)}


@router.get("/threads/{thread_id}")
def get_thread(
    thread_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_access()),
):
    thread = _get_thread(db, thread_id)
    comments = db.scalars(
        select(Comment)
        .where(Comment.thread_id == thread.id, Comment.is_deleted == False)  # noqa: E712
        .options(selectinload(Comment.author))
        .order_by(Comment.created_at.asc(), Comment.id.asc())
    ).all()

    data = _thread_out(thread, len(comments))
    data["comments"] = [_comment_out(c) for c in comments]
    return {"data": data}


@router.put("/threads/{thread_id}")
def update_thread(
    thread_id: int,
    payload: schemas.ThreadUpdateIn,
    db: Session = Depends(get_db),
    user: User = Depends(require_access()),
):
    thread = _get_thread(db, thread_id)
    _require_owner_or_admin(user, thread.author_id)

    if payload.title is not None:
        thread.title = payload.title
    if payload.content is not None:
        thread.content = payload.content
    db.commit()
    db.refresh(thread)
    return {"data": _thread_out(thread)}


@router.delete("/threads/{thread_id}")
def delete_thread(
    thread_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_access()),
):
    thread = _get_thread(db, thread_id)
    _require_owner_or_admin(user, thread.author_id)

    thread.is_deleted = True
    thread.deleted_at = utcnow()
    thread.deleted_by = user.id
    db.commit()

    logger.info("THREAD %s soft-deleted by %s", thread.id, user.id)
    return {"data": {"id": thread.id, "deleted": True}}


@router.post("/threads/{thread_id}/restore")
def restore_thread(
    thread_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    thread = _get_thread(db, thread_id, include_deleted=True)
    thread.is_deleted = False
    thread.deleted_at = None
    thread.deleted_by = None
    db.commit()
    db.refresh(thread)
    return {"data": _thread_out(thread)}


@router.post("/threads/{thread_id}/pin")
def toggle_pin(
    thread_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    thread = _get_thread(db, thread_id)
    thread.is_pinned = not thread.is_pinned
    thread.pinned_at = utcnow() if thread.is_pinned else None
    db.commit()
    db.refresh(thread)
    return {"data": _thread_out(thread)}


# -----------------------------
# Comments
# -----------------------------
@router.post("/threads/{thread_id}/comments")
def create_comment(
    thread_id: int,
    payload: schemas.CommentCreateIn,
    db: Session = Depends(get_db),
    user: User = Depends(require_access()),
):
    thread = _get_thread(db, thread_id)

    comment = Comment(thread_id=thread.id, author_id=user.id, content=payload.content)
    db.add(comment)
    thread.last_activity_at = utcnow()
    db.commit()
    db.refresh(comment)

    return {"data": _comment_out(comment)}


def _get_comment(db: Session, comment_id: int) -> Comment:
    comment = db.get(Comment, comment_id)
    if not comment:
        raise HTTPException(status_code=404, detail="Comment not found")
    return comment


@router.delete("/comments/{comment_id}")
def delete_comment(
    comment_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_access()),
):
    comment = _get_comment(db, comment_id)
    if comment.is_deleted:
        raise HTTPException(status_code=404, detail="Comment not found")
    _require_owner_or_admin(user, comment.author_id)

    comment.is_deleted = True
    comment.deleted_at = utcnow()
    comment.deleted_by = user.id
    db.commit()
    return {"data": {"id": comment.id, "deleted": True}}


@router.post("/comments/{comment_id}/restore")
def restore_comment(
    comment_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    comment = _get_comment(db, comment_id)
    comment.is_deleted = False
    comment.deleted_at = None
    comment.deleted_by = None
    db.commit()
    db.refresh(comment)
    return {"data": _comment_out(comment)}
