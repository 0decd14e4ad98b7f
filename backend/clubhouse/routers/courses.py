# clubhouse/routers/courses.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select, func
from sqlalchemy.orm import Session, selectinload

from clubhouse import schemas
from clubhouse.access import course_access, evaluate_access, require_access, require_admin
from clubhouse.database import get_db
from clubhouse.models import Course, CourseModule, Lesson, User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["courses"])


def _course_out(course: Course, **extra) -> dict:
    d = schemas.CourseOut.model_validate(course).model_dump(mode="json")
    d.update(extra)
    return d


def _lesson_out(lesson: Lesson, include_video: bool = True) -> dict:
    d = schemas.LessonOut.model_validate(lesson).model_dump(mode="json")
    if not include_video:
        d["wistia_video_id"] = None
    return d


def _get_course(db: Session, course_id: int) -> Course:
    course = db.get(Course, course_id)
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")
    return course


def _get_module(db: Session, module_id: int) -> CourseModule:
    module = db.get(CourseModule, module_id)
    if not module:
        raise HTTPException(status_code=404, detail="Module not found")
    return module


def _get_lesson(db: Session, lesson_id: int) -> Lesson:
    lesson = db.get(Lesson, lesson_id)
    if not lesson:
        raise HTTPException(status_code=404, detail="Lesson not found")
    return lesson


def _require_course_access(db: Session, user: User, course: Course) -> None:
    result = course_access(db, user, course)
    if not result.has_access:
        raise HTTPException(
            status_code=403,
            detail={
                "error": "Upgrade required to access this course",
                "reason": result.reason,
                "requires_upgrade": result.requires_upgrade,
            },
        )


def _check_module_belongs(db: Session, module_id, course_id: int) -> None:
    if module_id is None:
        return
    module = _get_module(db, module_id)
    if module.course_id != course_id:
        raise HTTPException(status_code=400, detail="Module belongs to a different course")


# -----------------------------
# Courses
# -----------------------------
@router.get("/courses")
def list_courses(db: Session = Depends(get_db), user: User = Depends(require_access(allow_free_tier=True))):
    lesson_counts = (
        select(Lesson.course_id, func.count(Lesson.id).label("n"))
        .group_by(Lesson.course_id)
        .subquery()
    )
    rows = db.execute(
        select(Course, func.coalesce(lesson_counts.c.n, 0))
        .outerjoin(lesson_counts, lesson_counts.c.course_id == Course.id)
        .order_by(Course.is_free.desc(), Course.order_index.asc(), Course.id.asc())
    ).all()

    full_access = evaluate_access(db, user).has_full_access
    return {
        "data": [
            _course_out(c, lesson_count=int(n), has_access=bool(c.is_free or full_access))
            for c, n in rows
        ]
    }


@router.post("/courses")
def create_course(payload: schemas.CourseCreateIn, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    course = Course(**payload.model_dump())
    db.add(course)
    db.commit()
    db.refresh(course)
    logger.info("COURSE %s created", course.id)
    return {"data": _course_out(course)}


@router.get("/courses/{course_id}")
def get_course(course_id: int, db: Session = Depends(get_db), user: User = Depends(require_access(allow_free_tier=True))):
    course = _get_course(db, course_id)
    access = course_access(db, user, course)
    return {
        "data": _course_out(
            course,
            has_access=access.has_access,
            requires_upgrade=access.requires_upgrade,
        )
    }


@router.put("/courses/{course_id}")
def update_course(
    course_id: int,
    payload: schemas.CourseUpdateIn,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    course = _get_course(db, course_id)
    for k, v in payload.model_dump(exclude_unset=True).items():
        setattr(course, k, v)
    db.commit()
    db.refresh(course)
    return {"data": _course_out(course)}


@router.delete("/courses/{course_id}")
def delete_course(course_id: int, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    course = _get_course(db, course_id)
    # modules and lessons go with it
    db.delete(course)
    db.commit()
    logger.info("COURSE %s deleted", course_id)
    return {"data": {"id": course_id, "deleted": True}}


# -----------------------------
# Modules
# -----------------------------
@router.get("/courses/{course_id}/modules")
def list_modules(
    course_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_access(allow_free_tier=True)),
):
    course = _get_course(db, course_id)
    has_access = course_access(db, user, course).has_access

    modules = db.scalars(
        select(CourseModule)
        .where(CourseModule.course_id == course.id)
        .options(selectinload(CourseModule.lessons))
        .order_by(CourseModule.order_index.asc(), CourseModule.id.asc())
    ).all()

    out = []
    for m in modules:
        d = schemas.ModuleOut.model_validate(m).model_dump(mode="json")
        d["lessons"] = [_lesson_out(l, include_video=has_access) for l in m.lessons]
        out.append(d)
    return {"data": out}


@router.post("/courses/{course_id}/modules")
def create_module(
    course_id: int,
    payload: schemas.ModuleCreateIn,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    course = _get_course(db, course_id)
    module = CourseModule(course_id=course.id, **payload.model_dump())
    db.add(module)
    db.commit()
    db.refresh(module)
    return {"data": schemas.ModuleOut.model_validate(module).model_dump(mode="json")}


@router.put("/modules/{module_id}")
def update_module(
    module_id: int,
    payload: schemas.ModuleUpdateIn,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    module = _get_module(db, module_id)
    for k, v in payload.model_dump(exclude_unset=True).items():
        setattr(module, k, v)
    db.commit()
    db.refresh(module)
    return {"data": schemas.ModuleOut.model_validate(module).model_dump(mode="json")}


@router.delete("/modules/{module_id}")
def delete_module(module_id: int, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    module = _get_module(db, module_id)
    # lessons stay in the course, detached from the module
    db.delete(module)
    db.commit()
    return {"data": {"id": module_id, "deleted": True}}


# -----------------------------
# Lessons
# -----------------------------
@router.get("/courses/{course_id}/lessons")
def list_lessons(
    course_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_access(allow_free_tier=True)),
):
    course = _get_course(db, course_id)
    _require_course_access(db, user, course)

    lessons = db.scalars(
        select(Lesson)
        .where(Lesson.course_id == course.id)
        .order_by(Lesson.order_index.asc(), Lesson.id.asc())
    ).all()
    return {"data": [_lesson_out(l) for l in lessons]}


@router.post("/lessons")
def create_lesson(payload: schemas.LessonCreateIn, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    course = _get_course(db, payload.course_id)
    _check_module_belongs(db, payload.module_id, course.id)

    lesson = Lesson(**payload.model_dump())
    db.add(lesson)
    db.commit()
    db.refresh(lesson)
    return {"data": _lesson_out(lesson)}


@router.get("/lessons/{lesson_id}")
def get_lesson(
    lesson_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_access(allow_free_tier=True)),
):
    lesson = _get_lesson(db, lesson_id)
    _require_course_access(db, user, lesson.course)
    return {"data": _lesson_out(lesson)}


@router.put("/lessons/{lesson_id}")
def update_lesson(
    lesson_id: int,
    payload: schemas.LessonUpdateIn,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    lesson = _get_lesson(db, lesson_id)
    changes = payload.model_dump(exclude_unset=True)
    if "module_id" in changes:
        _check_module_belongs(db, changes["module_id"], lesson.course_id)

    for k, v in changes.items():
        setattr(lesson, k, v)
    db.commit()
    db.refresh(lesson)
    return {"data": _lesson_out(lesson)}


@router.delete("/lessons/{lesson_id}")
def delete_lesson(lesson_id: int, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    lesson = _get_lesson(db, lesson_id)
    db.delete(lesson)
    db.commit()
    return {"data": {"id": lesson_id, "deleted": True}}
