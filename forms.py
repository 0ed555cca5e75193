"""Form authoring, attempts, grading and history, over a SQLAlchemy session."""

from __future__ import annotations

import json
import logging
import math
import random
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as OrmSession

import form_cipher
import models
import quiz_engine
from config import settings
from errors import Forbidden, InvalidParameter, NotFound, ServerError, Unauthorized
from schemas import FormDefinition
from security import generate_jwt, verify_jwt

logger = logging.getLogger(__name__)

AUTHOR_ROLES = ("DOCTOR", "ADMIN")


def _load_questions(form: models.Form) -> List[Dict[str, Any]]:
    return json.loads(form.questions_json)


def _load_correct_answer(form: models.Form) -> List[List[int]]:
    return json.loads(form.correct_answer_json)


def _get_form(db: OrmSession, fid: int) -> models.Form:
    form = db.query(models.Form).filter(models.Form.id == fid).first()
    if form is None:
        raise NotFound("Query failed")
    return form


def validate_definition(definition: FormDefinition) -> List[List[int]]:
    """Check a form before it is stored; returns the sorted correct indices."""
    if not definition.questions:
        raise InvalidParameter("form error")
    if len(definition.correct_answer) != len(definition.questions):
        raise InvalidParameter("form error")

    correct: List[List[int]] = []
    for item, indices in zip(definition.questions, definition.correct_answer):
        if not item.question or not item.options:
            raise InvalidParameter("form error")
        if not indices or len(set(indices)) != len(indices):
            raise InvalidParameter("form error")
        if any(not 0 <= i < len(item.options) for i in indices):
            raise InvalidParameter("form error")
        if definition.is_single_choice and len(indices) != 1:
            raise InvalidParameter("form error")
        correct.append(sorted(indices))
    return correct


def create_form(
    db: OrmSession,
    claims: Dict[str, Any],
    definition: FormDefinition,
    key_material: Callable[[], tuple[bytes, bytes]] = form_cipher.generate_key_material,
) -> models.Form:
    if claims.get("role") not in AUTHOR_ROLES:
        raise Forbidden()
    correct = validate_definition(definition)
    key, iv = key_material()

    form = models.Form(
        form_name=definition.form_name,
        is_single_choice=definition.is_single_choice,
        is_randomized=definition.is_randomized,
        questions_json=json.dumps(
            [{"question": q.question, "options": q.options} for q in definition.questions],
            ensure_ascii=False,
        ),
        correct_answer_json=json.dumps(correct),
        key=key,
        iv=iv,
        author_id=int(claims["userId"]),
    )
    try:
        db.add(form)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Form upload failed")
        raise InvalidParameter("Upload failed") from exc
    db.refresh(form)
    logger.info("Form %s uploaded by user %s", form.id, form.author_id)
    return form


# ── Attempts ──────────────────────────────────────────────────────────────────

def prepare_attempt(db: OrmSession, fid: int, rng: Optional[random.Random] = None) -> Dict[str, Any]:
    """Shuffle (when the form asks for it) and hand out the encrypted mapping."""
    form = _get_form(db, fid)
    questions = _load_questions(form)
    mapping = quiz_engine.build_mapping(questions, form.is_randomized, rng)
    token = form_cipher.encrypt(quiz_engine.encode_mapping(mapping), form.key, form.iv)
    return {
        "message": "Get success",
        "questions": quiz_engine.present(questions, mapping),
        "formIndex": token,
        "isSingleChoice": form.is_single_choice,
        "formName": form.form_name,
        "fid": form.id,
    }


def grade_attempt(
    db: OrmSession,
    fid: int,
    user_id: int,
    answers: List[List[int]],
    form_index: str,
) -> models.HistoryForm:
    form = _get_form(db, fid)
    questions = _load_questions(form)
    if len(answers) != len(questions):
        raise InvalidParameter()
    if form.is_single_choice and any(len(selected) > 1 for selected in answers):
        raise InvalidParameter()

    mapping = quiz_engine.decode_mapping(form_cipher.decrypt(form_index, form.key, form.iv), questions)
    result = quiz_engine.grade(mapping, answers, _load_correct_answer(form))

    history = models.HistoryForm(
        user_id=user_id,
        form_id=form.id,
        form_name=form.form_name,
        score=result.score,
        error_question_index_json=json.dumps(result.error_question_index),
        error_answer_indexs_json=json.dumps(result.error_answer_indexs),
        form_index=form_index,
    )
    try:
        db.add(history)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Could not store history for form %s", fid)
        raise ServerError("Add failed") from exc
    db.refresh(history)
    logger.info("User %s scored %s on form %s", user_id, history.score, fid)
    return history


# ── History ───────────────────────────────────────────────────────────────────

def expand_history_detail(db: OrmSession, hid: int, user_id: int) -> Dict[str, Any]:
    history = db.query(models.HistoryForm).filter(models.HistoryForm.id == hid).first()
    if history is None:
        raise NotFound("not id")
    if history.user_id != user_id:
        raise Forbidden("not id")

    form = history.form
    questions = _load_questions(form)
    mapping = quiz_engine.decode_mapping(form_cipher.decrypt(history.form_index, form.key, form.iv), questions)
    items = quiz_engine.expand_history(
        questions,
        _load_correct_answer(form),
        mapping,
        json.loads(history.error_question_index_json),
        json.loads(history.error_answer_indexs_json),
    )
    return {
        "message": "search successful",
        "historyForm": items,
        "formName": history.form_name,
        "isSingleChoice": form.is_single_choice,
    }


def list_history(db: OrmSession, user_id: int, cursor: Optional[str] = None) -> Dict[str, Any]:
    """One page of the caller's attempts, newest first; ``cursor`` is the previous page's token."""
    once = settings.HISTORY_PAGE_SIZE
    start = 0
    if cursor:
        try:
            start = max(0, int(verify_jwt(cursor).get("start", 0)))
        except (Unauthorized, TypeError, ValueError):
            logger.debug("Ignoring invalid history cursor")
            start = 0

    rows = (
        db.query(models.HistoryForm)
        .filter(models.HistoryForm.user_id == user_id)
        .order_by(models.HistoryForm.created_at.desc(), models.HistoryForm.id.desc())
        .offset(start)
        .limit(once)
        .all()
    )
    return {
        "message": "search successful",
        "history": [
            {
                "id": h.id,
                "formName": h.form_name,
                "formId": h.form_id,
                "score": h.score,
                "historyFormCreateTime": h.created_at.isoformat(),
            }
            for h in rows
        ],
        "token": generate_jwt({"start": start + once}, timedelta(hours=6)),
        "isEnd": len(rows) < once,
    }


# ── Catalogue ─────────────────────────────────────────────────────────────────

def list_forms(
    db: OrmSession,
    start_page: Optional[int] = None,
    piece: Optional[int] = None,
    search_form_name: Optional[str] = None,
    search_author: Optional[List[str]] = None,
) -> Dict[str, Any]:
    start_page = max(1, start_page or 1)
    if piece is None or not 1 <= piece <= settings.FORM_PAGE_SIZE_MAX:
        piece = settings.FORM_PAGE_SIZE

    query = db.query(models.Form).join(models.Form.author)
    if search_form_name:
        query = query.filter(models.Form.form_name.startswith(search_form_name, autoescape=True))
    if search_author:
        query = query.filter(models.User.user_name.in_(search_author))

    total_pages = math.ceil(query.count() / piece)
    if start_page > total_pages:
        raise InvalidParameter("no data")

    forms = (
        query.order_by(models.Form.created_at.desc(), models.Form.id.desc())
        .offset(piece * (start_page - 1))
        .limit(piece)
        .all()
    )
    return {
        "message": "Get success",
        "forms": [
            {
                "id": f.id,
                "formName": f.form_name,
                "formCreateTime": f.created_at.isoformat(),
                "author": {"userName": f.author.user_name},
            }
            for f in forms
        ],
        "totalPages": total_pages,
    }


def list_authors(db: OrmSession) -> Dict[str, Any]:
    rows = (
        db.query(models.User.id, models.User.user_name)
        .join(models.Form, models.Form.author_id == models.User.id)
        .distinct()
        .order_by(models.User.user_name, models.User.id)
        .all()
    )
    return {"message": "Get success", "author": [{"userName": name} for _id, name in rows]}
