from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request, Response, WebSocket, WebSocketDisconnect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as OrmSession
import uvicorn

import forms
import models
import seed
from cache import BaseCache, build_cache
from config import settings
from db import Base, SessionLocal, engine, get_db
from errors import InvalidParameter, Unauthorized, install_error_handlers
from logging_config import configure_logging
from qr_relay import ConnectionRegistry, QrLoginRelay
from schemas import LoginPayload, QrLoginPayload, RegisterPayload, UploadPayload, VerifyPayload
from security import (
    clear_session_cookie,
    current_claims,
    hash_password,
    session_claims,
    set_session_cookie,
    verify_password,
)

logger = logging.getLogger(__name__)


def _relay(request: Request) -> QrLoginRelay:
    return request.app.state.relay


def _authenticate(db: OrmSession, email: str, password: str) -> models.User:
    user = db.query(models.User).filter(models.User.email == email).first()
    if user is None or not user.verify or not verify_password(password, user.password):
        logger.info("Login failed for %s", email)
        raise Unauthorized("Login failed")
    return user


def create_app(cache: Optional[BaseCache] = None, registry: Optional[ConnectionRegistry] = None) -> FastAPI:
    """Construit l'API ; ``cache`` et ``registry`` prennent par défaut les backends configurés."""
    app = FastAPI(title="formquiz")
    install_error_handlers(app)

    app.state.cache = cache if cache is not None else build_cache()
    app.state.relay = QrLoginRelay(app.state.cache, registry or ConnectionRegistry())

    # ── Démarrage ─────────────────────────────────────────────────────────────

    @app.on_event("startup")
    def _startup() -> None:
        configure_logging(settings.LOG_LEVEL)
        if settings.database_url.startswith("sqlite"):
            logger.warning("Database: local SQLite")
        Base.metadata.create_all(bind=engine)
        if settings.SEED_DEMO:
            db = SessionLocal()
            try:
                fid = seed.ensure_demo_data(db)
                logger.info("Demo form ready: %s", fid)
            finally:
                db.close()

    @app.on_event("shutdown")
    def _shutdown() -> None:
        app.state.cache.close()

    # ── Authentification ──────────────────────────────────────────────────────

    @app.post("/authentication/register")
    def register(payload: RegisterPayload, db: OrmSession = Depends(get_db)):
        if db.query(models.User).filter(models.User.email == payload.email).first():
            raise InvalidParameter("This account is already registered")
        user = models.User(
            user_name=payload.user_name,
            email=payload.email,
            password=hash_password(payload.password),
            appellation=payload.appellation,
            role="USER",
            verify=True,
        )
        try:
            db.add(user)
            db.commit()
        except IntegrityError as exc:
            # inscription concurrente : l'index unique sur l'email a tranché
            db.rollback()
            logger.info("Duplicate registration for %s", payload.email)
            raise InvalidParameter("This account is already registered") from exc
        logger.info("User %s registered", user.id)
        return {"message": "User created successfully"}

    @app.post("/authentication/login")
    def login(payload: LoginPayload, response: Response, db: OrmSession = Depends(get_db)):
        user = _authenticate(db, payload.email, payload.password)
        set_session_cookie(response, session_claims(user), settings.LOGIN_TOKEN_HOURS)
        return {"message": "Login successfully"}

    @app.get("/authentication/login")
    def check_login(claims: Dict[str, Any] = Depends(current_claims)):
        return {"message": "Logged in", "userName": claims.get("userName"), "role": claims.get("role")}

    @app.get("/authentication/logout")
    def logout(response: Response):
        clear_session_cookie(response)
        return {"message": "Logged out successfully"}

    # ── Connexion par QR code ─────────────────────────────────────────────────

    @app.post("/authentication/qrlogin")
    async def qr_redeem(
        payload: QrLoginPayload,
        db: OrmSession = Depends(get_db),
        relay: QrLoginRelay = Depends(_relay),
    ):
        # l'appareil qui scanne se reconnecte entièrement, le jeton seul ne suffit pas
        user = _authenticate(db, payload.email, payload.password)
        await relay.redeem(payload.token, payload.pc_id, session_claims(user))
        return {"message": "Login Successfully"}

    @app.get("/authentication/qrlogin")
    async def qr_finalize(
        response: Response,
        token: str = Query(min_length=1),
        relay: QrLoginRelay = Depends(_relay),
    ):
        claim = await relay.finalize(token)
        claims = {k: claim[k] for k in ("userId", "userName", "appellation", "role")}
        set_session_cookie(response, claims, settings.QR_LOGIN_TOKEN_HOURS)
        return {"message": "Login successfully"}

    @app.websocket(settings.WS_PATH)
    async def qr_connection(websocket: WebSocket):
        relay: QrLoginRelay = websocket.app.state.relay
        await websocket.accept()
        address = websocket.client.host if websocket.client else "unknown"
        pc_id = await relay.connect(websocket, address)
        try:
            while True:
                raw = await websocket.receive_text()
                await relay.handle_message(pc_id, raw)
        except WebSocketDisconnect:
            logger.debug("QR socket %s disconnected", pc_id)
        finally:
            relay.disconnect(pc_id, address)

    # ── Formulaires ───────────────────────────────────────────────────────────

    @app.post("/form/upload")
    def upload_form(
        payload: UploadPayload,
        claims: Dict[str, Any] = Depends(current_claims),
        db: OrmSession = Depends(get_db),
    ):
        form = forms.create_form(db, claims, payload.form)
        return {"message": "uploaded successfully", "fid": form.id}

    @app.get("/form/specify")
    def specify_form(
        fid: int,
        claims: Dict[str, Any] = Depends(current_claims),
        db: OrmSession = Depends(get_db),
    ):
        return forms.prepare_attempt(db, fid)

    @app.get("/form/information")
    def form_information(
        start_page: Optional[int] = Query(default=None, alias="startPage"),
        piece: Optional[int] = None,
        search_form_name: Optional[str] = Query(default=None, alias="searchFormName"),
        search_author: Optional[List[str]] = Query(default=None, alias="searchAuthor"),
        claims: Dict[str, Any] = Depends(current_claims),
        db: OrmSession = Depends(get_db),
    ):
        return forms.list_forms(db, start_page, piece, search_form_name, search_author)

    @app.get("/form/author")
    def form_authors(claims: Dict[str, Any] = Depends(current_claims), db: OrmSession = Depends(get_db)):
        return forms.list_authors(db)

    @app.post("/form/verify")
    def verify_form(
        payload: VerifyPayload,
        claims: Dict[str, Any] = Depends(current_claims),
        db: OrmSession = Depends(get_db),
    ):
        history = forms.grade_attempt(db, payload.fid, int(claims["userId"]), payload.answers, payload.form_index)
        return {"message": f"You score : {history.score}", "score": history.score}

    # ── Historique ────────────────────────────────────────────────────────────

    @app.get("/obtain/history")
    def history(
        token: Optional[str] = None,
        claims: Dict[str, Any] = Depends(current_claims),
        db: OrmSession = Depends(get_db),
    ):
        return forms.list_history(db, int(claims["userId"]), token)

    @app.get("/obtain/historydetails/{hid}")
    def history_details(
        hid: int,
        claims: Dict[str, Any] = Depends(current_claims),
        db: OrmSession = Depends(get_db),
    ):
        return forms.expand_history_detail(db, hid, int(claims["userId"]))

    return app


app = create_app()


def run(host: str = "127.0.0.1", port: int = 3001) -> None:
    """Lance l'app du module avec uvicorn."""
    config = uvicorn.Config(app=app, host=host, port=port, log_level=settings.LOG_LEVEL.lower())
    uvicorn.Server(config).run()
