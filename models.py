from sqlalchemy import String, Integer, Boolean, ForeignKey, DateTime, Text, LargeBinary
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime
from db import Base

class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_name: Mapped[str] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    password: Mapped[str] = mapped_column(String(255))  # hash bcrypt
    appellation: Mapped[str] = mapped_column(String(32), default="")
    role: Mapped[str] = mapped_column(String(16), default="USER")  # "USER" | "DOCTOR" | "ADMIN"
    verify: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    forms: Mapped[list["Form"]] = relationship(back_populates="author")
    history: Mapped[list["HistoryForm"]] = relationship(back_populates="user", cascade="all, delete-orphan")

class Form(Base):
    __tablename__ = "forms"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    form_name: Mapped[str] = mapped_column(String(255), index=True)
    is_single_choice: Mapped[bool] = mapped_column(Boolean, default=True)
    is_randomized: Mapped[bool] = mapped_column(Boolean, default=False)
    questions_json: Mapped[str] = mapped_column(Text)  # JSON: [{question, options: [...]}]
    correct_answer_json: Mapped[str] = mapped_column(Text)  # JSON: [[0], [1, 3], ...] indices d'origine, triés
    # clé + iv AES-GCM propres au formulaire, protègent uniquement le jeton de mélange
    key: Mapped[bytes] = mapped_column(LargeBinary(16))
    iv: Mapped[bytes] = mapped_column(LargeBinary(12))
    author_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    author: Mapped["User"] = relationship(back_populates="forms")

class HistoryForm(Base):
    __tablename__ = "history_forms"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    form_id: Mapped[int] = mapped_column(ForeignKey("forms.id"))
    form_name: Mapped[str] = mapped_column(String(255))
    score: Mapped[int] = mapped_column(Integer)
    error_question_index_json: Mapped[str] = mapped_column(Text, default="[]")  # positions présentées
    error_answer_indexs_json: Mapped[str] = mapped_column(Text, default="[]")  # options présentées choisies
    form_index: Mapped[str] = mapped_column(Text)  # jeton chiffré, conservé tel quel
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    user: Mapped["User"] = relationship(back_populates="history")
    form: Mapped["Form"] = relationship()
