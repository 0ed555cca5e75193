from __future__ import annotations

import json

from sqlalchemy.orm import Session as OrmSession

import form_cipher
from models import Form, User
from security import hash_password

DEMO_EMAIL = "demo.doctor@example.com"
DEMO_PASSWORD = "demo-password"
DEMO_FORM_NAME = "Rééducation • Quiz de démonstration"

DEMO_QUESTIONS = [
    {
        "question": "Après une entorse de cheville, quand reprendre la marche ?",
        "options": [
            "Jamais avant six semaines",
            "Dès que la douleur le permet, progressivement",
            "Uniquement avec une attelle rigide",
        ],
    },
    {
        "question": "Quels exercices favorisent la proprioception ?",
        "options": [
            "Appui unipodal",
            "Vélo à forte résistance",
            "Plateau instable",
            "Repos complet",
        ],
    },
]
DEMO_CORRECT_ANSWER = [[1], [0, 2]]


def ensure_demo_data(db: OrmSession) -> int:
    """
    Crée l'auteur de démonstration + un formulaire si besoin.
    Retourne l'id du formulaire.
    """

    # 1) Trouver / créer l'auteur
    author = db.query(User).filter(User.email == DEMO_EMAIL).first()
    if author is None:
        author = User(
            user_name="Demo Doctor",
            email=DEMO_EMAIL,
            password=hash_password(DEMO_PASSWORD),
            appellation="Madam",
            role="DOCTOR",
            verify=True,
        )
        db.add(author)
        db.commit()
        db.refresh(author)

    # 2) Ajouter le formulaire uniquement s'il n'existe pas encore
    form = (
        db.query(Form)
        .filter(Form.author_id == author.id, Form.form_name == DEMO_FORM_NAME)
        .first()
    )
    if form is None:
        key, iv = form_cipher.generate_key_material()
        form = Form(
            form_name=DEMO_FORM_NAME,
            # plusieurs bonnes réponses à la question 2
            is_single_choice=False,
            is_randomized=True,
            questions_json=json.dumps(DEMO_QUESTIONS, ensure_ascii=False),
            correct_answer_json=json.dumps(DEMO_CORRECT_ANSWER),
            key=key,
            iv=iv,
            author_id=author.id,
        )
        db.add(form)
        db.commit()
        db.refresh(form)

    return form.id
