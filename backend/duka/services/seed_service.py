# Overview: Explicit, idempotent seeding of the default admin and categories.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Category, User
from ..models.auth import ROLE_ADMIN
from .auth_service import create_user
from .category_service import DEFAULT_CATEGORIES


def ensure_seed_data() -> dict:
    """
    Create the default admin (when no admin exists) and any missing default
    categories. Safe to run repeatedly; never called at import time.
    """
    created_admin = None
    if not db.session.query(User.id).filter_by(role=ROLE_ADMIN).first():
        admin = create_user(
            email=current_app.config["DEFAULT_ADMIN_EMAIL"],
            password=current_app.config["DEFAULT_ADMIN_PASSWORD"],
            full_name="Administrator",
            role=ROLE_ADMIN,
        )
        created_admin = admin.email
        current_app.logger.info("Seeded default admin %s", admin.email)

    existing = {key for (key,) in db.session.query(Category.name_key).all()}
    created_categories = []
    for name in DEFAULT_CATEGORIES:
        key = Category.key_for(name)
        if key in existing:
            continue
        db.session.add(Category(name=name, name_key=key))
        created_categories.append(name)
    if created_categories:
        db.session.commit()
        current_app.logger.info("Seeded %d default categories", len(created_categories))

    return {"admin": created_admin, "categories": created_categories}
