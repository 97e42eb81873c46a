# src/pack_vault/core/firebase.py
"""Lazy firebase-admin application bootstrap shared by identity and ledger."""

from __future__ import annotations

import logging
from threading import Lock

import firebase_admin
from firebase_admin import credentials

logger = logging.getLogger(__name__)

_APP_NAME = "pack-vault"
_APP_LOCK = Lock()


def get_firebase_app(
    project_id: str | None = None,
    credentials_file: str | None = None,
) -> firebase_admin.App:
    """Return the firebase-admin app, initializing it on first use.

    Uses a service-account file when given, otherwise application default
    credentials.
    """
    with _APP_LOCK:
        try:
            return firebase_admin.get_app(_APP_NAME)
        except ValueError:
            pass

        cred = (
            credentials.Certificate(credentials_file)
            if credentials_file
            else credentials.ApplicationDefault()
        )
        options = {"projectId": project_id} if project_id else None
        logger.info("Initializing firebase-admin app for project %s", project_id or "<default>")
        return firebase_admin.initialize_app(cred, options, name=_APP_NAME)
