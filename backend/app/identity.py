"""Stable pseudonymous identity for one device."""
from __future__ import annotations

import uuid

from .quota import CounterStore, read_or_fallback

USER_ID_KEY = "sg_user_pseudo_id"


def is_first_visit(store: CounterStore) -> bool:
    """True until an id has been issued. Check this before ``get_user_id``."""
    return not read_or_fallback(store, USER_ID_KEY, None)


def get_user_id(store: CounterStore) -> str:
    user_id = read_or_fallback(store, USER_ID_KEY, None)
    if not isinstance(user_id, str) or not user_id:
        user_id = str(uuid.uuid4())
        store.set(USER_ID_KEY, user_id)
    return user_id
