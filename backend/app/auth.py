"""Operator token verification for the metrics and event query endpoints."""
from __future__ import annotations

import os
from typing import Dict

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

ALGORITHM = "HS256"
REQUIRED_CLAIMS = ("exp",)
DEFAULT_AUDIENCE = "scango-admin"
auth_scheme = HTTPBearer(auto_error=False)


def _get_admin_secret() -> str:
    value = os.environ.get("SCANGO_ADMIN_SECRET")
    if not value:
        raise RuntimeError("SCANGO_ADMIN_SECRET environment variable must be set to validate tokens.")
    return value


def _get_expected_audience() -> str:
    return os.environ.get("SCANGO_ADMIN_AUDIENCE", DEFAULT_AUDIENCE)


def verify_admin(credentials: HTTPAuthorizationCredentials = Depends(auth_scheme)) -> Dict:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")

    try:
        payload = jwt.decode(
            credentials.credentials,
            _get_admin_secret(),
            algorithms=[ALGORITHM],
            audience=_get_expected_audience(),
            options={"require": list(REQUIRED_CLAIMS)},
        )
    except jwt.ExpiredSignatureError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired") from exc
    except jwt.InvalidAudienceError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid audience") from exc
    except jwt.MissingRequiredClaimError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing claim") from exc
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    return payload
