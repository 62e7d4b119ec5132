from typing import Optional

from fastapi import Header, HTTPException
from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.token_secret, salt="access-token")


def issue_token(subject: str) -> str:
    return _serializer().dumps({"sub": subject})


def verify_token(token: str, max_age_hours: Optional[int] = None) -> Optional[str]:
    """Return the token's subject, or None when it is forged or expired."""
    if max_age_hours is None:
        max_age_hours = get_settings().token_max_age_hours
    try:
        data = _serializer().loads(token, max_age=max_age_hours * 3600)
    except BadSignature:
        return None
    subject = data.get("sub") if isinstance(data, dict) else None
    if not subject:
        return None
    return str(subject)


def require_token(authorization: Optional[str] = Header(default=None)) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="No token provided")
    subject = verify_token(authorization[len("Bearer ") :])
    if subject is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return subject
