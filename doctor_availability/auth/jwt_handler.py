from datetime import datetime, timedelta, timezone

import jwt

from doctor_availability.core import config


def create_access_token(
    subject: str,
    role: str,
    branch_id: str | None = None,
    name: str | None = None,
    doctor_id: str | None = None,
    expires_minutes: int | None = None,
) -> str:
    expire_minutes = expires_minutes or config.JWT_EXPIRES_MINUTES
    expire = datetime.now(timezone.utc) + timedelta(minutes=expire_minutes)
    payload = {"sub": subject, "role": role, "exp": expire, "iat": datetime.now(timezone.utc)}
    if branch_id is not None:
        payload["branchId"] = branch_id
    if name is not None:
        payload["name"] = name
    if doctor_id is not None:
        payload["doctorId"] = doctor_id
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
