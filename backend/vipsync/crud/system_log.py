"""系统日志 CRUD 操作"""
from typing import Any

from sqlmodel import Session

from vipsync.models import SystemLog


def record(*, session: Session, action: str, details: dict[str, Any]) -> SystemLog:
    entry = SystemLog(action=action, details=details)
    session.add(entry)
    session.commit()
    session.refresh(entry)
    return entry
