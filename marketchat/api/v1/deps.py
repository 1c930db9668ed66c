# file: marketchat/api/v1/deps.py

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from marketchat.db.session import get_db
from marketchat.services.directory_service import get_directory_for
from marketchat.services.realtime_service import get_publisher


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    # set by the auth gateway in front of this service
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing X-User-Id header")
    return x_user_id.strip()


def get_directory(db: Session = Depends(get_db)):
    return get_directory_for(db)


def get_event_publisher():
    return get_publisher()
