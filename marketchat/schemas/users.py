from pydantic import BaseModel
from typing import Optional


class DirectoryEntry(BaseModel):
    id: str
    display_name: str
    avatar_url: Optional[str] = None
    role: str
    # True when the user no longer resolves in the directory
    former: bool = False
