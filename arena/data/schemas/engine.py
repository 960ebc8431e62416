from typing import Optional

from sqlmodel import SQLModel


class EngineRequest(SQLModel):
    """Body of the engine RPC. Anything besides ``action`` is ignored."""

    action: Optional[str] = None
