from pydantic import BaseModel


class ErrorResponse(BaseModel):
    error: dict[str, str | None]


class HealthResponse(BaseModel):
    status: str
    name: str
    version: str
    git_sha: str
    cache_entries: int | None = None
