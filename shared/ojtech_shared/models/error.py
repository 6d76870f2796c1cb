from pydantic import BaseModel, ConfigDict


class ErrorResponse(BaseModel):
    """Wire shape of every failed request. Field order is part of the contract."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    status: int
    error: str
    message: str
    path: str
    errors: list[str] | None = None

    def to_content(self) -> dict:
        return self.model_dump(exclude_none=True)
