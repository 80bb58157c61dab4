from typing import Any

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    type: str
    message: str
    status_code: int | None = None
    detail: Any = None


class BatchSlotResponse(BaseModel):
    result: dict[str, Any] | None = None
    error: ErrorResponse | None = None


class BatchQueryResponse(BaseModel):
    results: list[BatchSlotResponse]
    succeeded: int
    failed: int
