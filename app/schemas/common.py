from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    detail: str = Field(description="Error detail", examples=["Policy not found: pol_123"])
