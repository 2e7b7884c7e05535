from pydantic import BaseModel, Field


class SyncRequest(BaseModel):
    user_id: str = Field(min_length=1)
    limit: int | None = Field(default=None, gt=0)


class RetryRequest(BaseModel):
    user_id: str = Field(min_length=1)


class RetrieveRequest(BaseModel):
    query: str
    user_id: str = Field(min_length=1)
    top_k: int = Field(default=10, gt=0, le=50)
