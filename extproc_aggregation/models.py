from typing import List

from pydantic import BaseModel, ConfigDict, Field


class Album(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int
    user_id: int = Field(alias="userId")
    title: str


class Post(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int
    user_id: int = Field(alias="userId")
    title: str
    body: str


class AggregatedPayload(BaseModel):
    """The replacement request body: everything we know about one user"""

    albums: List[Album]
    posts: List[Post]

    def to_json(self) -> str:
        """compact JSON using the backend's field names"""
        return self.model_dump_json(by_alias=True)
