"""Search grounding attached to a model answer"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class GroundingSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    uri: str
    title: str = ""


class GroundingData(BaseModel):
    """Queries the model searched for and the web sources it cited"""

    model_config = ConfigDict(frozen=True)

    search_queries: List[str] = Field(default_factory=list)
    rendered_content: Optional[str] = None
    sources: List[GroundingSource] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.search_queries and not self.sources
