from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ActiveUserStatisticsOut(BaseModel):
    username: str
    display_name: str | None = None
    posts_count: int = 0
    comments_count: int = 0
    likes_received: int = 0
    total_views: int = 0
    activity_score: float = 0.0

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
