"""Route descriptor consumed by the tier classifier."""

from pydantic import BaseModel, Field


class RouteDescriptor(BaseModel):
    """Declarative facts about a route that decide its caching tier."""

    path: str = "/"
    enumerable_params: bool = Field(
        default=False,
        description="All route parameters are known ahead of time",
    )
    reads_ambient_request_data: bool = Field(
        default=False,
        description="Producers read caller-specific data (user, cookies, headers)",
    )
    forced_dynamic: bool = False
