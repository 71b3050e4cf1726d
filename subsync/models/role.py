from pydantic import BaseModel, ConfigDict


class Role(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
