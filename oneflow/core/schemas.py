from pydantic import BaseModel, ConfigDict


class CamelModel(BaseModel):
    """Request body that accepts both the camelCase alias and the field name."""

    model_config = ConfigDict(populate_by_name=True)
