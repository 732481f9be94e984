from pydantic import BaseModel
from pydantic.alias_generators import to_camel

class CamelModel(BaseModel):
    """Wire models speak camelCase; Python code uses snake_case."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
