"""Base classes for AppConfig models and the schemas that load them."""

from types import SimpleNamespace
from typing import Any, Dict, Type
from marshmallow import INCLUDE, Schema, post_load

#: Model reprs longer than this are cut short in log lines
REPR_LIMIT = 80


class BaseModel(SimpleNamespace):
    """Attribute bag produced by a schema.

    Keys the schema does not declare are kept as attributes as well, so fields
    added to the CRD by newer clients survive a load.
    """

    def __repr__(self) -> str:
        text = super().__repr__()
        if len(text) > REPR_LIMIT:
            return text[:REPR_LIMIT] + " ...)"
        return text


class BaseSchema(Schema):
    """Loads a camelCase CRD object into `__model__`."""

    __model__: Type[BaseModel] = BaseModel

    class Meta:
        unknown = INCLUDE

    @post_load
    def make_object(self, data: Dict[str, Any], **kwargs: Any) -> BaseModel:
        return self.__model__(**data)
