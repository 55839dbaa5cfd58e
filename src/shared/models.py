from pydantic import BaseModel, ConfigDict


class GraphIngestBaseModel(BaseModel):
    model_config = ConfigDict(
        protected_namespaces=(),
        arbitrary_types_allowed=True,
        populate_by_name=True,
    )
