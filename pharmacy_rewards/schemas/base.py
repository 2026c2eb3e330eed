"""
Base model for documents stored with camelCase field names.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class DocumentModel(BaseModel):
    """Accepts both camelCase (stored) and snake_case (Python) field names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_document(self) -> dict:
        """Dump with the stored (camelCase) field names."""
        return self.model_dump(by_alias=True)
