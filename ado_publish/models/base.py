"""Base model configuration for all data structures."""

from pydantic import BaseModel, ConfigDict


class Model(BaseModel):
    """Base model with standard configuration."""

    model_config = ConfigDict(frozen=True)


class AdoModel(BaseModel):
    """Base model for Azure DevOps payloads.

    The service returns many more fields than we use, and uses camelCase
    names, so extra keys are ignored and fields are populated by alias.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")
