from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Dict, Optional, Any, Literal, Tuple, Union

from pymongo import ASCENDING, DESCENDING, GEOSPHERE

IndexKeyType = Literal["ascending", "descending", "2dsphere"]
TtlSetting = Literal["Off", "On", "On (no default)"]

# Model index key types and the direction codes the server uses for them
INDEX_KEY_DIRECTIONS: Dict[str, Union[int, str]] = {
    "ascending": ASCENDING,
    "descending": DESCENDING,
    "2dsphere": GEOSPHERE,
}


class SamplingConfig(BaseModel):
    """How many documents to pull from each collection during reverse-engineering."""
    mode: Literal["absolute", "relative"] = Field("absolute", description="'absolute' for a fixed count, 'relative' for a percentage of the collection.")
    absolute_count: int = Field(1000, ge=0, description="Number of documents to sample in absolute mode.")
    relative_percent: float = Field(1, ge=0, le=100, description="Percentage of the collection to sample in relative mode.")
    max_cap: int = Field(10000, ge=0, description="Upper bound on the sample size, whatever the mode.")

    @classmethod
    def from_record_sampling_settings(cls, settings: Dict[str, Any]) -> "SamplingConfig":
        """Builds a config from the modeling tool's ``recordSamplingSettings`` record."""
        values: Dict[str, Any] = {"mode": settings.get("active", "absolute")}
        if "absolute" in settings:
            values["absolute_count"] = int(settings["absolute"].get("value", 1000))
        if "relative" in settings:
            values["relative_percent"] = float(settings["relative"].get("value", 1))
        if settings.get("maxValue") is not None:
            values["max_cap"] = int(settings["maxValue"])
        return cls(**values)


class IndexKey(BaseModel):
    """A single field of an index and its direction or type."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Field name (dot notation for nested fields).")
    type: IndexKeyType = Field("ascending", description="ascending, descending or 2dsphere.")


class IndexDescriptor(BaseModel):
    """Index as the model describes it. Translation always builds a new descriptor."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: Optional[str] = Field(None, description="Index name.")
    keys: Tuple[IndexKey, ...] = Field((), alias="indexKey", description="Ordered index keys.")
    unique: bool = False
    sparse: bool = False
    background: bool = False
    expire_after_seconds: Optional[int] = Field(None, alias="expireAfterSeconds")
    geo_version: Optional[int] = Field(None, alias="2dsphereIndexVersion")
    is_activated: bool = Field(True, alias="isActivated")
    index_type: Optional[str] = Field(None, alias="indexType", description="Single Field, Compound or Wildcard.")

    @field_validator("keys", mode="before")
    @classmethod
    def _coerce_keys(cls, value):
        if value is None:
            return ()
        return tuple(value)


class UniqueKey(BaseModel):
    """A group of fields that must be unique together."""
    model_config = ConfigDict(populate_by_name=True)

    attribute_path: List[str] = Field(default_factory=list, alias="attributePath")

    @field_validator("attribute_path", mode="before")
    @classmethod
    def _field_names(cls, value):
        # The model stores either plain names or {"name": ...} records
        names = []
        for item in value or []:
            name = item.get("name") if isinstance(item, dict) else item
            names.append(name or "")
        return names


class ContainerModel(BaseModel):
    """Database-level settings."""
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(None, alias="dbId", description="Database name.")
    shard_key: Optional[str] = Field(None, alias="shardKey", description="Field the collections are hashed-sharded on.")
    ttl: Optional[TtlSetting] = Field(None, alias="TTL", description="TTL setting: Off, On or 'On (no default)'.")
    ttl_seconds: Optional[int] = Field(None, alias="TTLseconds")
    doc_type_name: Optional[str] = Field(None, alias="docTypeName", description="Field that carries the document kind in each sample.")

    @field_validator("shard_key", mode="before")
    @classmethod
    def _shard_key_name(cls, value):
        # [{"name": "tenantId"}] in the model, a plain name when reverse-engineered
        if isinstance(value, list):
            value = value[0] if value else None
        if isinstance(value, dict):
            value = value.get("name")
        return value or None


class EntityModel(BaseModel):
    """Collection-level settings, indexes and sample documents."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., alias="collectionName")
    code: Optional[str] = None
    is_activated: bool = Field(True, alias="isActivated")
    indexes: List[IndexDescriptor] = Field(default_factory=list)
    unique_keys: List[UniqueKey] = Field(default_factory=list, alias="uniqueKey")
    samples: List[Any] = Field(default_factory=list, description="Sample documents, as mappings or as script/JSON text.")

    @property
    def collection_name(self) -> str:
        return self.code or self.name


class ScriptOptions(BaseModel):
    origin: str = Field("", description="Caller context; 'ui' when an interactive user is driving generation.")
    include_samples: bool = Field(False, description="Return sample inserts as a separate block in the interactive context.")


class ScriptBlock(BaseModel):
    title: str
    script: str


class ReverseEngineerToolInput(BaseModel):
    collection_names: Optional[List[str]] = Field(None, description="Optional: collections to include. If None, all non-system collections are used.")
    sampling: SamplingConfig = Field(default_factory=SamplingConfig, description="Sampling configuration.")
    field_order: Literal["field", "alphabetical"] = Field("field", description="Keep document field order or sort properties alphabetically.")
    include_empty_collections: bool = Field(False, description="Emit packages for collections without documents.")


class ReverseEngineerInput(ReverseEngineerToolInput):
    database: str = Field(..., description="Name of the database to reverse-engineer.")


class GenerateScriptInput(BaseModel):
    container: ContainerModel = Field(..., description="Database-level settings (name, shard key, TTL).")
    entities: List[EntityModel] = Field(..., description="Collections to emit, in order.")
    options: ScriptOptions = Field(default_factory=ScriptOptions)


class ApplyScriptInput(BaseModel):
    script: str = Field(..., description="Script produced by the script generator.")
