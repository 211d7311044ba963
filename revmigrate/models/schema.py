"""Schema models: field types and entity definitions."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
import json


# Content languages the site supports, plus "und" (undetermined).
VALID_LANGUAGES = [
    "en", "ar", "bn", "de", "eo", "es", "fi", "fr", "hi", "hu", "it", "ja",
    "lt", "mk", "nl", "pt", "pt-PT", "sk", "sl", "sv", "tr", "uk", "zh",
    "zh-Hant",
]
LANGUAGE_KEYS = VALID_LANGUAGES + ["und"]


class FieldType(str, Enum):
    """Supported field types."""
    STRING = "string"
    UUID = "uuid"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    ENUM = "enum"
    OBJECT = "object"
    ARRAY = "array"
    ML_STRING = "ml_string"  # {lang: str}
    ML_STRING_ARRAY = "ml_string_array"  # {lang: [str]}
    TEXT_HTML = "text_html"  # {text: {lang: str}, html: {lang: str}}
    JSON = "json"


@dataclass
class FieldDefinition:
    """Definition of a field in an entity schema."""
    name: str
    type: FieldType
    description: str = ""
    required: bool = False
    max_length: Optional[int] = None
    enum_values: Optional[List[str]] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    default: Optional[Any] = None
    properties: Optional[Dict[str, "FieldDefinition"]] = None  # For object types
    items: Optional["FieldDefinition"] = None  # For array types

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        result = {
            "name": self.name,
            "type": self.type.value if isinstance(self.type, FieldType) else self.type,
            "description": self.description,
            "required": self.required,
        }
        if self.max_length:
            result["max_length"] = self.max_length
        if self.enum_values:
            result["enum"] = self.enum_values
        if self.minimum is not None:
            result["minimum"] = self.minimum
        if self.maximum is not None:
            result["maximum"] = self.maximum
        if self.default is not None:
            result["default"] = self.default
        if self.properties:
            result["properties"] = {k: v.to_dict() for k, v in self.properties.items()}
        if self.items:
            result["items"] = self.items.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldDefinition":
        """Create from dictionary representation."""
        field_type = data.get("type", "string")
        if isinstance(field_type, str):
            try:
                field_type = FieldType(field_type)
            except ValueError:
                field_type = FieldType.STRING

        properties = None
        if "properties" in data and data["properties"]:
            properties = {
                k: cls.from_dict({**v, "name": k}) for k, v in data["properties"].items()
            }

        items = None
        if "items" in data and data["items"]:
            items = cls.from_dict(data["items"])

        return cls(
            name=data.get("name", ""),
            type=field_type,
            description=data.get("description", ""),
            required=data.get("required", False),
            max_length=data.get("max_length"),
            enum_values=data.get("enum"),
            minimum=data.get("minimum"),
            maximum=data.get("maximum"),
            default=data.get("default"),
            properties=properties,
            items=items,
        )


@dataclass
class EntitySchema:
    """Schema for one entity kind (e.g., Thing, Review, Team)."""
    name: str
    description: str = ""
    fields: Dict[str, FieldDefinition] = field(default_factory=dict)
    versioned: bool = False
    primary_key: str = "id"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "description": self.description,
            "fields": {k: v.to_dict() for k, v in self.fields.items()},
            "versioned": self.versioned,
            "primary_key": self.primary_key,
        }

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "EntitySchema":
        """Create from dictionary representation."""
        fields = {}
        for field_name, field_data in data.get("fields", {}).items():
            if isinstance(field_data, dict):
                fields[field_name] = FieldDefinition.from_dict({**field_data, "name": field_name})

        return cls(
            name=name,
            description=data.get("description", ""),
            fields=fields,
            versioned=data.get("versioned", False),
            primary_key=data.get("primary_key", "id"),
        )

    @classmethod
    def from_json_file(cls, path: str) -> "EntitySchema":
        """Load an entity schema from a JSON file."""
        with open(path) as f:
            data = json.load(f)
        return cls.from_dict(data.get("name", ""), data)

    @property
    def content_fields(self) -> List[str]:
        """Fields that a new revision copies from its predecessor."""
        return [name for name in self.fields if name != self.primary_key and not name.startswith("_rev")
                and name != "_old_rev_of"]

    def get_field(self, name: str) -> Optional[FieldDefinition]:
        return self.fields.get(name)
