"""Validation service for entity records."""

import logging
import uuid
from typing import Any, Callable, Dict, List, Optional
from datetime import datetime
from dateutil import parser as date_parser

from ..errors import ValidationError
from ..models.schema import (
    FieldType,
    EntitySchema,
    FieldDefinition,
    LANGUAGE_KEYS,
)
from ..models.record import FieldViolation, Severity

logger = logging.getLogger(__name__)


class RecordValidator:
    """
    Validator for entity records before they are persisted.

    Supports:
    - Required field validation
    - Type validation (including UUIDs and dates)
    - Max length, numeric range and enum validation
    - Multilingual string validation against the supported languages
    - Custom validation rules

    Every violated field is reported; validation never stops at the first.
    """

    def __init__(self):
        """Initialize the validator."""
        self._custom_validators: Dict[str, List[Callable[[Dict[str, Any]], Optional[FieldViolation]]]] = {}

    def register_validator(self, schema_name: str, func: Callable[[Dict[str, Any]], Optional[FieldViolation]]) -> None:
        """Register a record-level validation function for a schema."""
        self._custom_validators.setdefault(schema_name, []).append(func)

    def validate_record(
        self,
        data: Dict[str, Any],
        schema: EntitySchema,
        strict: bool = False
    ) -> List[FieldViolation]:
        """
        Validate a record against a schema.

        Args:
            data: The record as a column -> value mapping
            schema: The entity schema
            strict: If True, columns missing from the schema are errors;
                if False, they're warnings

        Returns:
            List of field violations
        """
        violations = []

        for field_name, field_def in schema.fields.items():
            violations.extend(self._validate_field(field_name, data.get(field_name), field_def))

        for field_name in data:
            if field_name not in schema.fields:
                violations.append(FieldViolation(
                    field=field_name,
                    message=f"Unknown field: {field_name}",
                    error_type="unknown_field",
                    severity=Severity.ERROR if strict else Severity.WARNING,
                ))

        for func in self._custom_validators.get(schema.name, []):
            violation = func(data)
            if violation:
                violations.append(violation)

        return violations

    def validate_or_raise(self, data: Dict[str, Any], schema: EntitySchema, strict: bool = False) -> None:
        """
        Validate a record and raise if any error-level violation is found.

        Raises:
            ValidationError: Listing every violated field
        """
        errors = [v for v in self.validate_record(data, schema, strict) if v.severity == Severity.ERROR]
        if errors:
            raise ValidationError(f"Invalid {schema.name} record", errors)

    def is_valid(self, data: Dict[str, Any], schema: EntitySchema) -> bool:
        """Quick check if a record is valid."""
        return not any(v.severity == Severity.ERROR for v in self.validate_record(data, schema))

    def _validate_field(
        self,
        field_name: str,
        value: Any,
        field_def: FieldDefinition
    ) -> List[FieldViolation]:
        """Validate a single field."""
        errors = []

        if field_def.required and value is None:
            errors.append(FieldViolation(
                field=field_name,
                message="Required field is missing",
                error_type="required",
            ))
            return errors

        if value is None:
            return errors

        type_error = self._validate_type(field_name, value, field_def.type)
        if type_error:
            errors.append(type_error)
            return errors

        if field_def.max_length and isinstance(value, str) and len(value) > field_def.max_length:
            errors.append(FieldViolation(
                field=field_name,
                message=f"Value exceeds max length of {field_def.max_length}",
                error_type="max_length",
                value=len(value),
            ))

        if field_def.type == FieldType.INTEGER:
            if field_def.minimum is not None and value < field_def.minimum:
                errors.append(FieldViolation(
                    field=field_name,
                    message=f"Value must be at least {field_def.minimum:g}",
                    error_type="minimum",
                    value=value,
                ))
            if field_def.maximum is not None and value > field_def.maximum:
                errors.append(FieldViolation(
                    field=field_name,
                    message=f"Value must be at most {field_def.maximum:g}",
                    error_type="maximum",
                    value=value,
                ))

        if field_def.enum_values and value not in field_def.enum_values:
            errors.append(FieldViolation(
                field=field_name,
                message=f"Invalid enum value. Must be one of: {', '.join(field_def.enum_values)}",
                error_type="enum",
                value=value,
            ))

        if field_def.type == FieldType.ML_STRING:
            errors.extend(self._validate_ml_string(field_name, value, field_def.max_length))
        elif field_def.type == FieldType.ML_STRING_ARRAY:
            errors.extend(self._validate_ml_string(field_name, value, field_def.max_length, array=True))
        elif field_def.type == FieldType.TEXT_HTML:
            for part in ("text", "html"):
                if value.get(part) is not None:
                    errors.extend(self._validate_ml_string(f"{field_name}.{part}", value[part], None))
            unknown = set(value) - {"text", "html"}
            if unknown:
                errors.append(FieldViolation(
                    field=field_name,
                    message=f"Unexpected keys in text/html object: {', '.join(sorted(unknown))}",
                    error_type="type",
                ))

        if field_def.type == FieldType.OBJECT and field_def.properties:
            for prop_name, prop_def in field_def.properties.items():
                errors.extend(self._validate_field(
                    f"{field_name}.{prop_name}",
                    value.get(prop_name),
                    prop_def
                ))

        if field_def.type == FieldType.ARRAY and field_def.items:
            for i, item in enumerate(value):
                errors.extend(self._validate_field(f"{field_name}[{i}]", item, field_def.items))

        return errors

    def _validate_type(
        self,
        field_name: str,
        value: Any,
        expected_type: FieldType
    ) -> Optional[FieldViolation]:
        """Validate the type of a value."""
        type_checks = {
            FieldType.STRING: lambda v: isinstance(v, str),
            FieldType.UUID: self._is_valid_uuid,
            FieldType.INTEGER: lambda v: isinstance(v, int) and not isinstance(v, bool),
            FieldType.BOOLEAN: lambda v: isinstance(v, bool),
            FieldType.DATETIME: self._is_valid_datetime,
            FieldType.ENUM: lambda v: isinstance(v, str),
            FieldType.OBJECT: lambda v: isinstance(v, dict),
            FieldType.ARRAY: lambda v: isinstance(v, list),
            FieldType.ML_STRING: lambda v: isinstance(v, dict),
            FieldType.ML_STRING_ARRAY: lambda v: isinstance(v, dict),
            FieldType.TEXT_HTML: lambda v: isinstance(v, dict),
            FieldType.JSON: lambda v: isinstance(v, (dict, list, str)),
        }

        check_func = type_checks.get(expected_type)
        if check_func and not check_func(value):
            return FieldViolation(
                field=field_name,
                message=f"Invalid type. Expected {expected_type.value}, got {type(value).__name__}",
                error_type="type",
                value=value if isinstance(value, (str, int, float, bool)) else None,
            )

        return None

    def _validate_ml_string(
        self,
        field_name: str,
        value: Any,
        max_length: Optional[int],
        array: bool = False
    ) -> List[FieldViolation]:
        """Validate a multilingual string (language code -> text)."""
        if not isinstance(value, dict):
            return [FieldViolation(
                field=field_name,
                message="Multilingual string must be an object",
                error_type="type",
            )]

        errors = []
        for lang, text in value.items():
            path = f"{field_name}.{lang}"
            if lang not in LANGUAGE_KEYS:
                errors.append(FieldViolation(
                    field=path,
                    message=f"Invalid language code: {lang}",
                    error_type="language",
                    value=lang,
                ))
                continue

            items = text if array else [text]
            if array and not isinstance(text, list):
                errors.append(FieldViolation(
                    field=path,
                    message=f"Value for language '{lang}' must be an array",
                    error_type="type",
                ))
                continue

            for item in items:
                if not isinstance(item, str):
                    errors.append(FieldViolation(
                        field=path,
                        message=f"Value for language '{lang}' must be a string",
                        error_type="type",
                    ))
                elif max_length and len(item) > max_length:
                    errors.append(FieldViolation(
                        field=path,
                        message=f"Value for language '{lang}' exceeds maximum length of {max_length} characters",
                        error_type="max_length",
                        value=len(item),
                    ))

        return errors

    @staticmethod
    def _is_valid_uuid(value: Any) -> bool:
        if not isinstance(value, str):
            return isinstance(value, uuid.UUID)
        try:
            uuid.UUID(value)
            return True
        except ValueError:
            return False

    @staticmethod
    def _is_valid_datetime(value: Any) -> bool:
        """Check if value is a datetime or a parseable datetime string."""
        if isinstance(value, datetime):
            return True
        if not isinstance(value, str):
            return False
        try:
            date_parser.isoparse(value)
            return True
        except ValueError:
            return False
