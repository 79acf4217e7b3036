"""
Validation utilities for inbound signaling payloads.
"""

from typing import Any, Dict, List, Mapping, Optional


class ValidationUtils:
    """Common validation utilities."""

    @staticmethod
    def validate_required_fields(data: Mapping[str, Any], required_fields: List[str]) -> Optional[str]:
        """Validate that all required fields are present in the data."""
        missing_fields = [field for field in required_fields if field not in data or data[field] is None]
        if missing_fields:
            return f"Missing required fields: {', '.join(missing_fields)}"
        return None

    @staticmethod
    def validate_field_types(data: Mapping[str, Any], field_types: Dict[str, type]) -> Optional[str]:
        """Validate that present fields have the expected types. bool never passes as int."""
        for field, expected in field_types.items():
            value = data.get(field)
            if value is None:
                continue
            if expected is int and isinstance(value, bool):
                return f"Field {field} must be int, got bool"
            if not isinstance(value, expected):
                return f"Field {field} must be {expected.__name__}, got {type(value).__name__}"
        return None

    @staticmethod
    def validate_int32(value: int, field: str) -> Optional[str]:
        """Validate that an integer fits a signed 32-bit slot."""
        if not -2 ** 31 <= value < 2 ** 31:
            return f"Field {field} out of int32 range"
        return None
