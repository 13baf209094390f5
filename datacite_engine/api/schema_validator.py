"""Validation of exported DataCite JSON attributes against the bundled 4.6 JSON Schema."""

import json
import logging
import re
from itertools import islice
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from jsonschema import Draft7Validator
from jsonschema.exceptions import ValidationError


logger = logging.getLogger(__name__)


SCHEMA_VERSION = "4.6"
SCHEMA_PATH = Path(__file__).parent / "schemas" / "datacite-v4.6.json"
MAX_ERRORS = 50

# Human readable message per failing keyword; {field} is the field name
KEYWORD_MESSAGES = {
    'required': "Required field '{field}' is missing",
    'type': "Field '{field}' has an invalid type",
    'enum': "Field '{field}' has an invalid value",
    'const': "Field '{field}' has an invalid value",
    'minimum': "Field '{field}' is out of range",
    'maximum': "Field '{field}' is out of range",
    'pattern': "Field '{field}' does not match the expected pattern",
    'minLength': "Field '{field}' has an invalid length",
    'maxLength': "Field '{field}' has an invalid length",
    'minItems': "Field '{field}' has an invalid number of items",
    'maxItems': "Field '{field}' has an invalid number of items",
    'format': "Field '{field}' has an invalid format (e.g., date, URI)",
    'additionalProperties': "Field '{field}' contains unexpected properties",
}

REQUIRED_PROPERTY_PATTERN = re.compile(r"^'(.+)' is a required property$")


class SchemaValidationFailure(Exception):
    """Raised when exported data does not conform to the DataCite JSON Schema."""

    def __init__(self, message: str, errors: List[Dict[str, Any]], schema_version: str = SCHEMA_VERSION):
        super().__init__(message)
        self.message = message
        self.errors = errors
        self.schema_version = schema_version

    def to_dict(self) -> Dict[str, Any]:
        """Error document returned to callers instead of an export."""
        return {
            'success': False,
            'message': self.message,
            'errors': self.errors,
            'schema_version': self.schema_version,
        }


class SchemaValidator:
    """
    Validates DataCite JSON attributes.

    Two modes are supported:
    - non-strict (exports): identifiers/DOI are optional so drafts can be exported
    - strict (registration): identifiers must be present as well
    """

    def __init__(self, schema_path: Optional[Path] = None):
        self.schema_path = Path(schema_path) if schema_path else SCHEMA_PATH
        self._validator: Optional[Draft7Validator] = None

    @property
    def validator(self) -> Draft7Validator:
        """Draft 7 validator, created on first use."""
        if self._validator is None:
            try:
                with open(self.schema_path, encoding='utf-8') as fp:
                    schema = json.load(fp)
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"Could not load DataCite schema from {self.schema_path}: {e}")
                raise RuntimeError(f"Failed to load DataCite schema: {self.schema_path}") from e
            self._validator = Draft7Validator(schema)
        return self._validator

    def validate(self, data: Dict[str, Any], strict: bool = False) -> bool:
        """
        Validate DataCite JSON attributes.

        Args:
            data: The attributes object (not the {"data": ...} envelope)
            strict: If True, identifiers/DOI are required (registration)

        Returns:
            True if validation passes

        Raises:
            SchemaValidationFailure: If the data does not conform
        """
        errors = []
        for error in islice(self.validator.iter_errors(data), MAX_ERRORS):
            errors.append(self._format_error(error))

        if strict and not data.get('identifiers'):
            errors.append({
                'path': '/identifiers',
                'message': (
                    "Required field 'identifiers' is missing. DOI is required for "
                    "DataCite registration. (Path: /identifiers)"
                ),
                'keyword': 'required',
                'context': {
                    'raw_message': 'The identifiers field is required for DataCite registration but is missing.',
                },
            })

        if errors:
            self._log_errors(data, errors)
            raise SchemaValidationFailure(
                f"JSON export validation failed against DataCite Schema version {SCHEMA_VERSION}",
                errors,
            )

        return True

    def is_valid(self, data: Dict[str, Any], strict: bool = False) -> Tuple[bool, List[Dict[str, Any]]]:
        """
        Validate without raising.

        Returns:
            Tuple (valid, errors); errors is empty when valid
        """
        try:
            self.validate(data, strict)
            return True, []
        except SchemaValidationFailure as e:
            return False, e.errors

    def _format_error(self, error: ValidationError) -> Dict[str, Any]:
        segments = [str(part) for part in error.absolute_path]

        # A missing property is reported on its parent object; point at the property itself
        if error.validator == 'required':
            match = REQUIRED_PROPERTY_PATTERN.match(error.message)
            if match:
                segments.append(match.group(1))

        path = '/' + '/'.join(segments)
        field = extract_field_name(path)
        human = KEYWORD_MESSAGES.get(error.validator, "Validation error in field '{field}'").format(field=field)

        return {
            'path': path,
            'message': f"{human} (Path: {path})",
            'keyword': str(error.validator),
            'context': {
                'raw_message': error.message,
            },
        }

    @staticmethod
    def _log_errors(data: Dict[str, Any], errors: List[Dict[str, Any]]):
        doi = data.get('doi') or 'unknown'
        logger.error(
            f"DataCite JSON Schema validation failed for {doi} "
            f"(schema {SCHEMA_VERSION}, {len(errors)} errors)"
        )
        for error in errors[:10]:
            logger.error(f"  {error['path']}: {error['message']}")


def extract_field_name(path: str) -> str:
    """
    Derive a readable field name from a JSON pointer.

    "/creators/0/name" -> "name", "/creators/0" -> "creators[0]", "/" -> "root".
    """
    if path in ('', '/'):
        return 'root'

    segments = path.strip('/').split('/')
    last = segments[-1]
    if last.isdigit() and len(segments) > 1:
        return f"{segments[-2]}[{last}]"
    return last or 'unknown'
