"""
BaseRequestParser turns a raw JSON body into one of the typed requests in
intake.types, collecting every field error before raising.
"""

import json
import re
from abc import ABC, abstractmethod
from typing import Any

from ..exceptions import ValidationError

# code formats checked by several parsers
ICD10_RE = re.compile(r"^[A-Za-z]\d{2}(\.[0-9A-Za-z]{1,4})?$")
CPT_RE = re.compile(r"^\d{4}[0-9A-Za-z]$")


class BaseRequestParser(ABC):
    """
    Three-step pipeline: parse -> transform -> validate

    parse() decodes JSON and rejects unknown keys; subclasses implement
    transform() and may extend validate(). Field problems are collected into
    self.errors and raised together as one ValidationError.
    """

    # registry key, matches factory._build_registry
    kind: str = ""
    allowed_keys: frozenset = frozenset()

    def __init__(self, raw_body: bytes | str | dict, **context):
        self._raw_body = raw_body
        self._context = context
        self.errors: list[dict] = []

    # ── helpers ────────────────────────────────────────────────────────────

    def error(self, field: str, message: str) -> None:
        self.errors.append({"field": field, "message": message})

    def raise_if_errors(self) -> None:
        if self.errors:
            raise ValidationError(
                message="Request validation failed.",
                code="VALIDATION_ERROR",
                detail={"errors": self.errors},
            )

    def string(self, key: str, required: bool = False, default: str = "") -> str:
        value = self._parsed.get(key)
        if value is None:
            if required:
                self.error(key, f"{key} is required.")
            return default
        if not isinstance(value, str):
            self.error(key, f"{key} must be a string.")
            return default
        value = value.strip()
        if required and not value:
            self.error(key, f"{key} must not be empty.")
        return value

    def boolean(self, key: str, default: bool = False) -> bool:
        value = self._parsed.get(key)
        if value is None:
            return default
        if not isinstance(value, bool):
            self.error(key, f"{key} must be true or false.")
            return default
        return value

    def integer(self, key: str, required: bool = False, minimum: int | None = None) -> int | None:
        value = self._parsed.get(key)
        if value is None:
            if required:
                self.error(key, f"{key} is required.")
            return None
        if isinstance(value, bool) or not isinstance(value, int):
            self.error(key, f"{key} must be an integer.")
            return None
        if minimum is not None and value < minimum:
            self.error(key, f"{key} must be >= {minimum}.")
            return None
        return value

    def string_list(self, key: str) -> list[str]:
        value = self._parsed.get(key)
        if value is None:
            return []
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            self.error(key, f"{key} must be a list of strings.")
            return []
        return [v.strip() for v in value]

    def obj(self, key: str) -> dict:
        value = self._parsed.get(key)
        if value is None:
            return {}
        if not isinstance(value, dict):
            self.error(key, f"{key} must be an object.")
            return {}
        return value

    # ── pipeline ───────────────────────────────────────────────────────────

    def parse(self) -> dict:
        raw = self._raw_body
        if isinstance(raw, (bytes, str)):
            try:
                raw = json.loads(raw or "{}")
            except (json.JSONDecodeError, UnicodeDecodeError):
                raise ValidationError(message="Request body is not valid JSON.", code="INVALID_JSON")
        if not isinstance(raw, dict):
            raise ValidationError(message="Request body must be a JSON object.", code="INVALID_JSON")

        unknown = sorted(set(raw) - self.allowed_keys)
        for key in unknown:
            self.error(key, "Unknown field.")
        self._parsed = raw
        return raw

    @abstractmethod
    def transform(self) -> Any:
        """Turn self._parsed into the typed request struct."""

    def validate(self, request: Any) -> None:
        """Cross-field checks; subclasses call super() and add their own."""

    def process(self) -> Any:
        """parse -> transform -> validate; returns the validated struct."""
        self.parse()
        request = self.transform()
        self.validate(request)
        self.raise_if_errors()
        return request
