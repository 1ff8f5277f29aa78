"""
Translation of server exceptions into client-facing payloads.

Messages come from YAML catalogs named ``<language>.yaml``. A catalog has
three sections:

- ``server_exceptions``: one entry per error code, with an optional
  ``extra_messages`` mapping keyed by extra message code
- ``validation_exceptions``: messages per validation type and error key;
  ``{}`` placeholders are filled in order from the issue's ``insert_these``
- ``not_found``: fallback entries for codes missing from the catalog
"""

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field

from .config import get_config
from .exceptions import ServerException, ValidationIssue

logger = logging.getLogger(__name__)

CATALOG_DIR = Path(__file__).parent / "languages"
PLACEHOLDER = re.compile(r"\{\}")


class ClientValidationError(BaseModel):
    """A rendered validation issue."""

    error: str
    error_code: str
    entry: Optional[str] = None


class ClientException(BaseModel):
    """Exception payload safe to return to a client."""

    error: str
    error_code: str
    extra_message: Optional[str] = None
    extra_message_code: Optional[str] = None
    validation_errors: Optional[List[ClientValidationError]] = Field(default=None)


def fill_placeholders(template: str, values: List[str]) -> str:
    """Replace ``{}`` placeholders in order; extra placeholders are kept."""
    remaining = iter(values)

    def substitute(match: "re.Match[str]") -> str:
        return next(remaining, match.group(0))

    return PLACEHOLDER.sub(substitute, template)


class ExceptionTranslator:
    """
    Render server exceptions with a language catalog.

    Example:
        >>> translator = ExceptionTranslator()
        >>> payload = translator.translate(AlreadyDeletedException("42"), "en")
        >>> payload.extra_message
        'The record is already deleted.'
    """

    def __init__(
        self,
        catalog_dir: Optional[Union[str, Path]] = None,
        default_language: Optional[str] = None,
    ):
        self.catalog_dir = Path(catalog_dir) if catalog_dir else CATALOG_DIR
        self.default_language = (
            default_language or get_config().default_language
        ).lower()
        self._catalogs: Dict[str, Dict[str, Any]] = {}

    def available_languages(self) -> List[str]:
        return sorted(path.stem for path in self.catalog_dir.glob("*.yaml"))

    def catalog(self, language: Optional[str] = None) -> Dict[str, Any]:
        """
        Return the catalog for a language, falling back to the default one.

        Raises:
            FileNotFoundError: If the default language has no catalog
        """
        code = (language or self.default_language).lower()
        if code not in self._catalogs:
            # Only codes with a catalog file reach the filesystem path
            if code not in self.available_languages():
                if code == self.default_language:
                    raise FileNotFoundError(f"No catalog for language '{code}'")
                logger.debug("No catalog for '%s', using '%s'", code, self.default_language)
                return self.catalog(self.default_language)
            path = self.catalog_dir / f"{code}.yaml"
            with open(path, "r", encoding="utf-8") as fh:
                self._catalogs[code] = yaml.safe_load(fh) or {}
        return self._catalogs[code]

    def _render_issue(
        self, issue: ValidationIssue, templates: Dict[str, Any]
    ) -> ClientValidationError:
        template = (templates.get(issue.type) or {}).get(issue.error)
        if template is None:
            fallback = templates.get("not_found", {}).get("not_defined_error", {})
            return ClientValidationError(
                error=fallback.get("message", issue.error),
                error_code=issue.error,
                entry=issue.form_entry,
            )
        return ClientValidationError(
            error=fill_placeholders(template["message"], issue.insert_these),
            error_code=issue.error,
            entry=issue.form_entry,
        )

    def translate(
        self, exc: ServerException, language: Optional[str] = None
    ) -> ClientException:
        """
        Translate a server exception.

        Args:
            exc: Exception to translate
            language: Requested language code; unsupported codes use the default

        Returns:
            Client payload with localized messages
        """
        catalog = self.catalog(language)
        template = catalog.get("server_exceptions", {}).get(exc.error_code)

        if template is None:
            fallback = catalog["not_found"]["not_defined_error"]
            return ClientException(
                error=fallback["message"], error_code=fallback["error_code"]
            )

        payload = ClientException(
            error=template["message"], error_code=template["error_code"]
        )

        extra_messages = template.get("extra_messages") or {}
        if exc.extra_message_code and exc.extra_message_code in extra_messages:
            payload.extra_message = extra_messages[exc.extra_message_code]
            payload.extra_message_code = exc.extra_message_code

        if exc.content:
            templates = catalog.get("validation_exceptions", {})
            payload.validation_errors = [
                self._render_issue(issue, templates) for issue in exc.content
            ]

        return payload


_translator: Optional[ExceptionTranslator] = None


def get_translator() -> ExceptionTranslator:
    global _translator

    if _translator is None:
        _translator = ExceptionTranslator()
    return _translator


def translate_exception(
    exc: ServerException, language: Optional[str] = None
) -> ClientException:
    """Translate with the process-wide translator."""
    return get_translator().translate(exc, language)
