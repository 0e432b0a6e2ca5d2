"""Variable store with template substitution and response extraction."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import BaseModel

from .constants import (
    DEFAULT_JSON_PATH_INDICATOR,
    DEFAULT_VARIABLE_PREFIX,
    DEFAULT_VARIABLE_SUFFIX,
    DEFAULT_VARIABLES_KEY,
)
from .contracts import ExtractionRule
from .errors import MissingRequiredVariable
from .paths import NOT_FOUND, resolve_json_path
from .storage import KeyValueStorage

logger = logging.getLogger(__name__)


class VariableSyntax(BaseModel):
    """Template marker syntax.

    With an empty ``suffix`` the bare-prefix form (``$name``) is used and
    names are limited to word characters.
    """

    prefix: str = DEFAULT_VARIABLE_PREFIX
    suffix: str = DEFAULT_VARIABLE_SUFFIX
    json_path_indicator: str = DEFAULT_JSON_PATH_INDICATOR

    def pattern(self) -> re.Pattern[str]:
        prefix = re.escape(self.prefix or DEFAULT_VARIABLE_PREFIX)
        if self.suffix:
            return re.compile(f"{prefix}(.*?){re.escape(self.suffix)}")
        return re.compile(rf"{prefix}(\w+)")


def to_text(value: Any) -> str:
    """String form of a variable value as inserted into templates."""
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"))


def _ensure_json(name: str, value: Any) -> None:
    try:
        json.dumps(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Variable '{name}' must be JSON-serializable: {exc}") from exc


RuleLike = Union[ExtractionRule, Mapping[str, Any]]


class VariableStore:
    """Named variables shared between requests.

    Every mutation is written through to ``storage`` when persistence is
    enabled; storage errors are logged and the in-memory values stay
    authoritative.
    """

    def __init__(
        self,
        storage: Optional[KeyValueStorage] = None,
        *,
        syntax: Optional[VariableSyntax] = None,
        persist: bool = True,
        storage_key: str = DEFAULT_VARIABLES_KEY,
        initial: Optional[Mapping[str, Any]] = None,
        strict_json_path: bool = False,
    ) -> None:
        self._storage = storage
        self.syntax = syntax or VariableSyntax()
        self.persist = persist
        self.storage_key = storage_key
        self.strict_json_path = strict_json_path
        self._initial = dict(initial or {})
        self._variables: Dict[str, Any] = {}
        self._pattern = self.syntax.pattern()

    # ------------------------------------------------------------------
    # Persistence
    async def load(self) -> None:
        """Load persisted variables, then apply the initial set."""
        if self.persist and self._storage is not None:
            try:
                stored = await self._storage.get(self.storage_key)
            except Exception as exc:
                logger.error(f"Failed to load variables from storage: {exc}")
                stored = None
            if isinstance(stored, dict):
                self._variables = dict(stored)
                logger.debug(f"Loaded {len(self._variables)} variables from storage")

        if self._initial:
            await self.set_many(self._initial)

    async def _save(self) -> None:
        if not self.persist or self._storage is None:
            return
        try:
            await self._storage.set(self.storage_key, self._variables)
        except Exception as exc:
            logger.error(f"Failed to save variables to storage: {exc}")

    # ------------------------------------------------------------------
    # Mapping operations
    def get(self, name: str, default: Any = None) -> Any:
        return self._variables.get(name, default)

    def has(self, name: str) -> bool:
        return name in self._variables

    def get_all(self) -> Dict[str, Any]:
        return dict(self._variables)

    def __len__(self) -> int:
        return len(self._variables)

    def __contains__(self, name: object) -> bool:
        return name in self._variables

    async def set(self, name: str, value: Any) -> None:
        _ensure_json(name, value)
        self._variables[name] = value
        await self._save()

    async def set_many(self, values: Mapping[str, Any]) -> None:
        """Set several variables and save once."""
        for name, value in values.items():
            _ensure_json(name, value)
        self._variables.update(values)
        await self._save()

    async def delete(self, name: str) -> bool:
        if name not in self._variables:
            return False
        del self._variables[name]
        await self._save()
        return True

    async def clear(self) -> None:
        self._variables = {}
        await self._save()

    # ------------------------------------------------------------------
    # Templates
    def substitute(self, text: Optional[str]) -> str:
        """Replace template markers with variable values.

        Unknown names are left exactly as written.
        """
        if not text:
            return ""

        def _replace(match: re.Match[str]) -> str:
            name = match.group(1).strip()
            if name not in self._variables:
                return match.group(0)
            return to_text(self._variables[name])

        return self._pattern.sub(_replace, text)

    def contains_variables(self, text: Optional[str]) -> bool:
        if not text:
            return False
        return self._pattern.search(text) is not None

    def extract_names(self, text: Optional[str]) -> List[str]:
        if not text or not isinstance(text, str):
            return []
        return [m.group(1).strip() for m in self._pattern.finditer(text)]

    # ------------------------------------------------------------------
    # Extraction
    def resolve(self, value: Any, path: str) -> Any:
        """Resolve ``path`` against ``value``; ``NOT_FOUND`` on a miss."""
        return resolve_json_path(
            value,
            path,
            indicator=self.syntax.json_path_indicator,
            strict=self.strict_json_path,
        )

    async def extract_from_value(
        self, value: Any, path: str, name: str, default: Any = NOT_FOUND
    ) -> Any:
        """Store the value at ``path`` under ``name``.

        Falls back to ``default`` when given; otherwise the variable is left
        untouched and ``NOT_FOUND`` is returned.
        """
        found = self.resolve(value, path)
        if found is NOT_FOUND:
            if default is NOT_FOUND:
                logger.debug(f"Path {path} not found for variable {name}")
                return NOT_FOUND
            found = default
        await self.set(name, found)
        return found

    async def extract_many(
        self, value: Any, rules: Iterable[RuleLike]
    ) -> Dict[str, Any]:
        """Apply extraction rules to ``value`` and store the results.

        Rules are independent: a rule that does not resolve is logged and
        skipped, falling back to its default when it has one. A ``required``
        rule that does not resolve raises :class:`MissingRequiredVariable`,
        even with a default, before anything is stored.
        """
        extracted: Dict[str, Any] = {}
        for raw_rule in rules:
            rule = (
                raw_rule
                if isinstance(raw_rule, ExtractionRule)
                else ExtractionRule.model_validate(raw_rule)
            )
            if not rule.name or not rule.path:
                logger.warning(f"Invalid extraction rule, name and path are required: {rule}")
                continue

            found = self.resolve(value, rule.path)
            if found is not NOT_FOUND:
                extracted[rule.name] = found
            elif rule.required:
                raise MissingRequiredVariable(rule.name, rule.path)
            elif rule.has_default:
                extracted[rule.name] = rule.default_value
            else:
                logger.warning(
                    f"Could not extract variable {rule.name} with path {rule.path}"
                )

        if extracted:
            await self.set_many(extracted)
            logger.debug(f"Extracted variables: {list(extracted)}")
        return extracted
