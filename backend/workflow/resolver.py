"""Variable resolution for step inputs.

Templates are JSON trees (dicts, lists, scalars). Strings may contain
${path} references into the execution context:

    ${trigger.query}              field of the trigger payload
    ${products.items[0].title}    nested field of a prior step's output
    ${products.items.0.title}     same, dotted index form

A string that is exactly one reference keeps the referenced value's type;
a string mixing text and references renders every value as text.
"""

import json
import re
from typing import Any, Mapping, Optional

from core.exceptions import VariableNotFound


TOKEN_PATTERN = re.compile(r"\$\{([^}]+)\}")
_INDEX_PATTERN = re.compile(r"\[(\d+)\]")


def split_path(path: str) -> list[str]:
    """Split 'a.b[0].c' into ['a', 'b', '0', 'c']."""
    normalized = _INDEX_PATTERN.sub(r".\1", path.strip())
    parts = [p.strip() for p in normalized.split(".")]
    if not parts or any(p == "" for p in parts):
        raise VariableNotFound(path, "malformed path")
    return parts


class VariableResolver:
    """Resolves ${...} references against an execution context.

    Args:
        context: Mapping of variable name to value; "trigger" holds the payload.
        skipped: Mapping of output variable name to the name of the skipped
            step that would have produced it.
    """

    def __init__(self, context: Mapping[str, Any], skipped: Optional[Mapping[str, str]] = None):
        self._context = context
        self._skipped = skipped or {}

    def lookup(self, path: str) -> Any:
        """Resolve one dotted path. Never returns a value for a missing path."""
        parts = split_path(path)
        root = parts[0]

        if root not in self._context:
            if root in self._skipped:
                raise VariableNotFound(path, f"step '{self._skipped[root]}' was skipped")
            raise VariableNotFound(path, f"no variable named '{root}'")

        current = self._context[root]
        for part in parts[1:]:
            if isinstance(current, Mapping):
                if part not in current:
                    raise VariableNotFound(path, f"'{part}' is missing")
                current = current[part]
            elif isinstance(current, (list, tuple)):
                if not part.isdigit():
                    raise VariableNotFound(path, f"'{part}' is not a list index")
                index = int(part)
                if index >= len(current):
                    raise VariableNotFound(path, f"index {index} is out of range")
                current = current[index]
            else:
                raise VariableNotFound(path, f"cannot descend into {type(current).__name__} at '{part}'")
        return current

    def resolve(self, template: Any) -> Any:
        """Resolve every reference in a template tree."""
        if isinstance(template, str):
            return self._resolve_string(template)
        if isinstance(template, dict):
            return {key: self.resolve(value) for key, value in template.items()}
        if isinstance(template, (list, tuple)):
            return [self.resolve(item) for item in template]
        return template

    def _resolve_string(self, text: str) -> Any:
        whole = TOKEN_PATTERN.fullmatch(text)
        if whole:
            return self.lookup(whole.group(1))
        if "${" not in text:
            return text
        return TOKEN_PATTERN.sub(lambda m: _as_text(self.lookup(m.group(1))), text)


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def resolve(template: Any, context: Mapping[str, Any], skipped: Optional[Mapping[str, str]] = None) -> Any:
    """Resolve a template against a context. See VariableResolver."""
    return VariableResolver(context, skipped).resolve(template)
