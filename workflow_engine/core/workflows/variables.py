"""
Run-scoped variable store

Values are always strings. `{{name}}` placeholders are replaced textually;
arithmetic evaluation is a separate opt-in pass (set_variable only).
"""

import logging
from typing import Dict, Iterator, Optional

from .expression import evaluate_expression

logger = logging.getLogger(__name__)


class VariableStore:
    """
    Mutable name -> string mapping shared by a run and its sub-workflows.

    Not thread-safe; a store belongs to exactly one run.
    """

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._values: Dict[str, str] = {}
        if initial:
            for name, value in initial.items():
                self.set(name, value)

    @classmethod
    def seed(
        cls, defaults: Optional[Dict[str, str]], overrides: Optional[Dict[str, str]] = None
    ) -> "VariableStore":
        """Workflow defaults overridden by caller-supplied values"""
        store = cls(defaults)
        if overrides:
            for name, value in overrides.items():
                store.set(name, value)
        return store

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self._values.get(name, default)

    def set(self, name: str, value) -> None:
        self._values[name] = "" if value is None else str(value)
        logger.debug(f"  Set variable: {name} = {self._values[name]}")

    def setdefault(self, name: str, value) -> None:
        if name not in self._values:
            self.set(name, value)

    def substitute(self, text: Optional[str]) -> str:
        """Replace every {{name}} with the variable's current value"""
        if not text:
            return ""
        if "{{" not in text:
            return text
        for name, value in self._values.items():
            text = text.replace("{{" + name + "}}", value)
        return text

    def substitute_and_evaluate(self, text: Optional[str]) -> str:
        """Substitute, then evaluate as arithmetic if possible"""
        return evaluate_expression(self.substitute(text))

    def as_dict(self) -> Dict[str, str]:
        return dict(self._values)

    def __contains__(self, name: str) -> bool:
        return name in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)
