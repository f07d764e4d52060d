"""
Fix base — a named, declarative list of steps plus hardware gates.

A Fix knows three things:
    requirements()   probe checks that must hold before apply
                     (bypassed with --force)
    options_model    pydantic model validating ``-o key=value`` options
    steps(options)   the ordered Step list for those options
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ValidationError

from hwfix.core.config.loader import Settings
from hwfix.core.errors import ConfigError
from hwfix.core.models.step import Step
from hwfix.core.services.probe import Probe


@dataclass(frozen=True)
class Requirement:
    """One hardware or software gate evaluated during probing."""

    description: str
    check: Callable[[Probe], bool]
    hardware_id: str = ""
    hint: str = ""

    def holds(self, probe: Probe) -> bool:
        return bool(self.check(probe))


class NoOptions(BaseModel):
    """Options model for fixes that take none."""


class Fix(ABC):
    """Base class for all fixes."""

    name: str = ""
    title: str = ""
    description: str = ""
    options_model: type[BaseModel] = NoOptions

    def requirements(self) -> list[Requirement]:
        return []

    def check(self, probe: Probe) -> tuple[list[str], list[Requirement]]:
        """Evaluate requirements.

        Returns:
            (matched hardware ids, unmet requirements)
        """
        matched: list[str] = []
        unmet: list[Requirement] = []
        for req in self.requirements():
            if req.holds(probe):
                if req.hardware_id:
                    matched.append(req.hardware_id)
            else:
                unmet.append(req)
        return matched, unmet

    def option_defaults(self, settings: Settings) -> dict[str, Any]:
        """Defaults that come from settings rather than the model."""
        return {}

    def resolve_options(self, raw: Mapping[str, Any], settings: Settings) -> dict[str, Any]:
        """Validate user options against ``options_model``.

        Raises:
            ConfigError: Unknown key or invalid value.
        """
        known = set(self.options_model.model_fields)
        unknown = sorted(set(raw) - known)
        if unknown:
            allowed = ", ".join(sorted(known)) or "none"
            raise ConfigError(
                f"Unknown option(s) for {self.name}: {', '.join(unknown)}",
                hint=f"Valid options: {allowed}",
            )
        data = {**self.option_defaults(settings), **raw}
        try:
            return self.options_model.model_validate(data).model_dump()
        except ValidationError as e:
            raise ConfigError(f"Invalid options for {self.name}: {e}") from e

    @abstractmethod
    def steps(self, options: Mapping[str, Any]) -> list[Step]:
        """Ordered steps for resolved ``options``."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
