"""Registry of application result entities and their optional capabilities."""

from __future__ import annotations

import importlib
import inspect
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, TypeVar, runtime_checkable

from pydantic import ValidationError
from sqlmodel import SQLModel

if TYPE_CHECKING:
    from hitsync.reconcile.models import HitTaskView

ModelT = TypeVar("ModelT", bound=type)


@runtime_checkable
class CompletionNotifiable(Protocol):
    """Entity classes told once a task has collected all of its assignments.

    The hook is looked up and called on the registered class, so it must be a
    classmethod or staticmethod.
    """

    @classmethod
    def on_hit_complete(cls, task: HitTaskView) -> None:
        raise NotImplementedError


@runtime_checkable
class ExpirationNotifiable(Protocol):
    """Entity classes told once a task outlived its lifetime without completing.

    Same calling convention as ``CompletionNotifiable``.
    """

    @classmethod
    def on_hit_expired(cls, task: HitTaskView) -> None:
        raise NotImplementedError


CALLBACK_NAMES = ("on_hit_complete", "on_hit_expired")


@runtime_checkable
class ApprovalCriteria(Protocol):
    """Result records that decide themselves whether the work is acceptable."""

    def should_approve(self) -> bool:
        raise NotImplementedError


@runtime_checkable
class SelfValidating(Protocol):
    """Result records with validation beyond field types."""

    def validation_errors(self) -> list[str]:
        raise NotImplementedError


@dataclass(slots=True)
class BuiltResult:
    """Result record built from a submission, with its validation errors."""

    entity_type: type
    record: Any | None
    errors: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.record is not None and not self.errors


class EntityRegistry:
    """Maps declared type names to the application's result entity classes."""

    def __init__(self) -> None:
        self._models: dict[str, type] = {}

    def register(
        self,
        model: ModelT | None = None,
        *,
        name: str | None = None,
    ) -> ModelT | Callable[[ModelT], ModelT]:
        """Register ``model`` under ``name`` (class name by default); usable as a decorator."""

        def _register(target: ModelT) -> ModelT:
            key = name or target.__name__
            existing = self._models.get(key)
            if existing is not None and existing is not target:
                raise ValueError(f"Entity type name already registered: {key!r}")
            _check_class_callbacks(target)
            self._models[key] = target
            return target

        if model is None:
            return _register
        return _register(model)

    def resolve(self, name: str) -> type | None:
        return self._models.get(name)

    @staticmethod
    def is_persistable(model: type) -> bool:
        """True only for SQLModel table models, not plain structural types."""

        return (
            isinstance(model, type)
            and issubclass(model, SQLModel)
            and getattr(model, "__table__", None) is not None
        )

    def __contains__(self, name: object) -> bool:
        return name in self._models

    def __len__(self) -> int:
        return len(self._models)


def build_result(entity_type: type, values: Mapping[str, Any]) -> BuiltResult:
    """Validate ``values`` into a new record of ``entity_type``."""

    try:
        record = entity_type.model_validate(dict(values))  # type: ignore[attr-defined]
    except ValidationError as error:
        return BuiltResult(
            entity_type=entity_type,
            record=None,
            errors=[_format_validation_error(item) for item in error.errors()],
        )

    errors: list[str] = []
    if isinstance(record, SelfValidating):
        errors.extend(record.validation_errors())
    return BuiltResult(entity_type=entity_type, record=record, errors=errors)


def load_registry(path: str) -> EntityRegistry:
    """Import ``module:attribute`` and return the registry it names."""

    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Expected '<module>:<attribute>' entity registry path, got {path!r}")
    module = importlib.import_module(module_name)
    registry = getattr(module, attribute)
    if callable(registry) and not isinstance(registry, EntityRegistry):
        registry = registry()
    if not isinstance(registry, EntityRegistry):
        raise TypeError(f"{path} is not an EntityRegistry")
    return registry


def _check_class_callbacks(model: type) -> None:
    for name in CALLBACK_NAMES:
        try:
            hook = inspect.getattr_static(model, name)
        except AttributeError:
            continue
        if not isinstance(hook, (classmethod, staticmethod)):
            raise TypeError(
                f"{model.__name__}.{name} must be a classmethod or staticmethod; "
                "lifecycle callbacks are called on the entity class",
            )


def _format_validation_error(item: Mapping[str, Any]) -> str:
    location = ".".join(str(part) for part in item.get("loc", ())) or "<root>"
    return f"{location}: {item.get('msg', 'invalid value')}"
