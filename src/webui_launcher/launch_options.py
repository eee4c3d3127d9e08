"""
Launch flags of a package and their conversion to command line arguments.

Packages declare `LaunchOptionDefinition` records. The UI turns each one
into a `LaunchOptionCard` holding editable `LaunchOption` values, which are
persisted per installed package and turned into ``argv`` tokens with
`build_arguments`.
"""

import shlex
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum, auto
from typing import Any, ClassVar


class LaunchOptionType(StrEnum):
    BOOL = auto()
    STRING = auto()
    INT = auto()


@dataclass(frozen=True)
class LaunchOptionDefinition:
    """Declarative launch flag(s) shown as one card in the UI.

    Parameters
    ----------
    name : str
        Title of the card.
    type : LaunchOptionType
        Kind of value the flags take.
    description : str
        Help text for the card.
    default_value : Any
        Value the application uses when the flag is not given. Only shown
        as a placeholder, never passed on the command line.
    initial_value : Any
        Value pre-selected for new installs. For boolean cards this is
        either a bool or the flag that starts checked.
    options : tuple of str
        The flags themselves.
    """

    EXTRAS: ClassVar['LaunchOptionDefinition']

    name: str
    type: LaunchOptionType = LaunchOptionType.BOOL
    description: str = ''
    default_value: Any = None
    initial_value: Any = None
    options: tuple[str, ...] = ()


LaunchOptionDefinition.EXTRAS = LaunchOptionDefinition(
    name='Extra Launch Arguments',
    type=LaunchOptionType.STRING,
    options=('',),
)


@dataclass
class LaunchOption:
    name: str
    type: LaunchOptionType = LaunchOptionType.BOOL
    option_value: Any = None
    default_value: Any = None

    def is_empty(self) -> bool:
        return self.option_value in (None, False, '')

    def to_args(self) -> list[str]:
        """Command line tokens for this option, empty when unset."""
        if self.is_empty():
            return []
        if self.type == LaunchOptionType.BOOL:
            return shlex.split(self.name)
        value = str(self.option_value)
        if not self.name:
            return shlex.split(value)
        return [self.name, value]

    def to_dict(self) -> dict[str, Any]:
        return {
            'name': self.name,
            'type': str(self.type),
            'value': self.option_value,
        }


@dataclass
class LaunchOptionCard:
    title: str
    description: str = ''
    options: list[LaunchOption] = field(default_factory=list)

    @classmethod
    def from_definition(
        cls,
        definition: LaunchOptionDefinition,
        saved: dict[str, Any] | None = None,
    ) -> 'LaunchOptionCard':
        """Build a card, preferring `saved` values (by flag) over defaults."""
        saved = saved or {}
        options = []
        for flag in definition.options:
            if definition.type == LaunchOptionType.BOOL:
                initial = definition.initial_value
                if isinstance(initial, str):
                    initial = initial == flag
                value = bool(saved.get(flag, initial or False))
            elif definition.type == LaunchOptionType.INT:
                value = saved.get(flag, definition.initial_value)
                value = None if value in (None, '') else int(value)
            else:
                value = saved.get(flag, definition.initial_value)
            options.append(
                LaunchOption(
                    name=flag,
                    type=definition.type,
                    option_value=value,
                    default_value=definition.default_value,
                )
            )
        return cls(definition.name, definition.description, options)


def _iter_options(
    items: Iterable[LaunchOptionCard | LaunchOption],
) -> Iterable[LaunchOption]:
    for item in items:
        if isinstance(item, LaunchOptionCard):
            yield from item.options
        else:
            yield item


def build_arguments(
    items: Iterable[LaunchOptionCard | LaunchOption],
) -> list[str]:
    """Concatenate the arguments of every set option, in order."""
    args: list[str] = []
    for option in _iter_options(items):
        args.extend(option.to_args())
    return args


def save_options(
    items: Iterable[LaunchOptionCard | LaunchOption],
) -> list[dict[str, Any]]:
    """Serializable records for every option.

    Unset options are kept so that an unchecked flag does not fall back to
    its initial value when restored.
    """
    return [option.to_dict() for option in _iter_options(items)]


def cards_from_saved(
    definitions: Sequence[LaunchOptionDefinition],
    saved: Iterable[dict[str, Any]] = (),
) -> list[LaunchOptionCard]:
    """Rebuild the cards of a package from records made by `save_options`."""
    values = {record['name']: record.get('value') for record in saved}
    return [
        LaunchOptionCard.from_definition(definition, values)
        for definition in definitions
    ]
