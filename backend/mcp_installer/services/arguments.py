"""
Argument Resolver

Turns registry argument descriptors into literal command-line tokens.
"""
from typing import Iterable, List

from mcp_installer.schemas.registry import Argument, NamedArgument, PositionalArgument


def extract_argument_values(argument: Argument) -> List[str]:
    """
    Tokens contributed by a single argument.

    - Positional: ``value``, else ``value_hint``, else nothing.
    - Named: ``name`` ("" when absent) followed by ``value`` when present.

    ``variables`` are not substituted: a templated value such as
    ``"--root={root}"`` is emitted exactly as published.
    """
    if isinstance(argument, PositionalArgument):
        token = argument.value if argument.value is not None else argument.value_hint
        return [token] if token is not None else []

    if isinstance(argument, NamedArgument):
        tokens = [argument.name or ""]
        if argument.value is not None:
            tokens.append(argument.value)
        return tokens

    raise TypeError(f"Unsupported argument type: {type(argument).__name__}")


def resolve_arguments(arguments: Iterable[Argument]) -> List[str]:
    """Flatten arguments into command-line tokens, preserving input order."""
    tokens: List[str] = []
    for argument in arguments:
        tokens.extend(extract_argument_values(argument))
    return tokens
