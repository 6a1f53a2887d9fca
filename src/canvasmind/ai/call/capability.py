"""Model capability flags.

Capabilities are split into input modalities, output modalities and
behavioural features. A request needs at least one input and one output
flag to be executable.
"""

from __future__ import annotations

from enum import IntFlag

__all__ = [
    "Capability",
    "INPUT_CAPABILITIES",
    "OUTPUT_CAPABILITIES",
    "has_input",
    "has_output",
    "to_detailed_string",
    "parse_capability",
]


class Capability(IntFlag):
    """Bit flags describing what a model can consume and produce."""

    NONE = 0

    # Inputs
    TEXT_INPUT = 1 << 0
    IMAGE_INPUT = 1 << 1
    AUDIO_INPUT = 1 << 2
    JSON_INPUT = 1 << 3

    # Outputs
    TEXT_OUTPUT = 1 << 4
    IMAGE_OUTPUT = 1 << 5
    AUDIO_OUTPUT = 1 << 6
    JSON_OUTPUT = 1 << 7

    # Features
    FUNCTION_CALLING = 1 << 8
    REASONING = 1 << 9

    # Composites
    TEXT2TEXT = TEXT_INPUT | TEXT_OUTPUT
    TOOL_CHAT = TEXT2TEXT | FUNCTION_CALLING
    REASONING_CHAT = TEXT2TEXT | REASONING
    TOOL_REASONING_CHAT = TOOL_CHAT | REASONING
    TEXT2JSON = TEXT_INPUT | JSON_OUTPUT
    TEXT2IMAGE = TEXT_INPUT | IMAGE_OUTPUT
    TEXT2SPEECH = TEXT_INPUT | AUDIO_OUTPUT
    SPEECH2TEXT = AUDIO_INPUT | TEXT_OUTPUT
    IMAGE2TEXT = IMAGE_INPUT | TEXT_OUTPUT


INPUT_CAPABILITIES = (
    Capability.TEXT_INPUT
    | Capability.IMAGE_INPUT
    | Capability.AUDIO_INPUT
    | Capability.JSON_INPUT
)
OUTPUT_CAPABILITIES = (
    Capability.TEXT_OUTPUT
    | Capability.IMAGE_OUTPUT
    | Capability.AUDIO_OUTPUT
    | Capability.JSON_OUTPUT
)

_ATOMIC_FLAGS: tuple[Capability, ...] = (
    Capability.TEXT_INPUT,
    Capability.IMAGE_INPUT,
    Capability.AUDIO_INPUT,
    Capability.JSON_INPUT,
    Capability.TEXT_OUTPUT,
    Capability.IMAGE_OUTPUT,
    Capability.AUDIO_OUTPUT,
    Capability.JSON_OUTPUT,
    Capability.FUNCTION_CALLING,
    Capability.REASONING,
)

_DISPLAY_NAMES = {
    Capability.TEXT_INPUT: "TextInput",
    Capability.IMAGE_INPUT: "ImageInput",
    Capability.AUDIO_INPUT: "AudioInput",
    Capability.JSON_INPUT: "JsonInput",
    Capability.TEXT_OUTPUT: "TextOutput",
    Capability.IMAGE_OUTPUT: "ImageOutput",
    Capability.AUDIO_OUTPUT: "AudioOutput",
    Capability.JSON_OUTPUT: "JsonOutput",
    Capability.FUNCTION_CALLING: "FunctionCalling",
    Capability.REASONING: "Reasoning",
}


def has_input(capability: Capability) -> bool:
    """Return True when at least one input modality is present."""
    return bool(capability & INPUT_CAPABILITIES)


def has_output(capability: Capability) -> bool:
    """Return True when at least one output modality is present."""
    return bool(capability & OUTPUT_CAPABILITIES)


def to_detailed_string(capability: Capability) -> str:
    """Render the atomic flags of *capability* as a comma separated list."""
    if not capability:
        return "None"
    names = [_DISPLAY_NAMES[flag] for flag in _ATOMIC_FLAGS if capability & flag]
    return ", ".join(names)


def parse_capability(value: str | int | Capability | None) -> Capability:
    """Parse a capability from an int, a flag, or a ``"TextInput, JsonOutput"`` string.

    Raises:
        ValueError: If a name in the string is not a known capability.
    """
    if value is None:
        return Capability.NONE
    if isinstance(value, Capability):
        return value
    if isinstance(value, int):
        return Capability(value)
    lookup = {name.lower(): flag for flag, name in _DISPLAY_NAMES.items()}
    lookup.update({name.lower(): member for name, member in Capability.__members__.items()})
    result = Capability.NONE
    for token in value.replace("|", ",").split(","):
        key = token.strip().lower()
        if not key or key == "none":
            continue
        if key not in lookup:
            raise ValueError(f"Unknown capability '{token.strip()}'")
        result |= lookup[key]
    return result
