"""Known provider response shapes, adapted once at the provider boundary.

Downstream code only ever sees plain text. Each envelope is a small pydantic
model; ``adapt_response`` picks the shape through a discriminated union.
"""

from __future__ import annotations

from typing import Annotated, Any, Union

from pydantic import BaseModel, Discriminator, Field, Tag, TypeAdapter


class TextEnvelope(BaseModel):
    text: str


class OutputEnvelope(BaseModel):
    """pydantic-ai run result (``AgentRunResult.output``)."""

    output: str


class _Part(BaseModel):
    text: str = ""


class _Content(BaseModel):
    parts: list[_Part] = Field(default_factory=list)


class _Candidate(BaseModel):
    content: _Content = Field(default_factory=_Content)


class CandidatesEnvelope(BaseModel):
    """Gemini REST shape: ``candidates[0].content.parts[*].text``."""

    candidates: list[_Candidate] = Field(default_factory=list)


class _Message(BaseModel):
    content: str = ""


class _Choice(BaseModel):
    message: _Message = Field(default_factory=_Message)


class ChoicesEnvelope(BaseModel):
    """OpenAI-compatible shape: ``choices[0].message.content``."""

    choices: list[_Choice] = Field(default_factory=list)


_KINDS = ("text", "output", "candidates", "choices")


def _envelope_kind(value: Any) -> str | None:
    if not isinstance(value, dict):
        return None
    for kind in _KINDS:
        if kind in value:
            return kind
    return None


ProviderEnvelope = Annotated[
    Union[
        Annotated[TextEnvelope, Tag("text")],
        Annotated[OutputEnvelope, Tag("output")],
        Annotated[CandidatesEnvelope, Tag("candidates")],
        Annotated[ChoicesEnvelope, Tag("choices")],
    ],
    Discriminator(_envelope_kind),
]

_envelope_adapter: TypeAdapter[ProviderEnvelope] = TypeAdapter(ProviderEnvelope)


def envelope_text(envelope: ProviderEnvelope) -> str:
    if isinstance(envelope, TextEnvelope):
        return envelope.text
    if isinstance(envelope, OutputEnvelope):
        return envelope.output
    if isinstance(envelope, CandidatesEnvelope):
        if not envelope.candidates:
            return ""
        return "".join(p.text for p in envelope.candidates[0].content.parts)
    if not envelope.choices:
        return ""
    return envelope.choices[0].message.content


def adapt_response(raw: Any) -> str:
    """Return the text carried by any known response shape.

    Raises ``ValueError`` for shapes that are not recognized.
    """
    if isinstance(raw, str):
        return raw
    if not isinstance(raw, dict):
        raw = {k: getattr(raw, k) for k in _KINDS if hasattr(raw, k)}
    envelope = _envelope_adapter.validate_python(raw)
    return envelope_text(envelope)


__all__ = [
    "TextEnvelope",
    "OutputEnvelope",
    "CandidatesEnvelope",
    "ChoicesEnvelope",
    "ProviderEnvelope",
    "adapt_response",
]
