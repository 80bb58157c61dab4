"""Generative post-processing directives."""

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class GenerationOptions(BaseModel):
    """Model options forwarded to the backend generative module."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    provider: str | None = None
    model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, gt=0)


class Message(BaseModel):
    """A chat message. `content` may contain `{property}` placeholders."""

    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant"]
    content: str


def _check_prompt_shape(text: str | None, messages: tuple[Message, ...] | None, text_name: str) -> None:
    if (text is None) == (messages is None):
        raise ValueError(f"Provide exactly one of '{text_name}' or 'messages'.")
    if text is not None and not text.strip():
        raise ValueError(f"'{text_name}' must not be empty.")
    if messages is not None and not messages:
        raise ValueError("'messages' must not be empty.")


class FromOne(BaseModel):
    """Per-record generation.

    A string `prompt` is a template substituted by the backend for each record.
    A `messages` list is sent verbatim and its placeholders are resolved on the client.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["from_one"] = "from_one"
    prompt: str | None = None
    messages: tuple[Message, ...] | None = None
    options: GenerationOptions = GenerationOptions()

    @model_validator(mode="after")
    def _check_shape(self) -> "FromOne":
        _check_prompt_shape(self.prompt, self.messages, "prompt")
        return self

    @property
    def substitution(self) -> Literal["server", "client"]:
        return "server" if self.prompt is not None else "client"


class FromMany(BaseModel):
    """Single synthesis over the whole candidate set."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["from_many"] = "from_many"
    task: str | None = None
    messages: tuple[Message, ...] | None = None
    properties: tuple[str, ...] = ()
    options: GenerationOptions = GenerationOptions()

    @model_validator(mode="after")
    def _check_shape(self) -> "FromMany":
        _check_prompt_shape(self.task, self.messages, "task")
        return self


class Ask(BaseModel):
    """Question answering over the candidate set. Produces an answer and its source records."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["ask"] = "ask"
    question: str = Field(min_length=1)
    properties: tuple[str, ...] = ()
    options: GenerationOptions = GenerationOptions()


GenerationDirective = Annotated[FromOne | FromMany | Ask, Field(discriminator="kind")]
