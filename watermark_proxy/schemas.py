from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_REMOVAL_TEXT = "watermarks"


class ImagePayload(BaseModel):
    data: str | None = None
    mime_type: str = Field(
        default="image/png",
        validation_alias=AliasChoices("mime_type", "mimeType"),
    )


class RemovalRequest(BaseModel):
    image: ImagePayload | None = None
    removal_text: str = Field(
        default=DEFAULT_REMOVAL_TEXT,
        validation_alias=AliasChoices("removalText", "removal_text"),
    )

    @field_validator("removal_text", mode="before")
    @classmethod
    def _default_blank_removal_text(cls, value: object) -> object:
        if value is None or (isinstance(value, str) and not value.strip()):
            return DEFAULT_REMOVAL_TEXT
        return value.strip() if isinstance(value, str) else value


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DailyStats(_CamelModel):
    total: int = 0
    successful: int = 0
    failed: int = 0


class Statistics(_CamelModel):
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    last_run_timestamp: str | None = None
    daily_stats: dict[str, DailyStats] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    error: str
    details: str | None = None


class ProviderStatus(_CamelModel):
    label: str
    role: str
    model: str
    has_key: bool


# Provider wire formats. Every nested level is optional; extraction lives in
# the provider module so a missing link fails in one place.


class GeminiInlineData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    data: str | None = None
    mime_type: str | None = Field(default=None, validation_alias=AliasChoices("mimeType", "mime_type"))


class GeminiPart(BaseModel):
    text: str | None = None
    inline_data: GeminiInlineData | None = Field(
        default=None,
        validation_alias=AliasChoices("inlineData", "inline_data"),
    )


class GeminiContent(BaseModel):
    parts: list[GeminiPart] | None = None


class GeminiCandidate(BaseModel):
    content: GeminiContent | None = None
    finish_reason: str | None = Field(default=None, validation_alias=AliasChoices("finishReason", "finish_reason"))


class GeminiResponse(BaseModel):
    candidates: list[GeminiCandidate] | None = None
    prompt_feedback: dict | None = Field(default=None, validation_alias=AliasChoices("promptFeedback", "prompt_feedback"))


class OpenAIImageDatum(BaseModel):
    b64_json: str | None = None


class OpenAIImageResponse(BaseModel):
    data: list[OpenAIImageDatum] | None = None
