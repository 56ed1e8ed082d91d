"""Models for the validation/correction/extraction calls."""

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PageImage(BaseModel):
    """A scanned page image handed to the model."""

    name: str = Field(..., description="Page filename, e.g. fuerst_lex_0046.jpg")
    data: bytes = Field(..., repr=False)
    media_type: str = Field(default="image/jpeg")
    source_url: str = Field(default="", description="Where the image was fetched from")


class ValidationJudgment(BaseModel):
    """Per-entry verdict returned by validation."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1, description="Entry id from the request")
    is_valid: bool = Field(..., alias="isValid")
    issue: str | None = Field(default=None, description="What is wrong, when invalid")

    @property
    def status(self) -> str:
        return "valid" if self.is_valid else "invalid"


class ExtractedEntry(BaseModel):
    """One headword read off a page by extraction."""

    model_config = ConfigDict(populate_by_name=True)

    hebrew_word: str = Field(..., min_length=1, alias="hebrewWord")
    hebrew_consonantal: str = Field(default="", alias="hebrewConsonantal")
    transliteration: str = Field(default="")
    part_of_speech: str = Field(default="", alias="partOfSpeech")
    definition: str = Field(..., min_length=1)
    root: str = Field(default="")

    @field_validator("hebrew_consonantal", "transliteration", "part_of_speech", "root", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value
