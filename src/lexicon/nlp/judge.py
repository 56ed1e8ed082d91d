"""Model-backed review of lexicon entries.

EntryJudge is the capability the sweeps talk to; ClaudeJudge implements
it on the Anthropic Messages API.
"""

import json
import logging
import os
import random
import time
from abc import ABC, abstractmethod

from pydantic import TypeAdapter, ValidationError

from lexicon.config import JudgeConfig
from lexicon.logging import log_event
from lexicon.nlp.models import ExtractedEntry, PageImage, ValidationJudgment
from lexicon.nlp.prompts import (
    build_correction_request,
    build_extraction_request,
    build_validation_request,
)
from lexicon.store.models import EntryCorrection, LexiconEntry

logger = logging.getLogger(__name__)

# API retry configuration
MAX_RETRIES = 3
INITIAL_RETRY_DELAY = 1.0  # seconds

_JUDGMENTS = TypeAdapter(list[ValidationJudgment])
_CORRECTIONS = TypeAdapter(list[EntryCorrection])
_EXTRACTED = TypeAdapter(list[ExtractedEntry])


class JudgeError(Exception):
    """Raised when a judgment call fails or returns an unusable response."""


class JudgeQuotaExceeded(JudgeError):
    """Raised when the API keeps rate limiting the caller after every retry."""


class EntryJudge(ABC):
    """Abstract base class for entry review backends.

    Implementations must raise JudgeError rather than return partial or
    empty results on failure, so a sweep can tell "no changes" from
    "call failed".
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name for logs."""
        pass

    @abstractmethod
    def validate(self, entries: list[LexiconEntry]) -> list[ValidationJudgment]:
        """Judge a batch of entries.

        Args:
            entries: Entries to judge (one request)

        Returns:
            One judgment per entry the backend could judge
        """
        pass

    @abstractmethod
    def correct(self, entries: list[LexiconEntry], image: PageImage) -> list[EntryCorrection]:
        """Correct invalid entries against their scanned page.

        Args:
            entries: Invalid entries from one page (one request)
            image: The page image

        Returns:
            Field corrections keyed by entry id
        """
        pass

    @abstractmethod
    def extract(self, image: PageImage, prompt: str | None = None) -> list[ExtractedEntry]:
        """Read every entry off a page image."""
        pass

    def close(self) -> None:
        """Release backend resources."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def extract_json_from_response(text: str) -> str:
    """Extract JSON from response, handling markdown code blocks."""
    if not text:
        return "[]"

    json_str = text

    if "```json" in json_str:
        parts = json_str.split("```json")
        if len(parts) >= 2:
            content = parts[1]
            if "```" in content:
                json_str = content.split("```")[0]
            else:
                json_str = content
    elif "```" in json_str:
        parts = json_str.split("```")
        if len(parts) >= 2:
            json_str = parts[1]

    return json_str.strip()


def _as_list(data) -> list:
    """Accept a bare array or an object wrapping one ({"entries": [...]})."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for value in data.values():
            if isinstance(value, list):
                return value
        return [data]
    raise ValueError(f"Expected a JSON array, got {type(data).__name__}")


class ClaudeJudge(EntryJudge):
    """Entry review on Claude."""

    def __init__(self, config: JudgeConfig | None = None, client=None):
        self.config = config or JudgeConfig()
        self._client = client

    @property
    def name(self) -> str:
        return f"claude:{self.config.model}"

    def close(self) -> None:
        """Close the Anthropic client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    @property
    def client(self):
        """Lazy-load Anthropic client with validation.

        The API key is loaded from the .env file in the project root
        (auto-loaded on package import) or ANTHROPIC_API_KEY.
        """
        if self._client is None:
            if not os.environ.get("ANTHROPIC_API_KEY"):
                raise JudgeError(
                    "ANTHROPIC_API_KEY not found. "
                    "Set it in .env file or as environment variable."
                )
            from anthropic import Anthropic
            self._client = Anthropic(timeout=self.config.timeout)
        return self._client

    def _call_api_with_retry(self, params: dict) -> str:
        """Make API call with retry logic for transient failures.

        Returns:
            Text of the first text block

        Raises:
            JudgeQuotaExceeded: When still rate limited after the last retry
            JudgeError: On non-retryable errors or when retries run out
        """
        from anthropic import APIConnectionError, APIError, APIStatusError, RateLimitError

        last_error = None
        rate_limited = False
        for attempt in range(MAX_RETRIES):
            try:
                response = self.client.messages.create(**params)
            except RateLimitError as e:
                last_error = f"Rate limited: {e}"
                rate_limited = True
                log_event("api_retry", {"attempt": attempt + 1, "error": "rate_limited"})
                if attempt < MAX_RETRIES - 1:
                    wait_time = INITIAL_RETRY_DELAY * (2 ** attempt) + random.uniform(0, 1)
                    logger.warning("Rate limited, retrying in %.1fs...", wait_time)
                    time.sleep(wait_time)
                continue
            except APIConnectionError as e:
                last_error = f"Connection error: {e}"
                rate_limited = False
                log_event("api_retry", {"attempt": attempt + 1, "error": "connection"})
                if attempt < MAX_RETRIES - 1:
                    wait_time = INITIAL_RETRY_DELAY * (2 ** attempt)
                    logger.warning("Connection error, retrying in %.1fs...", wait_time)
                    time.sleep(wait_time)
                continue
            except APIStatusError as e:
                # Don't expose API key details
                if e.status_code == 401:
                    raise JudgeError(
                        "Authentication failed. Check your .env file or "
                        "ANTHROPIC_API_KEY environment variable."
                    ) from e
                if e.status_code == 400:
                    raise JudgeError(f"Invalid request: {e.message}") from e
                last_error = f"API error ({e.status_code}): {e.message}"
                rate_limited = False
                continue
            except APIError as e:
                last_error = f"API error: {e}"
                rate_limited = False
                continue

            for block in response.content or []:
                if getattr(block, "type", None) == "text":
                    return block.text
            raise JudgeError("No text content in API response")

        if rate_limited:
            raise JudgeQuotaExceeded(f"Rate limit persisted after {MAX_RETRIES} retries: {last_error}")
        raise JudgeError(f"Failed after {MAX_RETRIES} retries: {last_error}")

    def _parse(self, text: str, adapter: TypeAdapter, what: str) -> list:
        try:
            data = json.loads(extract_json_from_response(text))
            return adapter.validate_python(_as_list(data))
        except json.JSONDecodeError as e:
            raise JudgeError(f"Failed to parse {what} response (invalid JSON): {e}") from e
        except ValidationError as e:
            raise JudgeError(f"{what.capitalize()} response doesn't match expected schema: {e}") from e
        except ValueError as e:
            raise JudgeError(f"Failed to parse {what} response: {e}") from e

    def validate(self, entries: list[LexiconEntry]) -> list[ValidationJudgment]:
        if not entries:
            return []
        text = self._call_api_with_retry(build_validation_request(entries, self.config))
        judgments = self._parse(text, _JUDGMENTS, "validation")
        known = {e.id for e in entries}
        unknown = [j.id for j in judgments if j.id not in known]
        if unknown:
            logger.warning("Ignoring judgments for ids not in the batch: %s", ", ".join(unknown))
        return [j for j in judgments if j.id in known]

    def correct(self, entries: list[LexiconEntry], image: PageImage) -> list[EntryCorrection]:
        if not entries:
            return []
        text = self._call_api_with_retry(build_correction_request(entries, self.config, image))
        corrections = self._parse(text, _CORRECTIONS, "correction")
        known = {e.id for e in entries}
        return [c for c in corrections if c.id in known]

    def extract(self, image: PageImage, prompt: str | None = None) -> list[ExtractedEntry]:
        text = self._call_api_with_retry(build_extraction_request(image, self.config, prompt))
        return self._parse(text, _EXTRACTED, "extraction")
