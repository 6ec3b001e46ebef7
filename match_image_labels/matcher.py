import concurrent.futures
import logging
import os
import threading
from collections.abc import Sequence
from pathlib import Path

import llm
from pydantic import StrictBool, StrictStr, TypeAdapter, ValidationError

from .image_utils import load_image_content
from .retry import Backoff
from .types import ConfigError, Matched, MatchOutcome, NoMatch

DEFAULT_MODEL = "gpt-4o"
DEFAULT_TIMEOUT = 60.0  # seconds per model request

PROMPT_TEMPLATE = """You are matching a photo against a fixed list of names.
Compare the attached image with these possible names: {labels}.
Pick the single name from the list that best describes what the image shows.
Always reply with a plain text JSON array of exactly two elements:
[<boolean>, "<name from the list, or empty if nothing matches>"]
If nothing in the list matches, reply with [false, ""].
Do not format the reply as code or markdown and do not use backticks.
Reply with the JSON array only."""

_response_adapter = TypeAdapter(tuple[StrictBool, StrictStr])

logger = logging.getLogger(__name__)


class MatchParseError(ValueError):
    """The model's reply was not a plain ``[bool, "label"]`` JSON array."""

    def __init__(self, response: str, reason: str):
        self.response = response
        self.reason = reason
        super().__init__(f"Invalid match response {response!r}: {reason}")


def build_prompt(labels: Sequence[str]) -> str:
    return PROMPT_TEMPLATE.format(labels=", ".join(labels))


def decode_response(text: str) -> tuple[bool, str]:
    """Strictly decode the model's reply into ``(match_found, label)``.

    Raises:
        MatchParseError: if the reply is not exactly a two-element JSON array of
            a boolean and a string. Fenced or markdown-wrapped replies are
            rejected like any other malformed reply.
    """
    try:
        return _response_adapter.validate_json(text, strict=True)
    except ValidationError as e:
        reason = "; ".join(err["msg"] for err in e.errors())
        raise MatchParseError(text, reason) from e


def parse_response(text: str, labels: Sequence[str] = ()) -> MatchOutcome:
    """Turn the model's reply into a match outcome. Never raises."""
    try:
        match_found, label = decode_response(text)
    except MatchParseError as e:
        logger.error("%s; treating as no match", e)
        return NoMatch()

    if not match_found:
        return NoMatch()
    if not label.strip():
        logger.warning("Model reported a match without a label: %r", text)
        return NoMatch()
    if labels and label not in labels:
        logger.warning("Model chose %r, which is not one of the candidate labels", label)
    return Matched(label)


def get_model(model_name: str | None) -> llm.Model:
    try:
        model = llm.get_model(model_name or DEFAULT_MODEL)
    except llm.UnknownModelError as e:
        raise ConfigError(f"Unknown model {model_name}: {e}") from e
    if model.needs_key and not model.key:
        if not os.environ.get("OPENAI_API_KEY"):
            raise ConfigError(
                "OPENAI_API_KEY environment variable not set. " "Get one from https://platform.openai.com/api-keys"
            )
    if not any(t in model.attachment_types for t in ["image/jpeg", "image/png", "image/webp"]):
        raise ConfigError(f"Model {model_name} does not support any image types")
    return model


def request_match(model: llm.Model, labels: Sequence[str], image_content: bytes) -> str:
    return model.prompt(
        build_prompt(labels),
        attachments=[llm.Attachment(content=image_content)],
    ).text()


def request_with_timeout(model: llm.Model, labels: Sequence[str], image_content: bytes, timeout: float) -> str:
    future: concurrent.futures.Future[str] = concurrent.futures.Future()

    def run() -> None:
        try:
            future.set_result(request_match(model, labels, image_content))
        except Exception as e:
            future.set_exception(e)

    # Daemon, so a request that never returns doesn't keep the worker process alive
    threading.Thread(target=run, name="match-request", daemon=True).start()
    return future.result(timeout=timeout)


def match_label(
    image_path: Path,
    labels: Sequence[str],
    *,
    model_name: str = DEFAULT_MODEL,
    retries: int = 0,
    timeout: float = DEFAULT_TIMEOUT,
) -> MatchOutcome:
    """Ask the model which of ``labels`` the image at ``image_path`` shows.

    Unreadable images, request failures, timeouts, and malformed replies are
    logged and reported as ``NoMatch``; only the outcome leaves this function.
    """
    model = llm.get_model(model_name)

    try:
        image_content = load_image_content(image_path, model.attachment_types)
    except (OSError, ValueError) as e:
        logger.error("Could not read image %s: %s", image_path, e)
        return NoMatch()

    try:
        logger.debug("Requesting match for %s", image_path)
        response = Backoff(retries).call(request_with_timeout, model, labels, image_content, timeout)
    except TimeoutError:
        logger.error("Model request for %s timed out after %.0fs", image_path, timeout)
        return NoMatch()
    except Exception as e:
        logger.error("Model request for %s failed: %s", image_path, e)
        return NoMatch()

    logger.debug("Response for %s: %r", image_path, response)
    return parse_response(response, labels)
