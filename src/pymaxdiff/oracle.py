"""Boundary to the external choice oracle.

The oracle (typically a language model behind a tool-calling API) answers
two kinds of question: "rank this choice set" and "this feature or this
much cash?". Its payloads are loosely shaped, so every answer goes through
one parse step into a closed result type and one normalisation step into a
canonical Response. Anything that does not fit is marked failed, never
guessed at.

Tech-Friendly Names (Primary):
    - parse_rank_payload(): Payload -> ParsedRanking | ParseFailure
    - normalize_response(): ParsedRanking -> Response (validated against the set)
    - collect_responses(): Ask the oracle about every set with bounded retries
"""

from __future__ import annotations

import concurrent.futures
import json
import re
import threading
import warnings
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence, Union

from pymaxdiff.core.exceptions import OracleResponseError, OracleRetryWarning
from pymaxdiff.core.items import ChoiceSet, Response
from pymaxdiff.core.types import CalibrationChoice, ItemId

# rank(choice_set) -> payload (mapping, JSON text, ParsedRanking or Response)
RankFn = Callable[[ChoiceSet], Any]

_MOST_KEYS = ("most_valued", "mostValued", "most", "best")
_LEAST_KEYS = ("least_valued", "leastValued", "least", "worst")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


# =============================================================================
# PARSE RESULTS
# =============================================================================


@dataclass(frozen=True)
class ParsedRanking:
    """A payload that had the shape of a best/worst answer."""

    most_valued: ItemId
    least_valued: ItemId
    ranking: tuple[ItemId, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ParseFailure:
    """A payload that could not be read as a best/worst answer."""

    reason: str


ParseResult = Union[ParsedRanking, ParseFailure]


# =============================================================================
# PARSING
# =============================================================================


def _load_json_object(text: str) -> Mapping[str, Any] | None:
    try:
        loaded = json.loads(text)
    except json.JSONDecodeError:
        match = _JSON_OBJECT.search(text)
        if match is None:
            return None
        try:
            loaded = json.loads(match.group(0))
        except json.JSONDecodeError:
            return None
    return loaded if isinstance(loaded, Mapping) else None


def _unwrap(payload: Any) -> Mapping[str, Any] | None:
    if isinstance(payload, str):
        payload = _load_json_object(payload)
    if not isinstance(payload, Mapping):
        return None
    arguments = payload.get("arguments")
    if isinstance(arguments, str):
        arguments = _load_json_object(arguments)
    if isinstance(arguments, Mapping):
        return arguments
    return payload


def _first_present(payload: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        if payload.get(key) is not None:
            return payload[key]
    return None


def parse_rank_payload(payload: Any) -> ParseResult:
    """
    Read a ranking answer from an oracle payload.

    Accepted shapes: a mapping or JSON text (possibly embedded in prose),
    optionally wrapped as ``{"arguments": ...}``, holding the best item under
    ``most_valued``/``mostValued``/``most``/``best`` and the worst under
    ``least_valued``/``leastValued``/``least``/``worst``, plus an optional
    ``ranking`` list of ids.

    Returns:
        ParsedRanking, or ParseFailure describing what was wrong

    Example:
        >>> parse_rank_payload('{"best": "a", "worst": "b"}')
        ParsedRanking(most_valued='a', least_valued='b', ranking=())
    """
    if isinstance(payload, ParsedRanking):
        return payload
    body = _unwrap(payload)
    if body is None:
        return ParseFailure(reason="payload is not a JSON object")

    most = _first_present(body, _MOST_KEYS)
    least = _first_present(body, _LEAST_KEYS)
    if not isinstance(most, str) or not isinstance(least, str):
        return ParseFailure(reason=f"missing best/worst keys in payload: {sorted(body)}")

    ranking = body.get("ranking")
    if ranking is None:
        ranking = []
    if not isinstance(ranking, list) or not all(isinstance(item, str) for item in ranking):
        return ParseFailure(reason="ranking must be a list of item ids")

    return ParsedRanking(most_valued=most, least_valued=least, ranking=tuple(ranking))


def normalize_response(
    choice_set: ChoiceSet,
    parsed: ParseResult,
    respondent_id: str = "",
) -> Response:
    """
    Turn a parse result into a Response for ``choice_set``.

    The response is marked failed when parsing failed, when either choice is
    not in the set, or when best and worst are the same item.
    """
    if isinstance(parsed, ParseFailure):
        return Response.failure(choice_set.id, parsed.reason, respondent_id)
    if parsed.most_valued not in choice_set or parsed.least_valued not in choice_set:
        return Response.failure(
            choice_set.id,
            f"choice outside set: best={parsed.most_valued!r}, worst={parsed.least_valued!r}",
            respondent_id,
        )
    if parsed.most_valued == parsed.least_valued:
        return Response.failure(choice_set.id, "best and worst are the same item", respondent_id)
    ranking = tuple(item for item in parsed.ranking if item in choice_set)
    return Response(
        set_id=choice_set.id,
        most_valued=parsed.most_valued,
        least_valued=parsed.least_valued,
        ranking=ranking,
        respondent_id=respondent_id,
    )


def parse_cash_choice(payload: Any) -> CalibrationChoice:
    """
    Read an "A" (feature) / "B" (cash) answer.

    Accepts a CalibrationChoice, the bare letter, or a mapping / JSON text
    with a ``choice`` key.

    Raises:
        OracleResponseError: If the payload holds no A/B choice
    """
    if isinstance(payload, CalibrationChoice):
        return payload
    value = payload
    if isinstance(payload, (str, Mapping)):
        body = _unwrap(payload)
        if body is not None:
            value = body.get("choice")
    if isinstance(value, str) and value.strip().upper() in ("A", "B"):
        return CalibrationChoice(value.strip().upper())
    raise OracleResponseError(f"Expected choice 'A' or 'B', got {payload!r}.")


# =============================================================================
# COLLECTION
# =============================================================================


def _pause(seconds: float, cancel_event: threading.Event) -> None:
    if seconds > 0:
        cancel_event.wait(seconds)


def _attempt_set(
    choice_set: ChoiceSet,
    rank_fn: RankFn,
    respondent_id: str,
    max_retries: int,
    backoff_seconds: float,
    inter_call_delay: float,
    cancel_event: threading.Event,
) -> Response | None:
    """Ask about one set until an attempt succeeds; None if cancelled first."""
    reason = "failed"
    for attempt in range(1, max_retries + 1):
        if cancel_event.is_set():
            return None
        try:
            payload = rank_fn(choice_set)
            if isinstance(payload, Response):
                response = payload
                if not response.failed and not response.is_valid_for(choice_set):
                    response = Response.failure(choice_set.id, "invalid best/worst for set", respondent_id)
            else:
                response = normalize_response(choice_set, parse_rank_payload(payload), respondent_id)
        except Exception as exc:
            response = Response.failure(choice_set.id, f"{type(exc).__name__}: {exc}", respondent_id)
        finally:
            _pause(inter_call_delay, cancel_event)

        if not response.failed:
            return response

        reason = response.failure_reason or "failed"
        warnings.warn(
            f"Oracle attempt {attempt}/{max_retries} for set {choice_set.id} failed: {reason}",
            OracleRetryWarning,
            stacklevel=3,
        )
        if attempt < max_retries:
            _pause(attempt * backoff_seconds, cancel_event)

    return Response.failure(
        choice_set.id, f"failed after {max_retries} attempts: {reason}", respondent_id,
    )


def collect_responses(
    sets: Sequence[ChoiceSet],
    rank_fn: RankFn,
    respondent_id: str = "",
    max_retries: int = 3,
    backoff_seconds: float = 1.0,
    inter_call_delay: float = 0.2,
    max_workers: int = 1,
    cancel_event: threading.Event | None = None,
) -> list[Response]:
    """
    Ask the oracle to rank every set.

    Each set is attempted at most ``max_retries`` times, waiting
    ``attempt * backoff_seconds`` between attempts and ``inter_call_delay``
    after every call. With ``max_workers > 1`` sets are spread over a
    thread pool, one future per set, so a set never has two attempts in
    flight. ``cancel_event`` is checked before every call; a set with no
    completed attempt at cancellation is left out of the result.

    Args:
        sets: Choice sets to ask about
        rank_fn: Oracle callback; may return a payload, a ParsedRanking or
            a Response, and may raise on transient failure
        respondent_id: Recorded on every Response
        max_retries: Attempts per set (at least 1)
        backoff_seconds: Linear backoff unit
        inter_call_delay: Pause after each call
        max_workers: Concurrent sets
        cancel_event: Set it to stop issuing new calls

    Returns:
        Responses in set order; sets whose attempts were exhausted appear as
        failed Responses
    """
    cancel_event = cancel_event or threading.Event()
    max_retries = max(1, int(max_retries))

    def ask(choice_set: ChoiceSet) -> Response | None:
        return _attempt_set(
            choice_set, rank_fn, respondent_id, max_retries,
            backoff_seconds, inter_call_delay, cancel_event,
        )

    if max_workers <= 1:
        responses = []
        for choice_set in sets:
            if cancel_event.is_set():
                break
            response = ask(choice_set)
            if response is not None:
                responses.append(response)
        return responses

    by_set: dict[str, Response] = {}
    with concurrent.futures.ThreadPoolExecutor(
        max_workers=max_workers,
        thread_name_prefix="OracleRank",
    ) as executor:
        future_to_set = {executor.submit(ask, choice_set): choice_set.id for choice_set in sets}
        for future in concurrent.futures.as_completed(future_to_set):
            response = future.result()
            if response is not None:
                by_set[future_to_set[future]] = response

    return [by_set[s.id] for s in sets if s.id in by_set]


def ask_cash_choice(
    choose_fn: Callable[[ItemId, float], Any],
    feature_id: ItemId,
) -> Callable[[float, int, Any], CalibrationChoice]:
    """Adapt ``choose_fn(feature_id, amount)`` into a calibration callback."""

    def choose(amount: float, step: int, phase: Any) -> CalibrationChoice:
        return parse_cash_choice(choose_fn(feature_id, amount))

    return choose
