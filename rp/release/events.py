"""Inbound triggers as discrete messages.

GitHub Actions hands every job an event name and a JSON payload. Each trigger
the release process reacts to is parsed into exactly one message; the CLI
routes each message to a single handler. Payloads that are not triggers (a
branch push, an in-progress workflow run) parse to None.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path

from rp.core.result import Err, Ok, Result
from rp.core.structured import StrDict, as_str_dict, get_int, get_str, get_table
from rp.release.automerge import classify_bump
from rp.release.config import ReleaseConfig
from rp.release.errors import PipelineError
from rp.release.model import BumpClass, Conclusion, PipelineRunResult, ReleaseTag
from rp.release.version import parse_tag_ref

# Dependabot titles: "Bump serde from 1.0.190 to 1.0.193" (optionally "in /dir").
_BUMP_TITLE_RE = re.compile(r"\bfrom\s+(\S+)\s+to\s+(\S+)", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class TagPushed:
    tag: ReleaseTag


@dataclass(frozen=True, slots=True)
class ManualRun:
    family: str | None
    tag: ReleaseTag | None


@dataclass(frozen=True, slots=True)
class RunConcluded:
    result: PipelineRunResult


@dataclass(frozen=True, slots=True)
class ManualDispatch:
    cycle: str | None


@dataclass(frozen=True, slots=True)
class ChangeRequest:
    number: int
    actor: str
    bump: BumpClass | None
    title: str


InboundEvent = TagPushed | ManualRun | RunConcluded | ManualDispatch | ChangeRequest


def _invalid(message: str, hint: str | None = None) -> Err[PipelineError]:
    return Err(PipelineError(kind="invalid_input", message=message, hint=hint))


def normalize_conclusion(value: str | None) -> Conclusion:
    """Collapse GitHub run conclusions to success / failure / cancelled.

    ``timed_out``, ``skipped``, ``action_required`` and friends never count as
    a success, so they are failures here.
    """
    match value:
        case "success":
            return "success"
        case "cancelled":
            return "cancelled"
        case _:
            return "failure"


def _parse_push(payload: StrDict) -> Result[InboundEvent | None, PipelineError]:
    ref = get_str(payload, "ref")
    if ref is None:
        return _invalid("push payload has no ref")
    tag = parse_tag_ref(ref)
    return Ok(TagPushed(tag=tag) if tag is not None else None)


def _parse_dispatch(payload: StrDict) -> Result[InboundEvent | None, PipelineError]:
    inputs = get_table(payload, "inputs") or {}
    raw_tag = get_str(inputs, "tag")
    tag = parse_tag_ref(raw_tag) if raw_tag else None
    if raw_tag and tag is None:
        return _invalid(f"workflow_dispatch tag is not vMAJOR.MINOR.PATCH: {raw_tag}")

    action = get_str(inputs, "action") or "run"
    match action:
        case "run":
            return Ok(ManualRun(family=get_str(inputs, "family"), tag=tag))
        case "dispatch":
            return Ok(ManualDispatch(cycle=tag.tag if tag else None))
        case _:
            return _invalid(f"unknown workflow_dispatch action: {action}", hint="run | dispatch")


def _parse_workflow_run(
    payload: StrDict, config: ReleaseConfig
) -> Result[InboundEvent | None, PipelineError]:
    if get_str(payload, "action") != "completed":
        return Ok(None)

    run = get_table(payload, "workflow_run")
    if run is None:
        return _invalid("workflow_run payload has no workflow_run")

    name = get_str(run, "name")
    family = config.family_for_workflow(name) if name else None
    if family is None:
        return _invalid(f"workflow is not a release family: {name}")

    head = get_str(run, "head_branch")
    tag = parse_tag_ref(head) if head else None
    timestamp = get_str(run, "updated_at") or get_str(run, "created_at") or ""
    return Ok(
        RunConcluded(
            result=PipelineRunResult(
                family=family.name,
                tag=tag,
                conclusion=normalize_conclusion(get_str(run, "conclusion")),
                timestamp=timestamp,
            )
        )
    )


def bump_from_title(title: str) -> BumpClass | None:
    m = _BUMP_TITLE_RE.search(title)
    if m is None:
        return None
    return classify_bump(m.group(1), m.group(2))


def _parse_pull_request(payload: StrDict) -> Result[InboundEvent | None, PipelineError]:
    pr = get_table(payload, "pull_request")
    if pr is None:
        return _invalid("pull_request payload has no pull_request")

    number = get_int(payload, "number") or get_int(pr, "number")
    user = get_table(pr, "user") or {}
    actor = get_str(user, "login")
    if number is None or actor is None:
        return _invalid("pull_request payload lacks number or user.login")

    title = get_str(pr, "title") or ""
    return Ok(ChangeRequest(number=number, actor=actor, bump=bump_from_title(title), title=title))


def parse_github_event(
    name: str, payload: object, config: ReleaseConfig
) -> Result[InboundEvent | None, PipelineError]:
    data = as_str_dict(payload)
    if data is None:
        return _invalid(f"{name} payload is not a JSON object")

    match name:
        case "push":
            return _parse_push(data)
        case "workflow_dispatch":
            return _parse_dispatch(data)
        case "workflow_run":
            return _parse_workflow_run(data, config)
        case "pull_request" | "pull_request_target":
            return _parse_pull_request(data)
        case _:
            return Ok(None)


def load_event_payload(path: Path) -> Result[object, PipelineError]:
    """Read the JSON file GitHub Actions points ``GITHUB_EVENT_PATH`` at."""
    try:
        return Ok(json.loads(path.read_text(encoding="utf-8")))
    except FileNotFoundError:
        return _invalid(f"event payload not found: {path}")
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        return _invalid(f"unreadable event payload: {e}", hint=str(path))
