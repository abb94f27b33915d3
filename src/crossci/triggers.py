# triggers.py
# Event filtering: decides whether an incoming push / pull_request event
# starts the workflow at all. Pure functions over an event descriptor, so
# no CI host is needed to exercise them.

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

PUSH = "push"
PULL_REQUEST = "pull_request"

# GitHub's default activity types for pull_request, plus ready_for_review
DEFAULT_PR_TYPES = ("opened", "synchronize", "reopened", "ready_for_review")


@dataclass(frozen=True)
class Event:
    """
    What happened, as seen by the trigger rules.

    For pull requests `branch` is the base branch the PR targets.
    """
    kind: str
    branch: str
    changed_paths: Tuple[str, ...] = ()
    action: Optional[str] = None
    draft: bool = False

    @property
    def is_draft_pr(self) -> bool:
        return self.kind == PULL_REQUEST and self.draft

    @classmethod
    def push(cls, branch: str, changed_paths: Iterable[str]) -> Event:
        return cls(kind=PUSH, branch=branch, changed_paths=tuple(changed_paths))

    @classmethod
    def pull_request(
        cls,
        action: str,
        base: str,
        changed_paths: Iterable[str],
        *,
        draft: bool = False,
    ) -> Event:
        return cls(
            kind=PULL_REQUEST,
            branch=base,
            changed_paths=tuple(changed_paths),
            action=action,
            draft=draft,
        )

    @classmethod
    def from_github(cls, event_name: str, payload: Dict[str, Any], changed_paths: Iterable[str]) -> Event:
        """Build an event from a GitHub webhook payload (changed paths are fetched separately)."""
        if event_name == PUSH:
            ref = payload.get("ref", "")
            return cls.push(ref.removeprefix("refs/heads/"), changed_paths)
        if event_name == PULL_REQUEST:
            pr = payload.get("pull_request") or {}
            return cls.pull_request(
                payload.get("action", ""),
                (pr.get("base") or {}).get("ref", ""),
                changed_paths,
                draft=bool(pr.get("draft", False)),
            )
        raise ValueError(f"Unsupported event: {event_name!r}")


# ---------------------------------------------------------------------
# Pattern matching
# ---------------------------------------------------------------------

@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern:
    """
    Translate a filter pattern into a regex.

      **    any characters, including '/'
      *     any characters except '/'
      ?     a single character except '/'
      [..]  character class
    """
    out = []
    i = 0
    while i < len(pattern):
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**", i):
                out.append(".*")
                i += 2
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(c))
            else:
                out.append(pattern[i:end + 1])
                i = end
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile("".join(out) + r"\Z")


def matches(value: str, patterns: Sequence[str]) -> bool:
    """
    True if `value` is selected by the patterns.

    Patterns are evaluated in order; a leading '!' excludes, and the last
    pattern that matches decides.
    """
    selected = False
    for pattern in patterns:
        negate = pattern.startswith("!")
        body = pattern[1:] if negate else pattern
        if _compile(body).match(value):
            selected = not negate
    return selected


# ---------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Decision:
    fired: bool
    reason: str

    def __bool__(self) -> bool:
        return self.fired


@dataclass(frozen=True)
class PushTrigger:
    branches: Tuple[str, ...] = ("**",)
    paths: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class PullRequestTrigger:
    types: Tuple[str, ...] = DEFAULT_PR_TYPES
    branches: Tuple[str, ...] = ("**",)
    paths: Optional[Tuple[str, ...]] = None


def _path_hit(changed: Sequence[str], paths: Optional[Sequence[str]]) -> Optional[str]:
    """Return the first changed path selected by `paths` (None when no filter: any change counts)."""
    if paths is None:
        return changed[0] if changed else ""
    for p in changed:
        if matches(p, paths):
            return p
    return None


@dataclass(frozen=True)
class Triggers:
    push: Optional[PushTrigger] = None
    pull_request: Optional[PullRequestTrigger] = None

    def evaluate(self, event: Event) -> Decision:
        if event.kind == PUSH:
            rule = self.push
            if rule is None:
                return Decision(False, "push events are not handled")
        elif event.kind == PULL_REQUEST:
            rule = self.pull_request
            if rule is None:
                return Decision(False, "pull_request events are not handled")
            if event.action not in rule.types:
                return Decision(False, f"pull_request action {event.action!r} not in {list(rule.types)}")
        else:
            return Decision(False, f"unknown event kind {event.kind!r}")

        if not matches(event.branch, rule.branches):
            return Decision(False, f"branch {event.branch!r} not in {list(rule.branches)}")

        hit = _path_hit(event.changed_paths, rule.paths)
        if hit is None:
            return Decision(False, f"no changed path matches {list(rule.paths or [])}")

        if rule.paths is None:
            return Decision(True, f"{event.kind} on {event.branch}")
        return Decision(True, f"{event.kind} on {event.branch} touched {hit}")


def on(
    *,
    push: Optional[PushTrigger] = None,
    pull_request: Optional[PullRequestTrigger] = None,
) -> Triggers:
    return Triggers(push=push, pull_request=pull_request)


def push(*, branches: Sequence[str] = ("**",), paths: Optional[Sequence[str]] = None) -> PushTrigger:
    return PushTrigger(branches=tuple(branches), paths=tuple(paths) if paths is not None else None)


def pull_request(
    *,
    types: Sequence[str] = DEFAULT_PR_TYPES,
    branches: Sequence[str] = ("**",),
    paths: Optional[Sequence[str]] = None,
) -> PullRequestTrigger:
    return PullRequestTrigger(
        types=tuple(types),
        branches=tuple(branches),
        paths=tuple(paths) if paths is not None else None,
    )
