"""Configuration change classification for torrentd.

Compares two configuration snapshots and decides what the running daemon has
to do to move from one to the other.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Flag, auto
from operator import attrgetter
from typing import Any, Callable

from torrentd.models import Config


class Action(Flag):
    """Actions required to apply a configuration change.

    ``Action(0)`` is the empty set: nothing classified changed.
    """

    FORBID_RUNTIME_CHANGE = auto()
    NEED_ENGINE_RECONFIG = auto()
    NEED_RESTART_WATCH = auto()
    NEED_UPDATE_TRACKER = auto()


NO_ACTION = Action(0)


@dataclass(frozen=True)
class FieldRule:
    """A classified field and the action a change to it requires."""

    name: str
    accessor: Callable[[Config], Any]
    action: Action


def _rule(name: str, action: Action) -> FieldRule:
    return FieldRule(name, attrgetter(name), action)


# One rule per field for the individually classified groups
DEDICATED_RULES: tuple[FieldRule, ...] = (
    _rule("done_cmd", Action.FORBID_RUNTIME_CHANGE),
    _rule("watch_directory", Action.NEED_RESTART_WATCH),
    _rule("tracker_list_url", Action.NEED_UPDATE_TRACKER),
)

# Any single difference here means the engine must be reconfigured
ENGINE_RULES: tuple[FieldRule, ...] = tuple(
    _rule(name, Action.NEED_ENGINE_RECONFIG)
    for name in (
        "incoming_port",
        "download_directory",
        "engine_debug",
        "enable_upload",
        "enable_seeding",
        "upload_rate",
        "download_rate",
        "obfs_preferred",
        "obfs_require_preferred",
        "disable_trackers",
        "disable_ipv6",
        "proxy_url",
    )
)

CLASSIFIED_FIELDS = frozenset(rule.name for rule in DEDICATED_RULES + ENGINE_RULES)


@dataclass(frozen=True)
class FieldChange:
    """A field whose value differs between two snapshots."""

    name: str
    old: Any
    new: Any


def classify(old: Config, new: Config) -> Action:
    """Classify the change from ``old`` to ``new``.

    Pure and order independent. Flags from different groups add up; the
    engine group contributes a single flag however many of its fields differ.
    """
    actions = NO_ACTION
    for rule in DEDICATED_RULES:
        if rule.accessor(old) != rule.accessor(new):
            actions |= rule.action

    if any(rule.accessor(old) != rule.accessor(new) for rule in ENGINE_RULES):
        actions |= Action.NEED_ENGINE_RECONFIG

    return actions


def changed_fields(old: Config, new: Config) -> list[FieldChange]:
    """List every field that differs, classified or not, in model order."""
    changes = []
    for name in Config.model_fields:
        old_value = getattr(old, name)
        new_value = getattr(new, name)
        if old_value != new_value:
            changes.append(FieldChange(name, old_value, new_value))
    return changes


def describe_actions(actions: Action) -> list[str]:
    """Human-readable member names of ``actions``, in declaration order."""
    return [member.name for member in Action if member in actions]


def generate_diff_report(changes: list[FieldChange], actions: Action) -> str:
    """Generate a text report of a classified change.

    Args:
        changes: Output of ``changed_fields``
        actions: Output of ``classify``

    Returns:
        Text report

    """
    report = []
    if changes:
        report.append("=== MODIFIED ===")
        for change in changes:
            marker = "~" if change.name in CLASSIFIED_FIELDS else " "
            report.append(f"{marker} {change.name}:")
            report.append(f"  - {change.old!r}")
            report.append(f"  + {change.new!r}")
        report.append("")

    names = describe_actions(actions)
    report.append(f"Actions: {', '.join(names) if names else 'none'}")
    report.append(f"Summary: {len(changes)} changes")
    return "\n".join(report)
