# rule_select.py
# Python 3.8/3.9 compatible

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from track_spec import TrackSpec, resolve_track

logger = logging.getLogger(__name__)

RULE_TYPE = "access-rule"
SECTION_TYPE = "access-section"
ALL_SENTINEL = "all"


@dataclass
class AccessRule:
    uid: str
    name: str
    position: int
    track: TrackSpec

    def label(self) -> str:
        return f"#{self.position} {self.name or '(unnamed)'}"


@dataclass
class RuleSelection:
    all_rules: bool = False
    indices: List[str] = field(default_factory=list)
    names: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.all_rules or self.indices or self.names)


@dataclass
class SelectionResult:
    rules: List[AccessRule]
    skipped: List[str] = field(default_factory=list)


def objects_by_uid(objects_dictionary: Optional[List[Dict[str, Any]]]) -> Dict[str, Dict[str, Any]]:
    return {o["uid"]: o for o in (objects_dictionary or []) if isinstance(o, dict) and o.get("uid")}


def flatten_rulebase(
    rulebase: List[Dict[str, Any]],
    objects_dictionary: Optional[List[Dict[str, Any]]] = None,
) -> List[AccessRule]:
    """
    Collect access rules from a rulebase, descending one level into sections.
    Sections themselves are dropped; positions are 1-based in fetch order.
    """
    objects = objects_by_uid(objects_dictionary)
    raw_rules: List[Dict[str, Any]] = []
    for item in rulebase or []:
        if not isinstance(item, dict):
            continue
        kind = item.get("type")
        if kind == RULE_TYPE:
            raw_rules.append(item)
        elif kind == SECTION_TYPE or "rulebase" in item:
            for child in item.get("rulebase") or []:
                if isinstance(child, dict) and child.get("type") == RULE_TYPE:
                    raw_rules.append(child)

    return [
        AccessRule(
            uid=r.get("uid", ""),
            name=r.get("name") or "",
            position=i,
            track=resolve_track(r.get("track"), objects),
        )
        for i, r in enumerate(raw_rules, start=1)
    ]


def parse_index_input(text: str) -> RuleSelection:
    """'1, 3,5' -> indices; 'all' -> every rule."""
    parts = [p.strip() for p in (text or "").split(",") if p.strip()]
    if any(p.lower() == ALL_SENTINEL for p in parts):
        return RuleSelection(all_rules=True)
    return RuleSelection(indices=parts)


def split_list(text: Optional[str]) -> List[str]:
    return [p.strip() for p in (text or "").split(",") if p.strip()]


def select_rules(rules: List[AccessRule], selection: RuleSelection) -> SelectionResult:
    if selection.all_rules:
        return SelectionResult(rules=list(rules))

    skipped: List[str] = []
    picked: List[AccessRule] = []

    if selection.indices:
        for raw in selection.indices:
            try:
                idx = int(str(raw).strip())
            except ValueError:
                msg = f"Skipping rule index {raw!r}: not a number"
                logger.warning(msg)
                skipped.append(msg)
                continue
            if idx < 1 or idx > len(rules):
                msg = f"Skipping rule index {idx}: out of range 1-{len(rules)}"
                logger.warning(msg)
                skipped.append(msg)
                continue
            picked.append(rules[idx - 1])
        return SelectionResult(rules=picked, skipped=skipped)

    for name in selection.names:
        matches = [r for r in rules if r.name == name]
        if not matches:
            msg = f"Skipping rule name {name!r}: no rule with that name"
            logger.warning(msg)
            skipped.append(msg)
            continue
        if len(matches) > 1:
            logger.info("Rule name %r matches %d rules; applying to all of them", name, len(matches))
        picked.extend(matches)
    return SelectionResult(rules=picked, skipped=skipped)
