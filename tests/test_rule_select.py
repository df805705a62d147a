import pytest

from conftest import make_rulebase
from rule_select import (
    RuleSelection,
    flatten_rulebase,
    parse_index_input,
    select_rules,
    split_list,
)


@pytest.fixture
def rules():
    rb = make_rulebase()
    return flatten_rulebase(rb["rulebase"], rb["objects-dictionary"])


def test_flatten_drops_sections():
    rb = {
        "rulebase": [
            {"type": "access-section", "name": "S", "rulebase": [
                {"type": "access-rule", "uid": "a", "name": "one"},
                {"type": "access-rule", "uid": "b", "name": "two"},
            ]},
            {"type": "access-rule", "uid": "c", "name": "three"},
        ],
    }
    flat = flatten_rulebase(rb["rulebase"])
    assert [r.uid for r in flat] == ["a", "b", "c"]
    assert [r.position for r in flat] == [1, 2, 3]


def test_flatten_resolves_track_from_dictionary(rules):
    assert len(rules) == 5
    assert rules[0].track.type == "Log"
    assert rules[0].track.per_connection is True
    assert rules[1].track.type == "None"
    assert rules[2].track.type == "Log"
    assert rules[3].track.type == "Log"


def test_flatten_empty():
    assert flatten_rulebase([]) == []
    assert flatten_rulebase([{"type": "access-section", "name": "empty"}]) == []


def test_select_all_keeps_order(rules):
    res = select_rules(rules, RuleSelection(all_rules=True))
    assert res.rules == rules
    assert res.skipped == []


def test_select_all_wins_over_indices(rules):
    res = select_rules(rules, RuleSelection(all_rules=True, indices=["2"], names=["dns"]))
    assert len(res.rules) == 5


def test_select_by_index(rules):
    res = select_rules(rules, RuleSelection(indices=["1", "3", "5"]))
    assert [r.position for r in res.rules] == [1, 3, 5]


def test_select_by_index_skips_bad_entries(rules):
    res = select_rules(rules, RuleSelection(indices=["1", "7", "x", "5"]))
    assert [r.position for r in res.rules] == [1, 5]
    assert len(res.skipped) == 2
    assert "7" in res.skipped[0]
    assert "'x'" in res.skipped[1]


def test_indices_win_over_names(rules):
    res = select_rules(rules, RuleSelection(indices=["2"], names=["dns"]))
    assert [r.uid for r in res.rules] == ["r2"]


def test_select_by_name_in_given_order(rules):
    res = select_rules(rules, RuleSelection(names=["cleanup", "missing", "dns"]))
    assert [r.uid for r in res.rules] == ["r5", "r1"]
    assert len(res.skipped) == 1
    assert "missing" in res.skipped[0]


def test_select_by_name_keeps_duplicates(rules):
    res = select_rules(rules, RuleSelection(names=["web"]))
    assert [r.uid for r in res.rules] == ["r3", "r4"]


def test_parse_index_input():
    assert parse_index_input("1, 3,5") == RuleSelection(indices=["1", "3", "5"])
    assert parse_index_input(" ALL ").all_rules is True
    assert parse_index_input("").is_empty()


def test_split_list():
    assert split_list("a, b,,c ") == ["a", "b", "c"]
    assert split_list(None) == []
