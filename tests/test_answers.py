from app.engine.answers import answered_count, is_blank, merge_all, merge_answers


def test_incoming_wins_per_key():
    merged = merge_answers({"q1": "A", "q2": "B"}, {"q2": "C"})
    assert merged == {"q1": "A", "q2": "C"}


def test_blank_incoming_never_erases():
    existing = {"q1": "A", "q2": "essay draft"}
    assert merge_answers(existing, {"q1": "", "q2": None}) == existing
    assert merge_answers(existing, {"q2": "   "}) == existing


def test_omitted_key_survives_repeated_merges():
    a = {"q1": "A", "q2": "first"}
    b = {"q2": "second"}
    c = {"q3": "True"}
    merged = merge_answers(merge_answers(a, b), c)
    assert merged["q1"] == "A"
    assert merged == {"q1": "A", "q2": "second", "q3": "True"}


def test_blank_values_are_not_stored():
    assert merge_answers({}, {"q1": "", "q2": None, "q3": "x"}) == {"q3": "x"}


def test_merge_all_later_captures_win():
    queued_autosave = {"q1": "A", "q2": "draft"}
    last_chance = {"q2": "final draft", "q3": ""}
    live = {"q3": "False"}
    assert merge_all([queued_autosave, last_chance, live]) == {
        "q1": "A",
        "q2": "final draft",
        "q3": "False",
    }


def test_merge_all_skips_missing_sources():
    assert merge_all([None, {"q1": "A"}, None]) == {"q1": "A"}
    assert merge_all([]) == {}


def test_keys_are_normalized_to_strings():
    assert merge_answers(None, {7: "A"}) == {"7": "A"}


def test_answered_count_and_blank():
    assert is_blank(None)
    assert is_blank(" ")
    assert not is_blank("0")
    assert answered_count({"q1": "A", "q2": "", "q3": None}) == 1
