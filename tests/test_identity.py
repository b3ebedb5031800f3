from nameban_telegram.identity import candidates_for, display_name


def test_username_only():
    assert candidates_for("Super_Spammer99", None, None) == ["super_spammer99"]


def test_display_name_variants_without_repeats():
    assert candidates_for(None, "Evil", "User") == ["evil user", "eviluser"]
    assert candidates_for(None, "Solo", None) == ["solo"]


def test_quotes_and_whitespace():
    got = candidates_for("bob", "O'Brien", '"Bob"  `x`')
    assert got == [
        "bob",
        "o'brien \"bob\"  `x`",
        "obrien bob  x",
        "o'brien\"bob\"`x`",
        "obrienbobx",
    ]


def test_no_identity_gives_no_candidates():
    assert candidates_for(None, None, None) == []
    assert candidates_for("", "", "") == []


def test_control_characters_survive_stripping():
    # otherwise "test\nuser" would sneak past the log-injection gate as "testuser"
    assert candidates_for(None, "test\nuser", None) == ["test\nuser"]


def test_display_name():
    assert display_name("A", None) == "A"
    assert display_name(None, "B") == "B"
    assert display_name("A", "B") == "A B"
