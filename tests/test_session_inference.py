from services.session_inference import (
    detect_degenerate_numbering,
    infer_sessions_from_filenames,
    session_assignments
)
from services.filename_parser import parse_track_filename


def _numbers(session):
    return [(t.filename, t.track_number) for t in session.tracks]


def test_single_default_session_without_markers():
    sessions = infer_sessions_from_filenames(["001 Opening.mp3", "002 Teaching.mp3"])
    assert len(sessions) == 1
    assert sessions[0].number == 1
    assert sessions[0].title == "Session 1"
    assert sessions[0].renumbered is False
    assert _numbers(sessions[0]) == [("001 Opening.mp3", 1), ("002 Teaching.mp3", 2)]


def test_all_zero_numbers_are_renumbered():
    sessions = infer_sessions_from_filenames(["000 A.mp3", "000 B.mp3"])
    session = sessions[0]
    assert session.renumbered is True
    assert session.renumber_reason == "all_zero"
    assert _numbers(session) == [("000 A.mp3", 1), ("000 B.mp3", 2)]


def test_duplicate_numbers_keep_filename_order():
    sessions = infer_sessions_from_filenames(
        ["01 Intro.mp3", "01 Teaching.mp3", "02 Close.mp3"]
    )
    session = sessions[0]
    assert session.renumber_reason == "duplicate_numbers"
    assert _numbers(session) == [
        ("01 Intro.mp3", 1),
        ("01 Teaching.mp3", 2),
        ("02 Close.mp3", 3),
    ]


def test_year_like_numbers_are_renumbered():
    sessions = infer_sessions_from_filenames(["2019 Talk.mp3", "2020 Talk.mp3"])
    assert sessions[0].renumber_reason == "date_numbers"
    assert [t.track_number for t in sessions[0].tracks] == [1, 2]


def test_renumbering_puts_translations_last():
    sessions = infer_sessions_from_filenames(
        ["01 Talk.mp3", "01 TRAD Talk.mp3", "01 Other.mp3"]
    )
    session = sessions[0]
    assert session.renumbered is True
    by_name = dict(_numbers(session))
    assert by_name["01 Talk.mp3"] == 1
    assert by_name["01 Other.mp3"] == 2
    assert by_name["01 TRAD Talk.mp3"] == 3


def test_translation_and_original_share_number_without_renumbering():
    sessions = infer_sessions_from_filenames(["001 Opening.mp3", "001a TRAD Abertura.mp3"])
    session = sessions[0]
    assert session.renumbered is False
    assert [t.filename for t in session.tracks] == ["001 Opening.mp3", "001a TRAD Abertura.mp3"]


def test_dated_groups_are_ordered_by_period():
    sessions = infer_sessions_from_filenames([
        "20230615_PM_Part 2 JKR talk.mp3",
        "20230615_AM_Part 2 JKR talk.mp3",
    ])
    assert len(sessions) == 2
    assert sessions[0].period == "morning"
    assert sessions[0].number == 1
    assert sessions[1].period == "afternoon"
    assert sessions[0].title == "2023-06-15 – Morning (Part 2)"


def test_orphan_translation_joins_group_of_its_original():
    sessions = infer_sessions_from_filenames([
        "001 2019-06-15 Opening.mp3",
        "001 2019-06-16 Closing.mp3",
        "001 TRAD Palestra.mp3",
    ])
    assert len(sessions) == 2
    first = sessions[0]
    assert first.date == "2019-06-15"
    assert "001 TRAD Palestra.mp3" in [t.filename for t in first.tracks]
    assert all(t.filename != "001 TRAD Palestra.mp3" for t in sessions[1].tracks)


def test_untranslated_orphans_go_to_default_session_last():
    sessions = infer_sessions_from_filenames([
        "001 2019-06-15 Opening.mp3",
        "Loose recording.mp3",
    ])
    assert len(sessions) == 2
    assert sessions[0].date == "2019-06-15"
    assert sessions[1].date is None
    assert sessions[1].title == "Session 2"


def test_session_assignments_map_filenames():
    sessions = infer_sessions_from_filenames(["001 JKR - Opening.mp3", "002 JKR - Teaching.mp3"])
    assignments = session_assignments(sessions)
    assert assignments["002 JKR - Teaching.mp3"]["session_number"] == 1
    assert assignments["002 JKR - Teaching.mp3"]["track_number"] == 2
    assert assignments["001 JKR - Opening.mp3"]["speaker"] == "JKR"


def test_detect_degenerate_numbering_clean_list():
    tracks = [parse_track_filename(name) for name in ("001 A.mp3", "002 B.mp3")]
    assert detect_degenerate_numbering(tracks) is None
    assert detect_degenerate_numbering([]) is None


def test_empty_input():
    assert infer_sessions_from_filenames([]) == []
