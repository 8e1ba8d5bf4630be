import pytest

from services.file_catalog import (
    analyze_s3_state,
    classify_object,
    compute_target_key,
    find_conflicts,
    flag_target_collisions,
    get_file_type,
    is_system_file,
    levenshtein,
    recategorize
)


class TestClassifyObject:
    def test_scenario_fifty_objects_three_system_files(self):
        keys = [f"mediateca/EV/{i:03d} Track.mp3" for i in range(1, 48)]
        keys += [
            "mediateca/EV/.DS_Store",
            "mediateca/EV/Thumbs.db",
            "mediateca/EV/sub/.DS_Store",
        ]
        entries = [classify_object("EV", key, 1024) for key in keys]

        ignored = [e for e in entries if e.suggested_action == "ignore"]
        included = [e for e in entries if e.suggested_action == "include"]
        assert len(entries) == 50
        assert len(ignored) == 3
        assert len(included) == 47
        assert all(e.metadata["source_type"] == "system_file" for e in ignored)

    @pytest.mark.parametrize("key, file_type, category, action", [
        ("mediateca/EV/001 Talk.mp3", "audio", "audio_main", "include"),
        ("mediateca/EV/audio2/001a TRAD Talk.mp3", "audio", "audio_translation", "include"),
        ("mediateca/EV/legacy/old.mp3", "audio", "audio_legacy", "include"),
        ("mediateca/EV/Transcrição dia 1.pdf", "document", "transcript", "include"),
        ("mediateca/EV/notes.txt", "document", "document", "review"),
        ("mediateca/EV/video/day1.mp4", "video", "video", "include"),
        ("mediateca/EV/cover.jpg", "image", "image", "review"),
        ("mediateca/EV/audio.zip", "archive", "archive", "include"),
        ("mediateca/EV/readme", "other", "other", "review"),
    ])
    def test_type_category_and_action(self, key, file_type, category, action):
        entry = classify_object("EV", key, 10)
        assert entry.file_type == file_type
        assert entry.category == category
        assert entry.suggested_action == action

    def test_loose_file_gets_target_key(self):
        entry = classify_object("EV", "mediateca/EV/audio2/001a TRAD Talk.mp3", 10)
        assert entry.target_key == "events/EV/audio2/001a TRAD Talk.mp3"
        assert entry.metadata["audio_set"] == "audio2"
        assert entry.s3_directory == "mediateca/EV/audio2"

    def test_archive_target_prefix(self):
        main = classify_object("EV", "mediateca/EV/audio.zip", 10)
        translation = classify_object("EV", "mediateca/EV/audio2/audio2.zip", 10)
        assert main.metadata["needs_extraction"] is True
        assert main.metadata["target_prefix"] == "events/EV"
        assert translation.metadata["target_prefix"] == "events/EV/audio2"
        assert main.target_key is None

    def test_expected_names_mark_matches(self):
        expected = {"001 talk.mp3"}
        entry = classify_object("EV", "mediateca/EV/001 Talk.mp3", 10, expected)
        other = classify_object("EV", "mediateca/EV/002 Talk.mp3", 10, expected)
        assert entry.metadata["matched"] is True
        assert other.metadata["matched"] is False

    def test_custom_target_root(self):
        entry = classify_object("EV", "mediateca/EV/001 Talk.mp3", 10, target_root="")
        assert entry.target_key == "EV/001 Talk.mp3"


def test_system_files():
    assert is_system_file("mediateca/EV/.DS_Store")
    assert is_system_file("mediateca/EV/__MACOSX/001.mp3")
    assert is_system_file("mediateca/EV/desktop.ini")
    assert not is_system_file("mediateca/EV/001.mp3")


def test_file_type_is_case_insensitive():
    assert get_file_type("TALK.MP3") == "audio"
    assert get_file_type("archive.7z") == "archive"


def test_compute_target_key_per_category():
    assert compute_target_key("EV", "a.mp3", "audio_legacy") == "events/EV/legacy/a.mp3"
    assert compute_target_key("EV", "a.pdf", "transcript") == "events/EV/transcripts/a.pdf"
    assert compute_target_key("EV", "a.jpg", "image") == "events/EV/other/a.jpg"


def test_recategorize_updates_target_key():
    entry = classify_object("EV", "mediateca/EV/audio2/007 Prayer.mp3", 10)
    recategorize(entry, "audio_legacy")
    assert entry.category == "audio_legacy"
    assert entry.target_key == "events/EV/legacy/007 Prayer.mp3"


class TestConflicts:
    def test_duplicate_filename_in_two_directories(self):
        entries = [
            classify_object("EV", "mediateca/EV/a/Talk.mp3", 1),
            classify_object("EV", "mediateca/EV/b/Talk.mp3", 1),
        ]
        find_conflicts(entries)
        assert entries[0].conflicts == ["Duplicate filename: also in mediateca/EV/b"]
        assert entries[1].conflicts == ["Duplicate filename: also in mediateca/EV/a"]

    def test_similar_names(self):
        entries = [
            classify_object("EV", "mediateca/EV/Opening Talk.mp3", 1),
            classify_object("EV", "mediateca/EV/Opening Tlak.mp3", 1),
        ]
        find_conflicts(entries)
        assert entries[0].conflicts == ["Similar name: Opening Tlak.mp3"]
        assert entries[1].conflicts == ["Similar name: Opening Talk.mp3"]

    def test_sibling_tracks_are_not_conflicts(self):
        entries = [
            classify_object("EV", "mediateca/EV/001 Talk.mp3", 1),
            classify_object("EV", "mediateca/EV/002 Talk.mp3", 1),
        ]
        find_conflicts(entries)
        assert entries[0].conflicts == []
        assert entries[1].conflicts == []

    def test_system_files_are_skipped(self):
        entries = [
            classify_object("EV", "mediateca/EV/.DS_Store", 1),
            classify_object("EV", "mediateca/EV/sub/.DS_Store", 1),
        ]
        find_conflicts(entries)
        assert all(e.conflicts == [] for e in entries)

    def test_shared_target_key_goes_to_review(self):
        entries = [
            classify_object("E1", "mediateca/E1/cd1/001 Talk.mp3", 1),
            classify_object("E1", "mediateca/E1/cd2/001 Talk.mp3", 1),
            classify_object("E1", "mediateca/E1/cd2/002 Talk.mp3", 1),
        ]
        flagged = flag_target_collisions(entries)
        assert [e.s3_key for e in flagged] == [
            "mediateca/E1/cd1/001 Talk.mp3",
            "mediateca/E1/cd2/001 Talk.mp3",
        ]
        assert [e.suggested_action for e in entries] == ["review", "review", "include"]
        assert entries[0].conflicts == [
            "Same target events/E1/001 Talk.mp3 as mediateca/E1/cd2/001 Talk.mp3"
        ]

    def test_ignored_entries_do_not_collide(self):
        entries = [
            classify_object("E1", "mediateca/E1/cd1/001 Talk.mp3", 1),
            classify_object("E1", "mediateca/E1/cd2/001 Talk.mp3", 1),
        ]
        entries[1].suggested_action = "ignore"
        assert flag_target_collisions(entries) == []
        assert entries[0].suggested_action == "include"


def test_levenshtein():
    assert levenshtein("kitten", "sitting") == 3
    assert levenshtein("abc", "abc") == 0
    assert levenshtein("abcdef", "a", max_distance=2) == 3


class TestS3State:
    def test_extracted(self):
        state = analyze_s3_state(
            ["mediateca/EV/001.mp3", "mediateca/EV/002.mp3"],
            "mediateca/EV",
            ["001.mp3", "002.mp3"]
        )
        assert state["state"] == "EXTRACTED"
        assert state["missingTracks"] == []

    def test_partial(self):
        state = analyze_s3_state(["mediateca/EV/001.mp3"], "mediateca/EV", ["001.mp3", "002.mp3"])
        assert state["state"] == "PARTIAL"
        assert state["missingTracks"] == ["002.mp3"]

    def test_zip_only(self):
        state = analyze_s3_state(
            ["mediateca/EV/audio.zip"], "mediateca/EV", ["001.mp3"], zip_exists=True
        )
        assert state["state"] == "ZIP_ONLY"

    def test_missing(self):
        assert analyze_s3_state([], "mediateca/EV", ["001.mp3"])["state"] == "MISSING"

    def test_match_by_name_in_subfolder(self):
        state = analyze_s3_state(["mediateca/EV/audio/001.MP3"], "mediateca/EV", ["001.mp3"])
        assert state["state"] == "EXTRACTED"
