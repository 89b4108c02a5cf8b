from api.validation import (
    REMOVED_REFERENCE,
    SAFETY_RULES,
    VAGUE_CITATION_CORRECTION,
    ResponseValidator,
    append_corrections,
    sanitize_input,
)

STORED = {("John", 3, 16), ("Philippians", 4, 6), ("Philippians", 4, 7), ("1 Peter", 5, 7)}


def _exists(book, chapter, verse, translation):
    return (book, chapter, verse) in STORED


def _validator():
    return ResponseValidator(_exists)


def test_fabricated_book_is_an_issue():
    result = _validator().validate_response("As Hesitations 3:14 teaches, be patient.")
    assert result["is_valid"] is False
    assert "Invalid verse reference: Hesitations 3:14" in result["issues"]


def test_stored_reference_passes():
    result = _validator().validate_response("God loves you, as John 3:16 shows.")
    assert result["is_valid"] is True
    assert result["issues"] == []
    assert result["corrections"] == []


def test_missing_verse_in_real_book_is_an_issue():
    result = _validator().validate_response("Read John 99:1 today.")
    assert result["is_valid"] is False


def test_unknown_book_gets_removal_correction():
    result = _validator().validate_response("As it says in Benjamin 4:20, be strong.")
    assert result["is_valid"] is False
    assert "Invalid verse reference: Benjamin 4:20" in result["issues"]
    assert 'Remove or correct the reference "Benjamin 4:20"' in result["corrections"]


def test_duplicate_reference_reported_once():
    result = _validator().validate_response("Benjamin 4:20 and again Benjamin 4:20")
    assert len(result["issues"]) == 1


def test_lookup_failure_is_a_warning():
    def broken(*_args):
        raise RuntimeError("db down")

    result = ResponseValidator(broken).validate_response("See John 3:16")
    assert result["is_valid"] is True
    assert result["warnings"] == ["Could not verify reference: John 3:16"]


def test_vague_citation_needs_reference():
    result = _validator().validate_response("The Bible says we should not worry.")
    assert VAGUE_CITATION_CORRECTION in result["corrections"]
    assert result["is_valid"] is True


def test_vague_citation_followed_by_reference():
    result = _validator().validate_response("The Bible says in Philippians 4:6 not to worry.")
    assert VAGUE_CITATION_CORRECTION not in result["corrections"]


def test_prosperity_teaching_is_an_issue():
    result = _validator().validate_response("God wants you to be rich.")
    assert result["is_valid"] is False
    assert "Contains prosperity gospel teaching" in result["issues"]


def test_works_salvation_negated_nearby_is_allowed():
    text = "Some teach salvation by works, but Scripture is clear it is by grace and not by works."
    result = _validator().validate_response(text)
    assert "Suggests salvation by works" not in result["issues"]


def test_works_salvation_is_an_issue():
    result = _validator().validate_response("You earn salvation by works of charity.")
    assert "Suggests salvation by works" in result["issues"]


def test_denominational_teaching_is_a_warning():
    result = _validator().validate_response("Baptism is required for salvation.")
    assert result["is_valid"] is True
    assert any("baptism" in w for w in result["warnings"])


def test_self_harm_without_crisis_line_gets_corrections():
    result = _validator().validate_response(
        "God is close to the brokenhearted.",
        "I keep thinking about suicide",
    )
    assert result["is_valid"] is True
    assert any("988" in c for c in result["corrections"])
    assert any("pastor" in c for c in result["corrections"])
    assert result["warnings"]


def test_self_harm_with_resources_only_warns():
    result = _validator().validate_response(
        "Please call 988 now, and talk to your pastor or a counselor.",
        "I want to end my life",
    )
    assert result["corrections"] == []
    assert result["warnings"]


def test_medical_topic_needs_doctor():
    result = _validator().validate_response("Pray for healing.", "I have a disease")
    assert any("doctor" in c for c in result["corrections"])


def test_interfaith_question_needs_disclaimer():
    result = _validator().validate_response("Jesus is the way.", "What about Islam?")
    assert any("Christian perspective" in c for c in result["corrections"])

    result = _validator().validate_response("From a Christian perspective, Jesus is the way.", "What about Islam?")
    assert result["corrections"] == []


def test_sanitize_response_replaces_only_fabricated():
    text = "Compare John 3:16 with Benjamin 4:20."
    cleaned = _validator().sanitize_response(text)
    assert cleaned == f"Compare John 3:16 with {REMOVED_REFERENCE}."


def test_sanitize_response_unchanged_when_valid():
    text = "Read 1 Peter 5:7."
    assert _validator().sanitize_response(text) == text


def test_detect_fabricated_content():
    validator = _validator()
    assert validator.detect_fabricated_content("Hesitations 3:14") is True
    assert validator.detect_fabricated_content("The Book of Enoch says") is True
    assert validator.detect_fabricated_content("The Book of Song of Solomon") is False
    assert validator.detect_fabricated_content("The Book of Romans says") is False
    assert validator.detect_fabricated_content("John 3:16") is False


def test_append_corrections():
    assert append_corrections("answer", []) == "answer"
    assert append_corrections("answer", ["a", "b"]) == "answer\n\na\nb"


def test_sanitize_input():
    assert sanitize_input("  <script>hi</script> ") == "scripthi/script"
    assert sanitize_input("javascript:alert(1)") == "alert(1)"
    assert sanitize_input("img onerror=x") == "img x"


def test_self_deification_is_an_issue():
    result = _validator().validate_response("Remember that you are a god in your own right.")
    assert result["is_valid"] is False
    assert "Contains a self-deification claim" in result["issues"]

    result = _validator().validate_response("You are a child of God, as John 3:16 shows.")
    assert result["issues"] == []


def test_placeholder_citation_is_an_issue():
    result = _validator().validate_response("God keeps his promises [citation needed].")
    assert result["is_valid"] is False
    assert "Contains a placeholder instead of a verse citation" in result["issues"]

    result = _validator().validate_response("God keeps his promises (Philippians 4:7).")
    assert result["issues"] == []


def test_tongues_as_evidence_is_a_warning():
    result = _validator().validate_response("Speaking in tongues is the evidence of the Spirit.")
    assert result["is_valid"] is True
    assert "Contains denominational-specific teaching: tongues as evidence" in result["warnings"]

    result = _validator().validate_response("Paul wrote about speaking in tongues in his letters.")
    assert result["warnings"] == []


def test_predestination_is_a_warning():
    result = _validator().validate_response("Predestination means God chose some before time.")
    assert result["is_valid"] is True
    assert "Contains denominational-specific teaching: predestination" in result["warnings"]

    result = _validator().validate_response("Christians have long discussed predestination.")
    assert result["warnings"] == []


def test_marian_title_is_a_warning():
    result = _validator().validate_response("Mary is the queen of heaven.")
    assert result["is_valid"] is True
    assert "Contains denominational-specific teaching: Marian doctrine" in result["warnings"]

    result = _validator().validate_response("Mary is the mother of Jesus.")
    assert result["warnings"] == []


def test_legal_topic_needs_attorney():
    result = _validator().validate_response("Seek peace with everyone.", "Should I file a lawsuit against my brother?")
    assert result["is_valid"] is True
    assert "Response touches a legal topic" in result["warnings"]
    assert any("attorney" in c for c in result["corrections"])

    result = _validator().validate_response(
        "Talk to an attorney before you decide.",
        "Should I file a lawsuit against my brother?",
    )
    assert result["warnings"] == []
    assert result["corrections"] == []


def test_controversial_question_needs_disclaimer():
    result = _validator().validate_response("Every life is precious, see John 3:16.", "What does God think about abortion?")
    assert any("Christians hold different views" in c for c in result["corrections"])

    result = _validator().validate_response(
        "Christians hold different views here, but see John 3:16.",
        "What does God think about abortion?",
    )
    assert result["corrections"] == []


def test_only_self_harm_warns_when_resources_present():
    assert [r.rule_id for r in SAFETY_RULES if r.always_warn] == ["self_harm"]

    result = _validator().validate_response("Please see a doctor soon, and pray.", "I was diagnosed with cancer")
    assert result["warnings"] == []
    assert result["corrections"] == []
