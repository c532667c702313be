from conftest import make_content, make_request
from story_localizer.language import detect_language, language_name
from story_localizer.models import StoryOptions
from story_localizer.validation import estimate_cost, estimate_tokens, validate_story_request


def test_valid_request():
    result = validate_story_request(make_request())
    assert result.valid, result.errors
    assert result.errors == []
    assert result.estimated_tokens == estimate_tokens(make_content())
    assert result.estimated_cost == estimate_cost(result.estimated_tokens) > 0


def test_content_length_and_word_count():
    result = validate_story_request(make_request(content="short " * 50))
    assert not result.valid
    assert any("at least 1000 characters" in e for e in result.errors)
    assert any("at least 200 words" in e for e in result.errors)

    result = validate_story_request(make_request(content="x" * 100001))
    assert any("at most 100000 characters" in e for e in result.errors)


def test_language_and_country_checks():
    result = validate_story_request(make_request(target_language="french", original_language="EN", target_country=""))
    assert len(result.errors) == 3


def test_tts_options():
    bad = StoryOptions(voice_id="abc", tts_provider="coqui", tts_speed=2.0, seed=-1, aspect_ratio="4:3")
    result = validate_story_request(make_request(options=bad))
    joined = " ".join(result.errors)
    assert "voice id" in joined
    assert "Coqui" in joined
    assert "TTS speed" in joined
    assert "Seed" in joined
    assert "Aspect ratio" in joined

    ok = StoryOptions(voice_id="my-voice", tts_provider="coqui", coqui_url="https://tts.example.com")
    assert validate_story_request(make_request(options=ok)).valid


def test_warnings_do_not_invalidate():
    content = " ".join(["lighthouse"] * 250)
    result = validate_story_request(make_request(content=content))
    assert result.valid
    assert any("fewer than 3 paragraphs" in w for w in result.warnings)


def test_detect_short_text_defaults_to_english():
    result = detect_language("Bonjour")
    assert result.language == "en"
    assert result.confidence == 0.3


def test_detect_language():
    english = detect_language(make_content(2))
    assert english.language == "en"
    assert english.confidence > 0.8

    french = detect_language(
        "Le vieux gardien du phare marchait chaque matin le long de la côte rocheuse avant le lever du soleil. "
        "Il comptait les bateaux rentrés pendant la nuit et notait leurs noms dans un petit carnet."
    )
    assert french.language == "fr"


def test_detect_undetermined_text():
    result = detect_language("1234 5678 " * 20)
    assert result.language == "en"
    assert result.confidence == 0.5
    assert result.raw_code == "und"


def test_language_name():
    assert language_name("fr") == "French"
    assert language_name("zh-cn") == "Chinese"
    assert language_name("xx") == "xx"
