from contenthub.schemas import Correction
from contenthub.services.patcher import apply_corrections, replace_image_src


def test_exact_match_replaces_only_that_image():
    html = '<p>Hi</p><img src="https://a.com/x/one.png"><img src="https://a.com/y/two.png">'

    result = replace_image_src(html, "https://a.com/x/one.png", "https://new.com/one-sv.png")

    assert result.strategy == "exact"
    assert 'src="https://new.com/one-sv.png"' in result.html
    assert 'src="https://a.com/y/two.png"' in result.html


def test_entity_encoded_match():
    html = '<img src="https://a.com/p.png?a=1&amp;b=2">'

    result = replace_image_src(html, "https://a.com/p.png?a=1&b=2", "https://new.com/p.png")

    assert result.strategy == "entity_encoded"
    assert result.html == '<img src="https://new.com/p.png">'


def test_url_decoded_match():
    html = '<img src="https://a.com/my image.png">'

    result = replace_image_src(html, "https://a.com/my%20image.png", "https://new.com/mine.png")

    assert result.strategy == "url_decoded"
    assert "my image.png" not in result.html


def test_path_only_match_ignores_query_string():
    html = '<img src="https://cdn.example.com/images/hero.png?v=123">'

    result = replace_image_src(html, "https://cdn.example.com/images/hero.png?v=999", "https://new.com/hero.png")

    assert result.strategy == "path_only"
    assert result.html == '<img src="https://new.com/hero.png">'


def test_unique_filename_match():
    html = '<img src="/assets/img/banner-large.jpg" alt="">'

    result = replace_image_src(html, "https://other.host/banner-large.jpg", "https://new.com/banner.jpg")

    assert result.strategy == "filename"
    assert 'src="https://new.com/banner.jpg"' in result.html


def test_shared_filename_falls_through_to_position():
    html = (
        '<img src="https://a.com/one/photo.jpg">'
        '<img src="https://a.com/two/photo.jpg">'
    )

    result = replace_image_src(html, "https://cdn.b.com/three/photo.jpg", "https://new.com/second.jpg", image_index=1)

    assert result.strategy == "positional"
    assert 'src="https://a.com/one/photo.jpg"' in result.html
    assert 'src="https://new.com/second.jpg"' in result.html
    assert "two/photo.jpg" not in result.html


def test_literal_fallback_outside_img_tags():
    html = '<div style="background:url(https://x.com/bg-image.png)"></div>'

    result = replace_image_src(html, "https://x.com/bg-image.png", "https://new.com/bg.png")

    assert result.strategy == "global_literal"
    assert "https://new.com/bg.png" in result.html


def test_no_match_leaves_markup_untouched():
    html = '<img src="https://a.com/x/one.png">'

    result = replace_image_src(html, "https://elsewhere.org/nothing-here.gif", "https://new.com/z.png")

    assert result.strategy is None
    assert not result.changed
    assert result.html == html


def test_corrections_report_applied_and_failed():
    content = "<p>Hej varlden</p><p>Kop nu</p><p>Fri frakt</p>"
    corrections = [
        Correction(find="varlden", replace="världen"),
        {"find": "Kop nu", "replace": "Köp nu"},
        Correction(find="Fri frakt", replace="Fri leverans"),
        Correction(find="finns inte", replace="x"),
    ]

    outcome = apply_corrections(content, corrections)

    assert outcome.applied == 3
    assert outcome.failed == ["finns inte"]
    assert "världen" in outcome.content
    assert "Köp nu" in outcome.content
    assert "Fri leverans" in outcome.content
    assert [c.find for c in outcome.applied_corrections] == ["varlden", "Kop nu", "Fri frakt"]


def test_corrections_match_escaped_text():
    outcome = apply_corrections("<p>Tom &amp; Jerry</p>", [Correction(find="Tom & Jerry", replace="Tom & Jerry!")])

    assert outcome.applied == 1
    assert outcome.content == "<p>Tom &amp; Jerry!</p>"


def test_reapplying_corrections_changes_nothing():
    corrections = [Correction(find="Kop", replace="Köp")]
    first = apply_corrections("<p>Kop nu</p>", corrections)

    second = apply_corrections(first.content, corrections)

    assert second.content == first.content
    assert second.applied == 0
    assert second.failed == ["Kop"]


def test_empty_find_counts_as_failed():
    outcome = apply_corrections("<p>text</p>", [Correction(find="", replace="x")])

    assert outcome.applied == 0
    assert outcome.content == "<p>text</p>"
