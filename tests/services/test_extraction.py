from story_ingest.services.extraction import extract_body_text, extract_main_content

PARAGRAPH = (
    "The city council approved the new transit plan on Tuesday, adding three bus lines "
    "and extending service hours until midnight across every district of the city. "
)

ARTICLE_HTML = f"""
<html>
  <head><title>Transit plan approved - City News</title></head>
  <body>
    <nav class="menu"><a href="/">Home</a> <a href="/about">About us</a></nav>
    <div id="article" class="article-body">
      <h1>Transit plan approved</h1>
      <p>{PARAGRAPH}</p>
      <p>{PARAGRAPH}</p>
      <p>{PARAGRAPH}</p>
    </div>
    <script>var tracking = "should not appear";</script>
    <footer>Copyright footer text</footer>
  </body>
</html>
"""


def test_extracts_article_body_without_boilerplate():
    article = extract_main_content(ARTICLE_HTML)

    assert article is not None
    assert "city council approved the new transit plan" in article.content
    assert "should not appear" not in article.content
    assert "Copyright footer text" not in article.content
    assert article.title


def test_empty_markup_returns_none():
    assert extract_main_content("") is None
    assert extract_main_content("   ") is None


def test_body_fallback_requires_substance():
    assert extract_body_text("<html><body><p>tiny</p></body></html>") is None


def test_body_fallback_truncates_long_pages():
    long_text = "word " * 1000
    article = extract_body_text(f"<html><head><title>T</title></head><body><div>{long_text}</div></body></html>")

    assert article is not None
    assert article.title == "T"
    assert article.content.endswith("...")
    assert len(article.content) == 2003
