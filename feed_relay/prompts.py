"""Prompt templates for the Arabic rewrite."""

URL_CONTEXT_SENTINEL = "###error1###"
EXTRACTION_SENTINEL = "###error2###"

ALLOWED_TAGS = "`<h1>`, `<h2>`, `<h3>`, `<p>`, `<b>`, `<i>`, `<a>`, `<code>`, `<br>`"

_INSTRUCTIONS = """\
1. **Title:** Begin the article with an engaging and professional Arabic title using `<h1>` tag that accurately reflects its content.
2. **Language and Tone:** Write in clear, professional, and contemporary Modern Standard Arabic, suitable for specialized articles.
3. **Formatting:** Use HTML formatting with the following tags only: {allowed_tags}. Outside of tags, always write `&` as `&amp;`, `<` as `&lt;` and `>` as `&gt;`.
4. **Content and Length:** The content should be highly informative, covering all key aspects of the topic. Do not exceed {max_chars} characters.
5. **Subheadings:** Divide the article into logical sections using 2-4 clear and relevant Arabic subheadings with `<h2>` or `<h3>` tags.
6. **Paragraphs:** Use `<p>` tags for paragraphs, `<b>` for bold text, and `<i>` for italic text.
7. **Links:** Format any links using `<a href="URL">text</a>` structure.
8. **Hashtags:** Add 3 to 5 relevant Arabic hashtags at the very end of the article wrapped in `<code>` tags (use '_' instead of spaces in hashtags with multiple words, separate hashtags with a space).
9. **Technical Terminology:** You may include the English term in parentheses right after its Arabic translation on its first mention.

**CRITICAL INSTRUCTION: Your output MUST contain ONLY the requested article. Do NOT provide any introductory phrases, concluding remarks, explanations, or any text beyond the article itself. The output must begin immediately with the article's Arabic title in `<h1>` tags and end with the final Arabic hashtag in `<code>` tags.**

**If you encounter any issue that prevents you from generating the article (e.g., inability to access or process the {source}, content restrictions, or a system error), your response MUST be *only*: {sentinel}**"""

URL_CONTEXT_TEMPLATE = """\
Rewrite the article found at the link below into a professional and comprehensive article in Modern Standard Arabic. The article should cover the topic thoroughly, utilizing subheadings to organize ideas and enhance readability.

{instructions}

URL: {url}"""

EXTRACTION_TEMPLATE = """\
Rewrite the article below into a professional and comprehensive article in Modern Standard Arabic. The article should cover the topic thoroughly, utilizing subheadings to organize ideas and enhance readability.

{instructions}

Source URL: {url} (reference only)

Article content:
{content}"""


def build_url_context_prompt(url: str, max_chars: int = 3000) -> str:
    """Prompt asking the backend to fetch and rewrite the page itself."""
    instructions = _INSTRUCTIONS.format(
        allowed_tags=ALLOWED_TAGS,
        max_chars=max_chars,
        source="URL",
        sentinel=URL_CONTEXT_SENTINEL,
    )
    return URL_CONTEXT_TEMPLATE.format(instructions=instructions, url=url)


def build_extraction_prompt(url: str, content: str, max_chars: int = 3000) -> str:
    """Prompt embedding pre-extracted article text."""
    instructions = _INSTRUCTIONS.format(
        allowed_tags=ALLOWED_TAGS,
        max_chars=max_chars,
        source="article content",
        sentinel=EXTRACTION_SENTINEL,
    )
    return EXTRACTION_TEMPLATE.format(
        instructions=instructions, url=url, content=content
    )
