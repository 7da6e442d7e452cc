COLUMN_GENERATION_SYSTEM = (
    "You are a research assistant filling in one cell of a literature review table. "
    "Extract structured information from the provided paper content. "
    "Be concise and factual. Answer directly, with no preamble, no headings, "
    "and no restating of the question."
)

COLUMN_GENERATION_USER = """Paper title: {title}

Paper content:
{source}

Task: {instruction}{length_hint}"""

FALLBACK_INSTRUCTION = "Extract information related to '{column_name}' from this paper."

LENGTH_HINT = "\n\nBe concise: use at most {max_words} words."
