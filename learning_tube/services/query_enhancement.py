from __future__ import annotations

from learning_tube.models.category import Category

MIN_KEYWORD_LENGTH = 3
MAX_ENHANCEMENT_KEYWORDS = 3
MAX_CONTEXT_TAGS = 2


def generate_category_query(category: Category | None, user_query: str | None = None) -> str:
    """
    Build the effective search string for a category.

    Keywords longer than two characters that the query does not already contain
    (case-insensitive substring) are appended, at most three, in their stored
    order. The category name is prepended unless already present.
    """
    if category is None:
        return user_query or ""

    enhanced_query = user_query or ""

    relevant_keywords = [
        keyword
        for keyword in category.keywords
        if len(keyword) >= MIN_KEYWORD_LENGTH and keyword.lower() not in enhanced_query.lower()
    ]
    if relevant_keywords:
        keyword_string = " ".join(relevant_keywords[:MAX_ENHANCEMENT_KEYWORDS])
        enhanced_query = f"{enhanced_query} {keyword_string}" if enhanced_query else keyword_string

    if category.name and category.name.lower() not in enhanced_query.lower():
        enhanced_query = f"{category.name} {enhanced_query}" if enhanced_query else category.name

    return enhanced_query.strip()


def append_category_keywords(query: str, category: Category | None) -> str:
    # Search-controller path: every keyword, no filtering or dedupe.
    if category is None or not category.keywords:
        return query
    return f"{query} {' '.join(category.keywords)}"


def append_category_tags(query: str, category: Category) -> str:
    if not category.tags:
        return query
    tag_string = " ".join(category.tags[:MAX_CONTEXT_TAGS])
    return f"{query} {tag_string}"
