"""
Server Categories

Keyword classifier that assigns a category to a server at write time.
Categories partition the directory: every server has exactly one, and
anything unrecognised lands in "other".
"""

CATEGORIES: tuple[str, ...] = (
    "database",
    "search",
    "code",
    "web",
    "ai",
    "data",
    "tools",
    "other",
)

DEFAULT_CATEGORY = "other"

CATEGORY_DISPLAY_NAMES: dict[str, str] = {
    "database": "Database",
    "search": "Search",
    "code": "Code",
    "web": "Web",
    "ai": "AI",
    "data": "Data",
    "tools": "Tools",
    "other": "Other",
}

# Checked in order; first match wins
CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "database": (
        "database", "db", "sql", "postgres", "postgresql", "mysql", "mongodb",
        "redis", "sqlite", "cassandra", "dynamodb", "couchdb", "neo4j",
    ),
    "search": (
        "search", "query", "index", "elasticsearch", "vector", "semantic",
        "full-text", "fuzzy", "lucene", "solr",
    ),
    "code": (
        "code", "github", "git", "repository", "programming", "developer",
        "source", "commit", "pull request", "issue", "syntax", "parse",
    ),
    "web": (
        "web", "http", "api", "rest", "fetch", "request", "endpoint",
        "url", "browser", "scrape", "crawl", "html", "json",
    ),
    "ai": (
        "ai", "ml", "machine learning", "model", "llm", "gpt", "openai",
        "anthropic", "claude", "neural", "deep learning", "nlp", "natural language",
    ),
    "data": (
        "data", "analytics", "process", "transform", "etl", "csv", "json",
        "parquet", "pipeline", "aggregate", "statistics",
    ),
    "tools": (
        "tool", "utility", "helper", "automation", "workflow", "script",
        "cli", "command", "task", "scheduler",
    ),
}


def categorize_server(description: str | None) -> str:
    """
    Categorize a server from its description.

    Matching is a case-insensitive substring test, so short keywords like
    "db" also match inside longer words.

    Returns:
        Category name, "other" when nothing matches
    """
    if not description:
        return DEFAULT_CATEGORY

    lowered = description.lower()
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(keyword in lowered for keyword in keywords):
            return category

    return DEFAULT_CATEGORY


def normalize_category(category: str | None) -> str:
    """Fold NULL or unknown stored categories into the default bucket."""
    return category if category in CATEGORIES else DEFAULT_CATEGORY
