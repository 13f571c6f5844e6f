"""
Consolidated stoplists for keyword filtering.

Used by:
  - causemap.discovery.keywords (cause names from topics/tags)
  - causemap.discovery.labeling (LLM output validation)
"""
from __future__ import annotations

# Generic technology terms that appear across every cause. They say what a
# project is built with, not what it is for, so they never name a cause.
TECH_STOP = frozenset({
    "javascript", "python", "react", "nodejs", "api", "web", "app",
    "open", "source", "js", "css",
})

# Extended set used when ranking keywords; superset of TECH_STOP.
KEYWORD_STOP = TECH_STOP | frozenset({
    "typescript", "html", "java", "golang", "go", "rust", "ruby", "php",
    "library", "framework", "tool", "tools", "cli", "sdk", "awesome",
    "hacktoberfest", "open source", "opensource", "github", "docker",
    "the", "and", "for", "with",
})

# Phrases that mark a language-model answer as boilerplate rather than a label.
LLM_BOILERPLATE = (
    "i'm an ai", "as a language model", "i cannot", "as an ai", "i'm sorry",
)
