"""Technical-significance filter and tag helpers for extracted facts.

A fact is kept only when it looks like technical knowledge worth
remembering. Personal information, greetings, acknowledgements and status
chatter are discarded first; then a fact is kept if it matches a technical
pattern, shows at least two code-like punctuation patterns, or has a
technical vocabulary density above 20%. Anything else is discarded.
"""
from __future__ import annotations

import re
from typing import List, Optional

_PREFIX = r"^(?:user:|assistant:)?\s*"

SKIP_PATTERNS = [
    re.compile(r"\b(my name|users?'?s? name|find my name|search.*name|who am i|what'?s my name)\b", re.I),
    re.compile(r"\b(personal|profile|identity|username|login|password|email|address|phone)\b", re.I),
    re.compile(_PREFIX + r"(search|find|look|what|where|who|when|why|how)\s+"
               r"(is|are|was|were|do|does|did|can|could|should|would|will|my|the|a|an)\b", re.I),
    re.compile(_PREFIX + r"(hello|hi|hey|good morning|good afternoon|good evening|thanks|thank you|please|sorry"
               r"|excuse me|bye|goodbye)\b", re.I),
    re.compile(r"^(memory_search|search_memory):\s*(found|completed|no results|error)", re.I),
    re.compile(r"^(task completed|operation successful|processing|loading|waiting|done|finished|ready)\b", re.I),
    re.compile(_PREFIX + r"(yes|no|ok|okay|sure|fine|great|good|right|correct|wrong|true|false)\s*[.!?]?\s*$", re.I),
]

TECHNICAL_PATTERNS = [
    re.compile(r"\b(function|method|class|interface|module|library|framework|algorithm|data structure|design pattern)\b", re.I),
    re.compile(r"\b(variable|constant|parameter|argument|return|async|await|promise|callback|closure|scope)\b", re.I),
    re.compile(r"\b(loop|iteration|recursion|condition|exception|error handling|debugging|testing|optimization)\b", re.I),
    re.compile(r"\b(import|export|require|include|package|dependency|api|endpoint|request|response)\b", re.I),
    re.compile(r"\b(database|query|sql|nosql|schema|table|index|transaction|orm|migration)\b", re.I),
    re.compile(r"\b(git|version control|commit|merge|branch|pull request|repository|deployment)\b", re.I),
    re.compile(r"\b(implements?|extends?|inherits?|overrides?|polymorphism|encapsulation|abstraction)\b", re.I),
    re.compile(r"\b(sort|search|filter|map|reduce|transform|parse|serialize|encrypt|decrypt)\b", re.I),
    re.compile(r"\b(authentication|authorization|security|validation|sanitization|middleware)\b", re.I),
    re.compile(r"```[\s\S]*```"),
    re.compile(r"`[^`]+`"),
    re.compile(r"\$[a-zA-Z_][a-zA-Z0-9_]*"),
    re.compile(r"\b(npm|yarn|pip|composer|cargo|go get|mvn|gradle)\b", re.I),
    re.compile(r"\b(file|directory|path|config|environment|server|client|host|port|url|http|https|ssl|tls)\b", re.I),
    re.compile(r"\b(dockerfile|docker|container|kubernetes|cloud|aws|azure|gcp|ci/cd|pipeline)\b", re.I),
    re.compile(r"\b(javascript|typescript|python|java|rust|go|php|ruby|swift|kotlin|scala)\b|c\+\+|c#", re.I),
    re.compile(r"\b(react|vue|angular|node|express|django|flask|spring|rails|laravel|fastapi)\b", re.I),
    re.compile(r"\b(html|css|scss|sass|less|bootstrap|tailwind|webpack|vite|rollup|babel|eslint)\b", re.I),
    re.compile(r"\b(error|exception|traceback|stack trace|compilation|syntax error|runtime error|type error)\b", re.I),
    re.compile(r"\b(solution|approach|implementation|technique|strategy|pattern|best practice|optimization)\b", re.I),
    re.compile(r"\b(performance|scalability|maintainability|refactoring|code review|documentation)\b", re.I),
]

CODE_PATTERNS = [
    re.compile(r"[{}\[\]()]"),
    re.compile(r"[=><!&|]"),
    re.compile(r"[;:,]"),
    re.compile(r"\w+\.\w+"),
    re.compile(r"\w+\(\)"),
    re.compile(r"/\*[\s\S]*?\*/|//.*$", re.M),
]

TECHNICAL_WORDS = (
    "api sdk cli gui ui ux ide editor compiler interpreter runtime virtual machine container image build "
    "deploy release version update patch bug feature enhancement issue ticket workflow process pipeline "
    "automation script batch cron job service microservice monolith architecture pattern design system "
    "network protocol tcp udp http https ssl tls dns cdn cache redis memcached session cookie token jwt "
    "oauth auth encrypt decrypt hash salt key certificate public private binary ascii unicode utf8 base64 "
    "hex decimal octal buffer stream pipe socket thread cpu memory disk storage backup restore sync async "
    "concurrent parallel serial queue stack heap tree graph node edge vertex path traverse search sort "
    "filter map reduce aggregate group join union intersection difference subset superset element array "
    "list vector matrix set dictionary table index value pair tuple record object instance class type "
    "interface abstract concrete generic template polymorphic inherit extend implement override overload "
    "static dynamic compile interpret execute run debug test benchmark profile optimize refactor clean lint "
    "format minify bundle pack plugin extension addon module package library framework tool"
).split()

TECHNICAL_DENSITY_THRESHOLD = 0.2


def skip_reason(text: str) -> Optional[str]:
    """Return the skip pattern a fact matches, or None."""
    lowered = text.lower().strip()
    for pattern in SKIP_PATTERNS:
        if pattern.search(lowered):
            return pattern.pattern
    return None


def technical_density(text: str) -> float:
    words = text.lower().split()
    if not words:
        return 0.0
    technical = sum(1 for w in words if any(t in w for t in TECHNICAL_WORDS))
    return technical / len(words)


def is_significant(text: str) -> bool:
    if not text or not text.strip():
        return False
    lowered = text.lower().strip()
    if skip_reason(lowered):
        return False
    if any(p.search(lowered) for p in TECHNICAL_PATTERNS):
        return True
    if sum(1 for p in CODE_PATTERNS if p.search(lowered)) >= 2:
        return True
    return technical_density(lowered) > TECHNICAL_DENSITY_THRESHOLD


_LANGUAGES = ("javascript", "typescript", "python", "java", "rust", "golang", "php", "ruby", "swift", "kotlin", "sql")
_FRAMEWORKS = ("react", "vue", "angular", "node", "express", "django", "flask", "fastapi", "spring", "rails")
_TOOLS = ("git", "docker", "kubernetes", "npm", "yarn", "pip", "webpack", "eslint", "database", "api")

_TRIGGERS = (
    ("code-block", ("```",)),
    ("programming", ("function", "class ", "const ", "let ", "var ")),
    ("file-path", ("/", "\\", ".js", ".ts", ".py")),
    ("error-handling", ("error", "exception", "failed", "bug")),
    ("configuration", ("config", "setting", "option")),
)


def extract_technical_tags(text: str) -> List[str]:
    lowered = text.lower()
    tags: List[str] = []
    for name in _LANGUAGES + _FRAMEWORKS + _TOOLS:
        if re.search(rf"\b{re.escape(name)}\b", lowered):
            tags.append(name)
    for tag, needles in _TRIGGERS:
        if any(n in lowered for n in needles):
            tags.append(tag)
    return tags


def infer_domain(tags: List[str]) -> Optional[str]:
    if any(t in ("typescript", "javascript", "python", "api", "database", "programming") for t in tags):
        return "programming"
    if any(t in ("configuration", "settings", "environment") for t in tags):
        return "configuration"
    if any(t in ("error-handling", "debugging", "testing") for t in tags):
        return "debugging"
    return None


_FENCE = re.compile(r"```(?:[\w+-]*)\n?([\s\S]*?)```")
_INLINE = re.compile(r"`([^`]+)`")


def extract_code_pattern(text: str) -> Optional[str]:
    """First fenced code block, else first inline code span."""
    match = _FENCE.search(text) or _INLINE.search(text)
    if not match:
        return None
    code = match.group(1).strip()
    return code or None
