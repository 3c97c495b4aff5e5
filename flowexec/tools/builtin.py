"""
Built-in Tools.

Small text utilities used by the sample workflows, plus an HTTP fetch
tool. Importing this module registers them in the global registry.
"""

from typing import Any, Dict, List, Optional
from collections import Counter
import re

import httpx

from flowexec.tools.registry import register_tool


_WORD = re.compile(r"[A-Za-z][A-Za-z'-]+")

STOPWORDS = frozenset("""
a about above after again against all am an and any are as at be because been
before being below between both but by can did do does doing down during each
few for from further had has have having he her here hers him his how i if in
into is it its itself just me more most my no nor not now of off on once only
or other our out over own same she should so some such than that the their
them then there these they this those through to too under until up very was
we were what when where which while who whom why will with you your
""".split())


@register_tool(
    name="word_count",
    description="Count words, sentences and characters in a text",
)
def word_count(text: str) -> Dict[str, Any]:
    """
    Count words, sentences and characters.

    Returns:
        Dict with 'words', 'sentences', 'characters' and 'avg_word_length'
    """
    words = _WORD.findall(text or "")
    sentences = [s for s in re.split(r"[.!?]+", text or "") if s.strip()]
    return {
        "words": len(words),
        "sentences": len(sentences),
        "characters": len(text or ""),
        "avg_word_length": round(sum(len(w) for w in words) / len(words), 2) if words else 0,
    }


@register_tool(
    name="extract_keywords",
    description="Extract the most frequent non-stopword terms from a text",
)
def extract_keywords(text: str, limit: int = 10) -> Dict[str, Any]:
    """Most frequent terms, ignoring common English stopwords."""
    counts = Counter(
        w.lower() for w in _WORD.findall(text or "")
        if w.lower() not in STOPWORDS and len(w) > 2
    )
    top = counts.most_common(limit)
    return {
        "keywords": [word for word, _ in top],
        "frequencies": dict(top),
    }


@register_tool(
    name="summarize_text",
    description="Extractive summary: the highest-scoring sentences in original order",
)
def summarize_text(text: str, max_sentences: int = 3) -> Dict[str, Any]:
    """
    Pick the sentences whose words are most frequent across the text.

    No model is involved; this is a deterministic extractive summary.
    """
    sentences = [s.strip() for s in re.split(r"(?<=[.!?])\s+", text or "") if s.strip()]
    if len(sentences) <= max_sentences:
        return {"summary": " ".join(sentences), "sentences": len(sentences)}

    freq = Counter(
        w.lower() for w in _WORD.findall(text) if w.lower() not in STOPWORDS
    )

    def score(sentence: str) -> float:
        words = [w.lower() for w in _WORD.findall(sentence)]
        if not words:
            return 0.0
        return sum(freq[w] for w in words) / len(words)

    ranked = sorted(range(len(sentences)), key=lambda i: score(sentences[i]), reverse=True)
    chosen: List[int] = sorted(ranked[:max_sentences])
    return {
        "summary": " ".join(sentences[i] for i in chosen),
        "sentences": len(chosen),
    }


@register_tool(
    name="http_fetch",
    description="Fetch a URL over HTTP and return status, headers and body",
)
async def http_fetch(
    url: str,
    method: str = "GET",
    headers: Optional[Dict[str, str]] = None,
    body: Optional[Any] = None,
    timeout: float = 30.0,
) -> Dict[str, Any]:
    """
    Perform an HTTP request.

    JSON responses are decoded; anything else is returned as text.
    Non-2xx responses raise, which fails the node.
    """
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        response = await client.request(
            method.upper(),
            url,
            headers=headers,
            json=body if isinstance(body, (dict, list)) else None,
            content=body if isinstance(body, str) else None,
        )
        response.raise_for_status()

    content_type = response.headers.get("content-type", "")
    data: Any = response.json() if "json" in content_type else response.text
    return {
        "status": response.status_code,
        "url": str(response.url),
        "headers": dict(response.headers),
        "body": data,
    }
