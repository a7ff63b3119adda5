# manual_rag/application/keyword_search.py

import re
from typing import List, Sequence

from manual_rag.domain.models import DocumentChunk, SearchHit


KEYWORD_MATCH_SCORE = 10
QUERY_WORD_SCORE = 5
PROCEDURE_HOW_BONUS = 5
POINTS_CODE_BONUS = 8

QUERY_POINT_CODE = re.compile(r"\b(?:li|lu|st|sp|bl|ki|gb|ht|si|te|pc|lv|gv|cv)\d+\b", re.IGNORECASE)


def score_chunk(query: str, chunk: DocumentChunk) -> int:
    """
    Lexical relevance heuristic:
      +10  any chunk keyword appears inside the query
      +5   per query word found in the chunk content
      +5   procedure chunk and the query asks "how"
      +8   points chunk and the query names a point code
    """
    lowered_query = query.lower()
    lowered_content = chunk.content.lower()
    score = 0

    if any(keyword.lower() in lowered_query for keyword in chunk.keywords):
        score += KEYWORD_MATCH_SCORE

    for word in lowered_query.split():
        if word in lowered_content:
            score += QUERY_WORD_SCORE

    if chunk.content_type == "procedure" and "how" in lowered_query:
        score += PROCEDURE_HOW_BONUS

    if chunk.content_type == "points" and QUERY_POINT_CODE.search(lowered_query):
        score += POINTS_CODE_BONUS

    return score


def keyword_search(query: str, chunks: Sequence[DocumentChunk], limit: int) -> List[SearchHit]:
    """Score every chunk, drop zeros, stable sort descending, cap at limit."""
    if limit <= 0 or not query.strip():
        return []

    hits = []
    for chunk in chunks:
        score = score_chunk(query, chunk)
        if score > 0:
            hits.append(SearchHit(chunk=chunk, score=float(score)))

    hits.sort(key=lambda hit: hit.score, reverse=True)
    return hits[:limit]
