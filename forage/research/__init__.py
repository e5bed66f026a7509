"""Forage Research — turning one task into one ResearchResult.

Architecture:
    sources      — normalization, domain-diverse selection, quality scoring
    synthesizer  — generative (LLM) and heuristic synthesis
    pipeline     — ResearchPipeline: chain → browser → enrich → rank → synthesize

Import ``ResearchPipeline`` from ``forage.research.pipeline``; the search and
browser tools depend on ``sources`` so this package only re-exports leaves.
"""

from .sources import dedupe_by_domain, normalize_source, rank_sources, rescore_with_content

__all__ = ["dedupe_by_domain", "normalize_source", "rank_sources", "rescore_with_content"]
