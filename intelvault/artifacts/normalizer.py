"""Read-time normalization of artifact documents.

Producers changed the synthesis document shape several times and old rows of
every shape still exist.  Instead of branching on a version number, each rule
below is a *shape probe*: it fires only when the field path it knows about is
present and the canonical field is not.  Probes run in a fixed order on a
deep copy; stored rows are never modified.

Canonical fields a normalized document may gain:
    citations / sources   — mirrored when only one is populated
    v15_structure         — decoded from the ``json`` string field
    domain_analysis       — total_domains, total_citations, top_domains,
                            diversity_ratio
    qa_scores             — quality-score map, e.g. ``{"overall": 0.82}``

Usage:
    document, applied = normalize(raw_document)
    bundle = convert_legacy_record(synthesis_record)
"""

from __future__ import annotations

import copy
import html
import json
from collections import Counter
from typing import Any, Callable, Mapping
from urllib.parse import urlsplit

from intelvault.versioning.tree_diff import citation_items

# Top-level keys lifted out of the nested ``render`` block
_RENDER_FIELDS = (
    "html",
    "json",
    "voice_report",
    "selfcheck_report",
    "qa_report",
    "coherence_report",
    "pattern_alignment_report",
    "appendix_notes",
)

_CITATION_PATHS = ("v15_structure.citations", "metrics.citations", "normalized_citations")
_DIVERSITY_PATHS = (
    "evidence_diversity_metrics",
    "v15_structure.evidence_diversity_metrics",
    "metrics.domain_analysis",
)
_DEDICATED_SCORE_PATHS = ("qa_score", "qa.scores", "v15_structure.qa.scores")
_GENERIC_SCORE_PATHS = ("qa_metrics.scores", "qa_metrics", "metrics.qa")
_SCALAR_SCORE_PATHS = ("overall_score", "qa_overall", "score")

TOP_DOMAIN_LIMIT = 10


# ── Helpers ───────────────────────────────────────────────────────────────────

def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, dict)):
        return len(value) == 0
    return False


def get_path(doc: Any, path: str) -> Any:
    """Follow a dot-path through nested maps; None when any step is missing."""
    node = doc
    for part in path.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return None
        node = node[part]
    return node


def _decode_object(value: Any) -> dict | None:
    if isinstance(value, Mapping):
        return dict(value)
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        decoded = json.loads(value)
    except ValueError:
        return None
    return decoded if isinstance(decoded, dict) else None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def domain_of(url: str) -> str:
    try:
        host = urlsplit(url).hostname
    except ValueError:
        host = None
    return host or "unknown"


def extract_domain_analysis(citations: Any) -> dict[str, Any]:
    """Domain distribution summary for a citation set."""
    items = citation_items(citations)
    domains: Counter[str] = Counter()
    for citation in items:
        domain = None
        if isinstance(citation, Mapping):
            if citation.get("domain"):
                domain = str(citation["domain"])
            elif citation.get("url"):
                domain = domain_of(str(citation["url"]))
        elif isinstance(citation, str):
            domain = domain_of(citation)
        if domain:
            domains[domain] += 1

    ranked = sorted(domains.items(), key=lambda kv: (-kv[1], kv[0]))
    return {
        "total_domains": len(domains),
        "total_citations": len(items),
        "top_domains": dict(ranked[:TOP_DOMAIN_LIMIT]),
        "diversity_ratio": round(len(domains) / max(1, len(items)), 4),
    }


# ── Shape probes ──────────────────────────────────────────────────────────────
# Each probe mutates the (already copied) document and reports whether it fired.

def unwrap_render(doc: dict) -> bool:
    applied = False
    render = doc.get("render")
    if isinstance(render, Mapping):
        for field in _RENDER_FIELDS:
            if _is_blank(doc.get(field)) and not _is_blank(render.get(field)):
                doc[field] = copy.deepcopy(render[field])
                applied = True
    if _is_blank(doc.get("v15_structure")):
        structure = _decode_object(doc.get("json"))
        if structure:
            doc["v15_structure"] = structure
            applied = True
    return applied


def locate_citations(doc: dict) -> bool:
    if not _is_blank(doc.get("citations")):
        return False
    for path in _CITATION_PATHS:
        found = get_path(doc, path)
        if isinstance(found, (list, dict)) and found:
            doc["citations"] = copy.deepcopy(found)
            return True
    return False


def shape_citations(doc: dict) -> bool:
    """Bare URL strings become records; records with a url gain ``domain`` and ``type``."""
    applied = False
    for key in ("citations", "sources"):
        items = doc.get(key)
        if not isinstance(items, list):
            continue
        shaped = []
        for citation in items:
            if isinstance(citation, str):
                shaped.append({
                    "url": citation,
                    "domain": domain_of(citation),
                    "title": "External Source",
                    "type": "web",
                })
                applied = True
            elif isinstance(citation, dict):
                if "domain" not in citation and citation.get("url"):
                    citation["domain"] = domain_of(str(citation["url"]))
                    applied = True
                if "type" not in citation:
                    citation["type"] = "web"
                    applied = True
                shaped.append(citation)
            else:
                shaped.append(citation)
        doc[key] = shaped
    return applied


def alias_citations(doc: dict) -> bool:
    citations, sources = doc.get("citations"), doc.get("sources")
    if not _is_blank(citations) and _is_blank(sources):
        doc["sources"] = copy.deepcopy(citations)
        return True
    if not _is_blank(sources) and _is_blank(citations):
        doc["citations"] = copy.deepcopy(sources)
        return True
    return False


def derive_domain_analysis(doc: dict) -> bool:
    if not _is_blank(doc.get("domain_analysis")):
        return False
    for path in _DIVERSITY_PATHS:
        found = get_path(doc, path)
        if isinstance(found, Mapping) and found:
            doc["domain_analysis"] = copy.deepcopy(dict(found))
            return True
    if _is_blank(doc.get("citations")):
        return False
    doc["domain_analysis"] = extract_domain_analysis(doc["citations"])
    return True


def build_qa_scores(doc: dict) -> bool:
    """Priority: dedicated score map > generic metrics map > single scalar."""
    if not _is_blank(doc.get("qa_scores")):
        return False
    for path in (*_DEDICATED_SCORE_PATHS, *_GENERIC_SCORE_PATHS):
        found = get_path(doc, path)
        if isinstance(found, Mapping) and found:
            doc["qa_scores"] = copy.deepcopy(dict(found))
            return True
    for path in _SCALAR_SCORE_PATHS:
        found = get_path(doc, path)
        if _is_number(found):
            doc["qa_scores"] = {"overall": found}
            return True
    return False


PROBES: tuple[tuple[str, Callable[[dict], bool]], ...] = (
    ("render_unwrap", unwrap_render),
    ("citation_location", locate_citations),
    ("citation_shape", shape_citations),
    ("citation_alias", alias_citations),
    ("domain_analysis", derive_domain_analysis),
    ("qa_scores", build_qa_scores),
)


def normalize(document: Mapping[str, Any]) -> tuple[dict[str, Any], list[str]]:
    """Apply every shape probe to a copy of *document*.

    Returns the normalized copy and the names of the probes that fired.
    """
    doc = copy.deepcopy(dict(document))
    applied: list[str] = []
    for name, probe in PROBES:
        if probe(doc):
            applied.append(name)
    return doc, applied


# ── Legacy synthesis_record ───────────────────────────────────────────────────

def _title(key: str) -> str:
    return " ".join(w[:1].upper() + w[1:] for w in str(key).replace("_", " ").split(" "))


def _text(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value, default=str)


def _sections_html(sections: Any) -> str:
    if isinstance(sections, Mapping):
        entries = list(sections.items())
    elif isinstance(sections, list):
        entries = [(f"section_{i}", s) for i, s in enumerate(sections, 1)]
    else:
        return ""
    if not entries:
        return ""
    parts = ['<div class="legacy-synthesis-content">', "<h1>Intelligence Report</h1>"]
    for key, content in entries:
        parts.append(f"<h2>{html.escape(_title(key))}</h2>")
        parts.append(f"<p>{html.escape(_text(content))}</p>")
    parts.append("</div>")
    return "".join(parts)


def convert_legacy_record(record: Mapping[str, Any]) -> dict[str, Any]:
    """Map an old ``synthesis_record`` body onto the synthesis bundle shape."""
    sections = record.get("sections") or {}
    summaries = record.get("summaries") or {}
    qa_metrics = record.get("qa_metrics") if isinstance(record.get("qa_metrics"), Mapping) else {}
    citations = copy.deepcopy(record.get("citations") or [])

    structure: dict[str, Any] = {
        "sections": copy.deepcopy(sections),
        "summaries": copy.deepcopy(summaries),
        "qa": {
            "scores": {
                "overall": qa_metrics.get("overall", 0.0),
                "coherence": qa_metrics.get("coherence", 0.0),
                "evidence_health": qa_metrics.get("completeness", 0.0),
            },
            "warnings": [],
        },
    }
    if not _is_blank(record.get("diversity_metrics")):
        structure["evidence_diversity_metrics"] = copy.deepcopy(record["diversity_metrics"])

    appendix = ""
    if isinstance(summaries, Mapping) and summaries:
        appendix = "\n".join(f"{_title(k)}: {_text(v)}" for k, v in summaries.items())

    return {
        "html": _sections_html(sections),
        "json": json.dumps(structure, default=str),
        "sections": copy.deepcopy(sections),
        "citations": citations,
        "sources": copy.deepcopy(citations),
        "qa_report": json.dumps(dict(qa_metrics), default=str) if qa_metrics else "{}",
        "coherence_report": json.dumps({
            "score": qa_metrics.get("coherence", 0.0),
            "details": "Converted from legacy synthesis_record",
        }) if qa_metrics else "{}",
        "voice_report": "{}",
        "selfcheck_report": "{}",
        "pattern_alignment_report": "{}",
        "appendix_notes": appendix,
        "v15_structure": structure,
    }
