"""LangChain tools over the knowledge store for AR Wizard agents.

Five tools conditionally registered when MEMORY_DB_PATH is set:
- knowledge_get_expertise: Viewpoint expertise for a domain (bumps usage counts)
- knowledge_latest_analysis: Most recent live analysis of a database
- knowledge_best_model: Highest-accuracy predictive model of a type
- knowledge_get_context: Read a shared context entry
- knowledge_put_context: Write a shared context entry
"""

import asyncio
import json
import logging
from typing import Any

from langchain_core.tools import BaseTool, ToolException, tool
from pydantic import BaseModel, Field

from ar_wizard.memory.manager import KnowledgeStore
from ar_wizard.memory.models import AnalysisKind, DatabaseName, ExpertiseDomain, ExpertiseKind, ModelType

logger = logging.getLogger(__name__)

MAX_PAYLOAD_CHARS = 2000


# ---------------------------------------------------------------------------
# Input schemas
# ---------------------------------------------------------------------------


class GetExpertiseInput(BaseModel):
    domain: ExpertiseDomain = Field(..., description="Viewpoint domain (e.g. 'job-billing', 'wip-analysis')")
    kind: ExpertiseKind | None = Field(None, description="Optional expertise kind filter (e.g. 'sql-procedure')")


class LatestAnalysisInput(BaseModel):
    database: DatabaseName = Field(..., description="Viewpoint database: kls, gbi, taft, or ideal")
    analysis_kind: AnalysisKind = Field(..., description="Analysis kind (e.g. 'data-quality', 'schema-analysis')")


class BestModelInput(BaseModel):
    model_type: ModelType = Field(..., description="Model type (e.g. 'billing-prediction', 'cost-analysis')")


class GetContextInput(BaseModel):
    key: str = Field(..., description="Shared context key")


class PutContextInput(BaseModel):
    key: str = Field(..., description="Shared context key")
    data: str = Field(..., description="Context payload; JSON text is stored decoded, anything else as a string")
    ttl_ms: int | None = Field(None, description="Time to live in milliseconds (default one hour)", ge=1)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _open_store() -> KnowledgeStore:
    # Construction connects and initializes the schema, so keep it off the event loop.
    try:
        return await asyncio.to_thread(KnowledgeStore)
    except ValueError:
        raise ToolException("Knowledge store not configured; set MEMORY_DB_PATH to enable") from None


def _render(payload: Any) -> str:
    text = payload if isinstance(payload, str) else json.dumps(payload, indent=2, default=str)
    if len(text) > MAX_PAYLOAD_CHARS:
        return text[:MAX_PAYLOAD_CHARS] + "\n... (truncated)"
    return text


# ---------------------------------------------------------------------------
# Tool implementations
# ---------------------------------------------------------------------------


@tool(args_schema=GetExpertiseInput)  # pyright: ignore[reportUnknownParameterType]
async def knowledge_get_expertise(domain: ExpertiseDomain, kind: ExpertiseKind | None = None) -> str:
    """Look up stored Viewpoint expertise (SQL procedures, business rules, schema knowledge,
    billing patterns) for a domain. Each lookup counts as a use of the returned entries."""
    store = await _open_store()
    records = await store.get_expertise(domain, kind)
    if not records:
        return f"No expertise stored for domain '{domain}'."

    lines: list[str] = [f"Found {len(records)} expertise entr{'y' if len(records) == 1 else 'ies'}:\n"]
    for r in records:
        validated = "validated" if r["validated"] else "unvalidated"
        lines.append(f"--- {r['id']} ({r['kind']}, {validated}) ---")
        lines.append(f"Source: {r['source']}  Confidence: {r['confidence']:.2f}  Uses: {r['usage_count']}")
        lines.append(_render(r["content"]))
        lines.append("")
    return "\n".join(lines)


knowledge_get_expertise.handle_tool_error = True  # pyright: ignore[reportAttributeAccessIssue]


@tool(args_schema=LatestAnalysisInput)  # pyright: ignore[reportUnknownParameterType]
async def knowledge_latest_analysis(database: DatabaseName, analysis_kind: AnalysisKind) -> str:
    """Retrieve the most recent still-valid analysis of a Viewpoint database."""
    store = await _open_store()
    analysis = await store.get_latest_analysis(database, analysis_kind)
    if analysis is None:
        return f"No current {analysis_kind} analysis for database '{database}'."

    metrics = analysis["metrics"]
    lines: list[str] = [
        f"Latest {analysis_kind} analysis of '{database}' ({analysis['id']}):",
        f"Analyzed: {analysis['analyzed_at']}  Valid until: {analysis['valid_until']}",
        f"Data volume: {metrics['data_volume']}",
        f"Quality: {metrics['quality_score']:.2f}  Performance: {metrics['performance_score']:.2f}  "
        f"Completeness: {metrics['completeness_score']:.2f}",
    ]
    if analysis["recommendations"]:
        lines.append("Recommendations:")
        lines.extend(f"- {rec}" for rec in analysis["recommendations"])
    return "\n".join(lines)


knowledge_latest_analysis.handle_tool_error = True  # pyright: ignore[reportAttributeAccessIssue]


@tool(args_schema=BestModelInput)  # pyright: ignore[reportUnknownParameterType]
async def knowledge_best_model(model_type: ModelType) -> str:
    """Find the highest-accuracy predictive model of a given type."""
    store = await _open_store()
    model = await store.get_best_model(model_type)
    if model is None:
        return f"No predictive models of type '{model_type}' are stored."

    perf = model["performance"]
    return "\n".join(
        [
            f"Best {model_type} model: {model['name']} v{model['version']} ({model['id']})",
            f"Algorithm: {model['algorithm']}",
            f"Features: {', '.join(model['features']) or '(none)'}",
            f"Accuracy: {perf['accuracy']:.3f}  Precision: {perf['precision']:.3f}  "
            f"Recall: {perf['recall']:.3f}  F1: {perf['f1_score']:.3f}",
            f"Last validated: {model['last_validated']}",
        ]
    )


knowledge_best_model.handle_tool_error = True  # pyright: ignore[reportAttributeAccessIssue]


@tool(args_schema=GetContextInput)  # pyright: ignore[reportUnknownParameterType]
async def knowledge_get_context(key: str) -> str:
    """Read context shared between agents. Expired entries are reported as missing."""
    store = await _open_store()
    data = await store.get_context(key)
    if data is None:
        return f"No shared context for '{key}' (missing or expired)."
    return _render(data)


knowledge_get_context.handle_tool_error = True  # pyright: ignore[reportAttributeAccessIssue]


@tool(args_schema=PutContextInput)  # pyright: ignore[reportUnknownParameterType]
async def knowledge_put_context(key: str, data: str, ttl_ms: int | None = None) -> str:
    """Share context with other agents under a key, expiring after a TTL."""
    store = await _open_store()
    try:
        payload: Any = json.loads(data)
    except json.JSONDecodeError:
        payload = data
    try:
        await store.put_context(key, payload, ttl_ms)
    except ValueError as e:
        raise ToolException(str(e)) from e
    return f"Shared context '{key}' stored."


knowledge_put_context.handle_tool_error = True  # pyright: ignore[reportAttributeAccessIssue]


def get_knowledge_tools() -> list[BaseTool]:
    """Return the list of knowledge tools for agent registration.

    Returns an empty list if the store is not configured.
    """
    from ar_wizard.memory.store import is_memory_configured

    if not is_memory_configured():
        return []

    # Cast needed because @tool decorator has incomplete stubs
    from typing import cast

    return cast(
        list[BaseTool],
        [
            knowledge_get_expertise,
            knowledge_latest_analysis,
            knowledge_best_model,
            knowledge_get_context,
            knowledge_put_context,
        ],
    )
