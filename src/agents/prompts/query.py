"""Prompt template for free-text questions about a result set."""

from src.models.evaluation import EvaluationResult, EvaluationSummary
from src.models.kpi import KPI

SYSTEM_PROMPT = (
    "You are KUALITEE, an AI assistant for analyzing LLM evaluation results.\n"
    "You have access to evaluation data and can answer questions about it.\n"
    "Respond in a concise, terminal-style format. Use plain text, no markdown.\n"
    "When listing results, format them clearly with MSIDs and scores."
)


def build_prompt(
    question: str,
    results: list[EvaluationResult],
    kpis: list[KPI],
    summaries: list[EvaluationSummary],
    *,
    context_limit: int = 50,
) -> str:
    """Embed result statistics and a bounded sample of rows with the question."""
    stats = ", ".join(
        f"KPI_{s.kpi_id} Average: {s.average_score:.2f}" for s in summaries
    )
    kpi_lines = "\n".join(
        f"KPI_{kpi.id} ({kpi.short_name}): {kpi.name} - {kpi.description}"
        for kpi in kpis
    )
    rows = []
    for result in results[:context_limit]:
        scores = ", ".join(
            f"KPI_{s.kpi_id}: {s.score}/5 ({s.explanation})" for s in result.scores
        )
        rows.append(f"MSID {result.msid}: {scores}")

    lines = [
        "AVAILABLE DATA:",
        f"- {len(results)} total evaluated records",
        f"- {len(kpis)} KPIs defined",
        f"- Statistics: {stats}",
        "",
        "KPI DEFINITIONS:",
        kpi_lines,
        "",
        "SAMPLE EVALUATION RESULTS:",
        "\n".join(rows),
        "",
        "Answer the user's question based on this data. If asked to filter or "
        "find specific MSIDs, search through the results and list matching ones.",
        "",
        f"USER QUESTION: {question}",
    ]
    return "\n".join(lines)
