"""Prompt template for per-KPI summary explanations."""

from src.models.evaluation import EvaluationSummary
from src.models.kpi import KPI

SYSTEM_PROMPT = (
    "Generate brief, terminal-style explanations for KPI performance. "
    "Be concise and technical."
)


def build_prompt(summaries: list[EvaluationSummary], kpis: list[KPI]) -> str:
    """Ask for one sentence per KPI given its average score and definition."""
    lines = [
        "Based on these KPI evaluation results, provide a brief 1-sentence "
        "explanation for each:",
        "",
    ]
    for s in summaries:
        lines.append(f"{s.kpi_name} ({s.short_name}): Average Score {s.average_score:.2f}/5")

    lines.extend(["", "KPI Definitions:"])
    for kpi in kpis:
        lines.append(f"{kpi.name}: {kpi.description}")

    lines.extend([
        "",
        "Respond with ONLY JSON matching this schema (no other text):",
        '{"explanations": [{"kpiId": 1, "explanation": "brief explanation"}]}',
    ])
    return "\n".join(lines)
