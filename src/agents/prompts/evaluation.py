"""Prompt templates for per-record KPI scoring and re-evaluation."""

from src.models.common import KEY_COLUMN
from src.models.dataset import Row
from src.models.kpi import KPI

SCORE_SCALE = [
    "Score each KPI from 1-5:",
    "1 = Critical Failure",
    "2 = Poor",
    "3 = Acceptable",
    "4 = Good",
    "5 = Optimal",
]


def _response_format(kpis: list[KPI]) -> list[str]:
    examples = [
        f'    {{"kpiId": {kpi.id}, "score": 3, "explanation": "brief explanation"}}'
        for kpi in kpis
    ]
    return [
        "Respond ONLY with valid JSON in this exact format:",
        "{",
        '  "scores": [',
        ",\n".join(examples),
        "  ]",
        "}",
    ]


def build_system_prompt(kpis: list[KPI], *, reevaluation: bool = False) -> str:
    """System prompt for the scoring model."""
    lines = [
        "You are a strict quality assurance evaluator for LLM outputs.",
    ]
    if reevaluation:
        lines.extend([
            "The user has provided feedback indicating your previous evaluation "
            "may have been incorrect.",
            "Re-evaluate carefully, taking their feedback into account.",
        ])
    else:
        lines.append(
            "Evaluate the TARGET output against the SOURCE input based on the provided KPIs."
        )
    lines.append("")
    lines.extend(SCORE_SCALE)
    lines.append("")
    lines.extend(_response_format(kpis))
    return "\n".join(lines)


def _fields(row: Row) -> str:
    return "\n".join(
        f"{key}: {value if value is not None else ''}"
        for key, value in row.items()
        if key != KEY_COLUMN
    )


def build_user_prompt(source: Row, target: Row, kpis: list[KPI]) -> str:
    """User prompt describing one source/target pair and the KPI criteria."""
    kpi_lines = "\n".join(
        f"KPI {kpi.id} - {kpi.name}: {kpi.description}" for kpi in kpis
    )
    lines = [
        "EVALUATION REQUEST",
        "==================",
        f"{KEY_COLUMN}: {source.get(KEY_COLUMN, '')}",
        "",
        "SOURCE INPUT:",
        _fields(source),
        "",
        "TARGET OUTPUT:",
        _fields(target),
        "",
        "EVALUATION CRITERIA:",
        kpi_lines,
        "",
        "Evaluate the TARGET against the SOURCE based on all KPIs above. "
        "Provide scores (1-5) and brief explanations.",
    ]
    return "\n".join(lines)


def build_reevaluation_prompt(
    source: Row,
    target: Row,
    kpis: list[KPI],
    feedback: str,
) -> str:
    """User prompt for a re-evaluation: the base request plus user feedback."""
    base = build_user_prompt(source, target, kpis)
    note = feedback.strip() or "User requested re-evaluation. Please review more carefully."
    return f"{base}\n\nUSER FEEDBACK FOR RECONSIDERATION:\n{note}"
