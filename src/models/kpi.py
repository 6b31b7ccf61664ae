"""KPI definitions — the user-defined quality dimensions records are scored on."""

from pydantic import ConfigDict, Field, model_validator

from src.models.common import KualiteeBase

SHORT_NAME_MAX_LEN = 10


def derive_short_name(name: str, kpi_id: int) -> str:
    """First word of the name, uppercased and cut to 10 chars; KPI<id> if blank."""
    words = name.split()
    if not words:
        return f"KPI{kpi_id}"
    return words[0].upper()[:SHORT_NAME_MAX_LEN]


class KPI(KualiteeBase):
    """A named quality metric with a Good-vs-Bad description.

    Immutable once built; an evaluation run snapshots the KPI list it was
    started with.
    """

    model_config = ConfigDict(frozen=True)

    id: int = Field(ge=1)
    name: str = ""
    description: str = ""
    short_name: str = Field(default="", max_length=SHORT_NAME_MAX_LEN)

    @model_validator(mode="before")
    @classmethod
    def _fill_short_name(cls, data: object) -> object:
        if isinstance(data, dict):
            short = data.get("short_name", data.get("shortName")) or ""
            if not str(short).strip():
                data = dict(data)
                data.pop("shortName", None)
                data["short_name"] = derive_short_name(
                    str(data.get("name") or ""), int(data.get("id") or 0),
                )
            else:
                data = dict(data)
                data.pop("shortName", None)
                data["short_name"] = str(short).strip().upper()[:SHORT_NAME_MAX_LEN]
        return data

    @property
    def is_configured(self) -> bool:
        """A KPI takes part in a run only when both name and description are set."""
        return bool(self.name.strip()) and bool(self.description.strip())

    @property
    def label(self) -> str:
        """Column label for result tables."""
        return self.short_name or f"KPI_{self.id}"


def configured_kpis(kpis: list[KPI]) -> list[KPI]:
    """Drop KPIs that are missing a name or description, keeping order."""
    return [kpi for kpi in kpis if kpi.is_configured]
