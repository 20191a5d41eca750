"""Sales process checklist rendered into the coaching system prompt."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ProcessStage:
    name: str
    description: str
    key_topics: tuple[str, ...] = ()


@dataclass(frozen=True)
class ProcessChecklist:
    name: str
    stages: tuple[ProcessStage, ...] = field(default_factory=tuple)

    def to_prompt_string(self) -> str:
        """Numbered stage list, e.g. ``1. Opening: ... (Topics: a, b)``."""
        lines = []
        for i, stage in enumerate(self.stages, 1):
            line = f"{i}. {stage.name}: {stage.description}"
            if stage.key_topics:
                line += f" (Topics: {', '.join(stage.key_topics)})"
            lines.append(line)
        return "\n".join(lines)


DEFAULT_CHECKLIST = ProcessChecklist(
    name="MEDDIC Sales Process",
    stages=(
        ProcessStage(
            "Opening",
            "Establish rapport and set agenda",
            ("introduction", "agenda", "time check"),
        ),
        ProcessStage(
            "Discovery",
            "Understand customer pain points and needs",
            ("current challenges", "pain points", "impact"),
        ),
        ProcessStage(
            "Qualification",
            "Identify decision makers and process",
            ("decision maker", "budget", "timeline"),
        ),
        ProcessStage(
            "Value Proposition",
            "Present solution and value",
            ("solution overview", "benefits", "differentiation"),
        ),
        ProcessStage(
            "Objection Handling",
            "Address concerns and objections",
            ("concerns", "competitor comparison", "risk mitigation"),
        ),
        ProcessStage(
            "Closing",
            "Agree on next steps and close",
            ("next steps", "timeline", "commitment"),
        ),
    ),
)
