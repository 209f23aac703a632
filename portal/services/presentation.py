"""Applicant-facing wording for moderation decisions"""

from dataclasses import dataclass, asdict


@dataclass
class ModerationPresentation:
    label: str
    tone: str  # success | warning | danger
    next_step: str

    def to_dict(self) -> dict:
        data = asdict(self)
        return {"label": data["label"], "tone": data["tone"], "nextStep": data["next_step"]}


def moderation_presentation(decision: str, subject: str) -> ModerationPresentation:
    if decision == "approved":
        return ModerationPresentation(
            label="Approved",
            tone="success",
            next_step=f"{subject} is visible to your caseworker.",
        )
    if decision == "blocked":
        return ModerationPresentation(
            label="Blocked",
            tone="danger",
            next_step=f"{subject} is hidden. Update content and resubmit, or wait for caseworker guidance.",
        )
    return ModerationPresentation(
        label="Pending Review",
        tone="warning",
        next_step=f"{subject} is hidden until a caseworker completes manual review.",
    )
