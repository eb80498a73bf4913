"""
Narrative Framework Registry

Section order, labels and editing help for every supported narrative
framework, plus simple recommendation helpers.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from career_stories.errors import InvalidInputError


@dataclass(frozen=True)
class FrameworkSection:
    key: str
    label: str
    description: str
    prompt: str  # help text shown when the user edits this section


@dataclass(frozen=True)
class FrameworkDefinition:
    name: str
    display_name: str
    tagline: str
    description: str
    sections: Tuple[FrameworkSection, ...]
    recommend_roles: Tuple[str, ...] = field(default_factory=tuple)
    recommend_interview_types: Tuple[str, ...] = field(default_factory=tuple)
    recommend_story_types: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def section_keys(self) -> List[str]:
        return [s.key for s in self.sections]

    def label(self, key: str) -> str:
        for section in self.sections:
            if section.key == key:
                return section.label
        return key.capitalize()


FRAMEWORKS: Dict[str, FrameworkDefinition] = {
    "STAR": FrameworkDefinition(
        name="STAR",
        display_name="STAR",
        tagline="The classic behavioral interview format",
        description="Situation-Task-Action-Result. Clear, structured and universally understood.",
        sections=(
            FrameworkSection("situation", "Situation", "The context and background",
                             "What was happening? What was the problem or opportunity?"),
            FrameworkSection("task", "Task", "Your specific responsibility",
                             "What were you asked to do? What was your role?"),
            FrameworkSection("action", "Action", "What you did",
                             "What specific steps did you take? How did you approach it?"),
            FrameworkSection("result", "Result", "The outcome and impact",
                             "What happened? Quantify with numbers if possible."),
        ),
        recommend_roles=("Software Engineer", "Product Manager", "Designer", "Data Analyst"),
        recommend_interview_types=("Behavioral", "FAANG", "General"),
        recommend_story_types=("Achievement", "Problem-solving", "Collaboration"),
    ),
    "STARL": FrameworkDefinition(
        name="STARL",
        display_name="STAR-L",
        tagline="STAR plus Learning for growth stories",
        description="STAR with an added Learning component. Good for failure and growth questions.",
        sections=(
            FrameworkSection("situation", "Situation", "The context and background",
                             "What was happening? What was the challenge?"),
            FrameworkSection("task", "Task", "Your specific responsibility",
                             "What were you trying to accomplish?"),
            FrameworkSection("action", "Action", "What you did",
                             "What steps did you take?"),
            FrameworkSection("result", "Result", "The outcome",
                             "What happened as a result?"),
            FrameworkSection("learning", "Learning", "What you learned",
                             "What would you do differently? What did this teach you?"),
        ),
        recommend_roles=("Tech Lead", "Engineering Manager", "Senior Engineer"),
        recommend_interview_types=("Behavioral", "Leadership", "Manager"),
        recommend_story_types=("Failure", "Challenge", "Growth", "Conflict"),
    ),
    "CAR": FrameworkDefinition(
        name="CAR",
        display_name="CAR",
        tagline="Concise and challenge-focused",
        description="Challenge-Action-Result. A streamlined problem-solving format.",
        sections=(
            FrameworkSection("challenge", "Challenge", "The problem you faced",
                             "What was the challenge or obstacle?"),
            FrameworkSection("action", "Action", "How you addressed it",
                             "What did you do to overcome it?"),
            FrameworkSection("result", "Result", "The outcome",
                             "What was the measurable result?"),
        ),
        recommend_roles=("Software Engineer", "DevOps", "SRE"),
        recommend_interview_types=("Technical", "Phone Screen", "Quick"),
        recommend_story_types=("Bug fix", "Debugging", "Technical challenge"),
    ),
    "PAR": FrameworkDefinition(
        name="PAR",
        display_name="PAR",
        tagline="Problem-focused for technical roles",
        description="Problem-Action-Result. Emphasizes the problem definition.",
        sections=(
            FrameworkSection("problem", "Problem", "The technical problem",
                             "What was broken, slow or missing?"),
            FrameworkSection("action", "Action", "Your technical approach",
                             "How did you diagnose and solve it?"),
            FrameworkSection("result", "Result", "The measurable outcome",
                             "What improved, and by how much?"),
        ),
        recommend_roles=("Software Engineer", "Backend Engineer", "Platform Engineer"),
        recommend_interview_types=("Technical", "System Design", "Architecture"),
        recommend_story_types=("Scaling", "Performance", "Infrastructure"),
    ),
    "SAR": FrameworkDefinition(
        name="SAR",
        display_name="SAR",
        tagline="Ultra-concise for quick responses",
        description="Situation-Action-Result. The most concise format.",
        sections=(
            FrameworkSection("situation", "Situation", "Brief context",
                             "What was the situation, in one sentence?"),
            FrameworkSection("action", "Action", "What you did",
                             "What was your key action?"),
            FrameworkSection("result", "Result", "The outcome",
                             "What was the impact?"),
        ),
        recommend_roles=("Any",),
        recommend_interview_types=("Networking", "Phone Screen", "Quick"),
        recommend_story_types=("Introduction", "Highlight", "Quick win"),
    ),
    "SOAR": FrameworkDefinition(
        name="SOAR",
        display_name="SOAR",
        tagline="Obstacle-driven for business impact",
        description="Situation-Obstacles-Actions-Results. Emphasizes challenges and business alignment.",
        sections=(
            FrameworkSection("situation", "Situation", "The business context",
                             "What was the business situation?"),
            FrameworkSection("obstacles", "Obstacles", "The challenges or blockers you faced",
                             "What stood in the way?"),
            FrameworkSection("actions", "Actions", "How you overcame them",
                             "What did you do about each obstacle?"),
            FrameworkSection("results", "Results", "Business impact",
                             "What was the business outcome?"),
        ),
        recommend_roles=("Product Manager", "Program Manager", "Business Analyst"),
        recommend_interview_types=("Product", "Strategy", "Business"),
        recommend_story_types=("Product launch", "Business impact", "Strategy"),
    ),
    "SHARE": FrameworkDefinition(
        name="SHARE",
        display_name="SHARE",
        tagline="Collaboration-focused with hindsight",
        description="Situation-Hindrances-Actions-Results-Evaluation. Emphasizes reflection.",
        sections=(
            FrameworkSection("situation", "Situation", "The context",
                             "What was the situation?"),
            FrameworkSection("hindrances", "Hindrances", "What obstacles or challenges arose",
                             "What made this difficult?"),
            FrameworkSection("actions", "Actions", "What you did",
                             "How did you work through it, and with whom?"),
            FrameworkSection("results", "Results", "The outcome",
                             "What happened?"),
            FrameworkSection("evaluation", "Evaluation", "Reflection and lessons learned",
                             "Looking back, what worked and what would you change?"),
        ),
        recommend_roles=("Engineering Manager", "Director", "VP"),
        recommend_interview_types=("Leadership", "Manager", "Culture"),
        recommend_story_types=("Team building", "Culture change", "Mentorship"),
    ),
    "CARL": FrameworkDefinition(
        name="CARL",
        display_name="CARL",
        tagline="Accountability-focused for tough questions",
        description="Context-Action-Result-Learning. Best for failure and accountability questions.",
        sections=(
            FrameworkSection("context", "Context", "The circumstances",
                             "What were the circumstances?"),
            FrameworkSection("action", "Action", "What you did (or didn't do)",
                             "What did you do?"),
            FrameworkSection("result", "Result", "What happened",
                             "What was the outcome?"),
            FrameworkSection("learning", "Learning", "What you learned",
                             "What did you take away from it?"),
        ),
        recommend_roles=("Any",),
        recommend_interview_types=("Behavioral", "Amazon Leadership Principles"),
        recommend_story_types=("Failure", "Mistake", "Accountability", "Growth"),
    ),
}

# Framework section key -> STAR component that can fill it
SECTION_TO_STAR_COMPONENT: Dict[str, str] = {
    "situation": "situation",
    "context": "situation",
    "challenge": "situation",
    "problem": "situation",
    "task": "task",
    "objective": "task",
    "action": "action",
    "actions": "action",
    "result": "result",
    "results": "result",
    "outcome": "result",
    "learning": "learning",
    "evaluation": "learning",
    "obstacles": "obstacles",
    "hindrances": "obstacles",
}

QUESTION_TO_FRAMEWORK: Dict[str, str] = {
    "Tell me about yourself": "SAR",
    "Tell me about a time you failed": "CARL",
    "Tell me about a mistake": "CARL",
    "Tell me about a challenge": "CAR",
    "Tell me about a technical problem": "PAR",
    "Tell me about a time you led": "SHARE",
    "Tell me about a time you influenced": "SOAR",
    "Walk me through a project": "STAR",
    "Tell me about an achievement": "STAR",
    "What did you learn from": "STARL",
}


def get_framework(name: str) -> FrameworkDefinition:
    """Look up a framework by name, raising INVALID_INPUT when unknown."""
    framework = FRAMEWORKS.get(name)
    if framework is None:
        raise InvalidInputError(
            f"Unknown narrative framework: {name}",
            {"framework": name, "supported": sorted(FRAMEWORKS)},
        )
    return framework


def recommend_frameworks(
    role: Optional[str] = None,
    interview_type: Optional[str] = None,
    story_type: Optional[str] = None,
) -> List[str]:
    """
    Rank frameworks for a context.

    Scoring: role match +3, interview type +2, story type +2. Frameworks with
    a zero score are omitted; ties keep registry order.
    """
    scores: List[Tuple[str, int]] = []
    for name, framework in FRAMEWORKS.items():
        score = 0
        if role:
            role_lower = role.lower()
            if any(
                r.lower() in role_lower or role_lower in r.lower()
                for r in framework.recommend_roles
            ):
                score += 3
        if interview_type and any(
            interview_type.lower() in t.lower() for t in framework.recommend_interview_types
        ):
            score += 2
        if story_type and any(
            story_type.lower() in s.lower() for s in framework.recommend_story_types
        ):
            score += 2
        scores.append((name, score))

    ranked = sorted(scores, key=lambda item: -item[1])
    return [name for name, score in ranked if score > 0]
