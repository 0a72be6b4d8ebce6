"""Skill matching between a seeker's skills and a job's requirements.

Everything here is pure: no database access and no logging, so the same
functions back the feed cards, the company page and the score snapshot
stored on an application.
"""
from typing import Iterable, List, Optional

# Skills offered by the onboarding picker
SKILLS_LIST = [
    "JavaScript",
    "TypeScript",
    "React",
    "Vue.js",
    "Angular",
    "Node.js",
    "Python",
    "Java",
    "C++",
    "C#",
    "Go",
    "Rust",
    "SQL",
    "MongoDB",
    "PostgreSQL",
    "AWS",
    "Azure",
    "Google Cloud",
    "Docker",
    "Kubernetes",
    "Git",
    "CI/CD",
    "Machine Learning",
    "Data Analysis",
    "UI/UX Design",
    "Figma",
    "Adobe Creative Suite",
    "Project Management",
    "Agile/Scrum",
    "Communication",
    "Leadership",
    "Problem Solving",
    "Marketing",
    "Sales",
    "Customer Service",
    "Financial Analysis",
    "Accounting",
    "Human Resources",
    "Legal",
    "Healthcare",
    "Research",
    "Writing",
    "Editing",
    "Social Media",
    "SEO",
    "Content Strategy",
]

INDUSTRIES = [
    "Technology",
    "Healthcare",
    "Finance",
    "Education",
    "Manufacturing",
    "Retail",
    "Media & Entertainment",
    "Consulting",
    "Real Estate",
    "Transportation",
    "Energy",
    "Hospitality",
    "Non-Profit",
    "Government",
    "Other",
]

STRONG_MATCH = 70
FAIR_MATCH = 40


def normalize_skill(skill: str) -> str:
    return skill.strip().lower()


def skill_set(skills: Optional[Iterable[str]]) -> frozenset:
    """Case-insensitive identity set of ``skills``; blank entries are dropped."""
    if not skills:
        return frozenset()
    return frozenset(n for n in (normalize_skill(s) for s in skills if s) if n)


def dedupe_skills(skills: Iterable[str]) -> List[str]:
    """Keep the first spelling of each skill, preserving order."""
    seen = set()
    result = []
    for skill in skills:
        key = normalize_skill(skill)
        if not key or key in seen:
            continue
        seen.add(key)
        result.append(skill.strip())
    return result


def score(seeker_skills: Optional[Iterable[str]], required_skills: Optional[Iterable[str]]) -> int:
    """Percentage of the required skills covered by the seeker, 0-100.

    A job without requirements scores 0. Rounding is half-up and done in
    integer arithmetic so 2/3 gives 67 and 1/8 gives 13 without float drift.
    """
    required = skill_set(required_skills)
    if not required:
        return 0
    matched = len(required & skill_set(seeker_skills))
    total = len(required)
    return (matched * 200 + total) // (2 * total)


def matched_skills(seeker_skills: Optional[Iterable[str]], required_skills: Optional[Iterable[str]]) -> List[str]:
    """Required skills the seeker has, in the job's own spelling and order."""
    have = skill_set(seeker_skills)
    return [s for s in dedupe_skills(required_skills or []) if normalize_skill(s) in have]


def match_tier(percentage: int) -> str:
    if percentage >= STRONG_MATCH:
        return "strong"
    if percentage >= FAIR_MATCH:
        return "fair"
    return "weak"
