"""Prompt templates for the three summarization stages."""

SYSTEM_PROMPT = (
    "You are an expert at analyzing GitHub repositories. "
    "Answer with a single JSON object that matches the requested fields exactly. "
    "Use only the information provided; say 'unknown' rather than guessing."
)

README_ANALYSIS_PROMPT = """Analyze the README of a GitHub repository.

README:
{readme}

Return a JSON object with these fields:
- "summary": 2-3 sentences on what the project is and does
- "purpose": one sentence on the problem it solves
- "features": list of the main features
- "technologies": list of languages, frameworks and libraries mentioned
- "interesting_facts": exactly 3 notable facts about the project
- "development_status": one of "early", "active", "mature", "maintenance", "unknown"
- "setup_complexity": one of "low", "medium", "high", "unknown"
"""

STRUCTURE_ANALYSIS_PROMPT = """Analyze the layout of a GitHub repository.

Languages (most used first): {languages}

Structure:
{structure}

Return a JSON object with these fields:
- "architecture": short description of the architecture the layout suggests
- "code_organization": assessment of how the code is organized
- "best_practices": list of good practices visible in the layout
- "improvement_suggestions": list of concrete improvements
- "complexity": one of "low", "medium", "high"
- "main_components": list of the main components or modules
"""

COMPREHENSIVE_ANALYSIS_PROMPT = """Write an overall assessment of a GitHub repository.

Repository: {name}
Description: {description}
Stars: {stars}
Forks: {forks}
Primary language: {language}
Languages: {languages}

README analysis:
{readme_analysis}

Structure analysis:
{structure_analysis}

Return a JSON object with these fields:
- "overall_summary": 3-4 sentence summary for a developer evaluating the project
- "strengths": list of strengths
- "weaknesses": list of weaknesses
- "use_cases": list of good use cases
- "community_assessment": assessment of community activity
- "maintenance_quality": assessment of maintenance
- "learning_value": what a developer can learn from it
- "recommendation_score": integer from 1 to 10
- "conclusion": one closing sentence
"""


def build_messages(prompt: str) -> list:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]
