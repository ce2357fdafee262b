from typing import List, Optional, Sequence

from .ai_client import Message

BADGE_LADDER_TEXT = (
    '- "QA Novice" (0-40%)\n'
    '- "QA Apprentice" (41-60%)\n'
    '- "QA Practitioner" (61-80%)\n'
    '- "QA Expert" (81-95%)\n'
    '- "QA Master" (96-100%)'
)


def open_grading_messages(question: str, answer: str, category: str, difficulty: str) -> List[Message]:
    system = (
        "You are a Quality Assurance (QA) instructor grading a short open answer.\n"
        "Be lenient: an answer that is short but coherent, or that gives a relevant "
        "example, is CORRECT. Only answers that are completely irrelevant or "
        "nonsensical are INCORRECT.\n"
        "Return ONLY a compact JSON object with keys: isCorrect (boolean), "
        "explanation (one or two sentences). No code fences or extra text."
    )
    user = (
        f"Category: {category}\n"
        f"Difficulty: {difficulty}\n"
        f"Question: {question}\n"
        f"Answer: {answer}"
    )
    return [{"role": "system", "content": system}, {"role": "user", "content": user}]


def feedback_messages(
    stage_title: str,
    score: int,
    correct_count: int,
    total: int,
    details: Sequence,
) -> List[Message]:
    system = (
        "You are a Quality Assurance (QA) mentor giving constructive, personal feedback.\n"
        "Identify specific strengths and areas to improve, give concrete next steps "
        "and a detailed analysis of the answers. Keep a professional, encouraging tone.\n"
        "Return ONLY a JSON object with keys: strengths (array of strings), "
        "improvements (array of strings), nextSteps (string), detailedFeedback "
        "(string), badge (string).\n"
        "Possible badges:\n" + BADGE_LADDER_TEXT
    )
    lines: List[str] = []
    for idx, d in enumerate(details, start=1):
        lines.append(f"Question {idx}: {d.question_text}")
        if d.is_multiple_choice:
            lines.append(f"Selected: {d.selected_option if d.selected_option is not None else '(no valid option)'}")
            lines.append(f"Correct answer: {d.correct_answer}")
        else:
            lines.append(f"Answer: {d.answer}")
        lines.append(f"Correct: {'yes' if d.is_correct else 'no'}")
        lines.append("")
    user = (
        f"Analyse this evaluation of {stage_title}.\n\n"
        f"Score: {score}%\n"
        f"Correct answers: {correct_count}/{total}\n\n"
        "User answers:\n" + "\n".join(lines)
    )
    return [{"role": "system", "content": system}, {"role": "user", "content": user}]


def question_generation_messages(
    stage_title: str,
    difficulty: str,
    open_count: int,
    closed_count: int,
    considerations: Optional[str] = None,
) -> List[Message]:
    system = (
        "You are a Quality Assurance (QA) and software testing expert writing assessment questions.\n"
        f"Generate exactly {open_count} open questions and {closed_count} multiple-choice questions "
        f'about "{stage_title}" at {difficulty} level.\n'
        "Multiple-choice questions have exactly 4 distinct options and correctAnswer must be "
        "the exact text of one option. Open questions should allow a 2-3 paragraph answer.\n"
        "Return ONLY JSON of the form "
        '{"questions": [{"type": "open-text", "questionText": "...", "category": "...", '
        '"points": 2, "difficulty": "..."}, {"type": "multiple-choice", "questionText": "...", '
        '"options": ["A", "B", "C", "D"], "correctAnswer": "A", "category": "...", '
        '"points": 1, "difficulty": "..."}]}'
    )
    user = (
        f"Topic: {stage_title}\nDifficulty: {difficulty}\n"
        f"Open questions: {open_count}\nMultiple-choice questions: {closed_count}\n"
        "Cover fundamental concepts, best practices, tools and QA methodologies for this topic."
    )
    if considerations:
        user += f"\nAdditional considerations: {considerations}"
    return [{"role": "system", "content": system}, {"role": "user", "content": user}]


def stage_details_messages(
    title: str, description: str, difficulty: str, considerations: Optional[str] = None
) -> List[Message]:
    system = (
        "You are designing a stage of a QA learning path.\n"
        "Return ONLY a JSON object with keys: topicsCovered (array of strings), "
        "whatToExpect (string), tipsForSuccess (array of strings), "
        "evaluationDescription (string)."
    )
    user = f"Stage: {title}\nDescription: {description}\nDifficulty: {difficulty}"
    if considerations:
        user += f"\nConsiderations: {considerations}"
    return [{"role": "system", "content": system}, {"role": "user", "content": user}]
