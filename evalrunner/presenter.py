"""
Discord embed rendering for evaluation sessions, results, reviews and history.
"""
from typing import List, Optional

import discord

from .answers import MultiChoiceAnswer, SingleChoiceAnswer, TextAnswer
from .history import HistoryStats
from .models import Attempt, EvaluationSummary, QuestionType, format_time
from .review import AttemptReview, QuestionReview, Verdict
from .session import EvaluationSession, SessionState

COLOR_INFO = 0x6699ff
COLOR_SUCCESS = 0x00ff00
COLOR_WARNING = 0xffaa00
COLOR_ERROR = 0xff0000

# Discord limits
MAX_FIELDS = 25
MAX_FIELD_VALUE = 1024

TYPE_HINTS = {
    QuestionType.SINGLE_CHOICE: "Pick one option with /choose",
    QuestionType.MULTI_CHOICE: "Toggle options with /choose (several allowed)",
    QuestionType.TEXT: "Answer with /write",
}


def _truncate(text: str, limit: int = MAX_FIELD_VALUE) -> str:
    if len(text) <= limit:
        return text
    return text[:limit - 1] + "…"


def _chosen_options(session: EvaluationSession) -> List[str]:
    answer = session.current_answer
    if isinstance(answer, SingleChoiceAnswer) and answer.option is not None:
        return [answer.option]
    if isinstance(answer, MultiChoiceAnswer):
        return list(answer.options)
    return []


def build_question_embed(session: EvaluationSession) -> discord.Embed:
    """Render the current question of an active session."""
    evaluation = session.evaluation
    question = session.current_question
    read_only = session.state is not SessionState.ACTIVE

    embed = discord.Embed(
        title=f"📝 {evaluation.title}",
        description=f"**Question {session.index + 1}/{session.question_count}** "
                    f"({question.points} pt{'s' if question.points > 1 else ''})\n\n{question.prompt}",
        color=COLOR_WARNING if read_only else COLOR_INFO
    )

    if question.type.is_choice:
        chosen = _chosen_options(session)
        lines = []
        for number, option in enumerate(question.options, start=1):
            marker = "🔘" if option in chosen else "⚪"
            lines.append(f"{marker} **{number}.** {option}")
        embed.add_field(name="Options", value=_truncate("\n".join(lines)), inline=False)
    else:
        answer = session.current_answer
        text = answer.text if isinstance(answer, TextAnswer) and answer.text else "*No answer yet*"
        embed.add_field(name="Your answer", value=_truncate(text), inline=False)

    embed.add_field(name="⏱️ Time left", value=format_time(session.remaining_seconds), inline=True)
    embed.add_field(name="Answered", value=f"{len(session.answers)}/{session.question_count}", inline=True)

    if read_only:
        embed.set_footer(text="Answers are locked while your evaluation is being submitted.")
    else:
        controls = "/previous • /next"
        if session.is_last_question:
            controls += " • /submit"
        embed.set_footer(text=f"{TYPE_HINTS[question.type]} • {controls}")
    return embed


def build_results_embed(attempt: Attempt, pass_threshold: float = 70.0,
                        timed_out: bool = False) -> discord.Embed:
    """Render a graded attempt."""
    passed = attempt.percentage >= pass_threshold
    embed = discord.Embed(
        title="🎉 Well done!" if passed else "💪 Keep going!",
        description=f"You scored **{attempt.percentage:.1f}%**",
        color=COLOR_SUCCESS if passed else COLOR_ERROR
    )
    embed.add_field(name="Points", value=f"{attempt.score:g}/{attempt.total_points}", inline=True)
    embed.add_field(name="Time used", value=format_time(attempt.elapsed_seconds), inline=True)
    embed.add_field(name="Attempt", value=str(attempt.id), inline=True)
    footer = f"Use /review {attempt.id} for details or /retake to try again."
    if timed_out:
        footer = "Time ran out, your answers were submitted automatically. " + footer
    embed.set_footer(text=footer)
    return embed


def _render_question_review(item: QuestionReview) -> str:
    if item.question.type.is_choice:
        lines = []
        for mark in item.option_marks:
            if mark.chosen and mark.correct:
                flag = "✅ your choice, correct"
            elif mark.chosen:
                flag = "❌ your choice"
            elif mark.correct:
                flag = "✔️ correct answer"
            else:
                flag = ""
            lines.append(f"• {mark.label}" + (f" ({flag})" if flag else ""))
        return _truncate("\n".join(lines))

    return _truncate(
        f"> {item.display_text}\n⚠️ This answer needs manual review by the instructor."
    )


VERDICT_ICONS = {
    Verdict.CORRECT: "✅",
    Verdict.INCORRECT: "❌",
    Verdict.MANUAL_REVIEW: "📝",
}


def build_review_embed(review: AttemptReview) -> discord.Embed:
    """Render a per-question review of an attempt."""
    attempt = review.attempt
    embed = discord.Embed(
        title=f"🔍 Review: {review.evaluation_title or f'attempt {attempt.id}'}",
        description=(
            f"Score **{attempt.score:g}/{attempt.total_points}** ({attempt.percentage:.1f}%) • "
            f"{review.correct_count}/{review.total_questions} correct • "
            f"time {format_time(attempt.elapsed_seconds)}"
            + (f" • {review.manual_review_count} awaiting manual review" if review.manual_review_count else "")
        ),
        color=COLOR_INFO
    )

    shown = review.questions[:MAX_FIELDS]
    for number, item in enumerate(shown, start=1):
        embed.add_field(
            name=_truncate(f"{VERDICT_ICONS[item.verdict]} {number}. {item.question.prompt}", 256),
            value=_render_question_review(item),
            inline=False
        )
    if len(review.questions) > len(shown):
        embed.set_footer(text=f"{len(review.questions) - len(shown)} more questions not shown")
    return embed


def build_history_embed(attempts: List[Attempt], stats: HistoryStats,
                        pass_threshold: float = 70.0, limit: int = 10) -> discord.Embed:
    """Render attempt history with its statistics."""
    embed = discord.Embed(title="📊 Your evaluation history", color=COLOR_INFO)
    if stats.count == 0:
        embed.description = "You have not completed any evaluations yet."
        if stats.total_attempts:
            embed.description += f" ({stats.total_attempts} started but not finished)"
        return embed

    embed.add_field(name="Attempts", value=str(stats.count), inline=True)
    embed.add_field(name=f"Passed (≥{pass_threshold:g}%)", value=str(stats.passed), inline=True)
    embed.add_field(name="Average", value=f"{stats.mean_percentage:.1f}%", inline=True)
    embed.add_field(name="Best", value=f"{stats.max_percentage:.1f}%", inline=True)
    embed.add_field(name="Pass rate", value=f"{stats.pass_rate:.1f}%", inline=True)
    embed.add_field(name="Average time", value=format_time(round(stats.average_elapsed_seconds)), inline=True)
    embed.add_field(
        name="Completed",
        value=f"{stats.count}/{stats.total_attempts} ({stats.completion_rate:.1f}%)",
        inline=True
    )

    lines = []
    for attempt in [a for a in attempts if a.finished][:limit]:
        icon = "✅" if attempt.percentage >= pass_threshold else "❌"
        title = attempt.evaluation_title or f"Evaluation {attempt.evaluation_id}"
        lines.append(f"{icon} `#{attempt.id}` {title}: {attempt.percentage:.1f}%")
    if lines:
        embed.add_field(name="Recent attempts", value=_truncate("\n".join(lines)), inline=False)
    return embed


def build_evaluations_embed(evaluations: List[EvaluationSummary], limit: int = 15) -> discord.Embed:
    """Render the evaluations assigned to a learner."""
    embed = discord.Embed(title="📚 Your evaluations", color=COLOR_INFO)
    if not evaluations:
        embed.description = "No evaluations are assigned to you yet."
        return embed

    lines = []
    for evaluation in evaluations[:limit]:
        line = f"`#{evaluation.id}` **{evaluation.title or 'Untitled'}** • {evaluation.duration_minutes} min"
        if evaluation.course:
            line += f" • {evaluation.course}"
        lines.append(line)
    embed.description = _truncate("\n".join(lines), 4096)
    if len(evaluations) > limit:
        embed.set_footer(text=f"{len(evaluations) - limit} more not shown • Start one with /evaluate <id>")
    else:
        embed.set_footer(text="Start one with /evaluate <id>")
    return embed


def build_message_embed(message: str, title: str, color: int = COLOR_ERROR,
                        footer: Optional[str] = None) -> discord.Embed:
    embed = discord.Embed(title=title, description=message, color=color)
    if footer:
        embed.set_footer(text=footer)
    return embed
