"""
Worklog — Telegram Bot.

A thin renderer over the Day View Coordinator: every command asks the
coordinator for a result and formats it. Handlers hold no ledger state of
their own; the open day lives in the coordinator.

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import logging
from datetime import time as dt_time
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine
from zoneinfo import ZoneInfo

from telegram import Update
from telegram.ext import Application, ApplicationBuilder, CommandHandler, ContextTypes

from src.config import settings
from src.core.calendar_days import DayPhase, format_day, parse_day
from src.ports.ledger_port import LedgerStoreError
from src.ports.task_registry_port import TaskRegistryError

if TYPE_CHECKING:
    from src.core.day_view import DayView, DayViewCoordinator, MutationResult
    from src.data.models import Task

logger = logging.getLogger(__name__)

_BACKEND_ERRORS = (LedgerStoreError, TaskRegistryError)
_RETRY_TEXT = "Couldn't reach the work log right now. Please try again."


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores messages from unauthorized users.

    Does NOT send any response to strangers — the bot must not reveal
    its existence to unauthorized users.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def member_id_for(telegram_user_id: int) -> str:
    """Ledger / assignee id for a Telegram user (falls back to the Telegram id)."""
    return settings.MEMBER_IDS.get(telegram_user_id, str(telegram_user_id))


def _coordinator(context: ContextTypes.DEFAULT_TYPE) -> DayViewCoordinator:
    return context.bot_data["coordinator"]


def _working_day(coordinator: DayViewCoordinator, member: str):
    """The member's open card, or today if nothing is open."""
    return coordinator.active_day(member) or coordinator.today()


def _task_line(task: Task, mark: str) -> str:
    due = f" (due {format_day(task.due_date)})" if task.due_date else ""
    title = task.title or "(untitled)"
    return f"{mark} `{task.id}` {title}{due}"


def format_day_view(view: DayView) -> str:
    """Render a day card as Markdown."""
    label = {
        DayPhase.PAST: "past, read-only",
        DayPhase.PRESENT: "today",
        DayPhase.FUTURE: "upcoming",
    }[view.phase]
    lines = [f"*{format_day(view.day)}* ({label})"]

    if view.is_absent:
        lines.append("Marked absent.")
    else:
        check_in = view.ledger.check_in_time or "--:--"
        check_out = view.ledger.check_out_time or "--:--"
        lines.append(f"In {check_in} · Out {check_out}")

    if view.assigned:
        lines.append("\n*Open:*")
        lines.extend(_task_line(t, "☐") for t in view.assigned)
    if view.completed:
        lines.append("\n*Done:*")
        lines.extend(_task_line(t, "✅") for t in view.completed)
    if view.carried_over:
        lines.append("\n*Carried to next day:*")
        lines.extend(_task_line(t, "➡️") for t in view.carried_over)
    if view.missing_task_ids:
        lines.append(f"\n{len(view.missing_task_ids)} task(s) no longer in the registry.")
    if not (view.assigned or view.completed or view.carried_over):
        lines.append("\nNo tasks for this day.")
    return "\n".join(lines)


async def _reply_result(update: Update, result: MutationResult, success_text: str) -> None:
    if result.rejection is not None:
        await update.message.reply_text(f"⛔ {result.rejection.message}")
        return
    await update.message.reply_text(success_text)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — welcome message."""
    await update.message.reply_text(
        "Welcome to *Worklog*!\n\n"
        "I keep your daily task card:\n"
        "• /today shows today's card, /day <date> opens another day\n"
        "• /done and /undo tick tasks on the open card\n"
        "• /checkin, /checkout and /absent record attendance\n\n"
        "Type /help for the full command list.",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "*Available commands:*\n"
        "/today — Open today's card\n"
        "/day YYYY-MM-DD — Open another day's card\n"
        "/done <task_id> — Complete a task on the open card\n"
        "/undo <task_id> — Move a task back to open\n"
        "/assign <task_id> [YYYY-MM-DD] — Put a task on a day\n"
        "/checkin HH:MM — Record check-in\n"
        "/checkout HH:MM — Record check-out\n"
        "/absent — Mark the open day absent\n"
        "/present — Clear the absent mark\n"
        "/rollover — Status of the last nightly rollover\n"
        "/help — Show this message",
        parse_mode="Markdown",
    )


async def _open_and_render(update: Update, context: ContextTypes.DEFAULT_TYPE, day) -> None:
    coordinator = _coordinator(context)
    member = member_id_for(update.effective_user.id)
    try:
        view = await coordinator.open_day(member, day)
    except _BACKEND_ERRORS as exc:
        logger.error("open_day failed for %s on %s: %s", member, day, exc)
        await update.message.reply_text(_RETRY_TEXT)
        return
    await update.message.reply_text(format_day_view(view), parse_mode="Markdown")


@authorized_only
async def cmd_today(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /today — open today's card."""
    await _open_and_render(update, context, _coordinator(context).today())


@authorized_only
async def cmd_day(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /day YYYY-MM-DD — open any day's card."""
    if not context.args:
        await update.message.reply_text("Usage: /day YYYY-MM-DD")
        return
    try:
        day = parse_day(context.args[0])
    except ValueError:
        await update.message.reply_text("Invalid date. Use YYYY-MM-DD.")
        return
    await _open_and_render(update, context, day)


async def _toggle(
    update: Update, context: ContextTypes.DEFAULT_TYPE, completed: bool,
) -> None:
    command = "/done" if completed else "/undo"
    if not context.args:
        await update.message.reply_text(f"Usage: {command} <task_id>")
        return

    coordinator = _coordinator(context)
    member = member_id_for(update.effective_user.id)
    task_id = context.args[0]
    day = _working_day(coordinator, member)

    try:
        task = (await coordinator.registry.resolve([task_id])).get(task_id)
        if task is not None and task.due_date is not None:
            if completed:
                result = await coordinator.move_task_to_completed_across_days(
                    member, day, task_id, task.due_date,
                )
            else:
                result = await coordinator.move_task_to_assigned_across_days(
                    member, day, task_id, task.due_date,
                )
        else:
            result = await coordinator.toggle_task(member, day, task_id, completed)
    except _BACKEND_ERRORS as exc:
        logger.error("%s failed for %s/%s: %s", command, member, task_id, exc)
        await update.message.reply_text(_RETRY_TEXT)
        return

    verb = "completed" if completed else "reopened"
    await _reply_result(update, result, f"Task {task_id} {verb} on {format_day(day)}.")


@authorized_only
async def cmd_done(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /done <task_id>."""
    await _toggle(update, context, True)


@authorized_only
async def cmd_undo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /undo <task_id>."""
    await _toggle(update, context, False)


@authorized_only
async def cmd_assign(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /assign <task_id> [YYYY-MM-DD] — defaults to the open day."""
    args = context.args
    if not args:
        await update.message.reply_text("Usage: /assign <task_id> [YYYY-MM-DD]")
        return

    coordinator = _coordinator(context)
    member = member_id_for(update.effective_user.id)
    try:
        day = parse_day(args[1]) if len(args) > 1 else _working_day(coordinator, member)
    except ValueError:
        await update.message.reply_text("Invalid date. Use YYYY-MM-DD.")
        return

    try:
        result = await coordinator.assign_task_to_specific_day(member, day, args[0])
    except _BACKEND_ERRORS as exc:
        logger.error("/assign failed for %s/%s: %s", member, args[0], exc)
        await update.message.reply_text(_RETRY_TEXT)
        return

    await _reply_result(update, result, f"Task {args[0]} assigned to {format_day(day)}.")


async def _attendance_time(
    update: Update, context: ContextTypes.DEFAULT_TYPE, field_name: str,
) -> None:
    command = f"/{field_name.replace('_', '')}"
    if not context.args:
        await update.message.reply_text(f"Usage: {command} HH:MM")
        return

    coordinator = _coordinator(context)
    member = member_id_for(update.effective_user.id)
    day = _working_day(coordinator, member)
    try:
        result = await coordinator.update_check_in_out(
            member, day, **{field_name: context.args[0]},
        )
    except ValueError:
        await update.message.reply_text("Invalid time. Use HH:MM (24h).")
        return
    except _BACKEND_ERRORS as exc:
        logger.error("%s failed for %s: %s", command, member, exc)
        await update.message.reply_text(_RETRY_TEXT)
        return

    label = "Check-in" if field_name == "check_in" else "Check-out"
    await _reply_result(
        update, result, f"{label} {context.args[0]} saved for {format_day(day)}.",
    )


@authorized_only
async def cmd_checkin(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /checkin HH:MM."""
    await _attendance_time(update, context, "check_in")


@authorized_only
async def cmd_checkout(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /checkout HH:MM."""
    await _attendance_time(update, context, "check_out")


async def _set_absent(
    update: Update, context: ContextTypes.DEFAULT_TYPE, is_absent: bool,
) -> None:
    coordinator = _coordinator(context)
    member = member_id_for(update.effective_user.id)
    day = _working_day(coordinator, member)
    try:
        result = await coordinator.mark_absent(member, day, is_absent)
    except _BACKEND_ERRORS as exc:
        logger.error("Attendance update failed for %s: %s", member, exc)
        await update.message.reply_text(_RETRY_TEXT)
        return

    state = "absent" if is_absent else "present"
    await _reply_result(update, result, f"{format_day(day)} marked {state}.")


@authorized_only
async def cmd_absent(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /absent — mark the open day absent."""
    await _set_absent(update, context, True)


@authorized_only
async def cmd_present(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /present — clear the absent mark."""
    await _set_absent(update, context, False)


@authorized_only
async def cmd_rollover(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /rollover — report the last scheduled rollover run."""
    from src.core.scheduler import last_rollover_run

    rollover_db = _coordinator(context).rollover_db
    if rollover_db is None:
        await update.message.reply_text("Rollover history is not recorded.")
        return

    try:
        run = await last_rollover_run(rollover_db)
    except LedgerStoreError as exc:
        logger.error("/rollover error: %s", exc)
        await update.message.reply_text(_RETRY_TEXT)
        return

    if run is None:
        await update.message.reply_text("No scheduled rollover has run yet.")
        return
    await update.message.reply_text(
        f"Last rollover: {format_day(run.execution_date)}\n"
        f"Members rolled: {run.success_count}, failed: {run.error_count}"
    )


# ---------------------------------------------------------------------------
# Application wiring
# ---------------------------------------------------------------------------


def build_app(coordinator: DayViewCoordinator | None = None) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        coordinator: Day View Coordinator. Defaults to one wired from settings.
    """
    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    if coordinator is None:
        from src.core.day_view import build_coordinator
        coordinator = build_coordinator()

    app.bot_data["coordinator"] = coordinator

    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("today", cmd_today))
    app.add_handler(CommandHandler("day", cmd_day))
    app.add_handler(CommandHandler("done", cmd_done))
    app.add_handler(CommandHandler("undo", cmd_undo))
    app.add_handler(CommandHandler("assign", cmd_assign))
    app.add_handler(CommandHandler("checkin", cmd_checkin))
    app.add_handler(CommandHandler("checkout", cmd_checkout))
    app.add_handler(CommandHandler("absent", cmd_absent))
    app.add_handler(CommandHandler("present", cmd_present))
    app.add_handler(CommandHandler("rollover", cmd_rollover))

    _setup_daily_rollover(app, coordinator)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_daily_rollover(app: Application, coordinator: DayViewCoordinator) -> None:
    """Register the all-members rollover job at ROLLOVER_HOUR in TIMEZONE."""
    from src.core.scheduler import run_scheduled_rollover

    tz = ZoneInfo(settings.TIMEZONE)
    rollover_time = dt_time(hour=settings.ROLLOVER_HOUR, minute=0, tzinfo=tz)

    async def _rollover_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        await run_scheduled_rollover(coordinator, settings.MEMBER_IDS.values())

    app.job_queue.run_daily(
        _rollover_job_callback,
        time=rollover_time,
        name="daily_rollover",
    )

    logger.info(
        "Daily rollover scheduled at %02d:00 %s",
        settings.ROLLOVER_HOUR,
        settings.TIMEZONE,
    )


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    if not settings.TELEGRAM_BOT_TOKEN:
        raise SystemExit("TELEGRAM_BOT_TOKEN must be set to run the bot")
    logger.info("Starting Worklog bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
