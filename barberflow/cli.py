"""Console entry point for cron: send WhatsApp reminders for upcoming appointments."""

import argparse
import logging

from sqlmodel import Session

from .db import engine, init_db
from .notifications import AppointmentNotifier
from .reminders import send_due_reminders
from .settings import load_settings
from .whatsapp import EvolutionWhatsAppService

logger = logging.getLogger(__name__)

def build_parser(settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="barberflow-reminders",
        description="Remind shops about confirmed appointments starting soon.",
    )
    parser.add_argument("--window-start", type=int, default=settings.reminder_window_start,
                        help="Minutes from now where the window starts (default: %(default)s)")
    parser.add_argument("--window-end", type=int, default=settings.reminder_window_end,
                        help="Minutes from now where the window ends (default: %(default)s)")
    return parser

def main(argv=None) -> int:
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    args = build_parser(settings).parse_args(argv)
    if args.window_start > args.window_end:
        logger.error("--window-start must not be greater than --window-end")
        return 2

    init_db()
    notifier = AppointmentNotifier(EvolutionWhatsAppService.from_settings(settings))
    with Session(engine) as session:
        count = send_due_reminders(session, notifier, args.window_start, args.window_end, now=settings.local_now())

    if count == 0:
        print(f"No appointments in the reminder window ({args.window_start}-{args.window_end} min).")
    else:
        print(f"Reminder sent for {count} appointment(s).")
    return 0

if __name__ == "__main__":
    raise SystemExit(main())
