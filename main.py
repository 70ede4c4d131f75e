"""
Operator Console for the Clinical Documentation Workflow

Maintenance commands against the session store. Does not load any
models: status and sweeps only read and delete artifacts.

Usage:
    python main.py list
    python main.py status <session_id>
    python main.py sweep --days 7
    python main.py delete <session_id>
    python main.py templates
"""

import argparse
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from clinic_workflow import config
from clinic_workflow.core.retention import RetentionSweeper
from clinic_workflow.core.session_status import SessionStatusProjector
from clinic_workflow.errors import StorageFailure
from clinic_workflow.persistence import ArtifactStore
from clinic_workflow.utils.soap_templates import list_templates

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def print_separator(char="=", length=60):
    """Print a separator line"""
    print(char * length)


def print_status(status):
    """Print one session's status block"""
    print_separator("-")
    print(f"Session:     {status.session_id}")
    if status.error:
        print(f"ERROR:       {status.error}")
        return
    print(f"Stage:       {status.stage.value}")
    print(f"Completion:  {status.completion_percentage}%")
    print(f"Template:    {status.template_type or '-'}")
    print(f"Next step:   {status.next_step or '(complete)'}")
    print(f"Artifacts:   raw={status.has_transcript_raw} clean={status.has_transcript_clean} "
          f"soap={status.has_soap_data} pdf={status.has_pdf}")
    if status.has_ocr_raw or status.has_ocr_clean:
        print(f"OCR:         raw={status.has_ocr_raw} clean={status.has_ocr_clean}")


def cmd_list(store, args):
    sessions = sorted(store.list_sessions())
    if not sessions:
        print("No sessions found")
        return 0

    projector = SessionStatusProjector(store)
    for session_id in sessions:
        status = projector.status(session_id)
        modified = store.last_modified(session_id)
        stamp = modified.strftime("%Y-%m-%d %H:%M") if modified else "?"
        print(f"{session_id}  {stamp}  {status.completion_percentage:>3}%  {status.stage.value}")
    print(f"\n{len(sessions)} session(s)")
    return 0


def cmd_status(store, args):
    if not store.session_exists(args.session_id):
        print(f"Session not found: {args.session_id}")
        return 1
    print_status(SessionStatusProjector(store).status(args.session_id))
    return 0


def cmd_sweep(store, args):
    removed = RetentionSweeper(store).sweep(args.days)
    print(f"Removed {removed} session(s) older than {args.days} day(s)")
    return 0


def cmd_delete(store, args):
    try:
        store.delete_session(args.session_id)
    except StorageFailure as e:
        print(f"Failed to delete: {e}")
        return 1
    print(f"Deleted session {args.session_id}")
    return 0


def cmd_templates(store, args):
    for number, template in enumerate(list_templates(), start=1):
        print(f"{number:>2}. {template['name']:<22} {template['description']}")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(
        description="Clinical documentation workflow - operator console"
    )
    parser.add_argument(
        "--data-dir",
        default=config.DATA_DIR,
        help=f"Session store directory (default: {config.DATA_DIR})"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="List stored sessions").set_defaults(func=cmd_list)

    status = subparsers.add_parser("status", help="Show a session's workflow status")
    status.add_argument("session_id")
    status.set_defaults(func=cmd_status)

    sweep = subparsers.add_parser("sweep", help="Delete sessions older than the retention period")
    sweep.add_argument(
        "--days",
        type=float,
        default=config.RETENTION_DAYS,
        help=f"Retention period in days (default: {config.RETENTION_DAYS})"
    )
    sweep.set_defaults(func=cmd_sweep)

    delete = subparsers.add_parser("delete", help="Delete one session")
    delete.add_argument("session_id")
    delete.set_defaults(func=cmd_delete)

    subparsers.add_parser("templates", help="List SOAP templates").set_defaults(func=cmd_templates)

    return parser


def main(argv=None):
    """Run one operator command"""
    args = build_parser().parse_args(argv)
    store = ArtifactStore(args.data_dir)

    try:
        return args.func(store, args)
    except ValueError as e:
        print(f"Invalid input: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
