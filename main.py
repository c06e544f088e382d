"""
Field Intake - Command Line Orchestrator

This script is the data-entry front end for the intake pipeline:
1. Record purchases, unloadings and deliveries into the local store
2. List, edit, delete and summarize pending records
3. Send pending records of one category to the collector
4. Clear the store at the end of the work day
5. Run the same-origin forwarding proxy

Examples:
    python main.py add --type Purchase --product Potatoes --quantity 12 \\
        --unit kg --location "Green market" --price 18.4 --photo receipt.jpg
    python main.py send purchases
    python main.py send unloadings --mode test
"""

import os
import sys
import logging
import argparse
from typing import List, Optional

from dotenv import load_dotenv

# Load .env file if it exists (for local development)
load_dotenv()

from config.catalog import UNITS, unit_label, locations_for
from config.settings import Settings, load_settings
from intake.batch_sender import BatchSender
from intake.errors import ConfigurationError, ReadError, StoreBusyError, ValidationError
from intake.models.transaction import (
    Attachment,
    CATEGORY_TYPES,
    TRANSACTION_TYPES,
    TransactionRecord,
    is_priced,
)
from intake.reports import summarize
from intake.storage import RecordStore, open_key_value_store

# Configure logging
logging.basicConfig(
    level=os.environ.get('INTAKE_LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)
logger = logging.getLogger(__name__)


def open_store(settings: Settings) -> RecordStore:
    """Open the record store named by the settings."""
    return RecordStore(
        open_key_value_store(settings.storage),
        key=settings.storage_key,
        max_local_attachment_bytes=settings.max_local_attachment_bytes,
    )


# ============================================================
# Commands
# ============================================================

def cmd_add(args: argparse.Namespace, settings: Settings, store: RecordStore) -> int:
    attachment = Attachment.from_file(args.photo) if args.photo else None
    record = TransactionRecord.create(
        type=args.type,
        product_name=args.product,
        quantity=args.quantity,
        unit=args.unit,
        location=args.location,
        price_per_unit=args.price or 0.0,
        attachment=attachment,
        price_unloading=settings.price_unloading,
    )
    if args.location not in locations_for(record.type):
        logger.info(f"Using custom location '{record.location}'")
    store.add(record)
    logger.info(f"'{record.product_name}' saved locally ({record.id})")
    return 0


def cmd_edit(args: argparse.Namespace, settings: Settings, store: RecordStore) -> int:
    existing = store.get(args.id)
    if existing is None:
        logger.error(f"No pending record with id {args.id}")
        return 1

    changes = {}
    if args.product is not None:
        changes['product_name'] = args.product.strip()
    if args.quantity is not None:
        changes['quantity'] = args.quantity
    if args.unit is not None:
        changes['unit'] = args.unit
    if args.location is not None:
        changes['location'] = args.location.strip()
    if args.price is not None:
        if not is_priced(existing.type, settings.price_unloading):
            logger.error(f"{existing.type} records do not carry a price")
            return 1
        changes['price_per_unit'] = args.price
    if args.photo is not None:
        changes['attachment'] = Attachment.from_file(args.photo)
    if args.remove_photo:
        changes['attachment'] = None

    store.update(args.id, existing.replaced(**changes))
    logger.info(f"'{changes.get('product_name', existing.product_name)}' updated locally")
    return 0


def cmd_delete(args: argparse.Namespace, settings: Settings, store: RecordStore) -> int:
    if not store.delete(args.id):
        logger.error(f"No pending record with id {args.id}")
        return 1
    logger.info("Record deleted")
    return 0


def cmd_list(args: argparse.Namespace, settings: Settings, store: RecordStore) -> int:
    records: List[TransactionRecord] = (
        store.list_category(args.category) if args.category else store.list()
    )
    if not records:
        print("No records yet")
        return 0

    for record in records:
        photo = " [photo]" if record.attachment else ""
        print(
            f"{record.id}  {record.type:<10} {record.product_name:<20} "
            f"{record.quantity:g} {unit_label(record.unit):<8} "
            f"{record.location:<24} {record.total_amount:>10.2f}{photo}"
        )
    print(f"{len(records)} record(s)")
    return 0


def cmd_report(args: argparse.Namespace, settings: Settings, store: RecordStore) -> int:
    summary = summarize(store.list())
    print(f"Total spent:      {summary.total_amount:.2f}")
    print(f"Total operations: {summary.total_records}")
    for record_type in TRANSACTION_TYPES:
        if record_type in summary.count_by_type:
            print(
                f"  {record_type:<10} {summary.count_by_type[record_type]:>4}  "
                f"{summary.amount_by_type[record_type]:>10.2f}"
            )
    return 0


def cmd_send(args: argparse.Namespace, settings: Settings, store: RecordStore) -> int:
    """
    Send all pending records of one category.

    Returns:
        0 if everything was delivered (or nothing was pending), 1 otherwise
    """
    if args.mode:
        settings = settings.with_mode(args.mode)

    logger.info("=" * 50)
    logger.info(f"Sending pending {args.category} ({settings.mode})")
    logger.info("=" * 50)

    sender = BatchSender.from_settings(settings, store)
    report = sender.send_pending(args.category)

    logger.info("")
    logger.info("=" * 50)
    logger.info("EXECUTION SUMMARY")
    logger.info("=" * 50)
    logger.info(f"Attempted:        {report.total}")
    logger.info(f"Succeeded:        {report.succeeded}")
    logger.info(f"Failed:           {report.failed}")
    logger.info("-" * 50)
    for outcome in report.outcomes:
        status = "[OK]" if outcome.delivered else "[ERROR]"
        detail = outcome.attempted_urls[-1] if outcome.delivered else outcome.last_error
        logger.info(f"{status} {outcome.record_id}: {detail}")
    logger.info("=" * 50)

    print(report.summary_message())
    return 0 if report.ok else 1


def cmd_clear(args: argparse.Namespace, settings: Settings, store: RecordStore) -> int:
    if not args.yes:
        logger.error("Refusing to clear the store without --yes")
        return 1
    store.clear()
    logger.info("Work day finished. Pending records cleared.")
    return 0


def cmd_proxy(args: argparse.Namespace, settings: Settings, store: RecordStore) -> int:
    from intake.proxy import create_app

    app = create_app(settings)
    app.run(host=args.host or settings.proxy_host, port=args.port or settings.proxy_port)
    return 0


COMMANDS = {
    'add': cmd_add,
    'edit': cmd_edit,
    'delete': cmd_delete,
    'list': cmd_list,
    'report': cmd_report,
    'send': cmd_send,
    'clear': cmd_clear,
    'proxy': cmd_proxy,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Field intake records and delivery")
    sub = parser.add_subparsers(dest='command', required=True)

    add = sub.add_parser('add', help='Record a new transaction')
    add.add_argument('--type', choices=TRANSACTION_TYPES, default='Purchase')
    add.add_argument('--product', required=True)
    add.add_argument('--quantity', type=float, required=True)
    add.add_argument('--unit', choices=sorted(UNITS), required=True)
    add.add_argument('--location', required=True)
    add.add_argument('--price', type=float, help='Price per unit (priced types only)')
    add.add_argument('--photo', help='Path to a photo to attach')

    edit = sub.add_parser('edit', help='Edit a pending record')
    edit.add_argument('id')
    edit.add_argument('--product')
    edit.add_argument('--quantity', type=float)
    edit.add_argument('--unit', choices=sorted(UNITS))
    edit.add_argument('--location')
    edit.add_argument('--price', type=float)
    edit.add_argument('--photo')
    edit.add_argument('--remove-photo', action='store_true')

    delete = sub.add_parser('delete', help='Delete a pending record')
    delete.add_argument('id')

    listing = sub.add_parser('list', help='List pending records')
    listing.add_argument('category', nargs='?', choices=sorted(CATEGORY_TYPES))

    sub.add_parser('report', help='Show totals for pending records')

    send = sub.add_parser('send', help='Send pending records of one category')
    send.add_argument('category', choices=sorted(CATEGORY_TYPES))
    send.add_argument('--mode', choices=('production', 'test'))

    clear = sub.add_parser('clear', help='Clear all pending records (end of work day)')
    clear.add_argument('--yes', action='store_true')

    proxy = sub.add_parser('proxy', help='Run the forwarding proxy')
    proxy.add_argument('--host')
    proxy.add_argument('--port', type=int)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings()
        store = open_store(settings)
        return COMMANDS[args.command](args, settings, store)

    except ValidationError as e:
        logger.error(f"Invalid record: {e}")
        return 1
    except ReadError as e:
        logger.error(f"Could not read photo: {e}")
        return 1
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except StoreBusyError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
