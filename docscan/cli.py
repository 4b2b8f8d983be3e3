"""Command-line client for the document scanning service.

Provides subcommands for signing in, uploading and processing single
documents or whole folders (with a CSV summary), listing and searching
documents, and maintenance tasks such as reprocessing and stale-job
recovery.
"""

import argparse
import csv
import getpass
import json
import sys
import time
from pathlib import Path

from docscan.auth.session import AuthSession, SessionManager, SessionStore
from docscan.errors import AuthError, DocScanError
from docscan.services import Services, build_services
from docscan.storage.database import create_db_engine, init_db
from docscan.utils.config import AppConfig, load_config, validate_config
from docscan.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)

_SUPPORTED_EXTENSIONS = (
    "*.png",
    "*.jpg",
    "*.jpeg",
    "*.gif",
    "*.bmp",
    "*.tiff",
    "*.tif",
    "*.pdf",
)
_CSV_COLUMNS = [
    "filename",
    "document_id",
    "status",
    "document_type",
    "ocr_confidence",
    "embeddings",
    "processing_time_s",
    "error",
]


def _find_documents(input_dir: Path) -> list[Path]:
    """Find all supported document files in a directory.

    Args:
        input_dir: Directory to scan for documents.

    Returns:
        Sorted list of document file paths.
    """
    files: list[Path] = []
    for ext in _SUPPORTED_EXTENSIONS:
        files.extend(input_dir.glob(ext))
        files.extend(input_dir.glob(ext.upper()))
    return sorted(set(files))


def _session_manager(config: AppConfig, services: Services) -> SessionManager:
    return SessionManager(services.auth, SessionStore(config.auth.session_file), config.auth)


def _require_session(config: AppConfig, services: Services) -> AuthSession:
    try:
        return _session_manager(config, services).current_session()
    except AuthError as exc:
        print(f"Error: {exc}. Run 'docscan login' first.", file=sys.stderr)
        sys.exit(1)


def upload_file(
    services: Services,
    session: AuthSession,
    file_path: Path,
    document_type: str | None = None,
    process: bool = True,
) -> dict[str, object]:
    """Upload one file and optionally process it right away.

    Args:
        services: Shared service objects.
        session: Signed-in user's session.
        file_path: Document to upload.
        document_type: Optional type hint for processing.
        process: Whether to run the processing pipeline synchronously.

    Returns:
        Row describing the outcome, keyed by the CSV columns.
    """
    start_time = time.time()
    document = services.documents.upload_document(
        user_id=session.user_id,
        email=session.email,
        filename=file_path.name,
        content=file_path.read_bytes(),
        document_type=document_type,
        access_token=session.access_token,
    )
    row: dict[str, object] = {
        "filename": file_path.name,
        "document_id": document.id,
        "status": document.ocr_status,
        "embeddings": 0,
        "error": None,
    }
    if process:
        outcome = services.pipeline.process(document.id)
        processed = services.documents.get_document(document.id)
        row.update(
            status=outcome.status,
            document_type=processed.document_type,
            ocr_confidence=processed.ocr_confidence_score,
            embeddings=outcome.embeddings,
            error=outcome.error,
        )
    row["processing_time_s"] = round(time.time() - start_time, 2)
    return row


def process_folder(
    services: Services,
    session: AuthSession,
    input_dir: Path,
    output_csv: Path,
    document_type: str | None = None,
    verbose: bool = False,
) -> dict[str, int]:
    """Upload and process all documents in a folder and write a CSV summary.

    A document counts as successful when processing ended in
    ``completed``, ``fallback`` or ``partial``.

    Returns:
        Summary dict with total, successful, and failed counts.
    """
    files = _find_documents(input_dir)
    if not files:
        logger.warning("No documents found in %s", input_dir)
        return {"total": 0, "successful": 0, "failed": 0}

    logger.info("Found %d documents to upload", len(files))

    results: list[dict[str, object]] = []
    successful = 0
    failed = 0

    for i, file_path in enumerate(files, 1):
        if verbose:
            print(f"Processing [{i}/{len(files)}]: {file_path.name}")
        try:
            row = upload_file(services, session, file_path, document_type)
        except Exception as exc:
            logger.error("Failed to upload %s: %s", file_path.name, exc)
            row = {"filename": file_path.name, "status": "failed", "error": str(exc)}
        results.append(row)
        if row["status"] == "failed":
            failed += 1
        else:
            successful += 1

    _write_csv(results, output_csv)
    logger.info("Results written to %s", output_csv)

    summary = {"total": len(files), "successful": successful, "failed": failed}
    _print_summary(summary, output_csv)
    return summary


def _write_csv(results: list[dict[str, object]], output_path: Path) -> None:
    if not results:
        return
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=_CSV_COLUMNS, extrasaction="ignore")
        writer.writeheader()
        writer.writerows(results)


def _print_summary(summary: dict[str, int], output_csv: Path) -> None:
    print(f"\n{'=' * 50}")
    print("Batch Upload Complete")
    print(f"{'=' * 50}")
    print(f"Total:      {summary['total']}")
    print(f"Successful: {summary['successful']}")
    print(f"Failed:     {summary['failed']}")
    print(f"Output:     {output_csv}")


def _print_documents(services: Services, session: AuthSession) -> None:
    documents = services.documents.list_documents(session.user_id)
    if not documents:
        print("No documents yet.")
        return
    for doc in documents:
        uploaded = doc.uploaded_at.strftime("%Y-%m-%d %H:%M") if doc.uploaded_at else "-"
        print(
            f"{doc.id}  {doc.ocr_status:<10}  {uploaded}  "
            f"{doc.document_type or '-':<20}  {doc.original_filename}"
        )


def _print_search(
    services: Services,
    session: AuthSession,
    query: str,
    limit: int,
    document_type: str | None,
) -> None:
    results = services.search.search(
        query, session.user_id, limit=limit, document_type=document_type
    )
    if results.is_empty:
        print("No matching documents found.")
        return
    names = {doc.id: doc.original_filename for doc in results.documents}
    for rank, match in enumerate(results.chunks, 1):
        snippet = " ".join(match.content.split())[:200]
        print(
            f"{rank}. {names.get(match.document_id, match.document_id)} "
            f"(similarity {match.similarity:.3f}, {match.importance})"
        )
        print(f"   {snippet}")


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate command.

    Args:
        argv: Command-line arguments (defaults to sys.argv).
    """
    parser = argparse.ArgumentParser(
        prog="docscan",
        description="Document scanning client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-c", "--config", type=Path, help="Path to config YAML")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    login_parser = subparsers.add_parser("login", help="Sign in and store the session")
    login_parser.add_argument("email", help="Account email")
    login_parser.add_argument("--password", help="Password (prompted when omitted)")

    subparsers.add_parser("logout", help="Sign out and forget the stored session")

    upload_parser = subparsers.add_parser("upload", help="Upload and process a document")
    upload_parser.add_argument("file", type=Path, help="Document file to upload")
    upload_parser.add_argument("-t", "--type", dest="doc_type", help="Document type hint")
    upload_parser.add_argument(
        "--no-process", action="store_true", help="Upload only, leave pending"
    )

    batch_parser = subparsers.add_parser("batch", help="Upload a folder of documents")
    batch_parser.add_argument(
        "input_dir", type=Path, help="Input directory with documents"
    )
    batch_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=Path("results.csv"),
        help="Output CSV file (default: results.csv)",
    )
    batch_parser.add_argument("-t", "--type", dest="doc_type", help="Document type hint")
    batch_parser.add_argument(
        "-v", "--verbose", action="store_true", help="Verbose output"
    )

    subparsers.add_parser("list", help="List your documents")

    search_parser = subparsers.add_parser("search", help="Semantic search")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument("-n", "--limit", type=int, default=10)
    search_parser.add_argument("-t", "--type", dest="doc_type", help="Document type")

    reprocess_parser = subparsers.add_parser("reprocess", help="Process a document again")
    reprocess_parser.add_argument("document_id", help="Document id")

    subparsers.add_parser("stats", help="Show document statistics")

    stale_parser = subparsers.add_parser(
        "recover-stale", help="Fail documents stuck in processing"
    )
    stale_parser.add_argument(
        "--minutes",
        type=int,
        default=30,
        help="Age in minutes after which a job is stale (default: 30)",
    )

    subparsers.add_parser("init-db", help="Create database tables")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    config = load_config(args.config)
    setup_logging(config.log_level)

    if args.command == "init-db":
        init_db(create_db_engine(config.database))
        print("Database initialized.")
        return

    for problem in validate_config(config):
        logger.warning(problem)

    services = build_services(config)

    try:
        _dispatch(args, config, services)
    except DocScanError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


def _dispatch(args: argparse.Namespace, config: AppConfig, services: Services) -> None:
    if args.command == "login":
        password = args.password or getpass.getpass("Password: ")
        session = _session_manager(config, services).sign_in(args.email, password)
        services.profiles.get_or_create_profile(
            session.user_id, session.email, session.user_metadata.get("full_name")
        )
        print(f"Signed in as {session.email}")
    elif args.command == "logout":
        _session_manager(config, services).sign_out()
        print("Signed out.")
    elif args.command == "upload":
        if not args.file.exists():
            print(f"Error: {args.file} does not exist", file=sys.stderr)
            sys.exit(1)
        session = _require_session(config, services)
        row = upload_file(
            services, session, args.file, args.doc_type, not args.no_process
        )
        print(json.dumps(row, indent=2, default=str))
    elif args.command == "batch":
        if not args.input_dir.is_dir():
            print(f"Error: {args.input_dir} is not a directory", file=sys.stderr)
            sys.exit(1)
        session = _require_session(config, services)
        process_folder(
            services, session, args.input_dir, args.output, args.doc_type, args.verbose
        )
    elif args.command == "list":
        _print_documents(services, _require_session(config, services))
    elif args.command == "search":
        session = _require_session(config, services)
        _print_search(services, session, args.query, args.limit, args.doc_type)
    elif args.command == "reprocess":
        session = _require_session(config, services)
        document = services.documents.get_document(args.document_id)
        if document.user_id != session.user_id:
            print(f"Error: document {args.document_id} not found", file=sys.stderr)
            sys.exit(1)
        services.documents.retry_processing(args.document_id)
        outcome = services.pipeline.process(args.document_id)
        print(f"Document {args.document_id}: {outcome.status}")
    elif args.command == "stats":
        session = _require_session(config, services)
        stats = services.profiles.get_stats(session.user_id)
        if stats is None:
            print("No profile found.")
            return
        print(f"Documents:  {stats.total_documents}")
        print(f"Processed:  {stats.processed_documents}")
        print(f"Storage:    {stats.storage_used_mb} MB")
    elif args.command == "recover-stale":
        recovered = services.documents.recover_stale(args.minutes)
        print(f"Recovered {len(recovered)} stale documents")


if __name__ == "__main__":
    main()
