from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path

from monthlyreport.archival import build_coordinator
from monthlyreport.config import get_settings
from monthlyreport.errors import PersistenceError, ReportError
from monthlyreport.pipeline import generate_report, send_report
from monthlyreport.types import LedgerRecord, RequestContext


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _context(args: argparse.Namespace) -> RequestContext:
    return RequestContext(user_id=args.user_id, role=args.role)


def _error_payload(exc: ReportError) -> dict:
    payload: dict = {'status': 'error', 'error_type': type(exc).__name__, 'message': str(exc)}
    if isinstance(exc, PersistenceError):
        payload['kind'] = exc.kind
        payload['message'] = exc.user_message
    errors = getattr(exc, 'errors', None)
    if errors:
        payload['errors'] = list(errors)
    return payload


def _ledger_row(record: LedgerRecord) -> dict:
    return {
        'subject_id': record.subject_id,
        'period': record.period,
        'total_cost': record.totals.total_cost,
        'costs_count': len(record.events.costs),
        'images_count': len(record.events.images),
        'artifact_size': record.artifact_size,
        'created_by': record.created_by,
        'created_at': record.created_at.isoformat(),
        'updated_at': record.updated_at.isoformat(),
    }


def cmd_generate(args: argparse.Namespace) -> int:
    input_path = Path(args.input).expanduser().resolve()
    if not input_path.exists() or not input_path.is_file():
        _print_json({'status': 'error', 'message': f'Input not found: {input_path}'})
        return 2
    try:
        data = json.loads(input_path.read_text(encoding='utf-8'))
    except json.JSONDecodeError as exc:
        _print_json({'status': 'error', 'message': f'Input is not valid JSON: {exc}'})
        return 2
    if not isinstance(data, dict):
        _print_json({'status': 'error', 'message': 'Input must be a JSON object'})
        return 2

    try:
        report = asyncio.run(
            generate_report(
                _context(args),
                subject_id=str(data.get('subject_id') or ''),
                period=str(data.get('period') or ''),
                incident_text=str(data.get('incident_text') or ''),
                images=data.get('images') or [],
                costs=data.get('costs') or [],
                subject_title=str(data.get('subject_title') or 'Property'),
                subject_location=data.get('subject_location'),
            )
        )
    except ReportError as exc:
        _print_json(_error_payload(exc))
        return 2

    out_path = None
    if args.out:
        out_path = Path(args.out).expanduser().resolve()
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_bytes(report.pdf_bytes)

    _print_json(
        {
            'status': 'ok',
            'subject_id': report.payload.subject_id,
            'period': report.payload.period,
            'total_cost': report.payload.totals.total_cost,
            'template_id': report.template_id,
            'pdf_bytes': len(report.pdf_bytes),
            'pdf_path': str(out_path) if out_path else None,
        }
    )
    return 0


def cmd_send(args: argparse.Namespace) -> int:
    try:
        result = asyncio.run(
            send_report(
                _context(args),
                subject_id=args.subject_id,
                period=args.period,
                run_id=args.run_id,
            )
        )
    except ReportError as exc:
        _print_json(_error_payload(exc))
        return 2

    _print_json({'status': 'ok', **result.model_dump(mode='json')})
    return 0


def cmd_ledger(args: argparse.Namespace) -> int:
    try:
        records = build_coordinator().list_ledger(args.subject_id, limit=args.limit)
    except ReportError as exc:
        _print_json(_error_payload(exc))
        return 2
    _print_json({'status': 'ok', 'rows': [_ledger_row(r) for r in records]})
    return 0


def cmd_versions(args: argparse.Namespace) -> int:
    coordinator = build_coordinator()
    try:
        document = coordinator.find_report_document(args.subject_id, args.period)
        if document is None:
            _print_json({'status': 'error', 'message': f'No report document for {args.subject_id} {args.period}'})
            return 2
        versions = coordinator.list_document_versions(args.subject_id, document.id)
    except ReportError as exc:
        _print_json(_error_payload(exc))
        return 2

    _print_json(
        {
            'status': 'ok',
            'document': document.model_dump(mode='json'),
            'versions': [v.model_dump(mode='json') for v in versions],
        }
    )
    return 0


def _add_identity(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('--role', default='admin', help='Caller role')
    parser.add_argument('--user-id', required=False, help='Caller user id')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Monthly report back-office CLI')
    sub = parser.add_subparsers(dest='command', required=True)

    generate = sub.add_parser('generate', help='Generate a monthly report from a JSON input file')
    generate.add_argument('--input', required=True, help='Path to JSON input')
    generate.add_argument('--out', required=False, help='Where to write the PDF')
    _add_identity(generate)
    generate.set_defaults(func=cmd_generate)

    send = sub.add_parser('send', help='Version and archive the generated report')
    send.add_argument('--subject-id', required=True)
    send.add_argument('--period', required=True, help='YYYY-MM')
    send.add_argument('--run-id', required=False, help='Reuse to retry the same send')
    _add_identity(send)
    send.set_defaults(func=cmd_send)

    ledger = sub.add_parser('ledger', help='List ledger rows')
    ledger.add_argument('--subject-id', required=False)
    ledger.add_argument('--limit', type=int, default=200)
    ledger.set_defaults(func=cmd_ledger)

    versions = sub.add_parser('versions', help='List stored versions of a monthly report')
    versions.add_argument('--subject-id', required=True)
    versions.add_argument('--period', required=True, help='YYYY-MM')
    versions.set_defaults(func=cmd_versions)

    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=get_settings().log_level, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    parser = build_parser()
    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == '__main__':
    raise SystemExit(main())
