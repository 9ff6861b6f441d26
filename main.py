"""CLI entry point.

    python main.py preview inventory.lowStock --payload '{"itemName": "Glass 8mm", "stock": 3}'
    python main.py send workOrder.created --payload '{"clientName": "ACME"}' --user u-42
    python main.py serve --port 8000
"""

import argparse
import asyncio
import json
import sys

from src.logging_config import configure_logging
from src.notifications.rendering import render_push_content


def _parse_payload(raw: str) -> dict:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise SystemExit(f"--payload is not valid JSON: {exc}")
    if not isinstance(payload, dict):
        raise SystemExit("--payload must be a JSON object")
    return payload


def cmd_preview(args) -> int:
    content = render_push_content(args.type, _parse_payload(args.payload))
    print(json.dumps(content.to_dict(), indent=2, ensure_ascii=False))
    return 0


async def _send(args) -> int:
    from src.api.app import build_service_from_settings

    service = build_service_from_settings()
    try:
        notification = await service.create_notification(
            args.type, _parse_payload(args.payload), target_user_id=args.user,
        )
        print(f"Notification {notification.id} created")
        await service.drain()
        for report in service.dispatch_reports:
            print(json.dumps(report.to_dict(), indent=2))
    finally:
        await service.close()
    return 0


def cmd_send(args) -> int:
    return asyncio.run(_send(args))


def cmd_serve(args) -> int:
    import uvicorn

    from src.api.app import create_app

    uvicorn.run(create_app(), host=args.host, port=args.port)
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Glassline - notifications and push delivery"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    preview = subparsers.add_parser("preview", help="Render push content for a type and payload")
    preview.add_argument("type", help="Notification type, e.g. inventory.lowStock")
    preview.add_argument("--payload", default="{}", help="JSON object payload")
    preview.set_defaults(func=cmd_preview)

    send = subparsers.add_parser("send", help="Create a notification and wait for push dispatch")
    send.add_argument("type", help="Notification type, e.g. workOrder.created")
    send.add_argument("--payload", default="{}", help="JSON object payload")
    send.add_argument("--user", default=None, help="Target user id (default: everyone)")
    send.set_defaults(func=cmd_send)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)
    configure_logging()
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
