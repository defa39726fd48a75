from __future__ import annotations

import argparse
import os
import sys

from postback_tracker.app.services.telegram import TelegramApiError, TelegramClient


def main() -> int:
    parser = argparse.ArgumentParser(description="Verify a Telegram bot token with getMe.")
    parser.add_argument("--token", default=os.getenv("TELEGRAM_BOT_TOKEN", ""))
    parser.add_argument("--webhook-info", action="store_true", help="also print getWebhookInfo")
    args = parser.parse_args()

    token = args.token.strip()
    if not token:
        print("TELEGRAM_BOT_TOKEN is not set; pass --token", file=sys.stderr)
        return 2

    client = TelegramClient(token)
    try:
        me = client.get_me()
    except TelegramApiError as exc:
        print(f"Token check failed: {exc}", file=sys.stderr)
        return 1
    print(f"OK bot id={me.get('id')} username=@{me.get('username')} name={me.get('first_name')}")

    if args.webhook_info:
        try:
            info = client.get_webhook_info()
        except TelegramApiError as exc:
            print(f"getWebhookInfo failed: {exc}", file=sys.stderr)
            return 1
        print(
            f"webhook url={info.get('url') or '-'} "
            f"pending={info.get('pending_update_count', 0)} "
            f"last_error={info.get('last_error_message') or '-'}"
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
