from __future__ import annotations

import argparse
import json
import sys
import urllib.error
import urllib.request


def post_json(url: str, body: bytes, headers: dict[str, str]) -> tuple[int, str]:
    request = urllib.request.Request(url, data=body, method="POST")
    request.add_header("Content-Type", "application/json")
    for key, value in headers.items():
        request.add_header(key, value)
    try:
        with urllib.request.urlopen(request, timeout=15) as response:
            return response.status, response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        return exc.code, exc.read().decode("utf-8")


def build_update(kind: str, *, update_id: int, user_id: int, args: argparse.Namespace) -> dict:
    sender = {"id": user_id, "is_bot": False, "first_name": f"Mock {user_id}"}
    private_chat = {"id": user_id, "type": "private"}
    if kind == "start":
        visitor = f"{args.visitor_prefix}{user_id}"
        text = f"/start {visitor}_{args.campaign}_{args.zone}_{args.network}"
        return {"update_id": update_id, "message": {"from": sender, "chat": private_chat, "text": text}}
    if kind == "keyword":
        return {
            "update_id": update_id,
            "message": {"from": sender, "chat": private_chat, "text": args.keyword},
        }
    if kind == "button":
        return {
            "update_id": update_id,
            "callback_query": {
                "id": f"cbq_mock_{update_id}",
                "from": sender,
                "data": args.button_data,
                "message": {"chat": private_chat},
            },
        }
    return {
        "update_id": update_id,
        "message": {
            "from": {"id": 1, "is_bot": False, "first_name": "Admin"},
            "chat": {"id": args.group_chat_id, "type": "supergroup", "title": "Mock Group"},
            "new_chat_members": [sender],
        },
    }


def main() -> int:
    parser = argparse.ArgumentParser(description="Send mock Telegram updates to the local API.")
    parser.add_argument("--base-url", default="http://127.0.0.1:8000")
    parser.add_argument(
        "--kind",
        choices=["start", "keyword", "button", "group_join", "flow"],
        default="flow",
        help="flow sends start, keyword, button and group_join for each user",
    )
    parser.add_argument("--count", type=int, default=3)
    parser.add_argument("--start-index", type=int, default=1)
    parser.add_argument("--visitor-prefix", default="clk_mock_")
    parser.add_argument("--campaign", default="cmp1")
    parser.add_argument("--zone", default="zone1")
    parser.add_argument("--network", default="prop")
    parser.add_argument("--keyword", default="register")
    parser.add_argument("--button-data", default="signup_button")
    parser.add_argument("--group-chat-id", type=int, default=-1000000000001)
    parser.add_argument("--secret", default="")
    args = parser.parse_args()

    endpoint = f"{args.base_url.rstrip('/')}/webhook"
    headers: dict[str, str] = {}
    if args.secret:
        headers["X-Telegram-Bot-Api-Secret-Token"] = args.secret

    kinds = ["start", "keyword", "button", "group_join"] if args.kind == "flow" else [args.kind]
    update_id = 0
    for index in range(args.start_index, args.start_index + args.count):
        user_id = 800000000 + index
        for kind in kinds:
            update_id += 1
            payload = build_update(kind, update_id=update_id, user_id=user_id, args=args)
            body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
            status_code, response = post_json(endpoint, body, headers)
            print(f"{status_code} {kind} user={user_id} {response}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
