#!/usr/bin/env python3
# =============================================================================
# Terminal Chat Client
# =============================================================================
#
# Joins a chat room from the terminal:
#   - loads recent history         (GET  /api/chat/{room}/messages)
#   - follows the realtime stream  (GET  /api/chat/{room}/stream, SSE)
#   - sends lines you type         (POST /api/ingest, kind=chat_message)
#
# Sent lines show up immediately as pending ("…") and are reconciled with
# the server id when the ack or the realtime insert arrives.
#
# USAGE:
#   python scripts/chat_client.py --token "$SUPABASE_ACCESS_TOKEN" --room lobby
# =============================================================================

import argparse
import json
import sys
import threading

import requests

from app.services.chat_timeline import ChatTimeline, TimelineMessage


class ChatClient:
    def __init__(self, base_url: str, room: str, token: str, user_id: str, name: str):
        self.base_url = base_url.rstrip("/")
        self.room = room
        self.user_id = user_id
        self.name = name
        self.session = requests.Session()
        self.session.headers["Authorization"] = f"Bearer {token}"
        self.timeline = ChatTimeline()
        self._lock = threading.Lock()

    def load_history(self) -> None:
        resp = self.session.get(f"{self.base_url}/api/chat/{self.room}/messages", timeout=10)
        resp.raise_for_status()
        with self._lock:
            for item in resp.json()["messages"]:
                self.timeline.apply_insert(TimelineMessage.from_event(item))
        self.render()

    def follow(self) -> None:
        """Read the SSE stream forever (run in a daemon thread)."""
        url = f"{self.base_url}/api/chat/{self.room}/stream"
        with self.session.get(url, stream=True, timeout=(10, None)) as resp:
            resp.raise_for_status()
            for line in resp.iter_lines(decode_unicode=True):
                if not line or not line.startswith("data: "):
                    continue
                message = TimelineMessage.from_event(json.loads(line[len("data: "):]))
                with self._lock:
                    added = self.timeline.apply_insert(message)
                if added:
                    self.render()

    def send(self, text: str) -> None:
        with self._lock:
            temp_id = self.timeline.add_optimistic(text, self.user_id, self.name)
        self.render()

        resp = self.session.post(
            f"{self.base_url}/api/ingest",
            json={"kind": "chat_message", "text": text, "room": self.room},
            timeout=30,
        )
        body = resp.json()
        with self._lock:
            if body.get("success"):
                self.timeline.confirm(temp_id, body["domainId"])
            else:
                self.timeline.discard(temp_id)
        self.render()
        if not body.get("success"):
            print(f"\n!! {body.get('code')}: {body.get('error')}")

    def render(self) -> None:
        with self._lock:
            messages = self.timeline.messages[-20:]
        print("\033[2J\033[H", end="")
        print(f"# {self.room}")
        for m in messages:
            marker = " …" if m.pending else ""
            print(f"[{m.created_at:%H:%M}] {m.display_name}: {m.text}{marker}")
        print("> ", end="", flush=True)


def main() -> None:
    parser = argparse.ArgumentParser(description="Terminal chat client")
    parser.add_argument("--url", default="http://localhost:8000")
    parser.add_argument("--room", default="lobby")
    parser.add_argument("--token", required=True, help="Supabase access token")
    parser.add_argument("--user-id", required=True, help="Your auth user id")
    parser.add_argument("--name", default="me", help="Name shown on pending messages")
    args = parser.parse_args()

    client = ChatClient(args.url, args.room, args.token, args.user_id, args.name)
    client.load_history()
    threading.Thread(target=client.follow, daemon=True).start()

    try:
        for line in sys.stdin:
            text = line.strip()
            if text:
                client.send(text)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
