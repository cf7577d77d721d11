"""End-to-end smoke test for the ride plan WebSocket.

Prerequisites:
1. `py manage.py runserver` must be running.
2. Install dependencies once: `py -m pip install requests websocket-client`.

The script will:
- Ensure a demo rider exists (auto-register if missing).
- Log in via the REST API and create a ride plan.
- Open the ride plan WebSocket with the JWT access token.
- Edit the plan over the socket and wait for the saved state.
- Download the plan's .ics file over REST.
"""

from __future__ import annotations

import json
import os
import queue
import threading
from typing import Dict

import requests
import websocket  # type: ignore

BASE_URL = os.environ.get("RIDE_BASE_URL", "http://127.0.0.1:8000")
API_ROOT = f"{BASE_URL}/api"
RIDES_API = f"{API_ROOT}/rides"
AUTH_API = f"{API_ROOT}/auth"

RIDER_CREDS = {
    "username": "ws_demo_rider",
    "password": "demo1234",
    "display_name": "Demo Rider",
}

PLAN = {
    "title": "Delhi to Manali",
    "start_location": "Delhi",
    "end_location": "Manali",
    "transport_mode": "bike",
    "budget_tier": "mid",
    "scheduled_start": "2024-06-01T06:00",
    "scheduled_end": "2024-06-03T18:00",
    "stops": ["Chandigarh", "Mandi"],
}


def _login_or_register(session: requests.Session, payload: Dict) -> Dict:
    login_resp = session.post(
        f"{AUTH_API}/login/",
        json={"username": payload["username"], "password": payload["password"]},
        timeout=10,
    )

    if login_resp.status_code != 200:
        register_body = {
            "username": payload["username"],
            "email": f"{payload['username']}@example.com",
            "password": payload["password"],
            "display_name": payload["display_name"],
        }
        reg_resp = session.post(f"{AUTH_API}/register/", json=register_body, timeout=10)
        reg_resp.raise_for_status()
        login_resp = session.post(
            f"{AUTH_API}/login/",
            json={"username": payload["username"], "password": payload["password"]},
            timeout=10,
        )

    login_resp.raise_for_status()
    data = login_resp.json()
    token = data["tokens"]["access"]
    session.headers.update({"Authorization": f"Bearer {token}"})
    return {"user": data["user"], "token": token}


def _create_plan(session: requests.Session) -> Dict:
    resp = session.post(f"{RIDES_API}/", json=PLAN, timeout=10)
    resp.raise_for_status()
    data = resp.json()
    print(f"[HTTP] Created ride plan #{data['id']} status={data['status']}")
    return data


def _open_plan_socket(token: str, ride_id, ready_evt: threading.Event, queue_out: queue.Queue) -> None:
    ws_url = BASE_URL.replace("http", "ws") + f"/ws/ride-plan/?token={token}"

    def on_open(ws):  # type: ignore[no-untyped-def]
        print("[WS] Connected to ride plan channel")
        ws.send(json.dumps({"type": "open_ride", "ride_id": ride_id}))

    def on_message(ws, message):  # type: ignore[no-untyped-def]
        payload = json.loads(message)
        print(f"[WS] Received {payload.get('type')}: state={payload.get('state')}")
        if payload.get("type") == "error":
            queue_out.put(payload)
            ws.close()
            return
        if payload.get("type") != "ride_state":
            return

        if payload["state"] == "viewing" and not ready_evt.is_set():
            ready_evt.set()
            ws.send(json.dumps({"type": "begin_edit"}))
            ws.send(json.dumps({
                "type": "commit_edit",
                "fields": {"title": "Delhi to Manali via Mandi"},
            }))
        elif payload["state"] == "viewing" and payload["ride"]["title"].endswith("Mandi"):
            queue_out.put(payload)
            ws.close()

    def on_error(ws, error):  # type: ignore[no-untyped-def]
        print(f"[WS] Error: {error}")
        ready_evt.set()

    def on_close(_ws, *_):  # type: ignore[no-untyped-def]
        print("[WS] Connection closed")

    ws_app = websocket.WebSocketApp(
        ws_url,
        on_open=on_open,
        on_message=on_message,
        on_error=on_error,
        on_close=on_close,
    )

    ws_app.run_forever()


def _download_calendar(session: requests.Session, ride_id) -> None:
    resp = session.get(f"{RIDES_API}/{ride_id}/calendar.ics", timeout=10)
    resp.raise_for_status()
    print(f"[HTTP] {resp.headers.get('Content-Disposition')}")
    print(resp.text)


def main() -> None:
    session = requests.Session()

    print("[HTTP] Logging in / registering demo account ...")
    rider = _login_or_register(session, RIDER_CREDS)
    print(f"[HTTP] Rider #{rider['user']['id']} ready")

    plan = _create_plan(session)

    ready_evt = threading.Event()
    message_queue: queue.Queue = queue.Queue()
    ws_thread = threading.Thread(
        target=_open_plan_socket,
        args=(rider["token"], plan["id"], ready_evt, message_queue),
        daemon=True,
    )
    ws_thread.start()

    if not ready_evt.wait(timeout=5):
        raise TimeoutError("Ride plan WebSocket did not load the plan within 5 seconds")

    try:
        payload = message_queue.get(timeout=30)
    except queue.Empty:
        raise TimeoutError("Ride plan edit was not confirmed within 30 seconds")

    if payload.get("type") == "error":
        raise RuntimeError(f"Ride plan edit failed: {payload}")
    print("[RESULT] Saved title:", payload["ride"]["title"])

    _download_calendar(session, plan["id"])
    print("[DONE] End-to-end WebSocket check completed.")


if __name__ == "__main__":
    main()
