#!/usr/bin/env python3
from __future__ import annotations

import importlib
import io
import json
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from fastapi.testclient import TestClient
from PIL import Image


@dataclass
class Scenario:
  name: str
  run: Callable[[TestClient], dict[str, Any]]
  notes: list[str] = field(default_factory=list)


def parse_sse_events(payload_text: str) -> list[dict[str, Any]]:
  events: list[dict[str, Any]] = []
  current: dict[str, Any] = {}
  for raw_line in payload_text.splitlines():
    line = raw_line.strip("\r")
    if line.startswith("event: "):
      current["event"] = line[7:]
    elif line.startswith("data: "):
      current["data"] = line[6:]
    elif line == "" and current:
      events.append(current)
      current = {}
  if current:
    events.append(current)
  return events


def first_event_payload(events: list[dict[str, Any]], event_name: str) -> Any | None:
  for event in events:
    if event.get("event") != event_name:
      continue
    raw = event.get("data")
    if not isinstance(raw, str):
      return raw
    try:
      return json.loads(raw)
    except json.JSONDecodeError:
      return raw
  return None


def token_text(events: list[dict[str, Any]]) -> str:
  chunks: list[str] = []
  for event in events:
    if event.get("event") != "token":
      continue
    raw = event.get("data")
    if not isinstance(raw, str):
      continue
    try:
      payload = json.loads(raw)
      delta = payload.get("delta")
      if isinstance(delta, str):
        chunks.append(delta)
    except json.JSONDecodeError:
      continue
  return "".join(chunks)


def skin_photo_bytes() -> bytes:
  buf = io.BytesIO()
  Image.new("RGB", (320, 240), (205, 160, 140)).save(buf, format="JPEG", quality=90)
  return buf.getvalue()


def stream_turn(client: TestClient, path: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
  response = client.post(path, json=body) if body is not None else client.post(path)
  events = parse_sse_events(response.text)
  message = first_event_payload(events, "message")
  return {
    "status_code": response.status_code,
    "event_types": [event.get("event") for event in events],
    "tokens": token_text(events),
    "message": message if isinstance(message, dict) else {},
    "red_flag": first_event_payload(events, "red_flag"),
  }


def scenario_first_turn(client: TestClient) -> dict[str, Any]:
  client.post("/sessions")
  before = len(client.get("/sessions/current/messages").json()["messages"])
  turn = stream_turn(client, "/chat/stream", {"message": "i have a headache"})
  state = client.get("/chat/state").json()
  after = len(client.get("/sessions/current/messages").json()["messages"])
  text = turn["message"].get("text", "")
  return {
    "pass": (
      turn["status_code"] == 200
      and bool(text)
      and turn["tokens"] == text
      and after - before == 2
      and state["phase"] == "idle"
      and "i have a headache".startswith(state["session"]["title"])
    ),
    "preview": text[:240],
    "failure_kind": turn["message"].get("failure_kind"),
    "event_types": turn["event_types"],
    "title": state["session"]["title"],
  }


def scenario_red_flag(client: TestClient) -> dict[str, Any]:
  client.post("/sessions")
  turn = stream_turn(
    client,
    "/chat/stream",
    {"message": "Reply with exactly this sentence: if you have trouble breathing, seek emergency care."},
  )
  state = client.get("/chat/state").json()
  text = turn["message"].get("text", "")
  expects_flag = "trouble breathing" in text.lower()
  return {
    "pass": turn["status_code"] == 200 and (bool(turn["red_flag"]) == expects_flag) and state["phase"] == "idle",
    "preview": text[:240],
    "failure_kind": turn["message"].get("failure_kind"),
    "red_flag": turn["red_flag"],
    "mood": state["mood"],
  }


def scenario_skin_photo(client: TestClient) -> dict[str, Any]:
  client.post("/sessions")
  response = client.post(
    "/attachments",
    files=[("files", ("skin.jpg", skin_photo_bytes(), "image/jpeg"))],
  )
  payload = response.json()
  categories = [item.get("category") for item in payload.get("attachments", [])]
  suggestions = [item.get("text", "") for item in payload.get("suggestions", [])]
  turn = stream_turn(client, "/chat/stream", {"message": "is this rash getting worse?"})
  return {
    "pass": (
      response.status_code == 200
      and categories == ["skin"]
      and len(suggestions) == 1
      and "follow-up check-in" in suggestions[0]
      and turn["status_code"] == 200
    ),
    "preview": turn["message"].get("text", "")[:240],
    "failure_kind": turn["message"].get("failure_kind"),
    "categories": categories,
    "suggestions": suggestions,
  }


def scenario_recap_and_export(client: TestClient) -> dict[str, Any]:
  client.post("/sessions")
  stream_turn(client, "/chat/stream", {"message": "i only slept four hours"})
  recap = stream_turn(client, "/chat/recap")
  exported = client.get("/sessions/current/export")
  users = [
    item for item in client.get("/sessions/current/messages").json()["messages"] if item.get("role") == "user"
  ]
  return {
    "pass": recap["status_code"] == 200 and len(users) == 1 and "### You" in exported.text,
    "preview": recap["message"].get("text", "")[:240],
    "failure_kind": recap["message"].get("failure_kind"),
  }


def run() -> int:
  repo_root = Path(__file__).resolve().parents[1]
  backend_dir = repo_root / "backend"
  if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

  # Instant streaming keeps the smoke run short; the gateway is whatever .env points at.
  os.environ.setdefault("PULSE_STREAM_INTERVAL_SECONDS", "0")

  backend_module = importlib.import_module("main")
  backend_module = importlib.reload(backend_module)

  scenarios = [
    Scenario(name="First Turn Titles Session", run=scenario_first_turn),
    Scenario(name="Red Flag Surfaces Advisory", run=scenario_red_flag),
    Scenario(name="Skin Photo Suggests Follow-up", run=scenario_skin_photo),
    Scenario(name="Recap And Export", run=scenario_recap_and_export),
  ]

  results: list[dict[str, Any]] = []
  with TestClient(backend_module.app) as client:
    for scenario in scenarios:
      try:
        scenario_result = scenario.run(client)
      except (KeyError, ValueError) as exc:
        scenario_result = {"pass": False, "error": f"{type(exc).__name__}: {exc}"}
      scenario_result["name"] = scenario.name
      results.append(scenario_result)

  passed = sum(1 for item in results if item.get("pass"))
  failed = len(results) - passed
  timestamp = datetime.now(timezone.utc).isoformat()

  report_lines = [
    "# Pulse Chat Smoke Report",
    "",
    f"- Timestamp (UTC): `{timestamp}`",
    f"- Model: `{backend_module.container.settings.model}`",
    f"- API key configured: `{bool(backend_module.container.settings.api_key)}`",
    f"- Total scenarios: `{len(results)}`",
    f"- Passed: `{passed}`",
    f"- Failed: `{failed}`",
    "",
    "## Scenario Results",
    "",
  ]

  for item in results:
    status = "PASS" if item.get("pass") else "FAIL"
    report_lines.append(f"### {status} - {item['name']}")
    if item.get("failure_kind"):
      report_lines.append(f"- Gateway failure: `{item['failure_kind']}`")
    if item.get("error"):
      report_lines.append(f"- Error: `{item['error']}`")
    preview = item.get("preview") or ""
    if preview:
      report_lines.append(f"- Reply preview: `{preview}`")
    details = {key: value for key, value in item.items() if key not in {"name", "pass", "preview", "error"}}
    report_lines.append("- Details:")
    report_lines.append("```json")
    report_lines.append(json.dumps(details, indent=2, ensure_ascii=True))
    report_lines.append("```")
    report_lines.append("")

  report_path = repo_root / "PULSE_CHAT_SMOKE_REPORT.md"
  report_path.write_text("\n".join(report_lines), encoding="utf-8")
  print(f"Wrote report: {report_path}")
  print(f"Passed {passed}/{len(results)} scenarios.")

  return 0 if failed == 0 else 1


if __name__ == "__main__":
  raise SystemExit(run())
