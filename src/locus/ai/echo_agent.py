"""Local deterministic assistant used by runner and worker integration tests.

Reads the prompt from stdin and answers in the Claude ``stream-json`` format
(default) or the Codex plain-text format. Unknown arguments, such as the real
CLI flags appended by the runners, are ignored.
"""

from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Run one deterministic assistant turn."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--echo-format", choices=("claude", "codex"), default="claude")
    parser.add_argument("--echo-mode", choices=("echo", "fail", "sleep"), default="echo")
    parser.add_argument("--fail-message", default="connection reset by peer")
    parser.add_argument("--fail-times", type=int, default=-1)
    parser.add_argument("--state-file", default=None)
    parser.add_argument("--sleep-seconds", type=float, default=30.0)
    parser.add_argument("--write-file", default=None)
    parser.add_argument("--output-last-message", default=None)
    args, _unknown = parser.parse_known_args(argv)

    prompt = sys.stdin.read()

    if args.echo_mode == "sleep":
        time.sleep(args.sleep_seconds)
        return 0
    if args.echo_mode == "fail" and _should_fail(args.fail_times, args.state_file):
        sys.stderr.write(f"{args.fail_message}\n")
        sys.stderr.flush()
        return 1

    answer = f"echo: {prompt.strip()}"
    if args.write_file:
        Path(args.write_file).write_text(f"{answer}\n", "utf-8")

    if args.echo_format == "codex":
        _emit_codex(answer, args.output_last_message)
    else:
        _emit_claude(answer)
    return 0


def _should_fail(fail_times: int, state_file: str | None) -> bool:
    if fail_times < 0 or state_file is None:
        return True
    path = Path(state_file)
    failures = int(path.read_text("utf-8")) if path.exists() else 0
    if failures >= fail_times:
        return False
    path.write_text(str(failures + 1), "utf-8")
    return True


def _emit_claude(answer: str) -> None:
    head, _, tail = answer.partition(" ")
    items = [
        {"type": "system", "subtype": "init"},
        _stream_event("content_block_start", 0, content_block={"type": "thinking"}),
        _stream_event(
            "content_block_start",
            1,
            content_block={"type": "tool_use", "name": "Read", "id": "toolu_echo_1"},
        ),
        _stream_event(
            "content_block_delta",
            1,
            delta={"type": "input_json_delta", "partial_json": '{"file_path": '},
        ),
        _stream_event(
            "content_block_delta",
            1,
            delta={"type": "input_json_delta", "partial_json": '"README.md"}'},
        ),
        _stream_event("content_block_stop", 1),
        _stream_event("content_block_delta", 2, delta={"type": "text_delta", "text": f"{head} "}),
        _stream_event("content_block_delta", 2, delta={"type": "text_delta", "text": tail}),
        {
            "type": "result",
            "subtype": "success",
            "result": answer,
            "usage": {"input_tokens": 12, "output_tokens": len(answer.split())},
        },
    ]
    for item in items:
        sys.stdout.write(json.dumps(item) + "\n")
        sys.stdout.flush()


def _stream_event(event_type: str, index: int, **fields: object) -> dict[str, object]:
    return {"type": "stream_event", "event": {"type": event_type, "index": index, **fields}}


def _emit_codex(answer: str, output_path: str | None) -> None:
    lines = [
        "thinking",
        "**Reading the task**",
        "• Read README.md",
        "✓ Plan ready",
        answer,
    ]
    for line in lines:
        sys.stdout.write(f"{line}\n")
        sys.stdout.flush()
    if output_path:
        Path(output_path).write_text(answer, "utf-8")


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
