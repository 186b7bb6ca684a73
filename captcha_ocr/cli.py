"""Command line interface for solving captcha images."""

import argparse
import json
import sys
from pathlib import Path

from .errors import InputError
from .io.writers import eval_row, write_json, write_jsonl
from .pipeline.config import load_config
from .pipeline.schemas import letters_only
from .pipeline.solve import solve_bytes, solve_payload

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp"}


def _solve(args: argparse.Namespace, config) -> dict:
    try:
        if args.base64:
            result = solve_payload(args.base64, config=config, timeout=args.timeout)
        else:
            result = solve_bytes(Path(args.path).read_bytes(), config=config, timeout=args.timeout)
    except InputError as exc:
        raise SystemExit(f"Invalid captcha input: {exc}")
    return result.to_dict(trace=args.trace)


def _eval(args: argparse.Namespace, config) -> dict:
    images = sorted(p for p in Path(args.path).iterdir() if p.suffix.lower() in IMAGE_SUFFIXES)
    if not images:
        raise SystemExit(f"No images found in {args.path}")

    rows = []
    for image_path in images:
        expected = letters_only(image_path.stem.upper())
        try:
            result = solve_bytes(image_path.read_bytes(), config=config, timeout=args.timeout)
        except InputError as exc:
            rows.append(eval_row(image_path.name, expected, error=str(exc)))
            continue
        rows.append(eval_row(image_path.name, expected, result))

    if args.output:
        write_jsonl(args.output, rows)

    correct = sum(1 for row in rows if row["correct"])
    return {"total": len(rows), "correct": correct, "accuracy": round(correct / len(rows), 4)}


def main() -> None:
    parser = argparse.ArgumentParser(description="Solve text captchas with an ensemble of OCR strategies.")
    sub = parser.add_subparsers(dest="cmd")

    solve = sub.add_parser("solve", help="Solve a single captcha image")
    solve.add_argument("path", nargs="?", help="Path to the captcha image")
    solve.add_argument("--base64", default=None, help="Base64 payload (data-URI header allowed) instead of a path")
    solve.add_argument("--trace", action="store_true", help="Include every attempt in the output")

    evaluate = sub.add_parser("eval", help="Solve every image in a directory named after its answer")
    evaluate.add_argument("path", help="Directory of images, e.g. ATLK.png")

    serve = sub.add_parser("serve", help="Run the HTTP solving service")
    serve.add_argument("--host", default="0.0.0.0", help="Bind address")
    serve.add_argument("--port", type=int, default=3000, help="Listen port")

    for p in (solve, evaluate):
        p.add_argument("--config", type=Path, default=None, help="Strategy table YAML")
        p.add_argument("--timeout", type=float, default=None, help="Per-image deadline in seconds")
        p.add_argument("--output", type=Path, default=None, help="Write JSON (solve) or JSONL (eval) to file")

    # Backward-compatible: allow `captcha-ocr /path/to/captcha.png`
    if len(sys.argv) > 1 and sys.argv[1] not in {"solve", "eval", "serve"} and not sys.argv[1].startswith("-"):
        sys.argv.insert(1, "solve")

    args = parser.parse_args()

    if args.cmd is None:
        parser.print_help()
        raise SystemExit(2)
    if args.cmd == "serve":
        from .api.main import run_server

        run_server(host=args.host, port=args.port)
        return
    config = load_config(args.config)

    if args.cmd == "eval":
        data = _eval(args, config)
        print(json.dumps(data, ensure_ascii=False, indent=2))
        return

    if not args.path and not args.base64:
        raise SystemExit("Provide an image path or --base64")
    data = _solve(args, config)
    if args.output:
        write_json(args.output, data)
    else:
        print(json.dumps(data, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
